from abc import ABC, abstractmethod
from typing import Callable, Optional

from .messages import BusMessage

# Called for every message a bus endpoint sends to us
MessageHandler = Callable[[BusMessage], None]


class DeliveryError(RuntimeError):
    """Raised when a message cannot be delivered to an endpoint handle."""

    def __init__(self, handle: int, reason: str):
        super().__init__(f"cannot deliver to endpoint {handle:#x}: {reason}")
        self.handle = handle
        self.reason = reason


class BusInterface(ABC):
    """Host side of the notification bus.

    Implementations accept endpoints, hand every inbound message to the
    registered handler, and deliver outbound messages either to one
    endpoint handle or to every connected endpoint.
    """

    handle: int
    _handler: Optional[MessageHandler] = None

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._handler = handler

    def _dispatch(self, message: BusMessage) -> None:
        if self._handler is not None:
            self._handler(message)

    @abstractmethod
    async def start(self):
        pass

    @abstractmethod
    async def stop(self):
        pass

    @abstractmethod
    async def post(self, handle: int, message: BusMessage):
        """Deliver ``message`` to the endpoint owning ``handle``.

        Raises:
            DeliveryError: if the handle is unknown or the write fails.
        """

    @abstractmethod
    async def broadcast(self, message: BusMessage) -> int:
        """Deliver ``message`` to every connected endpoint; return the delivery count."""

    @property
    @abstractmethod
    def endpoint_count(self) -> int:
        pass
