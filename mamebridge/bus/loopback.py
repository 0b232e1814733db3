import asyncio
import os
from typing import Dict, List, Optional

from .base import BusInterface, DeliveryError
from .messages import BusMessage


class LoopbackEndpoint:
    """In-process bus endpoint; messages from the host land in ``inbox``."""

    def __init__(self, bus: "LoopbackBus", handle: int):
        self.bus = bus
        self.handle = handle
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.connected = True
        # Set to make deliveries to this endpoint fail
        self.broken = False

    def send(self, message: BusMessage) -> None:
        if not self.connected:
            raise RuntimeError("LoopbackEndpoint: not connected")
        self.bus._dispatch(message)

    async def receive(self, timeout: Optional[float] = None) -> BusMessage:
        return await asyncio.wait_for(self.inbox.get(), timeout=timeout)

    def drain(self) -> List[BusMessage]:
        messages = []
        while not self.inbox.empty():
            messages.append(self.inbox.get_nowait())
        return messages

    def disconnect(self) -> None:
        self.connected = False
        self.bus._endpoints.pop(self.handle, None)


class LoopbackBus(BusInterface):
    """Notification bus living entirely in the current event loop."""

    def __init__(self, handle: Optional[int] = None):
        self.handle = handle if handle is not None else os.getpid()
        self._endpoints: Dict[int, LoopbackEndpoint] = {}
        self.running = False

    def connect(self, handle: int) -> LoopbackEndpoint:
        endpoint = LoopbackEndpoint(self, handle)
        self._endpoints[handle] = endpoint
        return endpoint

    async def start(self):
        self.running = True

    async def stop(self):
        self.running = False
        for endpoint in list(self._endpoints.values()):
            endpoint.disconnect()

    async def post(self, handle: int, message: BusMessage):
        endpoint = self._endpoints.get(handle)
        if endpoint is None:
            raise DeliveryError(handle, "no such endpoint")
        if endpoint.broken:
            raise DeliveryError(handle, "endpoint not accepting messages")
        endpoint.inbox.put_nowait(message)

    async def broadcast(self, message: BusMessage) -> int:
        delivered = 0
        for endpoint in list(self._endpoints.values()):
            if endpoint.broken:
                continue
            endpoint.inbox.put_nowait(message)
            delivered += 1
        return delivered

    @property
    def endpoint_count(self) -> int:
        return len(self._endpoints)
