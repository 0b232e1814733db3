"""Notification bus adapter - impersonates the host's native output window.

Downstream clients were written against the host itself, so every reply and
broadcast here has to look exactly like the host's:

  - REGISTER/UNREGISTER only edit the subscriber set. Answering a
    registration with START makes some clients register again, forever.
  - GET_ID_STRING is answered with a WM_COPYDATA id-string addressed to the
    asking endpoint. Id 0 is the session (ROM) name.
  - START/STOP go to every endpoint on the bus, UPDATE_STATE only to
    registered subscribers.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Union

from ..bus.base import BusInterface, DeliveryError
from ..bus.messages import (
    BusMessage,
    MessageKind,
    id_string_reply,
    start_message,
    stop_message,
    update_state_message,
)
from .protocol import Event
from .registry import NameRegistry
from .subscribers import SubscriberDirectory

logger = logging.getLogger("mamebridge.bridge.adapter")

EMPTY_SESSION = "___empty"

SESSION_START_NAMES = ("mame_start", "session_start")
SESSION_STOP_NAMES = ("mame_stop", "session_stop")


class NotificationBusAdapter:
    """Owns the session name, the name registry and the subscriber set."""

    def __init__(
        self,
        bus: BusInterface,
        session_start_names: Iterable[str] = SESSION_START_NAMES,
        session_stop_names: Iterable[str] = SESSION_STOP_NAMES,
        prune_failed_subscribers: bool = False,
    ):
        self.bus = bus
        self.registry = NameRegistry()
        self.subscribers = SubscriberDirectory()
        self.session_name = EMPTY_SESSION
        self.session_start_names = frozenset(session_start_names)
        self.session_stop_names = frozenset(session_stop_names)
        self.prune_failed_subscribers = prune_failed_subscribers

        self._stats = {
            "updates_sent": 0,
            "starts_sent": 0,
            "stops_sent": 0,
            "queries_answered": 0,
            "delivery_failures": 0,
        }

    @property
    def handle(self) -> int:
        return self.bus.handle

    # --- Inbound (subscriber -> host) ---

    async def handle_message(self, message: BusMessage) -> int:
        """Dispatch an inbound bus message; returns 1 when it was handled."""
        if message.kind is MessageKind.REGISTER_CLIENT:
            return self.register(message.sender)
        if message.kind is MessageKind.UNREGISTER_CLIENT:
            return self.unregister(message.sender)
        if message.kind is MessageKind.GET_ID_STRING:
            return await self.query_name(message.sender, message.lparam)
        logger.debug("Ignoring inbound %s from %#x", message.kind.value, message.wparam)
        return 0

    def register(self, handle: int) -> int:
        if self.subscribers.register(handle):
            logger.info("Client registered (%#x)", handle)
        else:
            logger.debug("Client %#x registered again", handle)
        return 1

    def unregister(self, handle: int) -> int:
        self.subscribers.unregister(handle)
        logger.info("Client unregistered (%#x)", handle)
        return 1

    def lookup(self, output_id: int) -> str:
        if output_id == 0:
            return self.session_name
        return self.registry.lookup(output_id) or ""

    async def query_name(self, handle: int, output_id: int) -> int:
        name = self.lookup(output_id)
        reply = id_string_reply(self.handle, output_id, name)
        try:
            await self.bus.post(handle, reply)
            self._stats["queries_answered"] += 1
        except DeliveryError as e:
            self._stats["delivery_failures"] += 1
            logger.debug("Id string reply lost: %s", e)
        return 1

    # --- Outbound (host -> subscribers) ---

    async def broadcast_start(self) -> None:
        await self.bus.broadcast(start_message(self.handle))
        self._stats["starts_sent"] += 1

    async def broadcast_stop(self) -> None:
        await self.bus.broadcast(stop_message(self.handle))
        self._stats["stops_sent"] += 1

    async def update_state(self, output_id: int, value: int) -> None:
        message = update_state_message(output_id, value)
        for handle in self.subscribers.snapshot():
            try:
                await self.bus.post(handle, message)
                self._stats["updates_sent"] += 1
            except DeliveryError as e:
                self._stats["delivery_failures"] += 1
                logger.debug("Update lost: %s", e)
                if self.prune_failed_subscribers:
                    self.subscribers.unregister(handle)
                    logger.info("Dropped unreachable client (%#x)", handle)

    # --- Upstream session hooks ---

    async def on_connected(self) -> None:
        self.session_name = EMPTY_SESSION
        self.registry.clear()
        # Tell waiting clients we are live before the ROM name is known
        await self.broadcast_start()
        logger.info("Sent start signal (%s)", self.session_name)

    async def on_event(self, event: Event) -> None:
        if event.name in self.session_start_names:
            self.session_name = event.text
            logger.info("Session started: %s", self.session_name)
            await self.broadcast_start()
            return

        # The stop signal is driven by the socket closing instead
        if event.name in self.session_stop_names:
            return

        output_id = self.registry.resolve(event.name)
        await self.update_state(output_id, event.value)

    async def on_disconnected(self) -> None:
        await self.broadcast_stop()
        self.registry.clear()
        self.session_name = EMPTY_SESSION

    # --- Statistics ---

    def get_stats(self) -> Dict[str, Union[int, str]]:
        return {
            **self._stats,
            "subscribers": len(self.subscribers),
            "outputs": len(self.registry),
            "session_name": self.session_name,
        }

    def reset_stats(self) -> None:
        for key in self._stats:
            self._stats[key] = 0
