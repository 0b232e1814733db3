"""Output relay - the native output -> network output direction.

Attaches to a host's notification bus as an ordinary client and re-serves
every output change as a network output line:

  - registers with the host on attach and again on every START
  - UPDATE_STATE for a known id becomes ``<name> = <value>``; for an unknown
    id the name is requested and that value is dropped
  - WM_COPYDATA id-string replies fill the name cache
  - STOP clears the name cache
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from ..bus.client import BusClient
from ..bus.messages import (
    COPYDATA_MESSAGE_ID_STRING,
    BusMessage,
    FrameError,
    MessageKind,
    decode_id_string,
)
from .server import LineServer

logger = logging.getLogger("mamebridge.relay")


class OutputRelay:
    def __init__(
        self,
        client: BusClient,
        server: LineServer,
        reconnect_delay: float = 2.0,
    ):
        self.client = client
        self.server = server
        self.reconnect_delay = reconnect_delay
        self.host_handle: Optional[int] = None

        self._names: Dict[int, str] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._stats = {
            "lines_sent": 0,
            "updates_dropped": 0,
            "names_learned": 0,
        }

    async def start(self) -> None:
        await self.server.start()
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self.client.connected:
            try:
                await self.client.unregister()
            except (ConnectionError, OSError, RuntimeError):
                pass
        await self.client.disconnect()
        await self.server.stop()

    async def run(self) -> None:
        """Attach to the bus, relay until it goes away, retry."""
        while not self._stop_event.is_set():
            try:
                await self.client.connect()
            except OSError as e:
                logger.debug("Bus at %s:%d unavailable: %s", self.client.host, self.client.port, e)
                await self._backoff()
                continue

            logger.info("Attached to host bus, registering...")
            try:
                await self.client.register()
                while self.client.connected or not self.client.rx_queue.empty():
                    message = await self._next_message()
                    if message is not None:
                        await self.handle_message(message)
            except (ConnectionError, OSError, RuntimeError) as e:
                logger.warning("Host bus error: %s", e)
            finally:
                self._names.clear()
                await self.client.disconnect()
            logger.info("Host bus closed")
            await self._backoff()

    async def _next_message(self) -> Optional[BusMessage]:
        # Poll so a closed connection is noticed even when nothing arrives
        try:
            return await asyncio.wait_for(self.client.receive(), timeout=0.5)
        except asyncio.TimeoutError:
            return None

    async def handle_message(self, message: BusMessage) -> None:
        if message.kind is MessageKind.UPDATE_STATE:
            await self._on_update(message.wparam, message.lparam)
        elif message.kind is MessageKind.COPYDATA:
            self._on_copydata(message)
        elif message.kind is MessageKind.START:
            logger.info("Host started, registering...")
            self.host_handle = message.sender
            await self.client.register()
        elif message.kind is MessageKind.STOP:
            logger.info("Host stopped")
            self.host_handle = None
            self._names.clear()

    async def _on_update(self, output_id: int, value: int) -> None:
        name = self._names.get(output_id)
        if name is None:
            self._stats["updates_dropped"] += 1
            await self.client.request_id_string(output_id)
            return
        await self.server.send_output(name, value)
        self._stats["lines_sent"] += 1

    def _on_copydata(self, message: BusMessage) -> None:
        if message.lparam != COPYDATA_MESSAGE_ID_STRING:
            return
        try:
            output_id, name = decode_id_string(message.payload)
        except FrameError as e:
            logger.debug("Ignoring malformed id string: %s", e)
            return
        self._names[output_id] = name
        self._stats["names_learned"] += 1
        logger.info("Id %d -> %s", output_id, name)

    async def _backoff(self) -> None:
        if self._stop_event.is_set():
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.reconnect_delay)
        except asyncio.TimeoutError:
            pass

    def name_for(self, output_id: int) -> Optional[str]:
        return self._names.get(output_id)

    def get_stats(self) -> Dict[str, int]:
        return {**self._stats, "clients": self.server.client_count, "known_names": len(self._names)}
