"""Subscriber side of the notification bus.

Downstream tools (and the reverse relay) use :class:`BusClient` to attach to
a bus endpoint the same way a native client attaches to the host's output
window: claim a handle, register, then receive START/STOP/UPDATE_STATE and
``WM_COPYDATA`` replies.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import os
from typing import Dict, Optional

from .messages import (
    COPYDATA_MESSAGE_ID_STRING,
    DEFAULT_CLIENT_ID,
    BusMessage,
    FrameError,
    MessageKind,
    decode_id_string,
    get_id_string_message,
    read_message,
    register_message,
    unregister_message,
)

logger = logging.getLogger("mamebridge.bus.client")

_handle_counter = itertools.count(1)


def new_handle() -> int:
    """Allocate a handle that is unique across processes on this machine."""
    return (os.getpid() << 16) | (next(_handle_counter) & 0xFFFF)


class BusClient:
    def __init__(
        self,
        host: str,
        port: int,
        handle: Optional[int] = None,
        client_id: int = DEFAULT_CLIENT_ID,
    ):
        self.host = host
        self.port = port
        self.handle = handle if handle is not None else new_handle()
        self.client_id = client_id
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self.connected = False
        self.rx_queue: asyncio.Queue[BusMessage] = asyncio.Queue()
        self._rx_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}

    async def connect(self):
        if self.connected:
            return
        self.reader, self.writer = await asyncio.open_connection(self.host, self.port)
        self.connected = True
        self._rx_task = asyncio.create_task(self._rx_loop())
        logger.debug("Attached to bus %s:%d as handle %#x", self.host, self.port, self.handle)

    async def disconnect(self):
        self.connected = False
        if self._rx_task:
            self._rx_task.cancel()
            try:
                await self._rx_task
            except asyncio.CancelledError:
                pass
            self._rx_task = None
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self.writer = None
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()

    async def send(self, message: BusMessage):
        if not self.connected or not self.writer:
            raise RuntimeError("BusClient: not connected")
        self.writer.write(message.to_bytes())
        await self.writer.drain()

    async def receive(self) -> BusMessage:
        return await self.rx_queue.get()

    # --- Native client operations ---

    async def register(self):
        await self.send(register_message(self.handle, self.client_id))

    async def unregister(self):
        await self.send(unregister_message(self.handle, self.client_id))

    async def request_id_string(self, output_id: int):
        """Ask the host for the name of ``output_id``; the reply arrives as WM_COPYDATA."""
        await self.send(get_id_string_message(self.handle, output_id))

    async def query_name(self, output_id: int, timeout: float = 2.0) -> str:
        """Request the name of ``output_id`` and wait for the matching reply.

        The reply is still queued on ``rx_queue`` for ordinary consumers.
        """
        loop = asyncio.get_running_loop()
        future = self._pending.get(output_id)
        if future is None or future.done():
            future = loop.create_future()
            self._pending[output_id] = future
        await self.request_id_string(output_id)
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        finally:
            if future.done():
                self._pending.pop(output_id, None)

    async def _rx_loop(self):
        try:
            while self.connected and self.reader:
                message = await read_message(self.reader)
                self._resolve_pending(message)
                await self.rx_queue.put(message)
        except asyncio.CancelledError:
            return
        except asyncio.IncompleteReadError:
            # remote closed
            self.connected = False
        except (FrameError, ConnectionError, OSError) as e:
            logger.warning("Bus connection error: %s", e)
            self.connected = False

    def _resolve_pending(self, message: BusMessage) -> None:
        if message.kind is not MessageKind.COPYDATA:
            return
        if message.lparam != COPYDATA_MESSAGE_ID_STRING:
            return
        try:
            output_id, name = decode_id_string(message.payload)
        except FrameError as e:
            logger.debug("Ignoring malformed id string reply: %s", e)
            return
        future = self._pending.get(output_id)
        if future is not None and not future.done():
            future.set_result(name)
