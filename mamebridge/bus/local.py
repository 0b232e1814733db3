"""Local notification bus - a loopback TCP endpoint standing in for the host's
native output window.

Subscribers connect to the well-known address and exchange framed
:class:`BusMessage` values. Whatever handle a connection sends as ``wparam``
on REGISTER, UNREGISTER or GET_ID_STRING is claimed by that connection, so
replies addressed to the handle find their way back.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Dict, Optional, Set

from .base import BusInterface, DeliveryError
from .messages import (
    ENDPOINT_NAME,
    BusMessage,
    FrameError,
    MessageKind,
    read_message,
    unregister_message,
)

logger = logging.getLogger("mamebridge.bus.local")

DEFAULT_BUS_HOST = "127.0.0.1"
DEFAULT_BUS_PORT = 8001

# Unread bytes an endpoint may accumulate before it is dropped
DEFAULT_WRITE_BUFFER_LIMIT = 1024 * 1024

# Kinds whose wparam names the sending endpoint
_SENDER_KINDS = {
    MessageKind.REGISTER_CLIENT,
    MessageKind.UNREGISTER_CLIENT,
    MessageKind.GET_ID_STRING,
    MessageKind.COPYDATA,
}


class EndpointSession:
    """Represents one connected bus endpoint.

    Sends never wait for the peer. Bytes the peer has not read yet stay in
    the transport buffer; once that passes ``write_buffer_limit`` the
    endpoint is considered stuck and is dropped.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        session_id: int,
        write_buffer_limit: int = DEFAULT_WRITE_BUFFER_LIMIT,
    ):
        self.reader = reader
        self.writer = writer
        self.session_id = session_id
        self.write_buffer_limit = write_buffer_limit
        self.connected = True
        self.handles: Set[int] = set()
        self._addr = writer.get_extra_info("peername")

    @property
    def address(self) -> str:
        if self._addr:
            return f"{self._addr[0]}:{self._addr[1]}"
        return "unknown"

    @property
    def pending_bytes(self) -> int:
        return self.writer.transport.get_write_buffer_size()

    async def send(self, message: BusMessage) -> None:
        if not self.connected or self.writer.transport.is_closing():
            self.connected = False
            raise ConnectionError("endpoint closed")
        if self.pending_bytes > self.write_buffer_limit:
            logger.warning(
                "Endpoint %s is not reading (%d bytes pending), dropping it",
                self.address,
                self.pending_bytes,
            )
            self.abort()
            raise ConnectionError("endpoint not reading")
        self.writer.write(message.to_bytes())

    def abort(self) -> None:
        self.connected = False
        self.writer.transport.abort()

    async def close(self) -> None:
        self.connected = False
        # Unsent bytes would keep a graceful close waiting on the peer
        if self.pending_bytes:
            self.writer.transport.abort()
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass


class LocalBusServer(BusInterface):
    """Loopback TCP implementation of the notification bus host side."""

    def __init__(
        self,
        host: str = DEFAULT_BUS_HOST,
        port: int = DEFAULT_BUS_PORT,
        handle: Optional[int] = None,
        name: str = ENDPOINT_NAME,
        write_buffer_limit: int = DEFAULT_WRITE_BUFFER_LIMIT,
    ):
        self.host = host
        self.port = port
        self.name = name
        self.write_buffer_limit = write_buffer_limit
        self.handle = handle if handle is not None else os.getpid()

        self._server: Optional[asyncio.Server] = None
        self._sessions: Set[EndpointSession] = set()
        self._owners: Dict[int, EndpointSession] = {}
        self._session_counter = 0
        self._running = False

    async def start(self) -> None:
        """Start listening. Raises OSError if the address is taken."""
        self._server = await asyncio.start_server(
            self._handle_endpoint,
            self.host,
            self.port,
        )
        # Resolve the real port when bound to port 0
        self.port = self._server.sockets[0].getsockname()[1]
        self._running = True
        logger.info("Bus endpoint '%s' listening on %s:%d", self.name, self.host, self.port)

    async def stop(self) -> None:
        self._running = False

        server, self._server = self._server, None
        if server:
            server.close()

        for session in list(self._sessions):
            await session.close()
        self._sessions.clear()
        self._owners.clear()

        # Returns once every endpoint connection has dropped
        if server:
            await server.wait_closed()

        logger.info("Bus endpoint stopped")

    async def post(self, handle: int, message: BusMessage) -> None:
        session = self._owners.get(handle)
        if session is None or not session.connected:
            raise DeliveryError(handle, "no such endpoint")
        try:
            await session.send(message)
        except (ConnectionError, OSError) as e:
            raise DeliveryError(handle, str(e)) from e

    async def broadcast(self, message: BusMessage) -> int:
        delivered = 0
        for session in list(self._sessions):
            try:
                await session.send(message)
                delivered += 1
            except (ConnectionError, OSError) as e:
                logger.debug("Broadcast to %s failed: %s", session.address, e)
        return delivered

    # --- Endpoint handling ---

    async def _handle_endpoint(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._session_counter += 1
        session = EndpointSession(
            reader,
            writer,
            self._session_counter,
            write_buffer_limit=self.write_buffer_limit,
        )
        self._sessions.add(session)

        logger.debug("Endpoint connected: %s (session %d)", session.address, session.session_id)

        try:
            await self._endpoint_loop(session)
        except asyncio.CancelledError:
            pass
        except FrameError as e:
            logger.warning("Dropping endpoint %s: %s", session.address, e)
        except (ConnectionError, OSError) as e:
            logger.debug("Endpoint %s read error: %s", session.address, e)
        finally:
            self._sessions.discard(session)
            await session.close()
            self._release(session)
            logger.debug("Endpoint disconnected: %s", session.address)

    async def _endpoint_loop(self, session: EndpointSession) -> None:
        while self._running and session.connected:
            try:
                message = await read_message(session.reader)
            except asyncio.IncompleteReadError:
                break

            if message.kind in _SENDER_KINDS:
                self._claim(session, message.sender)

            self._dispatch(message)

    def _claim(self, session: EndpointSession, handle: int) -> None:
        owner = self._owners.get(handle)
        if owner is session:
            return
        if owner is not None:
            owner.handles.discard(handle)
        session.handles.add(handle)
        self._owners[handle] = session

    def _release(self, session: EndpointSession) -> None:
        """Forget the handles of a gone endpoint and unregister them upstream."""
        for handle in sorted(session.handles):
            if self._owners.get(handle) is not session:
                continue
            del self._owners[handle]
            if self._running:
                self._dispatch(unregister_message(handle))
        session.handles.clear()

    # --- Properties ---

    @property
    def endpoint_count(self) -> int:
        return len(self._sessions)

    @property
    def is_running(self) -> bool:
        return self._running
