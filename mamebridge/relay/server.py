"""Line server - serves output changes in the host's network output format.

Any number of clients may connect; every line is written to all of them.
Input from clients is read and discarded.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

logger = logging.getLogger("mamebridge.relay.server")

DEFAULT_LINE_HOST = "0.0.0.0"
DEFAULT_LINE_PORT = 8000
DEFAULT_WRITE_BUFFER_LIMIT = 256 * 1024


def format_line(name: str, value: int, terminator: bytes = b"\r") -> bytes:
    return f"{name} = {value}".encode("ascii", errors="replace") + terminator


class LineClient:
    """Represents a connected network output client."""

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
        self._addr = writer.get_extra_info("peername")

    @property
    def address(self) -> str:
        if self._addr:
            return f"{self._addr[0]}:{self._addr[1]}"
        return "unknown"

    async def send(self, data: bytes) -> None:
        if not self.connected:
            return
        transport = self.writer.transport
        if transport.is_closing():
            self.connected = False
            return
        if transport.get_write_buffer_size() > self.write_buffer_limit:
            logger.warning("Client %s is not reading, dropping it", self.address)
            self.connected = False
            transport.abort()
            return
        self.writer.write(data)

    async def close(self) -> None:
        self.connected = False
        if self.writer.transport.get_write_buffer_size():
            self.writer.transport.abort()
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass


class LineServer:
    """TCP server writing ``<name> = <value>`` lines to every client."""

    def __init__(
        self,
        host: str = DEFAULT_LINE_HOST,
        port: int = DEFAULT_LINE_PORT,
        terminator: bytes = b"\r",
    ):
        self.host = host
        self.port = port
        self.terminator = terminator

        self._server: Optional[asyncio.Server] = None
        self._clients: Set[LineClient] = set()
        self._session_counter = 0
        self._running = False

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle_client,
            self.host,
            self.port,
        )
        self.port = self._server.sockets[0].getsockname()[1]
        self._running = True
        logger.info("Line server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        self._running = False

        server, self._server = self._server, None
        if server:
            server.close()

        for client in list(self._clients):
            await client.close()
        self._clients.clear()

        if server:
            await server.wait_closed()

        logger.info("Line server stopped")

    async def send_output(self, name: str, value: int) -> None:
        await self.send_raw(format_line(name, value, self.terminator))

    async def send_raw(self, data: bytes) -> None:
        for client in list(self._clients):
            await client.send(data)

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._session_counter += 1
        client = LineClient(reader, writer, self._session_counter)
        self._clients.add(client)

        logger.info("Client connected: %s (session %d)", client.address, client.session_id)

        try:
            while self._running and client.connected:
                data = await reader.read(1024)
                if not data:
                    break
        except asyncio.CancelledError:
            pass
        except (ConnectionError, OSError) as e:
            logger.warning("Error reading from %s: %s", client.address, e)
        finally:
            self._clients.discard(client)
            await client.close()
            logger.info("Client disconnected: %s", client.address)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def is_running(self) -> bool:
        return self._running
