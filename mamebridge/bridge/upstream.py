"""Upstream client - connects to the host's network output.

Runs the connect/read/reconnect state machine and posts what it sees as
messages (connected, decoded events, disconnected). It never touches the
bus adapter directly; the bridge dispatcher consumes the messages.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, Optional, Union

from .protocol import CR, Event, LineDecoder

logger = logging.getLogger("mamebridge.bridge.upstream")

DEFAULT_UPSTREAM_HOST = "127.0.0.1"
DEFAULT_UPSTREAM_PORT = 8000
DEFAULT_RECONNECT_DELAY = 2.0

# Prompts the host to flush its current output state
HANDSHAKE_PROBE = b"\r\n"

READ_SIZE = 4096


class ConnectionState(Enum):
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()


@dataclass(frozen=True)
class UpstreamConnected:
    host: str
    port: int


@dataclass(frozen=True)
class UpstreamDisconnected:
    host: str
    port: int
    reason: str = ""


UpstreamMessage = Union[UpstreamConnected, Event, UpstreamDisconnected]
MessageSink = Callable[[UpstreamMessage], None]


class UpstreamClient:
    """TCP client for the host's network output with unbounded retry."""

    def __init__(
        self,
        emit: MessageSink,
        host: str = DEFAULT_UPSTREAM_HOST,
        port: int = DEFAULT_UPSTREAM_PORT,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        terminator: bytes = CR,
        handshake: bool = True,
    ):
        self.host = host
        self.port = port
        self.reconnect_delay = reconnect_delay
        self.terminator = terminator
        self.handshake = handshake

        self._emit = emit
        self._state = ConnectionState.DISCONNECTED
        self._decoder = LineDecoder(terminator)
        self._writer: Optional[asyncio.StreamWriter] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._stats = {
            "connects": 0,
            "connect_failures": 0,
            "bytes_received": 0,
        }

    async def start(self) -> None:
        """Start the connect loop in the background."""
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        """Abandon any pending connect or read and do not reconnect."""
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run(self) -> None:
        """Connect, read and reconnect until stopped."""
        logger.info("Waiting for host at %s:%d...", self.host, self.port)
        while not self._stop_event.is_set():
            self._state = ConnectionState.CONNECTING
            try:
                reader, writer = await asyncio.open_connection(self.host, self.port)
            except OSError as e:
                self._state = ConnectionState.DISCONNECTED
                self._stats["connect_failures"] += 1
                logger.debug("Connect to %s:%d failed: %s", self.host, self.port, e)
                await self._backoff()
                continue

            await self._session(reader, writer)
            await self._backoff()

        self._state = ConnectionState.DISCONNECTED

    async def _session(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle one connected lifetime; always ends disconnected."""
        self._writer = writer
        self._state = ConnectionState.CONNECTED
        self._stats["connects"] += 1
        self._decoder.reset()
        logger.info("Connected to host at %s:%d", self.host, self.port)
        self._emit(UpstreamConnected(self.host, self.port))

        reason = "closed by host"
        try:
            if self.handshake:
                writer.write(HANDSHAKE_PROBE)
                await writer.drain()
            await self._read_loop(reader)
        except asyncio.CancelledError:
            reason = "shutdown"
            raise
        except (ConnectionError, OSError) as e:
            reason = str(e) or e.__class__.__name__
        finally:
            self._state = ConnectionState.DISCONNECTED
            self._writer = None
            writer.close()
            logger.info("Disconnected from host (%s)", reason)
            self._emit(UpstreamDisconnected(self.host, self.port, reason))

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        while True:
            data = await reader.read(READ_SIZE)
            if not data:
                return
            self._stats["bytes_received"] += len(data)
            for event in self._decoder.feed(data):
                self._emit(event)

    async def _backoff(self) -> None:
        if self._stop_event.is_set():
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.reconnect_delay)
        except asyncio.TimeoutError:
            pass

    # --- Properties ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def get_stats(self) -> Dict[str, int]:
        return {**self._stats, **{f"decoder_{k}": v for k, v in self._decoder.get_stats().items()}}
