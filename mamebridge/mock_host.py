"""Mock host - plays the emulator's network output for testing.

Every connecting client receives ``mame_start = <rom>``, then ``count``
toggles of each configured output, then ``mame_stop = 1``; the connection is
then closed (unless ``hold`` is set).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

logger = logging.getLogger("mamebridge.mock_host")


@dataclass(slots=True)
class MockHostScript:
    """What the mock host sends to each client."""

    rom: str = "pacman"
    outputs: List[str] = field(default_factory=lambda: ["lamp0", "lamp1", "led0"])
    count: int = 4
    interval: float = 0.5
    terminator: bytes = b"\r"
    hold: bool = False

    def lines(self) -> List[str]:
        """Every line of one playback, in order, without terminators."""
        lines = [f"mame_start = {self.rom}"]
        for step in range(self.count):
            for name in self.outputs:
                lines.append(f"{name} = {(step + 1) % 2}")
        lines.append("mame_stop = 1")
        return lines


class MockHost:
    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8000,
        script: Optional[MockHostScript] = None,
    ):
        self.host = host
        self.port = port
        self.script = script or MockHostScript()
        self.handshakes = 0

        self._server: Optional[asyncio.Server] = None
        self._tasks: Set[asyncio.Task] = set()

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle_client, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info("Mock host listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        server, self._server = self._server, None
        if server:
            server.close()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if server:
            await server.wait_closed()
        logger.info("Mock host stopped")

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._tasks.add(task)
        peer = writer.get_extra_info("peername")
        logger.info("Client connected: %s", peer)
        drain_task = asyncio.create_task(self._count_handshakes(reader))
        try:
            for line in self.script.lines():
                writer.write(line.encode("ascii") + self.script.terminator)
                await writer.drain()
                if line.startswith(tuple(self.script.outputs)):
                    await asyncio.sleep(self.script.interval)
            if self.script.hold:
                await drain_task
        except asyncio.CancelledError:
            pass
        except (ConnectionError, OSError) as e:
            logger.warning("Client %s went away: %s", peer, e)
        finally:
            drain_task.cancel()
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            if task is not None:
                self._tasks.discard(task)
            logger.info("Client disconnected: %s", peer)

    async def _count_handshakes(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                data = await reader.read(256)
                if not data:
                    return
                self.handshakes += data.count(b"\n")
        except (ConnectionError, OSError):
            return
