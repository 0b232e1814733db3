"""Bridge orchestrator - coordinates the upstream client, the bus and the adapter.

Two contexts run side by side:
  - the upstream task owns the socket and the line decoder
  - the dispatcher task owns the adapter (session name, registry, subscribers)

Everything that changes adapter state is queued to the dispatcher: upstream
connects, decoded events and disconnects, as well as inbound bus messages.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Union

from ..bus.base import BusInterface
from ..bus.local import LocalBusServer
from ..bus.messages import BusMessage
from ..config import BridgeConfig
from ..logsink import LogSink, SinkHandler, attach_sink, detach_sink
from .adapter import NotificationBusAdapter
from .protocol import Event
from .upstream import UpstreamClient, UpstreamConnected, UpstreamDisconnected

logger = logging.getLogger("mamebridge.bridge")

DispatchItem = Union[UpstreamConnected, Event, UpstreamDisconnected, BusMessage]


class Bridge:
    """Network output to native output bridge.

    Example:
        bridge = Bridge(BridgeConfig(upstream_port=8000, bus_port=8001))
        await bridge.start()
        ...
        await bridge.stop()
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        bus: Optional[BusInterface] = None,
        sink: Optional[LogSink] = None,
    ):
        self.config = config or BridgeConfig()
        self.config.validate()

        self._bus = bus or LocalBusServer(
            host=self.config.bus_host,
            port=self.config.bus_port,
        )
        self._adapter = NotificationBusAdapter(
            self._bus,
            session_start_names=self.config.session_start_names,
            session_stop_names=self.config.session_stop_names,
            prune_failed_subscribers=self.config.prune_failed_subscribers,
        )
        self._queue: asyncio.Queue[DispatchItem] = asyncio.Queue()
        self._upstream = UpstreamClient(
            self._queue.put_nowait,
            host=self.config.upstream_host,
            port=self.config.upstream_port,
            reconnect_delay=self.config.reconnect_delay,
            terminator=self.config.terminator_bytes,
            handshake=self.config.handshake,
        )

        # Inbound bus traffic goes through the same queue as upstream events
        self._bus.set_message_handler(self._queue.put_nowait)

        self._sink = sink
        self._sink_handler: Optional[SinkHandler] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        """Open the bus endpoint, then start dispatching and connecting upstream."""
        if self._sink is not None and self._sink_handler is None:
            self._sink_handler = attach_sink(self._sink)

        logger.info("Starting bridge...")
        logger.info("  Upstream: %s:%d", self.config.upstream_host, self.config.upstream_port)
        logger.info("  Bus endpoint handle: %#x", self._bus.handle)

        try:
            await self._bus.start()
        except OSError:
            if self._sink_handler is not None:
                detach_sink(self._sink_handler)
                self._sink_handler = None
            raise
        self._running = True
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        await self._upstream.start()

        logger.info("Bridge started successfully")

    async def stop(self) -> None:
        """Stop upstream (subscribers still get STOP), flush pending work, close the bus."""
        logger.info("Stopping bridge...")
        self._running = False
        await self._upstream.stop()

        if self._dispatcher:
            await self._queue.join()
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None

        await self._bus.stop()
        logger.info("Bridge stopped")

        if self._sink_handler is not None:
            detach_sink(self._sink_handler)
            self._sink_handler = None

    async def run_forever(self) -> None:
        """Run the bridge until cancelled."""
        await self.start()
        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    # --- Dispatcher ---

    async def _dispatch_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self.dispatch(item)
            except Exception as e:
                logger.exception("Error dispatching %r: %s", item, e)
            finally:
                self._queue.task_done()

    async def dispatch(self, item: DispatchItem) -> None:
        """Apply one queued item to the adapter."""
        if isinstance(item, Event):
            await self._adapter.on_event(item)
        elif isinstance(item, BusMessage):
            await self._adapter.handle_message(item)
        elif isinstance(item, UpstreamConnected):
            await self._adapter.on_connected()
        elif isinstance(item, UpstreamDisconnected):
            await self._adapter.on_disconnected()
        else:
            logger.warning("Unknown dispatch item: %r", item)

    async def wait_idle(self) -> None:
        """Wait until every queued item has been dispatched."""
        await self._queue.join()

    # --- Access ---

    @property
    def adapter(self) -> NotificationBusAdapter:
        return self._adapter

    @property
    def upstream(self) -> UpstreamClient:
        return self._upstream

    @property
    def bus(self) -> BusInterface:
        return self._bus

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> Dict[str, Any]:
        """Get bridge statistics."""
        return {
            "running": self._running,
            "upstream_state": self._upstream.state.name,
            "bus_endpoints": self._bus.endpoint_count,
            **self._upstream.get_stats(),
            **self._adapter.get_stats(),
        }
