"""Logging sink consumed by presentation layers (log window, tray tooltip...).

Producers on any thread or task call :meth:`LogSink.emit`; the presentation
layer drains the buffered lines on its own schedule. Emitting never blocks.
"""
from __future__ import annotations

import logging
import queue
from typing import List, Optional

DEFAULT_FORMAT = "%(asctime)s %(message)s"
DEFAULT_DATEFMT = "%H:%M:%S"


class LogSink:
    """Thread-safe, append-only buffer of status lines."""

    def __init__(self, maxsize: int = 0) -> None:
        self._lines: "queue.Queue[str]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def emit(self, line: str) -> None:
        for part in line.splitlines() or [""]:
            try:
                self._lines.put_nowait(part)
            except queue.Full:
                self.dropped += 1

    def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """Return the next line, waiting up to ``timeout``; None when nothing arrived."""
        try:
            return self._lines.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[str]:
        lines = []
        while True:
            try:
                lines.append(self._lines.get_nowait())
            except queue.Empty:
                return lines


class SinkHandler(logging.Handler):
    """Forwards formatted log records into a :class:`LogSink`."""

    def __init__(self, sink: LogSink, level: int = logging.INFO):
        super().__init__(level)
        self.sink = sink

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.sink.emit(self.format(record))
        except Exception:
            self.handleError(record)


def attach_sink(
    sink: LogSink,
    logger_name: str = "mamebridge",
    level: int = logging.INFO,
    fmt: str = DEFAULT_FORMAT,
) -> SinkHandler:
    """Route records of ``logger_name`` (and its children) into ``sink``."""
    handler = SinkHandler(sink, level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DEFAULT_DATEFMT))
    target = logging.getLogger(logger_name)
    target.addHandler(handler)
    if target.getEffectiveLevel() > level:
        target.setLevel(level)
    return handler


def detach_sink(handler: SinkHandler, logger_name: str = "mamebridge") -> None:
    logging.getLogger(logger_name).removeHandler(handler)
