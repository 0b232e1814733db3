"""Line protocol of the host's network output.

The host writes one ``<name> = <value>`` line per output change over TCP.
It terminates lines with a carriage return; ``\\n`` and ``\\r\\n`` are
accepted as configuration alternatives. Stray quoting, whitespace and the
other half of a CRLF pair are removed by sanitization, so a stream decodes
the same whichever of the three terminators is configured.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

logger = logging.getLogger("mamebridge.bridge.protocol")

CR = b"\r"
LF = b"\n"
CRLF = b"\r\n"

INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1

_KEEP = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_.")


@dataclass(frozen=True)
class Event:
    """One decoded output change."""

    name: str
    value: int
    text: str = ""


def sanitize(raw: str) -> str:
    """Keep only ASCII letters, digits, ``_`` and ``.``."""
    return "".join(c for c in raw if c in _KEEP)


def parse_int(text: str) -> int:
    """Parse the leading decimal digits of ``text``; no digits gives 0.

    The result is clamped to the signed 32-bit range.
    """
    text = text.lstrip()
    sign = 1
    if text[:1] in ("+", "-"):
        if text[0] == "-":
            sign = -1
        text = text[1:]
    digits = 0
    for c in text:
        if not ("0" <= c <= "9"):
            break
        digits += 1
    if not digits:
        return 0
    value = sign * int(text[:digits])
    return max(INT32_MIN, min(INT32_MAX, value))


def decode_line(line: str) -> Optional[Event]:
    """Decode one line; returns None for lines carrying no usable event."""
    name_part, sep, value_part = line.partition("=")
    if not sep:
        return None
    name = sanitize(name_part)
    if not name:
        return None
    text = sanitize(value_part)
    return Event(name=name, value=parse_int(text), text=text)


class LineDecoder:
    """Reassembles lines from arbitrarily chunked bytes and decodes them."""

    def __init__(self, terminator: bytes = CR):
        if not terminator:
            raise ValueError("terminator must not be empty")
        self.terminator = terminator
        self._buffer = bytearray()
        self._stats = {
            "lines": 0,
            "events": 0,
            "dropped": 0,
        }

    def feed(self, chunk: bytes) -> Iterator[Event]:
        """Buffer ``chunk`` and yield every event completed by it.

        Lines are removed from the buffer only as they are yielded, so a
        partially consumed iterator leaves the rest for the next call.
        """
        self._buffer += chunk
        return self._drain()

    def _drain(self) -> Iterator[Event]:
        while True:
            pos = self._buffer.find(self.terminator)
            if pos < 0:
                return
            raw = bytes(self._buffer[:pos])
            del self._buffer[:pos + len(self.terminator)]
            event = self._decode(raw)
            if event is not None:
                yield event

    def reset(self) -> None:
        self._buffer.clear()

    @property
    def pending(self) -> bytes:
        """Bytes of the trailing partial line."""
        return bytes(self._buffer)

    def _decode(self, raw: bytes) -> Optional[Event]:
        line = raw.decode("latin-1")
        if not line.strip():
            return None
        self._stats["lines"] += 1
        logger.debug("RAW: %s", line.strip())

        event = decode_line(line)
        if event is None:
            self._stats["dropped"] += 1
            logger.debug("Dropped line without usable name: %r", line)
            return None
        self._stats["events"] += 1
        return event

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

