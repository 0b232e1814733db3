"""Network output -> native output bridge.

Connects to the host's TCP line stream and re-emits every output change on
the notification bus, impersonating the host for unmodified native clients.
"""

from .adapter import EMPTY_SESSION, NotificationBusAdapter
from .bridge import Bridge
from .protocol import Event, LineDecoder, decode_line, parse_int, sanitize
from .registry import NameRegistry
from .subscribers import SubscriberDirectory
from .upstream import (
    ConnectionState,
    UpstreamClient,
    UpstreamConnected,
    UpstreamDisconnected,
)

__all__ = [
    "Bridge",
    "ConnectionState",
    "EMPTY_SESSION",
    "Event",
    "LineDecoder",
    "NameRegistry",
    "NotificationBusAdapter",
    "SubscriberDirectory",
    "UpstreamClient",
    "UpstreamConnected",
    "UpstreamDisconnected",
    "decode_line",
    "parse_int",
    "sanitize",
]
