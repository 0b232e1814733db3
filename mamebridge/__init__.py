"""MAME Bridge - network output to native output translation.

The emulator can send its output events either over TCP ("network") or on
its native notification bus, not both. The bridge reads the network stream
and re-emits every event on the bus, standing in for the emulator so native
clients keep working.
"""

__version__ = "1.0.0"

from .bridge import Bridge
from .config import BridgeConfig, load_config
from .logsink import LogSink

__all__ = ["Bridge", "BridgeConfig", "LogSink", "load_config", "__version__"]
