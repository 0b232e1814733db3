"""Native output -> network output relay."""

from .relay import OutputRelay
from .server import LineServer, format_line

__all__ = ["LineServer", "OutputRelay", "format_line"]
