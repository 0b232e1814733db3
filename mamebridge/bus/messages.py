"""Notification bus message types and wire codec.

Mirrors the native output contract of the emulator host: six registered
message names plus the ``WM_COPYDATA`` carrier used to answer id-string
queries. Every message carries a ``wparam``/``lparam`` pair and, for
``WM_COPYDATA`` only, a payload.

Stream frame layout (little-endian)::

    u8 name_len | name | u64 wparam | i64 lparam | u32 payload_len | payload
"""
from __future__ import annotations

import asyncio
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Tuple

# Well-known identity subscribers look for
ENDPOINT_NAME = "MAMEOutput"

# dwData value of an id-string reply
COPYDATA_MESSAGE_ID_STRING = 1

# Client id the native clients pass when registering
DEFAULT_CLIENT_ID = 12345

MAX_PAYLOAD = 64 * 1024

_PARAMS = struct.Struct("<QqI")
_ID_STRING_HEADER = struct.Struct("<I")
# sizeof(struct { uint32_t id; char string[1]; }) with alignment padding
_ID_STRING_STRUCT_SIZE = 8


class FrameError(ValueError):
    """Raised when a bus frame cannot be decoded."""


class MessageKind(str, Enum):
    """Registered message names of the native output contract."""

    START = "MAMEOutputStart"
    STOP = "MAMEOutputStop"
    UPDATE_STATE = "MAMEOutputUpdateState"
    REGISTER_CLIENT = "MAMEOutputRegister"
    UNREGISTER_CLIENT = "MAMEOutputUnregister"
    GET_ID_STRING = "MAMEOutputGetIDString"
    COPYDATA = "WM_COPYDATA"


@dataclass(frozen=True)
class BusMessage:
    """One message on the notification bus."""

    kind: MessageKind
    wparam: int = 0
    lparam: int = 0
    payload: bytes = b""

    @property
    def sender(self) -> int:
        """Handle of the sending endpoint (``wparam`` for every kind but UPDATE_STATE)."""
        return self.wparam

    def to_bytes(self) -> bytes:
        name = self.kind.value.encode("ascii")
        return (
            bytes([len(name)])
            + name
            + _PARAMS.pack(self.wparam & 0xFFFFFFFFFFFFFFFF, self.lparam, len(self.payload))
            + self.payload
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "BusMessage":
        message, consumed = decode_frame(data)
        if consumed != len(data):
            raise FrameError(f"{len(data) - consumed} trailing bytes after frame")
        return message


# --- Constructors ---

def start_message(sender: int) -> BusMessage:
    return BusMessage(MessageKind.START, wparam=sender)


def stop_message(sender: int) -> BusMessage:
    return BusMessage(MessageKind.STOP, wparam=sender)


def update_state_message(output_id: int, value: int) -> BusMessage:
    return BusMessage(MessageKind.UPDATE_STATE, wparam=output_id, lparam=value)


def register_message(sender: int, client_id: int = DEFAULT_CLIENT_ID) -> BusMessage:
    return BusMessage(MessageKind.REGISTER_CLIENT, wparam=sender, lparam=client_id)


def unregister_message(sender: int, client_id: int = DEFAULT_CLIENT_ID) -> BusMessage:
    return BusMessage(MessageKind.UNREGISTER_CLIENT, wparam=sender, lparam=client_id)


def get_id_string_message(sender: int, output_id: int) -> BusMessage:
    return BusMessage(MessageKind.GET_ID_STRING, wparam=sender, lparam=output_id)


def id_string_reply(sender: int, output_id: int, name: str) -> BusMessage:
    """Build the ``WM_COPYDATA`` answer to a GetIDString query."""
    return BusMessage(
        MessageKind.COPYDATA,
        wparam=sender,
        lparam=COPYDATA_MESSAGE_ID_STRING,
        payload=encode_id_string(output_id, name),
    )


# --- Id string payload ---

def encode_id_string(output_id: int, name: str) -> bytes:
    """Pack ``{uint32 id; char string[]}`` exactly as the native host lays it out."""
    raw = name.encode("ascii", errors="replace")
    size = _ID_STRING_STRUCT_SIZE + len(raw) + 1
    data = _ID_STRING_HEADER.pack(output_id & 0xFFFFFFFF) + raw + b"\x00"
    return data.ljust(size, b"\x00")


def decode_id_string(payload: bytes) -> Tuple[int, str]:
    if len(payload) < _ID_STRING_HEADER.size:
        raise FrameError("id string payload too short")
    (output_id,) = _ID_STRING_HEADER.unpack_from(payload)
    raw = payload[_ID_STRING_HEADER.size:].split(b"\x00", 1)[0]
    return output_id, raw.decode("ascii", errors="replace")


# --- Stream framing ---

def decode_frame(data: bytes) -> Tuple[BusMessage, int]:
    """Decode one frame from the front of ``data``.

    Returns:
        Tuple of (message, number of bytes consumed)

    Raises:
        FrameError: if the frame is incomplete or malformed.
    """
    if not data:
        raise FrameError("empty frame")
    name_len = data[0]
    header_end = 1 + name_len + _PARAMS.size
    if len(data) < header_end:
        raise FrameError("incomplete frame header")
    kind = parse_kind(data[1:1 + name_len])
    wparam, lparam, payload_len = _PARAMS.unpack_from(data, 1 + name_len)
    if payload_len > MAX_PAYLOAD:
        raise FrameError(f"payload too large ({payload_len} bytes)")
    end = header_end + payload_len
    if len(data) < end:
        raise FrameError("incomplete frame payload")
    return BusMessage(kind, wparam, lparam, bytes(data[header_end:end])), end


def parse_kind(raw: bytes) -> MessageKind:
    try:
        return MessageKind(raw.decode("ascii"))
    except (UnicodeDecodeError, ValueError):
        raise FrameError(f"unknown message name {raw!r}") from None


async def read_message(reader: asyncio.StreamReader) -> BusMessage:
    """Read exactly one frame from a stream.

    Raises:
        asyncio.IncompleteReadError: if the peer closes before a full frame.
        FrameError: if the frame is malformed.
    """
    name_len = (await reader.readexactly(1))[0]
    header = await reader.readexactly(name_len + _PARAMS.size)
    kind = parse_kind(header[:name_len])
    wparam, lparam, payload_len = _PARAMS.unpack_from(header, name_len)
    if payload_len > MAX_PAYLOAD:
        raise FrameError(f"payload too large ({payload_len} bytes)")
    payload = await reader.readexactly(payload_len) if payload_len else b""
    return BusMessage(kind, wparam, lparam, payload)
