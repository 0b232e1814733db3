"""Notification bus: message contract, host-side transports and subscriber client."""

from .base import BusInterface, DeliveryError
from .client import BusClient
from .local import DEFAULT_BUS_HOST, DEFAULT_BUS_PORT, LocalBusServer
from .loopback import LoopbackBus, LoopbackEndpoint
from .messages import (
    COPYDATA_MESSAGE_ID_STRING,
    ENDPOINT_NAME,
    BusMessage,
    FrameError,
    MessageKind,
    decode_id_string,
    encode_id_string,
)

__all__ = [
    "BusInterface",
    "BusClient",
    "BusMessage",
    "COPYDATA_MESSAGE_ID_STRING",
    "DEFAULT_BUS_HOST",
    "DEFAULT_BUS_PORT",
    "DeliveryError",
    "ENDPOINT_NAME",
    "FrameError",
    "LocalBusServer",
    "LoopbackBus",
    "LoopbackEndpoint",
    "MessageKind",
    "decode_id_string",
    "encode_id_string",
]
