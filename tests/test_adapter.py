"""Tests for the notification bus adapter (host impersonation contract)."""

import pytest

from mamebridge.bridge.adapter import EMPTY_SESSION, NotificationBusAdapter
from mamebridge.bridge.protocol import Event
from mamebridge.bus.loopback import LoopbackBus
from mamebridge.bus.messages import (
    BusMessage,
    MessageKind,
    decode_id_string,
    get_id_string_message,
    register_message,
    unregister_message,
)

BRIDGE_HANDLE = 0xB00


def make_adapter(**kwargs):
    bus = LoopbackBus(handle=BRIDGE_HANDLE)
    return bus, NotificationBusAdapter(bus, **kwargs)


def kinds(messages):
    return [m.kind for m in messages]


@pytest.mark.asyncio
async def test_register_adds_subscriber_without_start():
    bus, adapter = make_adapter()
    client = bus.connect(0x10)

    assert await adapter.handle_message(register_message(0x10)) == 1
    assert await adapter.handle_message(register_message(0x10)) == 1

    assert adapter.subscribers.snapshot() == [0x10]
    # no START (or anything else) in response to registering
    assert client.drain() == []


@pytest.mark.asyncio
async def test_unregister_removes_subscriber():
    bus, adapter = make_adapter()
    bus.connect(0x10)
    await adapter.handle_message(register_message(0x10))
    assert await adapter.handle_message(unregister_message(0x10)) == 1
    assert len(adapter.subscribers) == 0


@pytest.mark.asyncio
async def test_other_inbound_kinds_ignored():
    _, adapter = make_adapter()
    assert await adapter.handle_message(BusMessage(MessageKind.START, wparam=1)) == 0


@pytest.mark.asyncio
async def test_update_goes_to_registered_subscribers_only():
    bus, adapter = make_adapter()
    registered = bus.connect(0x10)
    bystander = bus.connect(0x20)
    adapter.register(0x10)

    await adapter.on_connected()
    registered.drain()
    bystander.drain()

    await adapter.on_event(Event("lamp0", 1, "1"))

    [update] = registered.drain()
    assert update.kind is MessageKind.UPDATE_STATE
    assert (update.wparam, update.lparam) == (1, 1)
    assert bystander.drain() == []


@pytest.mark.asyncio
async def test_start_and_stop_reach_every_endpoint():
    bus, adapter = make_adapter()
    registered = bus.connect(0x10)
    bystander = bus.connect(0x20)
    adapter.register(0x10)

    await adapter.on_connected()
    await adapter.on_event(Event("mame_start", 0, "pacman"))
    await adapter.on_disconnected()

    for endpoint in (registered, bystander):
        messages = endpoint.drain()
        assert kinds(messages) == [MessageKind.START, MessageKind.START, MessageKind.STOP]
        assert all(m.sender == BRIDGE_HANDLE for m in messages)


@pytest.mark.asyncio
async def test_session_name_lifecycle():
    bus, adapter = make_adapter()
    assert adapter.session_name == EMPTY_SESSION

    await adapter.on_connected()
    assert adapter.session_name == "___empty"

    await adapter.on_event(Event("session_start", 0, "pacman"))
    assert adapter.session_name == "pacman"
    assert adapter.lookup(0) == "pacman"

    await adapter.on_disconnected()
    assert adapter.session_name == "___empty"


@pytest.mark.asyncio
async def test_session_stop_is_consumed():
    bus, adapter = make_adapter()
    client = bus.connect(0x10)
    adapter.register(0x10)
    await adapter.on_event(Event("mame_stop", 1, "1"))
    assert client.drain() == []
    assert len(adapter.registry) == 0


@pytest.mark.asyncio
async def test_query_id_zero_returns_session_name():
    bus, adapter = make_adapter()
    client = bus.connect(0x10)

    await adapter.handle_message(get_id_string_message(0x10, 0))
    [reply] = client.drain()
    assert reply.kind is MessageKind.COPYDATA
    assert reply.sender == BRIDGE_HANDLE
    assert decode_id_string(reply.payload) == (0, "___empty")

    await adapter.on_event(Event("session_start", 0, "pacman"))
    client.drain()
    await adapter.handle_message(get_id_string_message(0x10, 0))
    [reply] = client.drain()
    assert decode_id_string(reply.payload) == (0, "pacman")


@pytest.mark.asyncio
async def test_query_known_and_unknown_ids():
    bus, adapter = make_adapter()
    client = bus.connect(0x10)
    await adapter.on_event(Event("lamp0", 1, "1"))

    await adapter.query_name(0x10, 1)
    await adapter.query_name(0x10, 42)
    known, unknown = client.drain()
    assert decode_id_string(known.payload) == (1, "lamp0")
    assert decode_id_string(unknown.payload) == (42, "")
    assert adapter.get_stats()["queries_answered"] == 2


@pytest.mark.asyncio
async def test_query_reply_goes_only_to_asker():
    bus, adapter = make_adapter()
    asker = bus.connect(0x10)
    other = bus.connect(0x20)
    await adapter.query_name(0x10, 0)
    assert len(asker.drain()) == 1
    assert other.drain() == []


@pytest.mark.asyncio
async def test_ids_reset_between_sessions():
    bus, adapter = make_adapter()
    await adapter.on_connected()
    await adapter.on_event(Event("lamp0", 1, "1"))
    await adapter.on_event(Event("lamp1", 1, "1"))
    await adapter.on_disconnected()
    assert len(adapter.registry) == 0

    await adapter.on_connected()
    await adapter.on_event(Event("lamp1", 0, "0"))
    assert adapter.registry.lookup(1) == "lamp1"


@pytest.mark.asyncio
async def test_failed_delivery_does_not_stop_fan_out():
    bus, adapter = make_adapter()
    broken = bus.connect(0x10)
    broken.broken = True
    healthy = bus.connect(0x20)
    adapter.register(0x10)
    adapter.register(0x20)
    # registered but never connected
    adapter.register(0x30)

    await adapter.update_state(1, 1)

    assert len(healthy.drain()) == 1
    stats = adapter.get_stats()
    assert stats["delivery_failures"] == 2
    assert stats["updates_sent"] == 1
    # no pruning by default
    assert len(adapter.subscribers) == 3


@pytest.mark.asyncio
async def test_prune_failed_subscribers():
    bus, adapter = make_adapter(prune_failed_subscribers=True)
    bus.connect(0x20)
    adapter.register(0x20)
    adapter.register(0x30)

    await adapter.update_state(1, 1)
    assert adapter.subscribers.snapshot() == [0x20]


@pytest.mark.asyncio
async def test_custom_session_names():
    bus, adapter = make_adapter(session_start_names=["game_start"], session_stop_names=["game_stop"])
    await adapter.on_event(Event("game_start", 0, "galaga"))
    assert adapter.session_name == "galaga"
    # the default names are ordinary outputs now
    await adapter.on_event(Event("mame_start", 0, "x"))
    assert "mame_start" in adapter.registry
