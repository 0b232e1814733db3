"""Tests for the output relay (native bus -> network output lines)."""

import asyncio

import pytest

from mamebridge import Bridge, BridgeConfig
from mamebridge.bus.client import BusClient
from mamebridge.bus.messages import (
    BusMessage,
    MessageKind,
    id_string_reply,
    start_message,
    stop_message,
    update_state_message,
)
from mamebridge.mock_host import MockHost, MockHostScript
from mamebridge.relay import LineServer, OutputRelay
from mamebridge.relay.server import format_line


async def wait_until(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class FakeClient:
    host = "127.0.0.1"
    port = 0

    def __init__(self):
        self.calls = []

    async def register(self):
        self.calls.append("register")

    async def request_id_string(self, output_id):
        self.calls.append(("request", output_id))


class FakeServer:
    client_count = 0

    def __init__(self):
        self.lines = []

    async def send_output(self, name, value):
        self.lines.append((name, value))


def make_relay():
    client, server = FakeClient(), FakeServer()
    return OutputRelay(client, server), client, server


def test_format_line():
    assert format_line("lamp0", 1) == b"lamp0 = 1\r"
    assert format_line("led1", -3, b"\n") == b"led1 = -3\n"


@pytest.mark.asyncio
async def test_unknown_id_requests_name_and_drops_value():
    relay, client, server = make_relay()
    await relay.handle_message(update_state_message(4, 1))
    assert client.calls == [("request", 4)]
    assert server.lines == []
    assert relay.get_stats()["updates_dropped"] == 1


@pytest.mark.asyncio
async def test_known_id_becomes_line():
    relay, client, server = make_relay()
    await relay.handle_message(id_string_reply(0xB00, 4, "lamp3"))
    assert relay.name_for(4) == "lamp3"

    await relay.handle_message(update_state_message(4, 1))
    assert server.lines == [("lamp3", 1)]
    assert client.calls == []


@pytest.mark.asyncio
async def test_other_copydata_ignored():
    relay, _, _ = make_relay()
    await relay.handle_message(BusMessage(MessageKind.COPYDATA, 0xB00, 7, b"\x01\x00\x00\x00x\x00"))
    await relay.handle_message(BusMessage(MessageKind.COPYDATA, 0xB00, 1, b"\x01"))
    assert relay.name_for(1) is None


@pytest.mark.asyncio
async def test_start_registers_again():
    relay, client, _ = make_relay()
    await relay.handle_message(start_message(0xB00))
    assert client.calls == ["register"]
    assert relay.host_handle == 0xB00


@pytest.mark.asyncio
async def test_stop_clears_names():
    relay, _, _ = make_relay()
    await relay.handle_message(id_string_reply(0xB00, 1, "lamp0"))
    await relay.handle_message(stop_message(0xB00))
    assert relay.name_for(1) is None
    assert relay.host_handle is None


@pytest.mark.asyncio
async def test_line_server_writes_to_every_client():
    server = LineServer(host="127.0.0.1", port=0)
    await server.start()
    readers = []
    try:
        for _ in range(2):
            reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
            readers.append((reader, writer))
        await wait_until(lambda: server.client_count == 2)

        await server.send_output("lamp0", 1)
        for reader, _ in readers:
            assert await asyncio.wait_for(reader.readuntil(b"\r"), timeout=1.0) == b"lamp0 = 1\r"
    finally:
        for _, writer in readers:
            writer.close()
        await server.stop()


@pytest.mark.asyncio
async def test_round_trip_through_bridge():
    """network output -> bridge -> bus -> relay -> network output."""
    script = MockHostScript(outputs=["lamp0"], count=10, interval=0.05, hold=True)
    host = MockHost(port=0, script=script)
    await host.start()
    bridge = Bridge(BridgeConfig(upstream_port=host.port, bus_port=0, reconnect_delay=30))
    await bridge.start()

    relay = OutputRelay(
        BusClient("127.0.0.1", bridge.bus.port),
        LineServer(host="127.0.0.1", port=0),
        reconnect_delay=0.05,
    )
    await relay.start()
    reader, writer = await asyncio.open_connection("127.0.0.1", relay.server.port)
    try:
        # the first value for an id is dropped while its name is fetched
        line = await asyncio.wait_for(reader.readuntil(b"\r"), timeout=3.0)
        assert line in (b"lamp0 = 0\r", b"lamp0 = 1\r")
        assert relay.name_for(1) == "lamp0"
        assert relay.get_stats()["updates_dropped"] >= 1
    finally:
        writer.close()
        await relay.stop()
        await bridge.stop()
        await host.stop()
