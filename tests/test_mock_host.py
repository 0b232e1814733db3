import asyncio

import pytest

from mamebridge.mock_host import MockHost, MockHostScript


def test_script_lines():
    script = MockHostScript(rom="galaga", outputs=["lamp0", "led0"], count=2)
    assert script.lines() == [
        "mame_start = galaga",
        "lamp0 = 1",
        "led0 = 1",
        "lamp0 = 0",
        "led0 = 0",
        "mame_stop = 1",
    ]


def test_script_without_toggles():
    assert MockHostScript(count=0).lines() == ["mame_start = pacman", "mame_stop = 1"]


@pytest.mark.asyncio
async def test_plays_script_and_closes():
    host = MockHost(port=0, script=MockHostScript(outputs=["lamp0"], count=1, interval=0.01))
    await host.start()
    try:
        reader, writer = await asyncio.open_connection("127.0.0.1", host.port)
        writer.write(b"\r\n")
        await writer.drain()
        data = await asyncio.wait_for(reader.read(), timeout=2.0)
        writer.close()
    finally:
        await host.stop()

    assert data == b"mame_start = pacman\rlamp0 = 1\rmame_stop = 1\r"
