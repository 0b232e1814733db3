#!/usr/bin/env python3
"""MAME Bridge CLI - network output to native output translation.

The emulator can send output events either over TCP or on its native
notification bus, not both. Run it in network mode and start this bridge:
native clients attach to the bridge as if it were the emulator.

Examples:
    # Bridge the default network output (127.0.0.1:8000)
    python bridge.py start

    # Remote emulator, line-feed terminated stream
    python bridge.py start --host 192.168.1.20 --terminator lf

    # Print every output change as a native client would see it
    python bridge.py watch

    # The other direction: native output -> network output lines
    python bridge.py relay --bus-port 8001 --port 8000

    # Fake emulator for trying things out
    python bridge.py mock-host --rom galaga
"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

# Ensure the mamebridge package is importable
if __name__ == "__main__":
    import os
    sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from mamebridge import __version__
from mamebridge.bridge import Bridge
from mamebridge.bus import BusClient, MessageKind
from mamebridge.bus.messages import ENDPOINT_NAME
from mamebridge.config import BridgeConfig, config_from_dict, load_config
from mamebridge.mock_host import MockHost, MockHostScript
from mamebridge.relay import LineServer, OutputRelay

app = typer.Typer(
    name="bridge",
    help="MAME Bridge - network output to native output translation",
    add_completion=False,
)
console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def build_config(
    config_path: Optional[Path],
    overrides: dict,
) -> BridgeConfig:
    """Merge a config file (if any) with command line overrides."""
    try:
        base = load_config(config_path) if config_path else BridgeConfig()
        merged = {
            "upstream_host": base.upstream_host,
            "upstream_port": base.upstream_port,
            "reconnect_delay": base.reconnect_delay,
            "line_terminator": base.line_terminator,
            "handshake": base.handshake,
            "bus_host": base.bus_host,
            "bus_port": base.bus_port,
            "session_start_names": list(base.session_start_names),
            "session_stop_names": list(base.session_stop_names),
            "prune_failed_subscribers": base.prune_failed_subscribers,
        }
        merged.update({k: v for k, v in overrides.items() if v is not None})
        return config_from_dict(merged)
    except (OSError, ValueError, RuntimeError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def run_until_signalled(main, on_stats=None, stats_interval: float = 60.0) -> None:
    """Run ``main`` (an async start/stop pair) until SIGINT/SIGTERM.

    If ``start`` returns a task, the run also ends when that task finishes.
    """

    async def run():
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def signal_handler():
            console.print("\n[yellow]Shutting down...[/yellow]")
            stop_event.set()

        try:
            loop.add_signal_handler(signal.SIGINT, signal_handler)
            loop.add_signal_handler(signal.SIGTERM, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

        start, stop = main
        stop_wait = None
        try:
            finished = await start()
            stop_wait = asyncio.ensure_future(stop_event.wait())
            waiting = {stop_wait}
            if isinstance(finished, asyncio.Future):
                waiting.add(finished)
            while True:
                done, _ = await asyncio.wait(
                    waiting, timeout=stats_interval, return_when=asyncio.FIRST_COMPLETED
                )
                if done:
                    break
                if on_stats:
                    on_stats()
        finally:
            if stop_wait is not None:
                stop_wait.cancel()
            await stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


@app.command()
def start(
    host: Optional[str] = typer.Option(
        None,
        "--host",
        "-h",
        help="Host running the emulator's network output (default: 127.0.0.1)",
    ),
    port: Optional[int] = typer.Option(
        None,
        "--port",
        "-p",
        help="Network output port (default: 8000)",
    ),
    bus_host: Optional[str] = typer.Option(
        None,
        "--bus-host",
        help="Address the native output endpoint binds (default: 127.0.0.1)",
    ),
    bus_port: Optional[int] = typer.Option(
        None,
        "--bus-port",
        "-b",
        help="Port of the native output endpoint (default: 8001)",
    ),
    reconnect_delay: Optional[float] = typer.Option(
        None,
        "--reconnect-delay",
        "-r",
        help="Seconds between connection attempts (default: 2.0)",
    ),
    terminator: Optional[str] = typer.Option(
        None,
        "--terminator",
        "-t",
        help="Line terminator of the network stream: cr, lf or crlf (default: cr)",
    ),
    no_handshake: bool = typer.Option(
        False,
        "--no-handshake",
        help="Do not send the wake-up line after connecting",
    ),
    prune: bool = typer.Option(
        False,
        "--prune",
        help="Unregister clients that cannot be reached",
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="JSON/YAML configuration file",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging (shows every received line)",
    ),
) -> None:
    """Start the bridge.

    Connects to the emulator's network output and impersonates its native
    output endpoint for clients such as LED and lamp controllers.
    """
    setup_logging(verbose)

    cfg = build_config(
        config,
        {
            "upstream_host": host,
            "upstream_port": port,
            "bus_host": bus_host,
            "bus_port": bus_port,
            "reconnect_delay": reconnect_delay,
            "line_terminator": terminator,
            "handshake": False if no_handshake else None,
            "prune_failed_subscribers": True if prune else None,
        },
    )

    table = Table(title="Bridge Configuration", show_header=True)
    table.add_column("Side", style="cyan")
    table.add_column("Endpoint", style="green")
    table.add_column("Details", style="yellow")
    table.add_row(
        "Network output (upstream)",
        f"{cfg.upstream_host}:{cfg.upstream_port}",
        f"terminator={cfg.line_terminator!r}, retry every {cfg.reconnect_delay:g}s",
    )
    table.add_row(
        "Native output (bus)",
        f"{cfg.bus_host}:{cfg.bus_port}",
        f"endpoint '{ENDPOINT_NAME}'",
    )
    console.print(table)
    console.print()

    bridge = Bridge(cfg)

    async def start_bridge():
        try:
            await bridge.start()
        except OSError as e:
            console.print(
                f"[red]Error: cannot open native output endpoint on "
                f"{cfg.bus_host}:{cfg.bus_port} ({e}). Is the bridge already running?[/red]"
            )
            raise typer.Exit(1)
        console.print("[bold green]Bridge running. Press Ctrl+C to stop.[/bold green]")

    async def stop_bridge():
        if bridge.is_running:
            await bridge.stop()
        console.print("[green]Bridge stopped.[/green]")

    def show_stats():
        stats = bridge.get_stats()
        console.print(
            f"[dim]Stats: {stats['upstream_state'].lower()}, session {stats['session_name']}, "
            f"{stats['outputs']} outputs, {stats['subscribers']} clients, "
            f"{stats['updates_sent']} updates sent[/dim]"
        )

    console.print(Panel.fit("[bold green]Starting bridge...[/bold green]"))
    run_until_signalled((start_bridge, stop_bridge), on_stats=show_stats)


@app.command()
def watch(
    bus_host: str = typer.Option("127.0.0.1", "--bus-host", help="Native output endpoint address"),
    bus_port: int = typer.Option(8001, "--bus-port", "-b", help="Native output endpoint port"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Attach as a native client and print every output change."""
    setup_logging(verbose)
    client = BusClient(bus_host, bus_port)
    names: dict = {}
    state = {"lost": False}

    async def show(message):
        if message.kind is MessageKind.START:
            names.clear()
            try:
                rom = await client.query_name(0)
            except asyncio.TimeoutError:
                rom = "?"
            console.print(f"[bold green]START[/bold green] session={rom}")
        elif message.kind is MessageKind.STOP:
            names.clear()
            console.print("[bold yellow]STOP[/bold yellow]")
        elif message.kind is MessageKind.UPDATE_STATE:
            output_id, value = message.wparam, message.lparam
            if output_id not in names:
                try:
                    names[output_id] = await client.query_name(output_id)
                except asyncio.TimeoutError:
                    names[output_id] = f"#{output_id}"
            console.print(f"{names[output_id]} = {value}")

    async def consume():
        try:
            while client.connected or not client.rx_queue.empty():
                try:
                    message = await asyncio.wait_for(client.receive(), timeout=0.5)
                except asyncio.TimeoutError:
                    continue
                await show(message)
        except (ConnectionError, OSError, RuntimeError) as e:
            console.print(f"[red]Error: {escape(str(e))}[/red]")
        state["lost"] = True
        console.print("[yellow]Bus closed[/yellow]")

    consumer: dict = {}

    async def start_watch():
        try:
            await client.connect()
        except OSError as e:
            console.print(f"[red]Error: cannot reach {bus_host}:{bus_port} ({e})[/red]")
            raise typer.Exit(1)
        await client.register()
        consumer["task"] = asyncio.create_task(consume())
        console.print(f"[cyan]Watching {bus_host}:{bus_port} as handle {client.handle:#x}[/cyan]")
        return consumer["task"]

    async def stop_watch():
        task = consumer.get("task")
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if client.connected:
            try:
                await client.unregister()
            except (ConnectionError, OSError, RuntimeError):
                pass
        await client.disconnect()

    run_until_signalled((start_watch, stop_watch))
    if state["lost"]:
        raise typer.Exit(1)


@app.command()
def relay(
    bus_host: str = typer.Option("127.0.0.1", "--bus-host", help="Native output endpoint address"),
    bus_port: int = typer.Option(8001, "--bus-port", "-b", help="Native output endpoint port"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Address the line server binds"),
    port: int = typer.Option(8000, "--port", "-p", help="Port the line server listens on"),
    reconnect_delay: float = typer.Option(2.0, "--reconnect-delay", "-r", help="Seconds between bus attach attempts"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Relay native output back out as network output lines."""
    setup_logging(verbose)
    output_relay = OutputRelay(
        BusClient(bus_host, bus_port),
        LineServer(host, port),
        reconnect_delay=reconnect_delay,
    )

    async def start_relay():
        try:
            await output_relay.start()
        except OSError as e:
            console.print(f"[red]Error: cannot listen on {host}:{port} ({e})[/red]")
            raise typer.Exit(1)
        console.print("[bold green]Relay running. Press Ctrl+C to stop.[/bold green]")

    def show_stats():
        stats = output_relay.get_stats()
        console.print(
            f"[dim]Stats: {stats['lines_sent']} lines, {stats['clients']} clients, "
            f"{stats['known_names']} names[/dim]"
        )

    run_until_signalled((start_relay, output_relay.stop), on_stats=show_stats)


@app.command("mock-host")
def mock_host(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Address to listen on"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
    rom: str = typer.Option("pacman", "--rom", help="Session name announced with mame_start"),
    output: Optional[list[str]] = typer.Option(None, "--output", "-o", help="Output name to toggle (can be repeated)"),
    count: int = typer.Option(10, "--count", "-n", help="Toggles per output"),
    interval: float = typer.Option(0.5, "--interval", "-i", help="Seconds between toggles"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Pretend to be the emulator's network output."""
    setup_logging(verbose)
    script = MockHostScript(rom=rom, count=count, interval=interval)
    if output:
        script.outputs = list(output)
    server = MockHost(host, port, script)

    async def start_mock():
        try:
            await server.start()
        except OSError as e:
            console.print(f"[red]Error: cannot listen on {host}:{port} ({e})[/red]")
            raise typer.Exit(1)
        console.print(f"[bold green]Mock host on {host}:{server.port} playing '{rom}'[/bold green]")

    run_until_signalled((start_mock, server.stop))


@app.command()
def info() -> None:
    """Display bridge capabilities and usage information."""
    console.print(
        Panel.fit(
            f"[bold]MAME Bridge {__version__}[/bold]\n\n"
            "The emulator can only send output to the network OR to native\n"
            "clients. The bridge reads the network output and re-broadcasts\n"
            "it as native output, so both kinds of client work together.\n\n"
            "[bold]Network side:[/bold]\n"
            "  • TCP client of the emulator's network output (default 127.0.0.1:8000)\n"
            "  • '<name> = <value>' lines, carriage-return terminated\n"
            "  • Automatic reconnect every 2 seconds\n\n"
            "[bold]Native side:[/bold]\n"
            f"  • Endpoint '{ENDPOINT_NAME}' on 127.0.0.1:8001\n"
            "  • MAMEOutputStart / Stop / UpdateState broadcasts\n"
            "  • MAMEOutputRegister / Unregister / GetIDString requests\n"
            "  • Id 0 resolves to the running ROM name\n",
            title="About",
        )
    )


if __name__ == "__main__":
    app()
