#!/usr/bin/env python3
"""
Tahta Connect CLI

Command-line interface for phone/board sessions over a signaling relay.

Usage:
    tahta relay                          # Run a relay server
    tahta board ROOM                     # Wait for a phone in ROOM
    tahta send ROOM FILE --kind image    # Send a file to the board
    tahta request-document ROOM -o FILE  # Pull the board's document
    tahta status ROOM                    # Show what the relay holds for ROOM
"""

import asyncio
import logging
import secrets
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.panel import Panel
from rich.logging import RichHandler

from .config import Config, load_config
from .errors import TahtaError, describe_failure
from .session import BoardSession, PhoneSession
from .signaling import HttpRelay, Role, RoomPaths
from .transfer import ReceivedFile, TransferKind, write_payload

console = Console()


def setup_logging(verbose: bool = False, level_name: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def run_command(coro):
    """Run a command coroutine, turning library failures into a red message and exit 1."""
    try:
        return asyncio.run(coro)
    except TahtaError as e:
        console.print(f"[red]✗ {describe_failure(e)}[/red]")
        console.print(f"[dim]{e}[/dim]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='JSON config file')
@click.option('--relay-url', default=None, help='Relay base URL')
@click.pass_context
def cli(ctx, verbose, config_path, relay_url):
    """Tahta Connect - send photos and recordings from a phone to a board."""
    config = load_config(Path(config_path) if config_path else None)
    if relay_url:
        config.relay_url = relay_url

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', default=None, type=int, help='Port to listen on')
@click.pass_context
def relay(ctx, host, port):
    """Run a signaling relay server."""
    config: Config = ctx.obj['config']
    host = host or config.relay_host
    port = port or config.relay_port

    console.print(Panel.fit(
        f"[bold green]Relay Started[/bold green]\n\n"
        f"Listening: [cyan]http://{host}:{port}[/cyan]\n"
        f"Root: [yellow]{config.relay_root}[/yellow]",
        title="Tahta Relay"
    ))

    from .api import run_relay_server
    run_command(run_relay_server(host, port))


@cli.command()
@click.argument('room', required=False)
@click.option('--document', type=click.Path(exists=True, dir_okay=False), help='PDF to serve on request')
@click.option('--received-dir', type=click.Path(file_okay=False), help='Where to store received files')
@click.pass_context
def board(ctx, room, document, received_dir):
    """Create ROOM (random if omitted) and wait for phones."""
    config: Config = ctx.obj['config']
    if document:
        config.document_path = Path(document)
    if received_dir:
        config.received_dir = Path(received_dir)
    room = room or secrets.token_hex(4)

    async def run():
        session = BoardSession(room, config)

        def saved(received: ReceivedFile, path: Path):
            console.print(f"[green]✓ {received.kind.value}: {path} ({format_size(received.size)})[/green]")

        session.on_file_saved(saved)
        session.on_state_change(lambda state: console.print(f"[dim]Connection: {state.value}[/dim]"))
        session.on_error(lambda error: console.print(f"[red]✗ {describe_failure(error)}[/red]"))

        try:
            await session.start()

            console.print(Panel.fit(
                f"[bold green]Board Ready[/bold green]\n\n"
                f"Room: [cyan]{room}[/cyan]\n"
                f"Relay: [yellow]{config.relay_url}[/yellow]\n"
                f"Received files: [blue]{config.received_dir}[/blue]\n"
                f"Document: [blue]{config.document_path or '-'}[/blue]",
                title="Tahta Board"
            ))
            console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")

            while True:
                await asyncio.sleep(1)
        finally:
            await session.stop()
            console.print("[green]Board stopped[/green]")

    run_command(run())


@cli.command()
@click.argument('room')
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--kind', '-k', type=click.Choice([k.value for k in TransferKind]),
              default=TransferKind.IMAGE.value, help='Payload kind')
@click.pass_context
def send(ctx, room, file_path, kind):
    """Send FILE to the board waiting in ROOM."""
    config: Config = ctx.obj['config']
    file_path = Path(file_path)

    async def run():
        session = PhoneSession(room, config)
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                console=console,
            ) as progress:
                task = progress.add_task("Connecting...", total=100)
                await session.open()

                progress.update(task, description=f"Sending {file_path.name}...")
                session.on_progress(lambda p: progress.update(task, completed=p * 100))
                header = await session.send_path(kind, file_path)

                progress.update(task, completed=100, description="Done!")

            console.print(f"\n[green]✓ Sent {header.filename} "
                          f"({format_size(header.total_size)}, {header.total_chunks} chunks)[/green]")
        finally:
            await session.close()

    run_command(run())


@cli.command('request-document')
@click.argument('room')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Output path')
@click.option('--timeout', type=float, default=None,
              help='Seconds to wait for the document (default: request_timeout)')
@click.pass_context
def request_document(ctx, room, output, timeout):
    """Pull the document served by the board in ROOM."""
    config: Config = ctx.obj['config']
    if timeout is None:
        timeout = config.request_timeout

    async def run():
        session = PhoneSession(room, config)
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
                console=console,
            ) as progress:
                task = progress.add_task("Connecting...", total=100)
                await session.open()

                progress.update(task, description="Waiting for document...")
                session.on_progress(lambda p: progress.update(task, completed=p * 100))
                try:
                    received = await session.request_document(timeout)
                except asyncio.TimeoutError:
                    console.print(f"\n[red]✗ No document within {timeout:.0f}s[/red]")
                    return

                progress.update(task, completed=100, description="Done!")

            output_path = Path(output) if output else Path(Path(received.filename).name)
            await write_payload(output_path, received.payload)
            console.print(f"\n[green]✓ Saved to: {output_path} ({format_size(received.size)})[/green]")
        finally:
            await session.close()

    run_command(run())


@cli.command()
@click.argument('room')
@click.pass_context
def status(ctx, room):
    """Show what the relay holds for ROOM."""
    config: Config = ctx.obj['config']

    async def run():
        relay = HttpRelay(config.relay_url)
        try:
            paths = RoomPaths(room, config.relay_root)
            data = await relay.get(paths.room)
        finally:
            await relay.close()

        if data is None:
            console.print(f"[yellow]Room {room} does not exist[/yellow]")
            return

        table = Table(title=f"Room {room}")
        table.add_column("Peer", style="cyan")
        table.add_column("Description", style="yellow")
        table.add_column("Candidates", justify="right")

        for role in Role:
            entry = data.get(role.value) or {}
            description = entry.get('description') or {}
            candidates = entry.get('candidates') or {}
            table.add_row(role.value, description.get('type', '-'), str(len(candidates)))

        console.print(table)
        console.print(f"Status: [green]{data.get('status', '-')}[/green]")

    run_command(run())


def format_size(bytes_count: int) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


if __name__ == '__main__':
    cli()
