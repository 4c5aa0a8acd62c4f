"""
SecureShare CLI

Command-line interface for end-to-end encrypted peer-to-peer transfer.

Usage:
    secureshare relay                        # Run the rendezvous relay
    secureshare receive --peer ID            # Wait for a file from ID
    secureshare send FILE --peer ID          # Send FILE to ID
    secureshare serve --role receiver        # Run a node with the REST API
    secureshare config                       # Print an example config file
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.panel import Panel
from rich.logging import RichHandler

from .config import load_config, EXAMPLE_CONFIG
from .errors import SecureShareError
from .node import SecureShareNode
from .signaling import RelayServer
from .transfer import Role, TransferState

console = Console()


def setup_logging(level: str = 'INFO', verbose: bool = False):
    """Configure logging with rich output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('-c', '--config', 'config_path', type=click.Path(), help='Config file (JSON)')
@click.option('--relay-host', default=None, help='Relay host')
@click.option('--relay-port', default=None, type=int, help='Relay port')
@click.pass_context
def cli(ctx, verbose, config_path, relay_host, relay_port):
    """SecureShare - end-to-end encrypted peer-to-peer file transfer."""
    config = load_config(Path(config_path) if config_path else None)
    if relay_host:
        config.relay_host = relay_host
    if relay_port:
        config.relay_port = relay_port

    setup_logging(config.log_level, verbose)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', default='0.0.0.0', help='Address to listen on')
@click.pass_context
def relay(ctx, host):
    """Run the rendezvous relay."""
    config = ctx.obj['config']

    async def run():
        server = RelayServer(host=host, port=config.relay_port)
        await server.start()
        console.print(Panel.fit(
            f"[bold green]Relay Started[/bold green]\n\n"
            f"Listening: [yellow]{host}:{server.port}[/yellow]",
            title="Relay"
        ))
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
        try:
            await server.serve_forever()
        finally:
            await server.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Relay stopped[/yellow]")


def _session_panel(node: SecureShareNode, title: str) -> Panel:
    return Panel.fit(
        f"[bold]Your session ID:[/bold] [cyan]{node.session_id}[/cyan]\n"
        f"Role: [yellow]{node.role.value}[/yellow]\n"
        f"Relay: [blue]{node.config.relay_host}:{node.config.relay_port}[/blue]",
        title=title
    )


async def _run_transfer(node: SecureShareNode, peer: str, file_path: Optional[Path] = None):
    """Drive one node through a transfer, rendering a progress bar."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=console,
    ) as progress:
        task = progress.add_task("Connecting to relay...", total=100)

        def on_state(state, session):
            progress.update(task, description=session.status)

        def on_progress(session):
            progress.update(task, completed=session.progress.percent, description=session.status)

        node.session.on_state_change(on_state)
        node.session.on_progress(on_progress)

        await node.start()
        progress.console.print(_session_panel(node, "Session"))
        await node.connect(peer)

        if file_path is not None:
            state = await node.wait_ready(timeout=node.config.connect_timeout)
            if state == TransferState.READY:
                try:
                    await node.send_file(file_path)
                except SecureShareError:
                    pass  # the session already records the failure

        state = await node.wait_finished()
        if state == TransferState.COMPLETED:
            progress.update(task, completed=100)
    return state


def _report(node: SecureShareNode, state: TransferState):
    snapshot = node.get_status()
    if state == TransferState.COMPLETED:
        if snapshot['result_path']:
            console.print(f"\n[green]✓ Saved to: {snapshot['result_path']}[/green]")
        else:
            console.print(f"\n[green]✓ Sent {snapshot['file_name']} "
                          f"({format_size(snapshot['progress']['bytes_processed'])})[/green]")
    else:
        console.print(f"\n[red]✗ {snapshot['status']} ({snapshot['error_kind']})[/red]")


@cli.command()
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--peer', '-p', required=True, help="Receiver's session ID")
@click.pass_context
def send(ctx, file_path, peer):
    """Send a file to a waiting receiver."""
    config = ctx.obj['config']

    async def run():
        node = SecureShareNode(config, role=Role.SENDER)
        try:
            state = await _run_transfer(node, peer, Path(file_path))
            _report(node, state)
        except (SecureShareError, asyncio.TimeoutError) as e:
            console.print(f"\n[red]✗ {e}[/red]")
        finally:
            await node.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")


@cli.command()
@click.option('--peer', '-p', required=True, help="Sender's session ID")
@click.option('--output', '-o', type=click.Path(file_okay=False), help='Output directory')
@click.pass_context
def receive(ctx, peer, output):
    """Receive a file from a sender."""
    config = ctx.obj['config']
    output_dir = Path(output) if output else None

    async def run():
        node = SecureShareNode(config, role=Role.RECEIVER, output_dir=output_dir)
        try:
            state = await _run_transfer(node, peer)
            _report(node, state)
        except SecureShareError as e:
            console.print(f"\n[red]✗ {e}[/red]")
        finally:
            await node.stop()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled[/yellow]")


@cli.command()
@click.option('--role', type=click.Choice(['sender', 'receiver']), default='receiver',
              help='Session role')
@click.option('--api-port', default=None, type=int, help='REST API port')
@click.pass_context
def serve(ctx, role, api_port):
    """Run a node controlled through the REST API."""
    config = ctx.obj['config']
    port = api_port or config.api_port

    async def run():
        node = SecureShareNode(config, role=role)
        try:
            await node.start()
            console.print(_session_panel(node, "Node Info"))
            console.print(f"\n[dim]REST API available at http://{config.api_host}:{port}[/dim]")
            console.print(f"[dim]API docs at http://{config.api_host}:{port}/docs[/dim]\n")

            from .api import run_api_server
            await run_api_server(node, host=config.api_host, port=port)
        except SecureShareError as e:
            console.print(f"[red]✗ {e}[/red]")
        finally:
            await node.stop()
            console.print("[green]Node stopped[/green]")

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")


@cli.command('config')
def show_config():
    """Print an example configuration file."""
    console.print(EXAMPLE_CONFIG.strip())


def format_size(bytes_count: float) -> str:
    """Format bytes as human-readable size."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024
    return f"{bytes_count:.1f} PB"


if __name__ == '__main__':
    cli()
