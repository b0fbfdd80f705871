"""CLI command implementations: run the gateway, run the bridge, show the catalog."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mailbridge.bridge.process import main as run_bridge
from mailbridge.config import BridgeSettings, GatewaySettings
from mailbridge.gateway.auth import AuthToken
from mailbridge.gateway.server import GatewayServer
from mailbridge.store.calendars import IcsCalendarDirectory
from mailbridge.store.contacts import VCardDirectory
from mailbridge.store.fulltext import MaildirTextScanner
from mailbridge.store.maildir import MaildirStore
from mailbridge.tools.catalog import TOOLS
from mailbridge.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

# stdout belongs to the bridge protocol; everything human-facing goes to stderr.
console = Console(stderr=True, width=200)


def build_dispatcher(settings: GatewaySettings) -> ToolDispatcher:
    """Wire the Maildir-backed collaborators under ``settings.mail_root``."""
    store = MaildirStore(
        settings.mail_root,
        drafts_dir=settings.resolved_drafts_dir,
        editor_command=settings.editor_command,
    )
    calendar_dir = settings.mail_root / "calendars"
    return ToolDispatcher(
        store,
        contacts=VCardDirectory(settings.mail_root / "contacts"),
        calendars=IcsCalendarDirectory(calendar_dir) if calendar_dir.is_dir() else None,
        full_text=MaildirTextScanner(store),
    )


@click.command()
@click.option("--port", type=int, default=None, help="Listen port (default: MAILBRIDGE_PORT or 8765).")
@click.option(
    "--mail-root",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the Maildirs (default: MAILBRIDGE_MAIL_ROOT or ~/Mail).",
)
def serve(port: int | None, mail_root: Path | None) -> None:
    """Run the loopback gateway until interrupted."""
    settings = GatewaySettings.from_env()
    if port is not None:
        settings.port = port
    if mail_root is not None:
        settings.mail_root = mail_root.expanduser()
    logging.getLogger().setLevel(settings.log_level)

    dispatcher = build_dispatcher(settings)
    gateway = GatewayServer(dispatcher, AuthToken(settings.token_path), port=settings.port)

    console.print(
        Panel(
            f"[bold]Listening on[/bold] http://127.0.0.1:{settings.port}/\n"
            f"[bold]Mail root[/bold]    {settings.mail_root}\n"
            f"[bold]Drafts[/bold]       {settings.resolved_drafts_dir}\n"
            f"[bold]Token file[/bold]   {settings.token_path}",
            title="mailbridge gateway",
            box=box.ROUNDED,
        )
    )
    gateway.run(log_level=settings.log_level)


@click.command()
def bridge() -> None:
    """Relay JSON-RPC between stdin/stdout and the running gateway."""
    settings = BridgeSettings.from_env()
    logging.getLogger().setLevel(settings.log_level)
    sys.exit(run_bridge(settings))


@click.command()
def tools() -> None:
    """List the tools the gateway exposes."""
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Tool", style="bold")
    table.add_column("Required", max_width=40)
    table.add_column("Description", max_width=90)

    for tool in TOOLS:
        required = ", ".join(tool.inputSchema.get("required", [])) or "[dim]—[/dim]"
        table.add_row(tool.name, required, tool.description or "")

    console.print(f"\n[bold]{len(TOOLS)}[/bold] tools\n")
    console.print(table)
