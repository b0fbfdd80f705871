"""CLI entry point for the mail bridge."""

import logging

import click
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@click.group()
def cli() -> None:
    """Loopback tool gateway for a local mail store, plus its stdio bridge."""
    load_dotenv()
    logging.basicConfig(
        level=logging.WARNING,  # commands raise this from their own settings
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )


# Import and register commands after cli is defined to avoid circular imports.
from mailbridge.cli.commands import bridge, serve, tools  # noqa: E402

cli.add_command(serve)
cli.add_command(bridge)
cli.add_command(tools)
