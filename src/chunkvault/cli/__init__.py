"""
chunkvault CLI: encrypted, chunked backup from the command line.

The main Click group is defined here and every command group is
registered from its own module.

Entry point: chunkvault.cli:main
"""

from __future__ import annotations

import click

from .. import __version__
from ._common import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="chunkvault")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def main(verbose: bool):
    """chunkvault: encrypted, chunked filesystem backup.

    tar | gpg | split on the way out, cat | gpg | tar on the way back.
    """
    setup_logging(verbose)


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .backup import register_backup_commands
from .preflight import register_preflight_commands

register_backup_commands(main)
register_preflight_commands(main)
