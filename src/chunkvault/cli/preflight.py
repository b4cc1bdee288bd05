"""Preflight command: check the external tools are installed."""

from __future__ import annotations

import click

from ._common import CHUNKVAULT_HOME, console, load_cli_config

from rich.table import Table


def register_preflight_commands(main: click.Group) -> None:
    """Register the preflight command."""

    @main.command("preflight")
    @click.option("--home", default=CHUNKVAULT_HOME, type=click.Path(), help="chunkvault home directory.")
    def preflight_cmd(home: str):
        """Check that tar, gpg, split and cat are available.

        Examples:

            chunkvault preflight
        """
        from ..preflight import run_preflight

        config = load_cli_config(home)
        result = run_preflight(config.tools)

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Tool", style="cyan")
        table.add_column("Status")
        table.add_column("Version / Install", style="dim")

        for check in result.checks:
            if check.installed:
                table.add_row(check.name, "[green]OK[/]", check.version or check.path)
            else:
                table.add_row(check.name, "[red]MISSING[/]", check.install_cmd or check.install_note)

        console.print()
        console.print(table)
        console.print()

        if not result.all_ok:
            names = ", ".join(c.binary for c in result.required_missing)
            console.print(f"[red]Missing required tools: {names}[/]")
            raise SystemExit(1)
