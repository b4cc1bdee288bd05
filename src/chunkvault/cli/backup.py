"""Backup and restore commands: backup, restore, chunks, config."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click
import yaml

from ._common import CHUNKVAULT_HOME, console, format_size, load_cli_config

from rich.panel import Panel
from rich.table import Table

from ..backup import ValidationError, list_chunks, run_backup, run_restore
from ..chunks import ChunkSetError
from ..pipeline import PipeIOError, PipelineCancelled, PipelineError, ProcessLaunchError

PIPELINE_ERRORS = (ProcessLaunchError, PipeIOError, PipelineError)


def _print_pipeline_error(exc: Exception) -> None:
    """Explain which stage or link broke, then exit non-zero."""
    if isinstance(exc, PipelineCancelled):
        console.print(f"[yellow]{exc}[/]")
    else:
        console.print(f"[red]{exc}[/]")

    result = getattr(exc, "result", None)
    if result is not None:
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Stage", style="cyan")
        table.add_column("Exit", justify="right")
        table.add_column("Command", style="dim")
        for stage in result.stages:
            status = "[green]0[/]" if stage.ok else f"[red]{stage.returncode}[/]"
            table.add_row(stage.name, status, " ".join(stage.argv)[:60])
        console.print(table)
        for link in result.failed_links:
            console.print(f"  [red]link {link.name}: {link.error}[/]")

    console.print("[yellow]Partial output was left on disk for inspection.[/]")
    raise SystemExit(1)


def register_backup_commands(main: click.Group) -> None:
    """Register the backup, restore, chunks and config commands."""

    @main.command("backup")
    @click.argument("source", type=click.Path())
    @click.argument("target_pattern", type=click.Path())
    @click.option("--chunk-size", "-z", type=int, default=None,
                  help="Maximum bytes per chunk (default 1000000000).")
    @click.option("--passphrase-file", type=click.Path(), default=None,
                  help="Read the gpg passphrase from this file (non-interactive).")
    @click.option("--timeout", type=float, default=None, help="Abort after this many seconds.")
    @click.option("--force", is_flag=True, help="Delete existing chunks with the same prefix.")
    @click.option("--home", default=CHUNKVAULT_HOME, type=click.Path(), help="chunkvault home directory.")
    def backup_cmd(
        source: str,
        target_pattern: str,
        chunk_size: Optional[int],
        passphrase_file: Optional[str],
        timeout: Optional[float],
        force: bool,
        home: str,
    ):
        """Back up SOURCE into encrypted chunks named TARGET_PATTERN000000, ...

        Examples:

            chunkvault backup ~/photos /mnt/usb/photos.tar.gz.gpg-

            chunkvault backup ~/photos /mnt/usb/photos- -z 500000000
        """
        config = load_cli_config(home, chunk_size=chunk_size, passphrase_file=passphrase_file)

        try:
            console.print(f"\n[cyan]Backing up {source}...[/]")
            result = run_backup(source, target_pattern, config=config, force=force, timeout=timeout)
        except (ValidationError, ChunkSetError) as exc:
            console.print(f"[red]{exc}[/]")
            raise SystemExit(1)
        except PIPELINE_ERRORS as exc:
            _print_pipeline_error(exc)
        except KeyboardInterrupt:
            console.print("[yellow]Backup interrupted.[/]")
            raise SystemExit(130)

        console.print(Panel(
            f"[bold green]Backup created[/]\n"
            f"Chunks: {result['chunk_count']}\n"
            f"Size: {format_size(result['total_size'])}\n"
            f"Time: {result['duration']:.1f}s\n"
            f"First: [cyan]{result['chunks'][0]}[/]",
            title="Backup Complete",
            border_style="green",
        ))

    @main.command("restore")
    @click.argument("source", type=click.Path())
    @click.argument("target", type=click.Path())
    @click.option("--prefix", default=None, help="Only use chunks named PREFIX<digits>.")
    @click.option("--passphrase-file", type=click.Path(), default=None,
                  help="Read the gpg passphrase from this file (non-interactive).")
    @click.option("--timeout", type=float, default=None, help="Abort after this many seconds.")
    @click.option("--home", default=CHUNKVAULT_HOME, type=click.Path(), help="chunkvault home directory.")
    def restore_cmd(
        source: str,
        target: str,
        prefix: Optional[str],
        passphrase_file: Optional[str],
        timeout: Optional[float],
        home: str,
    ):
        """Restore the chunks in SOURCE into the existing directory TARGET.

        Chunks are joined in filename order.

        Examples:

            chunkvault restore /mnt/usb ~/photos-restored

            chunkvault restore /mnt/usb ~/restored --prefix photos.tar.gz.gpg-
        """
        config = load_cli_config(home, passphrase_file=passphrase_file)

        try:
            console.print(f"\n[cyan]Restoring from {source}...[/]")
            result = run_restore(source, target, prefix=prefix, config=config, timeout=timeout)
        except (ValidationError, ChunkSetError, FileNotFoundError) as exc:
            console.print(f"[red]{exc}[/]")
            raise SystemExit(1)
        except PIPELINE_ERRORS as exc:
            _print_pipeline_error(exc)
        except KeyboardInterrupt:
            console.print("[yellow]Restore interrupted.[/]")
            raise SystemExit(130)

        console.print(Panel(
            f"[bold green]Restore complete[/]\n"
            f"Chunks: {result['chunk_count']}\n"
            f"Size: {format_size(result['total_size'])}\n"
            f"Time: {result['duration']:.1f}s\n"
            f"Target: [cyan]{result['target']}[/]",
            title="Restore Complete",
            border_style="green",
        ))

    @main.command("chunks")
    @click.argument("source", type=click.Path())
    @click.option("--prefix", default=None, help="Only list chunks named PREFIX<digits>.")
    @click.option("--home", default=CHUNKVAULT_HOME, type=click.Path(), help="chunkvault home directory.")
    def chunks_cmd(source: str, prefix: Optional[str], home: str):
        """List the chunks in SOURCE in restore order.

        Examples:

            chunkvault chunks /mnt/usb --prefix photos.tar.gz.gpg-
        """
        config = load_cli_config(home)
        try:
            chunks = list_chunks(source, prefix=prefix, suffix_length=config.suffix_length)
        except (ChunkSetError, FileNotFoundError) as exc:
            console.print(f"[red]{exc}[/]")
            raise SystemExit(1)

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("#", justify="right")
        table.add_column("Filename", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Modified", style="dim")

        for c in chunks:
            table.add_row(str(c["index"]), c["filename"], format_size(c["size"]), c["modified"][:19])

        total = sum(c["size"] for c in chunks)
        console.print(f"\n[bold]{len(chunks)}[/] chunk(s), {format_size(total)}:\n")
        console.print(table)
        console.print()

    @main.command("config")
    @click.option("--home", default=CHUNKVAULT_HOME, type=click.Path(), help="chunkvault home directory.")
    @click.option("--init", "init_file", is_flag=True, help="Write the effective config to config.yaml.")
    def config_cmd(home: str, init_file: bool):
        """Show the effective configuration.

        Examples:

            chunkvault config

            chunkvault config --init
        """
        from ..config import config_path, save_config

        config = load_cli_config(home)
        home_path = Path(home).expanduser()
        if init_file:
            path = save_config(config, home_path)
            console.print(f"[green]Wrote {path}[/]")
            return

        console.print(f"[dim]{config_path(home_path)}[/]")
        console.print(yaml.dump(config.model_dump(mode="json"), default_flow_style=False))
