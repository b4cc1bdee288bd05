"""Shared utilities for all CLI command modules.

Provides the Rich console instance, logging setup, and the
config loading used by every command.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Optional

from rich.console import Console

from .. import CHUNKVAULT_HOME
from ..config import load_config
from ..models import ChunkVaultConfig

console = Console()

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """Configure stderr (and optional file) logging for the chunkvault loggers.

    Args:
        verbose: DEBUG instead of INFO.
        log_file: Also append log records to this file.
    """
    root = logging.getLogger("chunkvault")
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    for old in [h for h in root.handlers if getattr(h, "_chunkvault_stderr", False)]:
        root.removeHandler(old)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler._chunkvault_stderr = True
    root.addHandler(handler)

    if log_file is not None:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path)
        handler.setFormatter(formatter)
        root.addHandler(handler)


def load_cli_config(home: str, **overrides: Any) -> ChunkVaultConfig:
    """Load config.yaml from `home` and apply command line overrides.

    None-valued overrides are ignored. `passphrase_file` goes to the
    tools section.
    """
    config = load_config(Path(home).expanduser())
    passphrase_file = overrides.pop("passphrase_file", None)
    updates = {k: v for k, v in overrides.items() if v is not None}
    if passphrase_file:
        updates["tools"] = config.tools.model_copy(
            update={"passphrase_file": Path(passphrase_file).expanduser()},
        )
    if updates:
        config = config.model_copy(update=updates)
    if config.log_file:
        setup_logging(
            logging.getLogger("chunkvault").level == logging.DEBUG,
            config.log_file,
        )
    return config


def format_size(size: int) -> str:
    """Human readable byte count."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.1f} {unit}" if unit != "B" else f"{size} B"
        value /= 1024
    return f"{size} B"


__all__ = [
    "CHUNKVAULT_HOME",
    "console",
    "format_size",
    "load_cli_config",
    "setup_logging",
]
