"""Load chunkvault configuration from ~/.chunkvault/config.yaml."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml

from . import CHUNKVAULT_HOME
from .models import ChunkVaultConfig

logger = logging.getLogger("chunkvault.config")

CONFIG_FILENAME = "config.yaml"


def config_path(home: Optional[Path] = None) -> Path:
    """Location of the config file for a given home directory."""
    return (home or Path(CHUNKVAULT_HOME)).expanduser() / CONFIG_FILENAME


def load_config(home: Optional[Path] = None) -> ChunkVaultConfig:
    """Load configuration from disk.

    Args:
        home: Override the chunkvault home. Defaults to ~/.chunkvault.

    Returns:
        ChunkVaultConfig loaded from config.yaml, or defaults.
    """
    config_file = config_path(home)
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text()) or {}
            return ChunkVaultConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config: %s; using defaults", exc)
    return ChunkVaultConfig()


def save_config(config: ChunkVaultConfig, home: Optional[Path] = None) -> Path:
    """Write configuration to config.yaml.

    Returns:
        Path of the written file.
    """
    config_file = config_path(home)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(
        yaml.dump(config.model_dump(mode="json"), default_flow_style=False)
    )
    return config_file
