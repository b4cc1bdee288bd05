"""
Pydantic models for chunkvault configuration.

Everything about which external programs run, and with which knobs,
lives here. The pipeline engine itself never hard-codes a tool.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_CHUNK_SIZE = 1_000_000_000
DEFAULT_SUFFIX_LENGTH = 6


class ToolsConfig(BaseModel):
    """External programs used by the backup and restore chains."""

    tar: str = "tar"
    gpg: str = "gpg"
    split: str = "split"
    cat: str = "cat"
    cipher_algo: str = "AES256"
    passphrase_file: Optional[Path] = None


class ChunkVaultConfig(BaseModel):
    """Persistent configuration, read from config.yaml."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    suffix_length: int = DEFAULT_SUFFIX_LENGTH
    block_size: int = 64 * 1024
    timeout: Optional[float] = None
    log_file: Optional[Path] = None
    tools: ToolsConfig = Field(default_factory=ToolsConfig)

    @field_validator("chunk_size", "suffix_length", "block_size")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value
