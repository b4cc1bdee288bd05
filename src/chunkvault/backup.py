"""
Encrypted, chunked backup and restore.

Backup streams a directory through three external programs:

    tar -czf - -C SOURCE .  |  gpg --symmetric  |  split -b SIZE -d -a 6 - PREFIX

and restore streams the chunks back the other way:

    cat PREFIX000000 PREFIX000001 ...  |  gpg --decrypt  |  tar -xzf - -C TARGET

The programs are opaque; this module only decides their command lines
(from ToolsConfig) and hands the stages to the PipelineRunner. Any
stage or link failure surfaces as an exception. Partially written
chunks or a partially restored tree are left on disk.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .chunks import ChunkSet, split_target_pattern
from .config import load_config
from .models import ChunkVaultConfig, ToolsConfig
from .pipeline import PipelineRunner, ProcessStage

logger = logging.getLogger("chunkvault.backup")


class ValidationError(ValueError):
    """Raised when backup or restore arguments fail validation."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _require_dir(path: Path, label: str, writable: bool = False) -> None:
    if not path.exists():
        raise ValidationError(f"{label} {path} does not exist")
    if not path.is_dir():
        raise ValidationError(f"{label} {path} is not a directory")
    if not os.access(path, os.R_OK | os.X_OK):
        raise ValidationError(f"{label} {path} cannot be read")
    if writable and not os.access(path, os.W_OK):
        raise ValidationError(f"{label} {path} cannot be written to")


def validate_backup_paths(source: Path, target_pattern: str | Path, chunk_size: int) -> None:
    """Check backup arguments before any process is started.

    Raises:
        ValidationError: If the source is not a readable directory, the
            target's parent is not a writable directory, or the chunk
            size is below one byte.
    """
    if chunk_size < 1:
        raise ValidationError(f"Chunk size must be at least 1 byte, got {chunk_size}")
    _require_dir(Path(source).expanduser(), "Source")
    directory, _ = split_target_pattern(target_pattern)
    _require_dir(directory, "Target folder", writable=True)


def validate_restore_paths(source: Path, target: Path) -> None:
    """Check restore arguments before any process is started.

    Raises:
        ValidationError: If the source is not a readable directory or the
            target is not a writable directory.
    """
    _require_dir(Path(source).expanduser(), "Source")
    _require_dir(Path(target).expanduser(), "Target", writable=True)


# ---------------------------------------------------------------------------
# Stage construction
# ---------------------------------------------------------------------------


def _gpg_batch_args(tools: ToolsConfig) -> list[str]:
    """Non-interactive gpg flags when a passphrase file is configured."""
    if tools.passphrase_file is None:
        return []
    passphrase_file = Path(tools.passphrase_file).expanduser()
    if not passphrase_file.is_file():
        raise ValidationError(f"Passphrase file {passphrase_file} does not exist")
    return [
        "--batch",
        "--yes",
        "--pinentry-mode", "loopback",
        "--passphrase-file", str(passphrase_file),
    ]


def build_backup_stages(
    source: Path,
    chunk_size: int,
    target_pattern: str | Path,
    tools: Optional[ToolsConfig] = None,
    suffix_length: int = 6,
) -> list[ProcessStage]:
    """Stages for archiver -> encryptor -> splitter.

    Args:
        source: Directory to back up.
        chunk_size: Maximum bytes per chunk file.
        target_pattern: Chunk filename prefix, e.g. /backups/home.tar.gz.gpg-
        tools: External program configuration.
        suffix_length: Digits in each chunk's numeric suffix.

    Returns:
        The three ProcessStages.
    """
    tools = tools or ToolsConfig()
    directory, prefix = split_target_pattern(target_pattern)
    split_prefix = str(directory / prefix) if prefix else str(directory) + os.sep

    return [
        ProcessStage(
            "archiver",
            [tools.tar, "-czf", "-", "-C", str(Path(source).expanduser()), "."],
        ),
        ProcessStage(
            "encryptor",
            [tools.gpg, *_gpg_batch_args(tools),
             "--cipher-algo", tools.cipher_algo,
             "--symmetric", "--output", "-", "-"],
        ),
        ProcessStage(
            "splitter",
            [tools.split, "-b", str(chunk_size), "-d", "-a", str(suffix_length),
             "-", split_prefix],
        ),
    ]


def build_restore_stages(
    chunks: ChunkSet,
    target: Path,
    tools: Optional[ToolsConfig] = None,
) -> list[ProcessStage]:
    """Stages for concatenator -> decryptor -> extractor.

    Args:
        chunks: Chunk files, already in restore order.
        target: Directory to extract into.
        tools: External program configuration.

    Returns:
        The three ProcessStages.
    """
    tools = tools or ToolsConfig()
    return [
        ProcessStage(
            "concatenator",
            [tools.cat, "--", *(str(p) for p in chunks)],
        ),
        ProcessStage(
            "decryptor",
            [tools.gpg, *_gpg_batch_args(tools), "--decrypt"],
        ),
        ProcessStage(
            "extractor",
            [tools.tar, "-xzf", "-", "-C", str(Path(target).expanduser())],
        ),
    ]


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def _existing_chunks(target_pattern: str | Path) -> ChunkSet:
    directory, prefix = split_target_pattern(target_pattern)
    return ChunkSet.discover(directory, prefix=prefix)


def run_backup(
    source: str | Path,
    target_pattern: str | Path,
    chunk_size: Optional[int] = None,
    config: Optional[ChunkVaultConfig] = None,
    force: bool = False,
    cancel: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> dict[str, Any]:
    """Back up a directory into encrypted chunk files.

    Args:
        source: Directory to back up.
        target_pattern: Chunk filename prefix; chunks are written as
            PREFIX000000, PREFIX000001, ...
        chunk_size: Bytes per chunk. Defaults to config (1,000,000,000).
        config: Configuration. Defaults to ~/.chunkvault/config.yaml.
        force: Delete chunks left over under the same prefix first.
        cancel: Event that aborts the run when set.
        timeout: Wall-clock limit in seconds. Defaults to config.

    Returns:
        dict: 'chunks', 'chunk_count', 'total_size', 'duration', 'pipeline'.

    Raises:
        ValidationError: Bad arguments or stale chunks without force.
        ProcessLaunchError: A tool could not be started.
        PipelineError: A tool exited non-zero.
        PipeIOError: A link failed.
    """
    config = config or load_config()
    size = chunk_size if chunk_size is not None else config.chunk_size
    source_path = Path(source).expanduser()

    validate_backup_paths(source_path, target_pattern, size)

    stale = _existing_chunks(target_pattern)
    if len(stale):
        if not force:
            raise ValidationError(
                f"{len(stale)} chunk file(s) already exist for {target_pattern}; "
                "remove them or use force"
            )
        for path in stale:
            logger.info("Removing stale chunk %s", path)
            path.unlink()

    logger.info(
        "Backing up %s to %s* in chunks of %d bytes",
        source_path, target_pattern, size,
    )
    stages = build_backup_stages(
        source_path, size, target_pattern,
        tools=config.tools, suffix_length=config.suffix_length,
    )
    runner = PipelineRunner(
        stages,
        block_size=config.block_size,
        timeout=timeout if timeout is not None else config.timeout,
        cancel=cancel,
    )
    result = runner.run()

    chunks = _existing_chunks(target_pattern).chunks(config.suffix_length)
    total_size = sum(c.size for c in chunks)

    logger.info(
        "Backup complete: %d chunk(s), %d bytes in %.1fs",
        len(chunks), total_size, result.duration_seconds,
    )

    return {
        "chunks": [str(c.path) for c in chunks],
        "chunk_count": len(chunks),
        "total_size": total_size,
        "duration": result.duration_seconds,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "pipeline": result,
    }


def run_restore(
    source: str | Path,
    target: str | Path,
    prefix: Optional[str] = None,
    config: Optional[ChunkVaultConfig] = None,
    cancel: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> dict[str, Any]:
    """Restore a directory tree from encrypted chunk files.

    Args:
        source: Directory holding the chunks.
        target: Existing directory to extract into.
        prefix: Only use chunks named PREFIX<digits>. When omitted every
            file in `source` must be a chunk of the same backup.
        config: Configuration. Defaults to ~/.chunkvault/config.yaml.
        cancel: Event that aborts the run when set.
        timeout: Wall-clock limit in seconds. Defaults to config.

    Returns:
        dict: 'chunks', 'chunk_count', 'total_size', 'target', 'duration',
        'pipeline'.

    Raises:
        ValidationError: Bad arguments.
        ChunkSetError: The chunks break the naming contract.
        ProcessLaunchError: A tool could not be started.
        PipelineError: A tool exited non-zero (e.g. a corrupted chunk).
        PipeIOError: A link failed.
    """
    config = config or load_config()
    source_path = Path(source).expanduser()
    target_path = Path(target).expanduser()

    validate_restore_paths(source_path, target_path)

    chunk_set = ChunkSet.discover(source_path, prefix=prefix)
    chunks = chunk_set.chunks(config.suffix_length)
    total_size = chunk_set.total_size

    logger.info(
        "Restoring %d chunk(s) (%d bytes) from %s into %s",
        len(chunks), total_size, source_path, target_path,
    )
    stages = build_restore_stages(chunk_set, target_path, tools=config.tools)
    runner = PipelineRunner(
        stages,
        block_size=config.block_size,
        timeout=timeout if timeout is not None else config.timeout,
        cancel=cancel,
    )
    result = runner.run()

    logger.info("Restore complete in %.1fs", result.duration_seconds)

    return {
        "chunks": [str(c.path) for c in chunks],
        "chunk_count": len(chunks),
        "total_size": total_size,
        "target": str(target_path),
        "duration": result.duration_seconds,
        "pipeline": result,
    }


def list_chunks(
    source: str | Path,
    prefix: Optional[str] = None,
    suffix_length: Optional[int] = None,
) -> list[dict[str, Any]]:
    """Describe the chunk files of a backup, in restore order.

    Returns:
        list[dict]: 'filename', 'index', 'size', 'modified' per chunk.

    Raises:
        ChunkSetError: The chunks break the naming contract.
    """
    chunks = ChunkSet.discover(source, prefix=prefix).chunks(suffix_length)
    return [
        {
            "filepath": str(c.path),
            "filename": c.name,
            "index": c.index,
            "size": c.size,
            "modified": datetime.fromtimestamp(
                c.path.stat().st_mtime, tz=timezone.utc,
            ).isoformat(),
        }
        for c in chunks
    ]
