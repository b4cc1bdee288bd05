"""
Chunk files and the ordering contract between backup and restore.

Backup asks split for fixed-width decimal suffixes, so the chunks of
one backup are named PREFIX000000, PREFIX000001, ... and sorting them
by filename gives exactly the order they were written in. Restore
relies on that and nothing else: chunks are ordered by name, never
by modification time or directory listing order.

ChunkSet.validate() makes the contract explicit: one prefix, one
suffix width, decimal suffixes counting up from zero with no gaps.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .models import DEFAULT_SUFFIX_LENGTH


class ChunkSetError(ValueError):
    """Raised when a set of chunk files breaks the naming contract."""


@dataclass
class Chunk:
    """One chunk file."""

    path: Path
    index: int
    size: int

    @property
    def name(self) -> str:
        return self.path.name


def chunk_name(prefix: str, index: int, suffix_length: int = DEFAULT_SUFFIX_LENGTH) -> str:
    """Filename of the chunk at `index`.

    Raises:
        ChunkSetError: If `index` does not fit in `suffix_length` digits.
    """
    if index < 0 or index >= 10 ** suffix_length:
        raise ChunkSetError(
            f"Chunk index {index} does not fit in {suffix_length} digits"
        )
    return f"{prefix}{index:0{suffix_length}d}"


def expected_chunk_count(total_bytes: int, chunk_size: int) -> int:
    """Number of chunks split writes for a stream of `total_bytes`."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")
    return math.ceil(total_bytes / chunk_size)


def split_target_pattern(target_pattern: str | Path) -> tuple[Path, str]:
    """Split a backup target pattern into (directory, filename prefix).

    "/backups/home.tar.gz.gpg-" -> (Path("/backups"), "home.tar.gz.gpg-")
    "/backups/"                 -> (Path("/backups"), "")
    """
    text = str(target_pattern)
    if text.endswith(os.sep):
        return Path(text).expanduser(), ""
    path = Path(text).expanduser()
    return path.parent, path.name


def _trailing_digits(name: str) -> int:
    count = 0
    for char in reversed(name):
        if not char.isdigit():
            break
        count += 1
    return count


class ChunkSet:
    """The chunk files of one backup, in restore order.

    Args:
        directory: Directory holding the chunks.
        paths: Chunk paths, any order; they are sorted by filename.
        prefix: The shared filename prefix, when known.
    """

    def __init__(self, directory: Path, paths: list[Path], prefix: Optional[str] = None):
        self.directory = directory
        self.paths = sorted(paths, key=lambda p: p.name)
        self.known_prefix = prefix

    @classmethod
    def discover(cls, directory: str | Path, prefix: Optional[str] = None) -> "ChunkSet":
        """Collect chunk files from a directory.

        Args:
            directory: Where the chunks live.
            prefix: Only take files named PREFIX<digits>. When omitted,
                every regular file in the directory is a chunk.

        Returns:
            ChunkSet sorted by filename.

        Raises:
            FileNotFoundError: If the directory does not exist.
        """
        root = Path(directory).expanduser()
        if not root.is_dir():
            raise FileNotFoundError(f"Chunk directory not found: {root}")

        paths = []
        for entry in root.iterdir():
            if not entry.is_file():
                continue
            if prefix is not None:
                suffix = entry.name[len(prefix):]
                if not entry.name.startswith(prefix) or not suffix.isdigit():
                    continue
            paths.append(entry)
        return cls(root, paths, prefix=prefix)

    def __len__(self) -> int:
        return len(self.paths)

    def __iter__(self) -> Iterator[Path]:
        return iter(self.paths)

    @property
    def total_size(self) -> int:
        return sum(p.stat().st_size for p in self.paths)

    def chunks(self, suffix_length: Optional[int] = None) -> list[Chunk]:
        """Validated chunks with their indices and sizes."""
        width = self.validate(suffix_length)
        return [
            Chunk(path=p, index=int(p.name[-width:]), size=p.stat().st_size)
            for p in self.paths
        ]

    def validate(self, suffix_length: Optional[int] = None) -> int:
        """Check the set against the naming contract.

        Args:
            suffix_length: Expected suffix width. When omitted it is
                whatever follows the known prefix, or else the trailing
                digits of the first chunk.

        Returns:
            The suffix width.

        Raises:
            ChunkSetError: If the set is empty, names disagree on prefix
                or width, a suffix is not decimal, or indices have gaps.
        """
        if not self.paths:
            raise ChunkSetError(f"No chunk files found in {self.directory}")

        first = self.paths[0].name
        if suffix_length:
            width = suffix_length
        elif self.known_prefix is not None and first.startswith(self.known_prefix):
            width = len(first) - len(self.known_prefix)
        else:
            width = _trailing_digits(first)
        if width < 1 or len(first) < width:
            raise ChunkSetError(f"Chunk {first} has no numeric suffix")
        prefix = first[:-width]

        for expected, path in enumerate(self.paths):
            name = path.name
            suffix = name[len(prefix):]
            if not name.startswith(prefix) or len(suffix) != width or not suffix.isdigit():
                raise ChunkSetError(
                    f"Chunk {name} does not match {prefix}{'N' * width}"
                )
            if name != chunk_name(prefix, expected, width):
                raise ChunkSetError(
                    f"Chunk sequence broken at {name}: expected index {expected}"
                )
        return width
