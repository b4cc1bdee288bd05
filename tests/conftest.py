"""Shared test fixtures for chunkvault."""

from __future__ import annotations

import random
import shutil
import sys
from pathlib import Path

import pytest

from chunkvault.models import ChunkVaultConfig, ToolsConfig

requires_coreutils = pytest.mark.skipif(
    not all(shutil.which(t) for t in ("tar", "split", "cat", "sh", "gzip")),
    reason="needs tar, gzip, split, cat and sh",
)


def python_stage_argv(code: str, *args: str) -> list[str]:
    """Command line running `code` in a fresh interpreter."""
    return [sys.executable, "-c", code, *args]


def snapshot_tree(root: Path) -> dict[str, bytes]:
    """Map every file under root (relative path) to its contents."""
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


@pytest.fixture
def fake_gpg(tmp_path: Path) -> Path:
    """A stand-in for gpg that passes its input through unchanged."""
    script = tmp_path / "bin" / "fake-gpg"
    script.parent.mkdir()
    script.write_text("#!/bin/sh\nexec cat\n")
    script.chmod(0o755)
    return script


@pytest.fixture
def config(fake_gpg: Path) -> ChunkVaultConfig:
    """Config wired to the pass-through gpg."""
    return ChunkVaultConfig(tools=ToolsConfig(gpg=str(fake_gpg)))


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A small directory tree with nested, empty and binary files."""
    root = tmp_path / "source"
    (root / "docs" / "notes").mkdir(parents=True)
    (root / "photos").mkdir()
    (root / "docs" / "readme.txt").write_text("chunkvault test tree\n")
    (root / "docs" / "notes" / "todo.md").write_text("- back up\n- restore\n")
    (root / "docs" / "empty.txt").write_bytes(b"")
    (root / "photos" / "raw.bin").write_bytes(random.Random(7).randbytes(200_000))
    (root / "top.json").write_text('{"name": "chunkvault"}')
    return root


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    """Empty directory for chunk files."""
    path = tmp_path / "chunks"
    path.mkdir()
    return path


@pytest.fixture
def restore_dir(tmp_path: Path) -> Path:
    """Empty directory to restore into."""
    path = tmp_path / "restored"
    path.mkdir()
    return path


@pytest.fixture
def chunkvault_home(tmp_path: Path, fake_gpg: Path) -> Path:
    """A chunkvault home whose config.yaml points gpg at the fake."""
    import yaml

    home = tmp_path / ".chunkvault"
    home.mkdir()
    (home / "config.yaml").write_text(
        yaml.dump({"tools": {"gpg": str(fake_gpg)}}, default_flow_style=False)
    )
    return home


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Never read the real ~/.chunkvault during tests."""
    monkeypatch.setenv("CHUNKVAULT_HOME", str(tmp_path / ".default-home"))
    monkeypatch.setattr("chunkvault.config.CHUNKVAULT_HOME", str(tmp_path / ".default-home"))
