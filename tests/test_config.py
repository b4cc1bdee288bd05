"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from chunkvault.config import config_path, load_config, save_config
from chunkvault.models import DEFAULT_CHUNK_SIZE, ChunkVaultConfig, ToolsConfig


class TestLoadConfig:
    def test_defaults_when_missing(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)
        assert config.chunk_size == DEFAULT_CHUNK_SIZE == 1_000_000_000
        assert config.suffix_length == 6
        assert config.tools.gpg == "gpg"
        assert config.tools.cipher_algo == "AES256"
        assert config.timeout is None

    def test_reads_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "config.yaml").write_text(yaml.dump({
            "chunk_size": 4096,
            "timeout": 600,
            "tools": {"gpg": "/usr/local/bin/gpg2", "passphrase_file": "~/secret"},
        }))

        config = load_config(tmp_path)
        assert config.chunk_size == 4096
        assert config.timeout == 600
        assert config.tools.gpg == "/usr/local/bin/gpg2"
        assert config.tools.passphrase_file == Path("~/secret")
        assert config.tools.tar == "tar"

    def test_empty_file(self, tmp_path: Path) -> None:
        (tmp_path / "config.yaml").write_text("")
        assert load_config(tmp_path) == ChunkVaultConfig()

    def test_broken_yaml_falls_back(self, tmp_path: Path) -> None:
        (tmp_path / "config.yaml").write_text("chunk_size: [unclosed\n")
        assert load_config(tmp_path).chunk_size == DEFAULT_CHUNK_SIZE

    def test_invalid_value_falls_back(self, tmp_path: Path) -> None:
        (tmp_path / "config.yaml").write_text("chunk_size: 0\n")
        assert load_config(tmp_path).chunk_size == DEFAULT_CHUNK_SIZE

    def test_non_mapping_falls_back(self, tmp_path: Path) -> None:
        (tmp_path / "config.yaml").write_text("- just\n- a list\n")
        assert load_config(tmp_path) == ChunkVaultConfig()

    def test_save_roundtrip(self, tmp_path: Path) -> None:
        config = ChunkVaultConfig(chunk_size=123, tools=ToolsConfig(split="gsplit"))
        path = save_config(config, tmp_path / "home")

        assert path == config_path(tmp_path / "home")
        loaded = load_config(tmp_path / "home")
        assert loaded.chunk_size == 123
        assert loaded.tools.split == "gsplit"


class TestModels:
    def test_rejects_non_positive(self) -> None:
        with pytest.raises(ValidationError):
            ChunkVaultConfig(suffix_length=0)
        with pytest.raises(ValidationError):
            ChunkVaultConfig(block_size=-1)
