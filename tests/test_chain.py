"""Tests for the process chain builder."""

from __future__ import annotations

import errno
import hashlib
import time
from pathlib import Path

import pytest

from chunkvault.pipeline.chain import ProcessChain, ProcessLaunchError
from chunkvault.pipeline.stages import ProcessStage, TransformStage, passthrough

from conftest import python_stage_argv

PRODUCE = (
    "import sys\n"
    "n = int(sys.argv[1])\n"
    "block = bytes(range(256)) * 256\n"
    "out = sys.stdout.buffer\n"
    "while n > 0:\n"
    "    out.write(block[:n])\n"
    "    n -= len(block)\n"
)

DIGEST_TO_FILE = (
    "import hashlib, sys\n"
    "h = hashlib.sha256()\n"
    "size = 0\n"
    "for block in iter(lambda: sys.stdin.buffer.read(65536), b''):\n"
    "    h.update(block)\n"
    "    size += len(block)\n"
    "open(sys.argv[1], 'w').write(f'{size} {h.hexdigest()}')\n"
)

CAT = (
    "import sys\n"
    "for block in iter(lambda: sys.stdin.buffer.read1(65536), b''):\n"
    "    sys.stdout.buffer.write(block)\n"
)


def expected_digest(size: int) -> str:
    block = bytes(range(256)) * 256
    h = hashlib.sha256()
    remaining = size
    while remaining > 0:
        h.update(block[:remaining])
        remaining -= len(block)
    return f"{size} {h.hexdigest()}"


class RecordingStage(ProcessStage):
    """ProcessStage that keeps its handle for later inspection."""

    def start(self, first: bool = False, last: bool = False):
        self.handle = super().start(first=first, last=last)
        return self.handle


class TestBuild:
    """Starting stages and wiring links."""

    def test_needs_two_stages(self) -> None:
        with pytest.raises(ValueError, match="at least 2"):
            ProcessChain.build([ProcessStage("only", python_stage_argv("pass"))])

    def test_two_stage_chain(self, tmp_path: Path) -> None:
        out = tmp_path / "digest.txt"
        chain = ProcessChain.build([
            ProcessStage("producer", python_stage_argv(PRODUCE, "1000000")),
            ProcessStage("consumer", python_stage_argv(DIGEST_TO_FILE, str(out))),
        ])

        assert chain.wait_all(timeout=30)
        assert chain.join_links(timeout=30)
        assert len(chain.connectors) == 1
        assert out.read_text() == expected_digest(1_000_000)

    def test_one_connector_per_link(self, tmp_path: Path) -> None:
        out = tmp_path / "digest.txt"
        chain = ProcessChain.build([
            ProcessStage("producer", python_stage_argv(PRODUCE, "300000")),
            ProcessStage("cat", python_stage_argv(CAT)),
            TransformStage("copy", passthrough),
            ProcessStage("consumer", python_stage_argv(DIGEST_TO_FILE, str(out))),
        ])
        chain.wait_all(timeout=30)
        chain.join_links(timeout=30)

        assert [c.name for c in chain.connectors] == [
            "producer -> cat", "cat -> copy", "copy -> consumer",
        ]
        assert all(c.bytes_copied == 300_000 for c in chain.connectors)
        assert out.read_text() == expected_digest(300_000)

    def test_result_snapshot(self, tmp_path: Path) -> None:
        out = tmp_path / "digest.txt"
        chain = ProcessChain.build([
            ProcessStage("producer", python_stage_argv(PRODUCE, "10")),
            ProcessStage("consumer", python_stage_argv(DIGEST_TO_FILE, str(out))),
        ])
        chain.wait_all()
        chain.join_links()

        result = chain.result(duration=1.5)
        assert [s.name for s in result.stages] == ["producer", "consumer"]
        assert all(s.returncode == 0 for s in result.stages)
        assert result.links[0].bytes_copied == 10
        assert result.duration_seconds == 1.5
        assert result.succeeded


class TestLaunchFailure:
    """A stage that cannot start aborts the whole chain."""

    def test_missing_executable(self) -> None:
        with pytest.raises(ProcessLaunchError) as info:
            ProcessChain.build([
                ProcessStage("producer", python_stage_argv(PRODUCE, "10")),
                ProcessStage("encryptor", ["/nonexistent/gpg-for-tests"]),
            ])

        assert info.value.stage == "encryptor"
        assert info.value.errno == errno.ENOENT
        assert "/nonexistent/gpg-for-tests" in str(info.value)

    def test_started_siblings_are_reaped(self) -> None:
        first = RecordingStage("sleeper", python_stage_argv("import time; time.sleep(60)"))
        second = RecordingStage("cat", python_stage_argv(CAT))

        started = time.monotonic()
        with pytest.raises(ProcessLaunchError):
            ProcessChain.build([
                first,
                second,
                ProcessStage("splitter", ["/nonexistent/split-for-tests"]),
            ])

        assert time.monotonic() - started < 30
        assert first.handle.poll() is not None
        assert second.handle.poll() is not None

    def test_permission_denied(self, tmp_path: Path) -> None:
        script = tmp_path / "not-executable"
        script.write_text("#!/bin/sh\n")
        script.chmod(0o644)

        with pytest.raises(ProcessLaunchError) as info:
            ProcessChain.build([
                ProcessStage("producer", python_stage_argv(PRODUCE, "10")),
                ProcessStage("locked", [str(script)]),
            ])
        assert info.value.errno == errno.EACCES

    def test_rejected_command_line_reaps_siblings(self) -> None:
        """Popen refuses a NUL byte with ValueError; still a launch failure."""
        first = RecordingStage("sleeper", python_stage_argv("import time; time.sleep(60)"))

        with pytest.raises(ProcessLaunchError) as info:
            ProcessChain.build([
                first,
                ProcessStage("encryptor", ["gpg", "--passphrase", "bad\0value"]),
            ])

        assert info.value.stage == "encryptor"
        assert info.value.errno is None
        assert first.handle.poll() is not None


class TestTerminate:
    """Tearing a running chain down."""

    def test_terminate_stops_everything(self) -> None:
        chain = ProcessChain.build([
            ProcessStage("sleeper", python_stage_argv("import time; time.sleep(60)")),
            ProcessStage("cat", python_stage_argv(CAT)),
        ])
        chain.terminate(grace_period=5)

        assert all(h.poll() is not None for h in chain.handles)
        assert chain.join_links(timeout=10)
