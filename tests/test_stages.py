"""Tests for process and in-process stages."""

from __future__ import annotations

import io
import os
import signal
import sys
import threading
from pathlib import Path

import pytest

from chunkvault.pipeline.stages import ProcessStage, TransformStage, passthrough

from conftest import python_stage_argv


def _upper(reader, writer) -> None:
    for block in iter(lambda: reader.read(4096), b""):
        writer.write(block.upper())


def _explode(reader, writer) -> None:
    raise RuntimeError("transform failed")


class TestProcessStage:
    """External program stages."""

    def test_empty_argv_rejected(self) -> None:
        with pytest.raises(ValueError):
            ProcessStage("empty", [])

    def test_argv_stringified(self) -> None:
        stage = ProcessStage("split", ["split", "-b", 100])
        assert stage.argv == ["split", "-b", "100"]

    def test_middle_stage_has_both_pipes(self) -> None:
        stage = ProcessStage(
            "echo", python_stage_argv("import sys; sys.stdout.write(sys.stdin.read())"),
        )
        handle = stage.start()
        assert handle.stdin is not None
        assert handle.stdout is not None

        handle.stdin.write(b"hello")
        handle.stdin.close()
        assert handle.stdout.read() == b"hello"
        handle.stdout.close()
        assert handle.wait(timeout=10) == 0
        assert handle.pid is not None

    def test_first_and_last_inherit(self) -> None:
        stage = ProcessStage("noop", [sys.executable, "-c", "pass"])
        handle = stage.start(first=True, last=True)
        assert handle.stdin is None
        assert handle.stdout is None
        assert handle.wait(timeout=10) == 0

    def test_wait_timeout_returns_none(self) -> None:
        stage = ProcessStage("sleeper", python_stage_argv("import time; time.sleep(30)"))
        handle = stage.start(first=True, last=True)
        try:
            assert handle.wait(timeout=0.1) is None
            assert handle.poll() is None
        finally:
            handle.terminate()
            assert handle.wait(timeout=10) == -signal.SIGTERM

    def test_missing_executable_raises_oserror(self) -> None:
        stage = ProcessStage("ghost", ["/nonexistent/chunkvault-tool"])
        with pytest.raises(FileNotFoundError):
            stage.start()


class TestTransformStage:
    """In-process stages running on a thread."""

    def test_transform_output(self) -> None:
        handle = TransformStage("upper", _upper).start()
        handle.stdin.write(b"chunk vault")
        handle.stdin.close()

        assert handle.stdout.read() == b"CHUNK VAULT"
        handle.stdout.close()
        assert handle.wait(timeout=10) == 0
        assert handle.pid is None

    def test_transform_exception_is_exit_one(self) -> None:
        handle = TransformStage("boom", _explode).start()
        handle.stdin.close()
        handle.stdout.read()
        handle.stdout.close()

        assert handle.wait(timeout=10) == 1
        assert isinstance(handle.error, RuntimeError)

    def test_first_transform_reads_our_stdin(self, tmp_path: Path) -> None:
        feed = tmp_path / "stdin.bin"
        feed.write_bytes(b"from the terminal")
        saved = os.dup(0)
        try:
            with open(feed, "rb") as f:
                os.dup2(f.fileno(), 0)
            handle = TransformStage("copy", passthrough).start(first=True)
        finally:
            os.dup2(saved, 0)
            os.close(saved)

        assert handle.stdin is None
        assert handle.stdout.read() == b"from the terminal"
        handle.stdout.close()
        assert handle.wait(timeout=10) == 0

    def test_closed_reader_is_broken_pipe(self) -> None:
        """Writing after the downstream end closed reports SIGPIPE."""
        def flood(reader, writer) -> None:
            for _ in range(1000):
                writer.write(b"z" * 65536)
                writer.flush()

        handle = TransformStage("flood", flood).start(first=True)
        handle.stdout.close()

        assert handle.wait(timeout=10) == -signal.SIGPIPE

    def test_terminate_stops_waiting_transform(self) -> None:
        """A transform blocked between blocks returns once stopped."""
        def idle(reader, writer, stop) -> None:
            while not stop.wait(0.05):
                pass

        handle = TransformStage("idle", idle).start()
        assert handle.wait(timeout=0.2) is None

        handle.terminate()
        assert handle.stop_requested
        assert handle.wait(timeout=10) == -signal.SIGTERM
        handle.stdin.close()
        handle.stdout.close()

    def test_passthrough_honours_stop(self) -> None:
        stop = threading.Event()
        stop.set()
        reader = io.BytesIO(b"never copied")
        writer = io.BytesIO()

        passthrough(reader, writer, stop=stop)
        assert writer.getvalue() == b""

    def test_kill_stops_passthrough(self) -> None:
        handle = TransformStage("copy", passthrough).start()
        handle.stdin.write(b"x" * 100)
        handle.stdin.flush()
        handle.kill()
        handle.stdin.close()
        handle.stdout.read()
        handle.stdout.close()
        assert handle.wait(timeout=10) == -signal.SIGTERM

    def test_argv_label(self) -> None:
        assert TransformStage("upper", _upper).argv == ["<transform upper>"]
