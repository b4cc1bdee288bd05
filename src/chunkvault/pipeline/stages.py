"""
Pipeline stages: anything that consumes and/or produces a byte stream.

A Stage is a recipe; starting it yields a StageHandle with up to two
stream ends (stdin to write into, stdout to read from) and a way to
wait for its exit status. The chain builder only ever talks to the
handle, so an external tool and an in-process transform are
interchangeable links in the same chain.

Two variants ship:
    ProcessStage:   an external program started via subprocess.Popen.
    TransformStage: a Python callable run on a thread behind OS pipes.
"""

from __future__ import annotations

import inspect
import logging
import os
import signal
import subprocess
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Sequence

logger = logging.getLogger("chunkvault.pipeline.stages")

DEFAULT_BLOCK_SIZE = 64 * 1024


class StageHandle(ABC):
    """A started stage.

    Attributes:
        name: Stage label used in logs and errors.
        argv: Command line (or a descriptive label for in-process stages).
        stdin: Writable end feeding the stage, or None for the first stage.
        stdout: Readable end of the stage's output, or None for the last stage.
    """

    def __init__(
        self,
        name: str,
        argv: Sequence[str],
        stdin: Optional[BinaryIO],
        stdout: Optional[BinaryIO],
    ):
        self.name = name
        self.argv = list(argv)
        self.stdin = stdin
        self.stdout = stdout

    @property
    @abstractmethod
    def pid(self) -> Optional[int]:
        """OS process id, if the stage is a process."""

    @abstractmethod
    def poll(self) -> Optional[int]:
        """Return the exit status, or None while the stage is running."""

    @abstractmethod
    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for the stage to exit.

        Args:
            timeout: Seconds to wait. None blocks until exit.

        Returns:
            The exit status, or None if the timeout elapsed first.
        """

    @abstractmethod
    def terminate(self) -> None:
        """Ask the stage to stop."""

    @abstractmethod
    def kill(self) -> None:
        """Force the stage to stop."""


class Stage(ABC):
    """Recipe for one link in a chain."""

    def __init__(self, name: str):
        self.name = name

    @property
    @abstractmethod
    def argv(self) -> list[str]:
        """Command line shown in logs and results."""

    @abstractmethod
    def start(self, first: bool = False, last: bool = False) -> StageHandle:
        """Start the stage.

        Args:
            first: The stage has no upstream; it inherits our stdin.
            last: The stage has no downstream; it inherits our stdout.

        Returns:
            A running StageHandle.

        Raises:
            OSError: If the stage could not be started.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, {self.argv!r})"


# ---------------------------------------------------------------------------
# External processes
# ---------------------------------------------------------------------------


class ProcessHandle(StageHandle):
    """Handle around a running subprocess.Popen."""

    def __init__(self, name: str, proc: subprocess.Popen):
        super().__init__(name, proc.args, proc.stdin, proc.stdout)
        self._proc = proc

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid

    def poll(self) -> Optional[int]:
        return self._proc.poll()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        try:
            return self._proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None

    def terminate(self) -> None:
        if self._proc.poll() is None:
            try:
                self._proc.terminate()
            except ProcessLookupError:
                pass

    def kill(self) -> None:
        if self._proc.poll() is None:
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass


class ProcessStage(Stage):
    """An external program.

    stderr is always inherited so the tool's own diagnostics (and any
    passphrase prompt) reach the operator.

    Args:
        name: Stage label, e.g. "archiver".
        argv: Executable followed by its arguments.
        cwd: Optional working directory.
        env: Optional environment. None inherits ours.
    """

    def __init__(
        self,
        name: str,
        argv: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[dict[str, str]] = None,
    ):
        super().__init__(name)
        if not argv:
            raise ValueError(f"Stage '{name}' has an empty command line")
        self._argv = [str(a) for a in argv]
        self.cwd = cwd
        self.env = env

    @property
    def argv(self) -> list[str]:
        return list(self._argv)

    def start(self, first: bool = False, last: bool = False) -> ProcessHandle:
        proc = subprocess.Popen(
            self._argv,
            stdin=None if first else subprocess.PIPE,
            stdout=None if last else subprocess.PIPE,
            stderr=None,
            cwd=str(self.cwd) if self.cwd else None,
            env=self.env,
            close_fds=True,
        )
        logger.debug("Started %s (pid %d): %s", self.name, proc.pid, " ".join(self._argv))
        return ProcessHandle(self.name, proc)


# ---------------------------------------------------------------------------
# In-process transforms
# ---------------------------------------------------------------------------

Transform = Callable[..., None]


def passthrough(
    reader: BinaryIO,
    writer: BinaryIO,
    block_size: int = DEFAULT_BLOCK_SIZE,
    stop: Optional[threading.Event] = None,
) -> None:
    """Copy reader to writer unchanged, giving up early once `stop` is set."""
    read = getattr(reader, "read1", reader.read)
    while stop is None or not stop.is_set():
        block = read(block_size)
        if not block:
            break
        writer.write(block)


def _accepts_stop(fn: Transform) -> bool:
    try:
        return "stop" in inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False


class TransformHandle(StageHandle):
    """Handle around a transform running on a background thread.

    A thread cannot be killed. terminate() and kill() set the stop event,
    which transforms accepting a `stop` argument check between blocks.
    A transform that returns after a stop request reports -SIGTERM.
    """

    def __init__(
        self,
        name: str,
        fn: Transform,
        reader: BinaryIO,
        writer: BinaryIO,
        stdin: Optional[BinaryIO],
        stdout: Optional[BinaryIO],
    ):
        super().__init__(name, [f"<transform {name}>"], stdin, stdout)
        self._fn = fn
        self._reader = reader
        self._writer = writer
        self._returncode: Optional[int] = None
        self._stop = threading.Event()
        self._pass_stop = _accepts_stop(fn)
        self.error: Optional[BaseException] = None
        self._thread = threading.Thread(
            target=self._run, name=f"stage-{name}", daemon=True,
        )
        self._thread.start()

    @property
    def pid(self) -> Optional[int]:
        return None

    @property
    def stop_requested(self) -> bool:
        """Set once terminate() or kill() was called."""
        return self._stop.is_set()

    def _run(self) -> None:
        returncode = 0
        try:
            if self._pass_stop:
                self._fn(self._reader, self._writer, stop=self._stop)
            else:
                self._fn(self._reader, self._writer)
        except BrokenPipeError as exc:
            self.error = exc
            returncode = -signal.SIGPIPE
        except Exception as exc:
            logger.error("Transform %s failed: %s", self.name, exc)
            self.error = exc
            returncode = 1
        for handle in (self._writer, self._reader):
            try:
                handle.close()
            except BrokenPipeError as exc:
                if returncode == 0:
                    self.error = exc
                    returncode = -signal.SIGPIPE
            except OSError as exc:
                if returncode == 0:
                    self.error = exc
                    returncode = 1
        if returncode == 0 and self._stop.is_set():
            returncode = -signal.SIGTERM
        self._returncode = returncode

    def poll(self) -> Optional[int]:
        if self._thread.is_alive():
            return None
        return self._returncode

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        self._thread.join(timeout)
        return self.poll()

    def terminate(self) -> None:
        self._stop.set()

    def kill(self) -> None:
        self._stop.set()


class TransformStage(Stage):
    """A Python callable `fn(reader, writer)` acting as a stage.

    The callable reads its input from `reader` until EOF and writes its
    output to `writer`; both are closed for it afterwards. Returning
    normally is exit status 0, raising is 1 (or -SIGPIPE when the
    downstream reader went away). A callable with a `stop` parameter
    also receives a threading.Event that is set when the chain is torn
    down, and should return soon after.

    The first stage of a chain reads our stdin; the last writes to our
    stdout.

    Args:
        name: Stage label.
        fn: The transform.
    """

    def __init__(self, name: str, fn: Transform):
        super().__init__(name)
        self.fn = fn

    @property
    def argv(self) -> list[str]:
        return [f"<transform {self.name}>"]

    def start(self, first: bool = False, last: bool = False) -> TransformHandle:
        if first:
            reader = os.fdopen(os.dup(0), "rb")
            stdin = None
        else:
            r, w = os.pipe()
            reader = os.fdopen(r, "rb")
            stdin = os.fdopen(w, "wb")

        if last:
            writer = os.fdopen(os.dup(1), "wb")
            stdout = None
        else:
            r, w = os.pipe()
            writer = os.fdopen(w, "wb")
            stdout = os.fdopen(r, "rb")

        return TransformHandle(self.name, self.fn, reader, writer, stdin, stdout)
