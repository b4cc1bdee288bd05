"""
Pipe connector: the copier thread behind every link.

Reads whatever the upstream stage has produced and writes it into
the downstream stage, block by block, until upstream reports EOF.
The destination is closed first so the downstream stage sees end of
input and can exit; then the source is closed. Both are released no
matter how the copy ends, and any error is kept on the connector
for the runner to collect rather than dropped.
"""

from __future__ import annotations

import logging
import threading
from typing import BinaryIO, Optional

from .models import LinkResult
from .stages import DEFAULT_BLOCK_SIZE

logger = logging.getLogger("chunkvault.pipeline.connector")


class PipeIOError(RuntimeError):
    """Raised when a read or write on a link fails mid-stream.

    Attributes:
        link: The "upstream -> downstream" label of the failed link.
        cause: The underlying exception, usually an OSError.
    """

    def __init__(self, link: str, cause: Exception):
        self.link = link
        self.cause = cause
        self.result = None
        super().__init__(f"Link {link} failed: {cause}")


class PipeConnector:
    """Copies one stream into another on a background thread.

    Args:
        source: Readable stream (upstream stage's stdout).
        dest: Writable stream (downstream stage's stdin).
        upstream: Name of the producing stage.
        downstream: Name of the consuming stage.
        block_size: Maximum bytes moved per read.
    """

    def __init__(
        self,
        source: BinaryIO,
        dest: BinaryIO,
        upstream: str = "upstream",
        downstream: str = "downstream",
        block_size: int = DEFAULT_BLOCK_SIZE,
    ):
        if source is None or dest is None:
            raise ValueError(f"Link {upstream} -> {downstream} needs both stream ends")
        if block_size < 1:
            raise ValueError("block_size must be at least 1")
        self._source = source
        self._dest = dest
        self.upstream = upstream
        self.downstream = downstream
        self.block_size = block_size
        self.bytes_copied = 0
        self.error: Optional[PipeIOError] = None
        self._thread = threading.Thread(
            target=self._run,
            name=f"link-{upstream}-{downstream}",
            daemon=True,
        )

    @property
    def name(self) -> str:
        return f"{self.upstream} -> {self.downstream}"

    def start(self) -> "PipeConnector":
        """Start copying. Returns self so it can be chained."""
        self._thread.start()
        return self

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the copier to finish.

        Returns:
            True if the copier has finished.
        """
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def result(self) -> LinkResult:
        return LinkResult(
            upstream=self.upstream,
            downstream=self.downstream,
            bytes_copied=self.bytes_copied,
            error=str(self.error.cause) if self.error else None,
        )

    def raise_for_error(self) -> None:
        """Re-raise the link's I/O error, if any."""
        if self.error is not None:
            raise self.error

    def _copy(self) -> None:
        read = getattr(self._source, "read1", self._source.read)
        while True:
            block = read(self.block_size)
            if not block:
                break
            self._dest.write(block)
            self.bytes_copied += len(block)

    def _run(self) -> None:
        failure: Optional[Exception] = None
        try:
            self._copy()
        except Exception as exc:
            failure = exc
        finally:
            for handle in (self._dest, self._source):
                try:
                    handle.close()
                except Exception as exc:
                    if failure is None:
                        failure = exc

            if failure is not None:
                self.error = PipeIOError(self.name, failure)
                logger.warning(
                    "Link %s aborted after %d bytes: %s",
                    self.name, self.bytes_copied, failure,
                )
            else:
                logger.debug("Link %s finished: %d bytes", self.name, self.bytes_copied)
