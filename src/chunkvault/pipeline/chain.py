"""
Process chain builder.

Starts the stages of a chain one after another and, as soon as both
ends of a link exist, starts the connector for it. Every link is
being drained before any stage can fill a pipe buffer and block, so
the chain cannot deadlock on its own plumbing.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .connector import PipeConnector
from .models import PipelineResult, StageResult
from .stages import DEFAULT_BLOCK_SIZE, Stage, StageHandle

logger = logging.getLogger("chunkvault.pipeline.chain")


class ProcessLaunchError(RuntimeError):
    """Raised when a stage's executable cannot be started.

    Attributes:
        stage: Name of the stage that failed to start.
        argv: The command line that was attempted.
        errno: OS error number, or None when the command line itself was
            rejected (e.g. an argument containing a NUL byte).
        strerror: OS error message.
    """

    def __init__(self, stage: str, argv: Sequence[str], cause: Exception):
        self.stage = stage
        self.argv = list(argv)
        self.errno = getattr(cause, "errno", None)
        self.strerror = getattr(cause, "strerror", None) or str(cause)
        program = self.argv[0] if self.argv else "?"
        detail = self.strerror if self.errno is None else f"[Errno {self.errno}] {self.strerror}"
        super().__init__(f"Could not start stage '{stage}' ({program}): {detail}")


class ProcessChain:
    """A running chain: one handle per stage, one connector per link.

    Use ProcessChain.build() to create one.
    """

    def __init__(
        self,
        handles: list[StageHandle],
        connectors: list[PipeConnector],
    ):
        self.handles = handles
        self.connectors = connectors

    @classmethod
    def build(
        cls,
        stages: Sequence[Stage],
        block_size: int = DEFAULT_BLOCK_SIZE,
    ) -> "ProcessChain":
        """Start every stage and wire every link.

        Args:
            stages: Stages in stream order. At least two.
            block_size: Copy block size for the connectors.

        Returns:
            The running ProcessChain.

        Raises:
            ValueError: If fewer than two stages are given.
            ProcessLaunchError: If a stage cannot be started. Stages that
                were already running are terminated and reaped first.
        """
        if len(stages) < 2:
            raise ValueError(f"A chain needs at least 2 stages, got {len(stages)}")

        handles: list[StageHandle] = []
        connectors: list[PipeConnector] = []
        last_index = len(stages) - 1

        for index, stage in enumerate(stages):
            try:
                handle = stage.start(first=index == 0, last=index == last_index)
            except (OSError, ValueError) as exc:
                error = ProcessLaunchError(stage.name, stage.argv, exc)
                logger.error("%s", error)
                chain = cls(handles, connectors)
                chain._abort()
                raise error from exc

            handles.append(handle)
            if index > 0:
                upstream = handles[index - 1]
                connector = PipeConnector(
                    upstream.stdout,
                    handle.stdin,
                    upstream=upstream.name,
                    downstream=handle.name,
                    block_size=block_size,
                )
                connectors.append(connector.start())

        logger.info(
            "Chain started: %s",
            " | ".join(h.name for h in handles),
        )
        return cls(handles, connectors)

    def _abort(self) -> None:
        """Tear down a partially built chain after a launch failure."""
        if self.handles:
            dangling = self.handles[-1].stdout
            if dangling is not None:
                # Nothing reads it yet; close so the stage sees EPIPE.
                dangling.close()
        self.terminate()
        self.join_links(timeout=5.0)

    def terminate(self, grace_period: float = 5.0) -> None:
        """Stop every stage still running.

        Sends terminate() to each live stage, waits up to `grace_period`
        seconds for each, then kills whatever is left. A stage that
        outlives the kill by another grace period is logged and left
        behind rather than waited on forever.
        """
        for handle in self.handles:
            if handle.poll() is None:
                logger.debug("Terminating %s", handle.name)
                handle.terminate()
        for handle in self.handles:
            if handle.wait(timeout=grace_period) is None:
                logger.warning("Stage %s ignored terminate; killing", handle.name)
                handle.kill()
                if handle.wait(timeout=grace_period) is None:
                    logger.error("Stage %s is still running after kill", handle.name)

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        """Wait for every stage, last first.

        Returns:
            True if every stage has exited.
        """
        for handle in reversed(self.handles):
            if handle.wait(timeout=timeout) is None:
                return False
        return True

    def join_links(self, timeout: Optional[float] = None) -> bool:
        """Wait for every connector.

        Returns:
            True if every connector has finished.
        """
        return all(c.join(timeout) for c in self.connectors)

    def result(self, duration: float = 0.0, cancelled: bool = False) -> PipelineResult:
        """Snapshot the exit status of every stage and link."""
        return PipelineResult(
            stages=[
                StageResult(
                    name=h.name,
                    argv=h.argv,
                    pid=h.pid,
                    returncode=h.poll(),
                )
                for h in self.handles
            ],
            links=[c.result() for c in self.connectors],
            duration_seconds=duration,
            cancelled=cancelled,
        )
