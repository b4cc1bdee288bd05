"""
Pipeline runner: one pass/fail answer for a whole chain.

Builds the chain, waits for the last stage to exit, then reaps every
upstream stage and joins every connector before deciding. A run only
succeeds when every stage exited 0 AND every link moved all of its
bytes; the exit code of the last stage alone is never trusted.

Runs can be cancelled through a threading.Event or bounded by a
timeout. Either way every stage is terminated, the connectors unwind
on the closed pipes, and PipelineCancelled is raised. Partial output
is left on disk for inspection.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional, Sequence

from .chain import ProcessChain
from .models import PipelineResult
from .stages import DEFAULT_BLOCK_SIZE, Stage

logger = logging.getLogger("chunkvault.pipeline.runner")


class PipelineError(RuntimeError):
    """Raised when a stage exits with a non-zero status.

    Attributes:
        stage: Name of the stage blamed for the failure.
        returncode: Its exit status (negative: killed by that signal).
        result: The full PipelineResult, for diagnostics.
    """

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        returncode: Optional[int] = None,
        result: Optional[PipelineResult] = None,
    ):
        self.stage = stage
        self.returncode = returncode
        self.result = result
        super().__init__(message)


class PipelineCancelled(PipelineError):
    """Raised when a run was cancelled or timed out."""


class PipelineRunner:
    """Drives a chain of stages to completion.

    Args:
        stages: Stages in stream order.
        block_size: Copy block size for every link.
        timeout: Optional wall-clock limit in seconds.
        cancel: Optional event; setting it aborts the run.
        poll_interval: How often the wait loop checks for cancellation.
        grace_period: Seconds a stage gets to exit after terminate().
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        block_size: int = DEFAULT_BLOCK_SIZE,
        timeout: Optional[float] = None,
        cancel: Optional[threading.Event] = None,
        poll_interval: float = 0.1,
        grace_period: float = 5.0,
    ):
        self.stages = list(stages)
        self.block_size = block_size
        self.timeout = timeout
        self.cancel = cancel
        self.poll_interval = poll_interval
        self.grace_period = grace_period

    def run(self) -> PipelineResult:
        """Run the chain.

        Returns:
            PipelineResult for a fully successful run.

        Raises:
            ProcessLaunchError: A stage could not be started.
            PipelineError: A stage exited non-zero.
            PipelineCancelled: The run was cancelled or timed out.
            PipeIOError: Every stage exited 0 but a link failed.
        """
        started = time.monotonic()
        chain = ProcessChain.build(self.stages, block_size=self.block_size)

        try:
            cancelled = not self._wait(chain, started)
        except KeyboardInterrupt:
            logger.warning("Interrupted; terminating %d stages", len(chain.handles))
            chain.terminate(self.grace_period)
            chain.join_links(timeout=self.grace_period)
            raise

        if cancelled:
            chain.terminate(self.grace_period)
            if not chain.wait_all(timeout=self.grace_period):
                logger.error("Some stages were still running after cancellation")
            if not chain.join_links(timeout=self.grace_period):
                logger.error("Some links were still copying after cancellation")
        else:
            chain.wait_all()
            chain.join_links()

        result = chain.result(
            duration=time.monotonic() - started,
            cancelled=cancelled,
        )
        self._raise_for_result(result, chain)

        logger.info(
            "Pipeline finished in %.1fs (%s)",
            result.duration_seconds,
            ", ".join(f"{link.name}: {link.bytes_copied} bytes" for link in result.links),
        )
        return result

    def _should_stop(self, started: float) -> bool:
        if self.cancel is not None and self.cancel.is_set():
            logger.warning("Pipeline cancelled")
            return True
        if self.timeout is not None and time.monotonic() - started > self.timeout:
            logger.warning("Pipeline timed out after %.1fs", self.timeout)
            return True
        return False

    def _wait(self, chain: ProcessChain, started: float) -> bool:
        """Wait for the last stage, then the rest, watching for cancellation.

        Returns:
            True if every stage exited on its own, False if the run must
            be torn down.
        """
        for handle in reversed(chain.handles):
            while handle.wait(timeout=self.poll_interval) is None:
                if self._should_stop(started):
                    return False
        return True

    def _raise_for_result(self, result: PipelineResult, chain: ProcessChain) -> None:
        if result.cancelled:
            raise PipelineCancelled(
                "Pipeline cancelled before completion",
                result=result,
            )

        failure = result.first_failure()
        if failure is not None:
            for link in result.failed_links:
                logger.debug("Link %s also failed: %s", link.name, link.error)
            logger.error(
                "Stage %s exited with status %s", failure.name, failure.returncode,
            )
            raise PipelineError(
                f"Stage '{failure.name}' exited with status {failure.returncode}",
                stage=failure.name,
                returncode=failure.returncode,
                result=result,
            )

        for connector in chain.connectors:
            if connector.error is not None:
                connector.error.result = result
                logger.error("%s", connector.error)
                connector.raise_for_error()


def run_pipeline(stages: Sequence[Stage], **kwargs) -> PipelineResult:
    """Convenience wrapper: PipelineRunner(stages, **kwargs).run()."""
    return PipelineRunner(stages, **kwargs).run()
