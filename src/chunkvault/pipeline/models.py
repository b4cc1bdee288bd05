"""
Pydantic models describing the outcome of a pipeline run.

One StageResult per stage, one LinkResult per link between
adjacent stages, rolled up into a single PipelineResult.
"""

from __future__ import annotations

import signal
from typing import Optional

from pydantic import BaseModel, Field


class StageResult(BaseModel):
    """Exit status of one stage in a chain."""

    name: str
    argv: list[str] = Field(default_factory=list)
    pid: Optional[int] = None
    returncode: Optional[int] = None

    @property
    def ok(self) -> bool:
        """Whether the stage exited cleanly."""
        return self.returncode == 0

    @property
    def broken_pipe(self) -> bool:
        """Whether the stage was killed by SIGPIPE (its reader went away)."""
        return self.returncode in (-signal.SIGPIPE, 128 + signal.SIGPIPE)


class LinkResult(BaseModel):
    """Transfer statistics for one link between two stages."""

    upstream: str
    downstream: str
    bytes_copied: int = 0
    error: Optional[str] = None

    @property
    def name(self) -> str:
        """Human readable link label."""
        return f"{self.upstream} -> {self.downstream}"

    @property
    def ok(self) -> bool:
        """Whether every byte was moved without an I/O error."""
        return self.error is None


class PipelineResult(BaseModel):
    """Combined result of one pipeline run."""

    stages: list[StageResult] = Field(default_factory=list)
    links: list[LinkResult] = Field(default_factory=list)
    duration_seconds: float = 0.0
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        """True if every stage exited 0 and every link completed."""
        return (
            not self.cancelled
            and all(s.ok for s in self.stages)
            and all(link.ok for link in self.links)
        )

    @property
    def failed_stages(self) -> list[StageResult]:
        """Stages that exited with a non-zero status, in chain order."""
        return [s for s in self.stages if not s.ok]

    @property
    def failed_links(self) -> list[LinkResult]:
        """Links that aborted on an I/O error, in chain order."""
        return [link for link in self.links if not link.ok]

    def first_failure(self) -> Optional[StageResult]:
        """Pick the stage most likely to be the root cause of a failure.

        A stage killed by SIGPIPE only died because a downstream stage
        stopped reading, so the first failure that is not a broken pipe
        wins. Falls back to the first failure in chain order.

        Returns:
            The failing StageResult, or None if every stage succeeded.
        """
        failed = self.failed_stages
        if not failed:
            return None
        for stage in failed:
            if not stage.broken_pipe:
                return stage
        return failed[0]
