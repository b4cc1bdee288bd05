"""
The process pipeline engine.

Stages are started in order, adjacent stages are joined by copier
threads, and the runner turns the whole chain into one result.
"""

from .chain import ProcessChain, ProcessLaunchError
from .connector import PipeConnector, PipeIOError
from .models import LinkResult, PipelineResult, StageResult
from .runner import PipelineCancelled, PipelineError, PipelineRunner, run_pipeline
from .stages import (
    DEFAULT_BLOCK_SIZE,
    ProcessStage,
    Stage,
    StageHandle,
    TransformStage,
    passthrough,
)

__all__ = [
    "DEFAULT_BLOCK_SIZE",
    "LinkResult",
    "PipeConnector",
    "PipeIOError",
    "PipelineCancelled",
    "PipelineError",
    "PipelineResult",
    "PipelineRunner",
    "ProcessChain",
    "ProcessLaunchError",
    "ProcessStage",
    "Stage",
    "StageHandle",
    "StageResult",
    "TransformStage",
    "passthrough",
    "run_pipeline",
]
