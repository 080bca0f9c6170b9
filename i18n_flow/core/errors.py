"""Pipeline execution errors."""

from __future__ import annotations

from typing import Optional

from .stages import PipelineStage


class PipelineError(RuntimeError):
    pass


class StageExecutionError(PipelineError):
    """Raised when a stage handler fails; terminates the current pass."""

    def __init__(self, stage: PipelineStage, cause: BaseException, message: Optional[str] = None):
        self.stage = stage
        self.cause = cause
        super().__init__(message or f"Stage '{stage.value}' failed: {cause}")
