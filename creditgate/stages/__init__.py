"""Staged workflow gating."""

from creditgate.stages.tracker import StageProgressTracker
from creditgate.stages.types import DEFAULT_STAGES, Stage, StageDefinition, StageId, StageState

__all__ = [
    "StageProgressTracker",
    "StageId",
    "StageState",
    "Stage",
    "StageDefinition",
    "DEFAULT_STAGES",
]
