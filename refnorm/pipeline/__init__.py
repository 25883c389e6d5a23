"""Normalization pipeline and stage progress tracking."""

from .stages import StageTracker, STAGES
from .runner import NormalizationPipeline, PipelineResult

__all__ = [
    "StageTracker",
    "STAGES",
    "NormalizationPipeline",
    "PipelineResult",
]
