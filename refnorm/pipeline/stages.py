"""Per-stage completion counters reported to the dashboard layer."""

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models import ClassificationResult, PathSource

STAGE_IDENTITY_EXTRACTION = "identity_extraction"
STAGE_DUPLICATE_ANALYSIS = "duplicate_analysis"
STAGE_MASTER_SELECTION = "master_selection"
STAGE_CLASSIFICATION = "classification"
STAGE_FALLBACK = "fallback"

STAGES = (
    STAGE_IDENTITY_EXTRACTION,
    STAGE_DUPLICATE_ANALYSIS,
    STAGE_MASTER_SELECTION,
    STAGE_CLASSIFICATION,
    STAGE_FALLBACK,
)


class StageTracker:
    """Thread-safe stage counters; safe to feed from worker threads and tasks."""

    def __init__(self, total_records: int = 0):
        self._lock = threading.Lock()
        self._clear(total_records)
        self._last_updated: Optional[datetime] = None

    def _clear(self, total_records: int) -> None:
        self._total = max(int(total_records), 0)
        self._completed: Dict[str, int] = {stage: 0 for stage in STAGES}
        self._errors: Dict[str, int] = {stage: 0 for stage in STAGES}
        self._confidence_sum = 0.0
        self._classified = 0
        self._manual_review = 0
        self._ai_processed = 0

    def _touch(self) -> None:
        self._last_updated = datetime.utcnow()

    def _check(self, stage: str) -> None:
        if stage not in self._completed:
            raise ValueError(f"Unknown pipeline stage: {stage}")

    def reset(self, total_records: int = 0) -> None:
        """Zero every counter for a new run."""
        with self._lock:
            self._clear(total_records)
            self._touch()

    def set_total(self, total_records: int) -> None:
        with self._lock:
            self._total = max(int(total_records), 0)
            self._touch()

    def record(self, stage: str, count: int = 1) -> None:
        """Count records that completed a stage."""
        self._check(stage)
        with self._lock:
            self._completed[stage] += count
            self._touch()

    def record_error(self, stage: str, count: int = 1) -> None:
        self._check(stage)
        with self._lock:
            self._errors[stage] += count
            self._touch()

    def record_classification(self, result: ClassificationResult, count: int = 1) -> None:
        """Count ``count`` records that received ``result``."""
        with self._lock:
            self._completed[STAGE_CLASSIFICATION] += count
            if result.path_source == PathSource.FALLBACK:
                self._completed[STAGE_FALLBACK] += count
            if result.path_source == PathSource.AI:
                self._ai_processed += count
            if result.manual_review_required:
                self._manual_review += count
            self._confidence_sum += result.confidence * count
            self._classified += count
            self._touch()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            total = self._total
            stages: List[Dict[str, Any]] = []
            for number, stage in enumerate(STAGES, start=1):
                completed = self._completed[stage]
                progress = min(completed / total * 100, 100.0) if total else 0.0
                stages.append({
                    "number": number,
                    "name": stage,
                    "completed": completed,
                    "total": total,
                    "errors": self._errors[stage],
                    "progress": round(progress, 2),
                })
            avg_confidence = self._confidence_sum / self._classified if self._classified else 0.0
            return {
                "total_records": total,
                "stages": stages,
                "manual_review_required": self._manual_review,
                "avg_confidence": avg_confidence,
                "ai_processed_count": self._ai_processed,
                "last_updated": self._last_updated.isoformat() if self._last_updated else None,
            }
