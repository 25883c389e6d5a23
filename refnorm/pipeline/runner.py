"""
Normalization Pipeline

Wires identity extraction, duplicate analysis and classification together:
one representative per cluster is classified and its result is attached to
every member of the cluster.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import structlog

from ..classification import HierarchicalClassifier
from ..config import PipelineSettings
from ..deduplication import DuplicateAnalyzer, merged_count
from ..models import ClassificationResult, DuplicateGroup, Record
from .stages import (
    STAGE_DUPLICATE_ANALYSIS,
    STAGE_IDENTITY_EXTRACTION,
    STAGE_MASTER_SELECTION,
    StageTracker,
)

logger = structlog.get_logger(__name__)


@dataclass
class PipelineResult:
    """Everything one pipeline run produced."""
    groups: List[DuplicateGroup]
    summary: Dict[str, int]
    assignments: Dict[int, ClassificationResult] = field(default_factory=dict)
    stages: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups": [
                dict(group.to_dict(), merged_count=merged_count(group)) for group in self.groups
            ],
            "summary": self.summary,
            "assignments": {
                str(record_id): result.to_dict() for record_id, result in self.assignments.items()
            },
            "stages": self.stages,
        }


@dataclass
class _Unit:
    """One classification job: a representative and the records that share its result."""
    record: Record
    member_ids: List[int]


class NormalizationPipeline:
    """Deduplicate, then classify once per cluster."""

    def __init__(
        self,
        analyzer: DuplicateAnalyzer,
        classifier: HierarchicalClassifier,
        settings: Optional[PipelineSettings] = None,
        tracker: Optional[StageTracker] = None,
    ):
        self.analyzer = analyzer
        self.classifier = classifier
        self.settings = settings or PipelineSettings()
        self.tracker = tracker or StageTracker()

    async def run(self, records: Iterable[Record]) -> PipelineResult:
        records = list(records)
        self.tracker.reset(len(records))
        log = logger.bind(records=len(records))
        log.info("pipeline_started")

        # Every record passes through extraction, whether or not it carries identity
        groups = self.analyzer.analyze(records)
        self.tracker.record(STAGE_IDENTITY_EXTRACTION, len(records))
        self.tracker.record(STAGE_DUPLICATE_ANALYSIS, len(records))
        summary = self.analyzer.summarize(groups)
        log.info("duplicates_found", **summary)

        units = self._units(records, groups)
        self.tracker.record(STAGE_MASTER_SELECTION, len(records))

        assignments = await self._classify_all(units)

        log.info(
            "pipeline_completed",
            groups=len(groups),
            classified=len(units),
            assigned=len(assignments),
        )
        return PipelineResult(
            groups=groups,
            summary=summary,
            assignments=assignments,
            stages=self.tracker.snapshot(),
        )

    @staticmethod
    def _units(records: List[Record], groups: List[DuplicateGroup]) -> List[_Unit]:
        by_id = {}
        for record in records:
            by_id.setdefault(record.id, record)

        units = []
        grouped = set()
        for group in groups:
            master = group.master_item or group.items[0]
            units.append(_Unit(record=by_id[master.id], member_ids=group.member_ids))
            grouped.update(group.member_ids)

        for record_id, record in by_id.items():
            if record_id not in grouped:
                units.append(_Unit(record=record, member_ids=[record_id]))
        return units

    async def _classify_all(self, units: List[_Unit]) -> Dict[int, ClassificationResult]:
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_classifications)

        async def classify(unit: _Unit) -> ClassificationResult:
            category = unit.record.category or self.settings.default_category
            async with semaphore:
                result = await self.classifier.classify(unit.record.name, category)
            self.tracker.record_classification(result, count=len(unit.member_ids))
            return result

        results = await asyncio.gather(*(classify(unit) for unit in units))

        assignments: Dict[int, ClassificationResult] = {}
        for unit, result in zip(units, results):
            for member_id in unit.member_ids:
                assignments[member_id] = result
        return assignments
