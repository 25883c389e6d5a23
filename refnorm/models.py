"""Core data models shared by deduplication, classification and benchmarking."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

DEFAULT_QUALITY_SCORE = 0.5


@dataclass(frozen=True)
class Record:
    """A reference-data entry as extracted from an accounting export."""
    id: int
    name: str
    reference: str = ""
    code: str = ""
    attributes: Mapping[str, Any] = field(default_factory=dict)
    source_database: str = ""
    quality_score: Optional[float] = None
    category: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        """Build a record from a plain mapping (e.g. a JSON export row)."""
        quality = data.get("quality_score")
        return cls(
            id=int(data["id"]),
            name=str(data.get("name", "")),
            reference=str(data.get("reference", "")),
            code=str(data.get("code", "")),
            attributes=dict(data.get("attributes") or {}),
            source_database=str(data.get("source_database", "")),
            quality_score=float(quality) if quality is not None else None,
            category=str(data.get("category", "")),
        )


@dataclass(frozen=True)
class IdentityFields:
    """Normalized identity values pulled from a record; empty string means absent."""
    tax_id: str = ""
    secondary_code: str = ""
    business_id: str = ""
    legal_address: str = ""

    @property
    def has_identity(self) -> bool:
        return bool(self.tax_id or self.business_id)

    @property
    def tax_key(self) -> str:
        """Identity key for the tax scheme: ``tax/secondary`` or the tax ID alone."""
        if not self.tax_id:
            return ""
        if self.secondary_code:
            return f"{self.tax_id}/{self.secondary_code}"
        return self.tax_id


@runtime_checkable
class IdentityBearing(Protocol):
    """Typed accessor for records that already carry their identity fields."""

    def identity_fields(self) -> IdentityFields:
        ...


@dataclass
class DuplicateItem:
    """A record projected with the identity data used for grouping and scoring."""
    id: int
    name: str
    reference: str = ""
    code: str = ""
    tax_id: str = ""
    secondary_code: str = ""
    business_id: str = ""
    legal_address: str = ""
    quality_score: float = DEFAULT_QUALITY_SCORE
    source_database: str = ""

    @classmethod
    def from_record(cls, record: Record, identity: IdentityFields) -> "DuplicateItem":
        quality = record.quality_score if record.quality_score is not None else DEFAULT_QUALITY_SCORE
        return cls(
            id=record.id,
            name=record.name,
            reference=record.reference,
            code=record.code,
            tax_id=identity.tax_id,
            secondary_code=identity.secondary_code,
            business_id=identity.business_id,
            legal_address=identity.legal_address,
            quality_score=quality,
            source_database=record.source_database,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "reference": self.reference,
            "code": self.code,
            "tax_id": self.tax_id,
            "secondary_code": self.secondary_code,
            "business_id": self.business_id,
            "legal_address": self.legal_address,
            "quality_score": self.quality_score,
            "source_database": self.source_database,
        }


@dataclass
class DuplicateGroup:
    """A cluster of records that share one or more identity keys."""
    key: str
    key_type: str
    items: List[DuplicateItem] = field(default_factory=list)
    master_item: Optional[DuplicateItem] = None
    confidence: float = 1.0

    @property
    def member_ids(self) -> List[int]:
        return [item.id for item in self.items]

    def to_dict(self) -> Dict[str, Any]:
        """Convert the group to a JSON-serializable dictionary."""
        return {
            "key": self.key,
            "key_type": self.key_type,
            "items": [item.to_dict() for item in self.items],
            "master_item": self.master_item.to_dict() if self.master_item else None,
            "confidence": self.confidence,
        }


class PathSource(str, Enum):
    """How a classification code was reached."""
    LOCAL = "local"
    AI = "ai"
    FALLBACK = "fallback"


@dataclass
class ClassificationStep:
    """One level of the taxonomy descent."""
    level: int
    code: str
    name: str
    confidence: float
    source: PathSource
    candidates: int = 0
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "code": self.code,
            "name": self.name,
            "confidence": self.confidence,
            "source": self.source.value,
            "candidates": self.candidates,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ClassificationResult:
    """Taxonomy leaf assigned to an item."""
    code: str
    name: str
    confidence: float
    path_source: PathSource
    steps: List[ClassificationStep] = field(default_factory=list)
    fallback_method: Optional[str] = None
    manual_review_required: bool = False
    model: Optional[str] = None
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "confidence": self.confidence,
            "path_source": self.path_source.value,
            "steps": [step.to_dict() for step in self.steps],
            "fallback_method": self.fallback_method,
            "manual_review_required": self.manual_review_required,
            "model": self.model,
            "duration_ms": self.duration_ms,
        }


@dataclass
class SampleOutcome:
    """Result of benchmarking one sample against one model."""
    sample: str
    success: bool
    latency_ms: float
    attempts: int
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample": self.sample,
            "success": self.success,
            "latency_ms": self.latency_ms,
            "attempts": self.attempts,
            "error": self.error,
        }


@dataclass
class BenchmarkRun:
    """Throughput, latency and reliability measured for one model."""
    model: str
    status: str
    success_count: int = 0
    error_count: int = 0
    total_requests: int = 0
    success_rate: float = 0.0
    speed: float = 0.0
    avg_response_time_ms: float = 0.0
    median_response_time_ms: float = 0.0
    p95_response_time_ms: float = 0.0
    min_response_time_ms: float = 0.0
    max_response_time_ms: float = 0.0
    total_time_ms: float = 0.0
    samples: List[SampleOutcome] = field(default_factory=list)
    priority: int = 0
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self, include_samples: bool = True) -> Dict[str, Any]:
        data = {
            "model": self.model,
            "status": self.status,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "total_requests": self.total_requests,
            "success_rate": self.success_rate,
            "speed": self.speed,
            "avg_response_time_ms": self.avg_response_time_ms,
            "median_response_time_ms": self.median_response_time_ms,
            "p95_response_time_ms": self.p95_response_time_ms,
            "min_response_time_ms": self.min_response_time_ms,
            "max_response_time_ms": self.max_response_time_ms,
            "total_time_ms": self.total_time_ms,
            "priority": self.priority,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }
        if include_samples:
            data["samples"] = [sample.to_dict() for sample in self.samples]
        return data
