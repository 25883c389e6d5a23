"""
refnorm - reference-data normalization core.

Detects duplicate business entities by identity keys, elects a master record
per duplicate cluster and classifies items into a hierarchical taxonomy with
AI assistance, retry, fallback and benchmark-driven model selection.
"""

__version__ = "0.1.0"

from .models import (
    Record,
    IdentityFields,
    DuplicateItem,
    DuplicateGroup,
    ClassificationResult,
    ClassificationStep,
    PathSource,
    BenchmarkRun,
    SampleOutcome,
)
from .deduplication import DuplicateAnalyzer, IdentityExtractor, extract_identity, merged_count
from .classification import HierarchicalClassifier, TaxonomyTree, FallbackClassifier
from .benchmark import ModelBenchmarkHarness, ModelPriorityStore, BenchmarkHistory
from .pipeline import NormalizationPipeline, StageTracker
from .config import ConfigManager, RefnormConfig

__all__ = [
    "__version__",
    "Record",
    "IdentityFields",
    "DuplicateItem",
    "DuplicateGroup",
    "ClassificationResult",
    "ClassificationStep",
    "PathSource",
    "BenchmarkRun",
    "SampleOutcome",
    "DuplicateAnalyzer",
    "IdentityExtractor",
    "extract_identity",
    "merged_count",
    "HierarchicalClassifier",
    "TaxonomyTree",
    "FallbackClassifier",
    "ModelBenchmarkHarness",
    "ModelPriorityStore",
    "BenchmarkHistory",
    "NormalizationPipeline",
    "StageTracker",
    "ConfigManager",
    "RefnormConfig",
]
