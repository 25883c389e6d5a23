"""Hierarchical taxonomy classification with AI assistance and fallback."""

from .taxonomy import (
    TaxonomyNode,
    TaxonomyTree,
    TaxonomySource,
    InMemoryTaxonomySource,
    JSONTaxonomySource,
    normalize_name,
)
from .fallback import FallbackClassifier, FallbackResult, extract_root_word
from .backends import (
    LevelBackend,
    LevelDecision,
    LLMLevelBackend,
    PrioritizedBackend,
    build_level_prompt,
    parse_level_response,
)
from .classifier import HierarchicalClassifier, clamp_confidence

__all__ = [
    "TaxonomyNode",
    "TaxonomyTree",
    "TaxonomySource",
    "InMemoryTaxonomySource",
    "JSONTaxonomySource",
    "normalize_name",
    "FallbackClassifier",
    "FallbackResult",
    "extract_root_word",
    "LevelBackend",
    "LevelDecision",
    "LLMLevelBackend",
    "PrioritizedBackend",
    "build_level_prompt",
    "parse_level_response",
    "HierarchicalClassifier",
    "clamp_confidence",
]
