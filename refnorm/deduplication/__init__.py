"""
Identity-key deduplication for reference-data records.

Extracts tax and business identifiers from record attributes, clusters records
that share them and elects a master record per cluster.
"""

from .analyzer import DuplicateAnalyzer, MasterScoreWeights, merged_count, LEGAL_FORM_TOKENS
from .disjoint_set import DisjointSet
from .identity import IdentityExtractor, extract_identity

__all__ = [
    "DuplicateAnalyzer",
    "MasterScoreWeights",
    "merged_count",
    "LEGAL_FORM_TOKENS",
    "DisjointSet",
    "IdentityExtractor",
    "extract_identity",
]
