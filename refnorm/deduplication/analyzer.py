"""
Duplicate Analyzer

Groups records into duplicate clusters by exact identity-key equality, merges
clusters that share a member and elects one master record per cluster.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..models import DuplicateGroup, DuplicateItem, IdentityFields, Record
from .disjoint_set import DisjointSet
from .identity import IdentityExtractor

logger = logging.getLogger(__name__)

KEY_TYPE_TAX = "inn_kpp"
KEY_TYPE_BUSINESS = "bin"
KEY_TYPE_ORDER = (KEY_TYPE_TAX, KEY_TYPE_BUSINESS)

KEY_SEPARATOR = "|"
KEY_TYPE_SEPARATOR = "+"

LEGAL_FORM_TOKENS = ("ООО", "ИП", "ЗАО", "ОАО", "ПАО", "ТОО", "АО")

EXACT_MATCH_CONFIDENCE = 1.0


@dataclass
class MasterScoreWeights:
    """Points awarded by the master-record scoring."""
    identity: float = 30.0
    secondary_code: float = 10.0
    legal_address: float = 20.0
    long_name: float = 10.0
    legal_form: float = 10.0
    quality_multiplier: float = 20.0
    long_name_threshold: int = 10


class DuplicateAnalyzer:
    """
    Identity-key duplicate detection.

    Records sharing a tax key (tax ID with secondary code, or tax ID alone) or
    a business ID are grouped. Groups that overlap in any record are merged
    transitively through a disjoint-set keyed by record ID, so the result does
    not depend on the order in which overlaps are discovered.
    """

    def __init__(
        self,
        extractor: Optional[IdentityExtractor] = None,
        legal_form_tokens: Sequence[str] = LEGAL_FORM_TOKENS,
        weights: Optional[MasterScoreWeights] = None,
    ):
        self.extractor = extractor or IdentityExtractor()
        self.legal_form_tokens = tuple(legal_form_tokens)
        self.weights = weights or MasterScoreWeights()

    def analyze(self, records: Iterable[Record]) -> List[DuplicateGroup]:
        """
        Find duplicate groups in a record set.

        Args:
            records: Records to analyze; never mutated

        Returns:
            Merged groups with an elected master, ordered by the input
            position of their first member
        """
        items = self._project(records)
        if not items:
            return []

        tax_buckets, business_buckets = self._bucket(items)
        seed_groups = self._seed_groups(tax_buckets, KEY_TYPE_TAX) + self._seed_groups(
            business_buckets, KEY_TYPE_BUSINESS
        )
        groups = self._merge(seed_groups, items)

        logger.info(
            f"Duplicate analysis: {len(items)} records, {len(seed_groups)} key groups, "
            f"{len(groups)} merged groups"
        )
        return groups

    def _project(self, records: Iterable[Record]) -> "OrderedDict[int, DuplicateItem]":
        items: "OrderedDict[int, DuplicateItem]" = OrderedDict()
        for record in records:
            if record.id in items:
                logger.debug(f"Skipping repeated record id {record.id}")
                continue
            identity = self.extractor.extract(record)
            items[record.id] = DuplicateItem.from_record(record, identity)
        return items

    @staticmethod
    def _bucket(
        items: "OrderedDict[int, DuplicateItem]",
    ) -> Tuple[Dict[str, List[int]], Dict[str, List[int]]]:
        tax_buckets: Dict[str, List[int]] = OrderedDict()
        business_buckets: Dict[str, List[int]] = OrderedDict()

        for item_id, item in items.items():
            tax_key = IdentityFields(item.tax_id, item.secondary_code).tax_key
            if tax_key:
                tax_buckets.setdefault(tax_key, []).append(item_id)
            if item.business_id:
                business_buckets.setdefault(item.business_id, []).append(item_id)

        return tax_buckets, business_buckets

    @staticmethod
    def _seed_groups(buckets: Dict[str, List[int]], key_type: str) -> List[Tuple[str, str, List[int]]]:
        return [(key, key_type, ids) for key, ids in buckets.items() if len(ids) >= 2]

    def _merge(
        self,
        seed_groups: List[Tuple[str, str, List[int]]],
        items: "OrderedDict[int, DuplicateItem]",
    ) -> List[DuplicateGroup]:
        clusters = DisjointSet()
        for _, _, ids in seed_groups:
            clusters.union_all(ids)

        keys_by_root: Dict[Any, List[str]] = {}
        types_by_root: Dict[Any, set] = {}
        for key, key_type, ids in seed_groups:
            root = clusters.find(ids[0])
            labels = keys_by_root.setdefault(root, [])
            if key not in labels:
                labels.append(key)
            types_by_root.setdefault(root, set()).add(key_type)

        members_by_root: Dict[Any, List[DuplicateItem]] = OrderedDict()
        for item_id, item in items.items():
            if item_id in clusters:
                members_by_root.setdefault(clusters.find(item_id), []).append(item)

        groups = []
        for root, members in members_by_root.items():
            key_type = KEY_TYPE_SEPARATOR.join(t for t in KEY_TYPE_ORDER if t in types_by_root[root])
            group = DuplicateGroup(
                key=KEY_SEPARATOR.join(keys_by_root[root]),
                key_type=key_type,
                items=members,
                confidence=EXACT_MATCH_CONFIDENCE,
            )
            group.master_item = self.select_master(members)
            groups.append(group)

        return groups

    def calculate_master_score(self, item: DuplicateItem) -> float:
        """Score a group member's fitness as the master record."""
        w = self.weights
        score = 0.0

        if item.tax_id or item.business_id:
            score += w.identity
        if item.secondary_code:
            score += w.secondary_code
        if item.legal_address:
            score += w.legal_address

        name = item.name.strip()
        if len(name) > w.long_name_threshold:
            score += w.long_name
        if any(token in name for token in self.legal_form_tokens):
            score += w.legal_form

        score += item.quality_score * w.quality_multiplier
        return score

    def select_master(self, items: Sequence[DuplicateItem]) -> Optional[DuplicateItem]:
        """Highest score wins; ties go to the first item."""
        best_item = None
        best_score = float("-inf")
        for item in items:
            score = self.calculate_master_score(item)
            if score > best_score:
                best_score = score
                best_item = item
        return best_item

    def find_duplicates_for(self, record: Record, records: Iterable[Record]) -> List[DuplicateItem]:
        """
        Find the records that duplicate a single record.

        A candidate matches on tax ID (and secondary code, when both sides
        carry one) or on business ID. The record itself is excluded and no
        candidate is reported twice.
        """
        identity = self.extractor.extract(record)
        if not identity.has_identity:
            return []

        duplicates: "OrderedDict[int, DuplicateItem]" = OrderedDict()
        for candidate in records:
            if candidate.id == record.id or candidate.id in duplicates:
                continue
            other = self.extractor.extract(candidate)
            if self._same_entity(identity, other):
                duplicates[candidate.id] = DuplicateItem.from_record(candidate, other)

        return list(duplicates.values())

    @staticmethod
    def _same_entity(identity: IdentityFields, other: IdentityFields) -> bool:
        if identity.tax_id and other.tax_id == identity.tax_id:
            if identity.secondary_code and other.secondary_code:
                if other.secondary_code == identity.secondary_code:
                    return True
            else:
                return True
        return bool(identity.business_id and other.business_id == identity.business_id)

    @staticmethod
    def summarize(groups: Sequence[DuplicateGroup]) -> Dict[str, int]:
        """Count groups by their final combined key type; each group counts once."""
        summary = {
            "total_groups": len(groups),
            "total_duplicates": 0,
            "duplicates_by_inn_kpp": 0,
            "duplicates_by_bin": 0,
            "duplicates_by_both": 0,
        }
        for group in groups:
            summary["total_duplicates"] += len(group.items)
            key_types = set(group.key_type.split(KEY_TYPE_SEPARATOR))
            if key_types == {KEY_TYPE_TAX}:
                summary["duplicates_by_inn_kpp"] += 1
            elif key_types == {KEY_TYPE_BUSINESS}:
                summary["duplicates_by_bin"] += 1
            else:
                summary["duplicates_by_both"] += 1
        return summary


def merged_count(group: DuplicateGroup) -> int:
    """Number of records collapsed into the group's master."""
    return max(len(group.items) - 1, 0)
