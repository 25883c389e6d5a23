"""
Fallback Classifier

Low-confidence rescue strategies used when the AI path declines, fails or
exhausts its retries. Always produces a result.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from .taxonomy import TaxonomyTree

logger = logging.getLogger(__name__)

METHOD_PARTIAL_PATH = "partial_path"
METHOD_KEYWORD_SIMPLE = "keyword_simple"
METHOD_CATEGORY_DEFAULT = "category_default"

PARTIAL_PATH_CONFIDENCE = 0.55
KEYWORD_SIMPLE_CONFIDENCE = 0.45

DEFAULT_PRODUCT_NAME = "Прочие готовые изделия, не включенные в другие группировки"
DEFAULT_SERVICE_NAME = "Услуги индивидуальные прочие, не включенные в другие группировки"

SERVICE_MARKERS = (
    "услуг",
    "работ",
    "ремонт",
    "монтаж",
    "обслуживан",
    "доставк",
    "перевозк",
    "аренд",
    "консультац",
    "установк",
    "сервис",
)

# Longest first so the most specific suffix is stripped
WORD_SUFFIXES = tuple(sorted((
    "ами", "ями", "ого", "его", "ому", "ему", "ый", "ий", "ой", "ая", "яя",
    "ое", "ее", "ые", "ие", "ов", "ев", "ах", "ях", "ам", "ям", "ом", "ем",
    "а", "я", "ы", "и", "о", "е", "у", "ю", "ь",
), key=len, reverse=True))

MIN_ROOT_LENGTH = 3


@dataclass
class FallbackResult:
    """Result of a fallback classification."""
    code: str
    name: str
    confidence: float
    method: str
    manual_review_required: bool
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "confidence": self.confidence,
            "method": self.method,
            "manual_review_required": self.manual_review_required,
            "reasoning": self.reasoning,
        }


def extract_root_word(name: str) -> str:
    """Root of the first alphabetic word of at least three letters, lowercased."""
    for word in re.findall(r"[^\W\d_]+", name.lower()):
        if len(word) < MIN_ROOT_LENGTH:
            continue
        for suffix in WORD_SUFFIXES:
            if word.endswith(suffix) and len(word) - len(suffix) >= MIN_ROOT_LENGTH:
                return word[: -len(suffix)]
        return word
    return ""


def is_service(name: str, category: str = "") -> bool:
    """Crude product/service split based on marker stems."""
    text = f"{name} {category}".lower()
    return any(marker in text for marker in SERVICE_MARKERS)


class FallbackClassifier:
    """Rescue classifier over the same taxonomy tree as the AI path."""

    def __init__(
        self,
        tree: TaxonomyTree,
        fallback_confidence: float = 0.35,
        default_product_code: str = "32.99.5",
        default_service_code: str = "96.09.1",
        manual_review_threshold: float = 0.5,
    ):
        self.tree = tree
        self.fallback_confidence = fallback_confidence
        self.default_product_code = default_product_code
        self.default_service_code = default_service_code
        self.manual_review_threshold = manual_review_threshold

    def classify(self, name: str, category: str = "", previous_code: str = "") -> FallbackResult:
        """
        Classify without AI.

        Args:
            name: Normalized item name
            category: Category hint
            previous_code: Deepest node the AI descent reached, if any

        Returns:
            FallbackResult from the first strategy that applies
        """
        logger.debug(f"Fallback classification for '{name}' (previous code: {previous_code or '-'})")

        result = self._try_partial_path(name, previous_code)
        if result is None:
            result = self._try_keyword_simple(name)
        if result is None:
            result = self._category_default(name, category)

        logger.info(
            f"Fallback for '{name}': {result.code} via {result.method} "
            f"(confidence {result.confidence:.2f}, manual review: {result.manual_review_required})"
        )
        return result

    def _try_partial_path(self, name: str, previous_code: str) -> Optional[FallbackResult]:
        if not previous_code:
            return None
        node = self.tree.get(previous_code)
        # A top-level section is too broad to be useful
        if node is None or node.parent_code is None:
            return None

        confidence = PARTIAL_PATH_CONFIDENCE
        return FallbackResult(
            code=node.code,
            name=node.name,
            confidence=confidence,
            method=METHOD_PARTIAL_PATH,
            manual_review_required=self.should_require_manual_review(confidence, METHOD_PARTIAL_PATH, name),
            reasoning=f"Deepest code reached before the AI path stopped: {node.code} ({node.name})",
        )

    def _try_keyword_simple(self, name: str) -> Optional[FallbackResult]:
        root = extract_root_word(name)
        if not root:
            return None
        node = self.tree.search(root)
        if node is None:
            return None

        confidence = KEYWORD_SIMPLE_CONFIDENCE
        return FallbackResult(
            code=node.code,
            name=node.name,
            confidence=confidence,
            method=METHOD_KEYWORD_SIMPLE,
            manual_review_required=self.should_require_manual_review(confidence, METHOD_KEYWORD_SIMPLE, name),
            reasoning=f"Root word '{root}' found in '{node.name}'",
        )

    def _category_default(self, name: str, category: str) -> FallbackResult:
        if is_service(name, category):
            kind, code, default_name = "service", self.default_service_code, DEFAULT_SERVICE_NAME
        else:
            kind, code, default_name = "product", self.default_product_code, DEFAULT_PRODUCT_NAME

        node = self.tree.get(code)
        return FallbackResult(
            code=code,
            name=node.name if node else default_name,
            confidence=self.fallback_confidence,
            method=METHOD_CATEGORY_DEFAULT,
            manual_review_required=True,
            reasoning=f"Category default for {kind}",
        )

    def should_require_manual_review(self, confidence: float, method: str, name: str) -> bool:
        if confidence < self.manual_review_threshold:
            return True
        if method == METHOD_CATEGORY_DEFAULT:
            return True
        stripped = name.strip()
        if len(stripped) < 5:
            return True
        # Digits and separators only
        if re.fullmatch(r"[\d\s.\-]*", stripped):
            return True
        return False

    @staticmethod
    def statistics(results: Iterable[FallbackResult]) -> Dict[str, Any]:
        """Summarize a batch of fallback results."""
        results = list(results)
        stats: Dict[str, Any] = {
            "total": len(results),
            "by_method": {},
            "manual_review": 0,
            "avg_confidence": 0.0,
        }
        if not results:
            return stats

        for result in results:
            stats["by_method"][result.method] = stats["by_method"].get(result.method, 0) + 1
            if result.manual_review_required:
                stats["manual_review"] += 1
        stats["avg_confidence"] = sum(r.confidence for r in results) / len(results)
        return stats
