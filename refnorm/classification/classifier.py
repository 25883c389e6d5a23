"""
Hierarchical Classifier

Resolves an item name to a taxonomy leaf: local name matching first, then a
level-by-level AI descent with retry, and a fallback classification when the
AI path declines or fails.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..config import ClassifierSettings
from ..errors import (
    AIBackendError,
    BaseRefnormError,
    ClassificationError,
    ErrorContext,
    ErrorHandler,
    TaxonomyUnavailableError,
)
from ..models import ClassificationResult, ClassificationStep, PathSource
from .backends import LevelBackend, LevelDecision
from .fallback import FallbackClassifier
from .taxonomy import MATCH_EXACT, TaxonomyNode, TaxonomySource, TaxonomyTree

logger = logging.getLogger(__name__)

SINGLE_CANDIDATE_CONFIDENCE = 1.0


class _Declined(Exception):
    """The backend chose none of the candidates."""


@dataclass
class _Descent:
    """Progress of one descent; survives a failure so the fallback can use it."""
    steps: List[ClassificationStep] = field(default_factory=list)
    node: Optional[TaxonomyNode] = None
    model: Optional[str] = None


def clamp_confidence(value: Optional[float], default: float) -> float:
    if value is None:
        return default
    return min(max(float(value), 0.0), 1.0)


class HierarchicalClassifier:
    """Taxonomy-tree walker that asks an AI backend only where local knowledge runs out."""

    def __init__(
        self,
        tree: TaxonomyTree,
        backend: LevelBackend,
        settings: Optional[ClassifierSettings] = None,
        request_timeout: Optional[float] = 30.0,
        error_handler: Optional[ErrorHandler] = None,
    ):
        self.settings = settings or ClassifierSettings()
        self.backend = backend
        self.request_timeout = request_timeout
        self.error_handler = error_handler or ErrorHandler()
        self.tree = tree
        self.fallback = self._build_fallback(tree)

    @classmethod
    def create(
        cls,
        source: TaxonomySource,
        backend: LevelBackend,
        settings: Optional[ClassifierSettings] = None,
        **kwargs
    ) -> "HierarchicalClassifier":
        """
        Build a classifier from a taxonomy source.

        Raises:
            TaxonomyUnavailableError: If the taxonomy cannot be loaded
        """
        tree = TaxonomyTree.from_source(source)
        return cls(tree, backend, settings=settings, **kwargs)

    def _build_fallback(self, tree: TaxonomyTree) -> FallbackClassifier:
        s = self.settings
        return FallbackClassifier(
            tree,
            fallback_confidence=s.fallback_confidence,
            default_product_code=s.default_product_code,
            default_service_code=s.default_service_code,
            manual_review_threshold=s.manual_review_threshold,
        )

    def replace_taxonomy(self, tree: TaxonomyTree) -> None:
        """Swap in a freshly built tree; in-flight calls finish on the old one."""
        if not isinstance(tree, TaxonomyTree):
            raise TaxonomyUnavailableError("replace_taxonomy expects a TaxonomyTree")
        self.fallback = self._build_fallback(tree)
        self.tree = tree
        logger.info(f"Taxonomy replaced: {len(tree)} nodes")

    @property
    def model(self) -> Optional[str]:
        return getattr(self.backend, "model", None)

    async def classify(self, item_name: str, category_hint: str = "") -> ClassificationResult:
        """
        Classify an item; never raises for data or AI problems.

        Args:
            item_name: Normalized item name
            category_hint: Free-text category hint

        Returns:
            ClassificationResult with path_source local, ai or fallback
        """
        start = time.monotonic()
        tree, fallback = self.tree, self.fallback

        local = self._resolve_local(tree, item_name)
        if local is not None:
            return self._finish(local, start)

        descent = _Descent()
        try:
            result = await self._descend(tree, item_name, category_hint, descent, self.settings.retry_attempts)
            return self._finish(result, start)
        except _Declined:
            logger.info(f"AI declined to classify '{item_name}', using fallback")
        except Exception as e:
            logger.warning(f"AI classification failed for '{item_name}': {e}")

        previous_code = descent.node.code if descent.node else ""
        rescue = fallback.classify(item_name, category_hint, previous_code=previous_code)
        result = ClassificationResult(
            code=rescue.code,
            name=rescue.name,
            confidence=rescue.confidence,
            path_source=PathSource.FALLBACK,
            steps=descent.steps,
            fallback_method=rescue.method,
            manual_review_required=rescue.manual_review_required,
            model=descent.model,
        )
        return self._finish(result, start)

    async def try_classify(self, item_name: str, category_hint: str = "") -> ClassificationResult:
        """
        Strict single-attempt classification without fallback.

        Raises:
            ClassificationError: If the AI path declines or fails at any level
        """
        start = time.monotonic()
        tree = self.tree

        local = self._resolve_local(tree, item_name)
        if local is not None:
            return self._finish(local, start)

        descent = _Descent()
        context = ErrorContext(operation="try_classify", model=self.model, item_name=item_name)
        try:
            result = await self._descend(tree, item_name, category_hint, descent, attempts=1)
        except _Declined as e:
            context.taxonomy_code = descent.node.code if descent.node else None
            raise ClassificationError(f"AI declined to classify '{item_name}'", context=context, cause=e) from e
        except ClassificationError:
            raise
        except Exception as e:
            context.taxonomy_code = descent.node.code if descent.node else None
            raise ClassificationError(f"Classification failed for '{item_name}': {e}", context=context, cause=e) from e

        return self._finish(result, start)

    def _resolve_local(self, tree: TaxonomyTree, item_name: str) -> Optional[ClassificationResult]:
        match = tree.find_local(item_name, self.settings.min_substring_length)
        if match is None:
            return None

        leaf, match_type = match
        if match_type == MATCH_EXACT:
            confidence = self.settings.local_exact_confidence
        else:
            confidence = self.settings.local_substring_confidence

        step = ClassificationStep(
            level=leaf.level,
            code=leaf.code,
            name=leaf.name,
            confidence=confidence,
            source=PathSource.LOCAL,
        )
        return ClassificationResult(
            code=leaf.code,
            name=leaf.name,
            confidence=confidence,
            path_source=PathSource.LOCAL,
            steps=[step],
            manual_review_required=confidence < self.settings.manual_review_threshold,
        )

    async def _descend(
        self,
        tree: TaxonomyTree,
        item_name: str,
        category_hint: str,
        descent: _Descent,
        attempts: int,
    ) -> ClassificationResult:
        ai_confidences = []

        while True:
            parent_code = descent.node.code if descent.node else None
            candidates = tree.children(parent_code)
            if not candidates:
                break

            step_start = time.monotonic()
            if len(candidates) == 1:
                chosen = candidates[0]
                confidence = SINGLE_CANDIDATE_CONFIDENCE
                source = PathSource.LOCAL
            else:
                decision = await self._choose_with_retry(item_name, category_hint, descent.node, candidates, attempts)
                if decision.code is None:
                    raise _Declined(item_name)
                chosen = next(node for node in candidates if node.code == decision.code)
                confidence = clamp_confidence(decision.confidence, self.settings.default_ai_confidence)
                source = PathSource.AI
                ai_confidences.append(confidence)
                descent.model = decision.model or self.model

            descent.steps.append(ClassificationStep(
                level=chosen.level,
                code=chosen.code,
                name=chosen.name,
                confidence=confidence,
                source=source,
                candidates=len(candidates),
                duration_ms=int((time.monotonic() - step_start) * 1000),
            ))
            descent.node = chosen

        leaf = descent.node
        if ai_confidences:
            final_confidence = min(ai_confidences)
            path_source = PathSource.AI
        else:
            final_confidence = SINGLE_CANDIDATE_CONFIDENCE
            path_source = PathSource.LOCAL

        return ClassificationResult(
            code=leaf.code,
            name=leaf.name,
            confidence=final_confidence,
            path_source=path_source,
            steps=list(descent.steps),
            manual_review_required=final_confidence < self.settings.manual_review_threshold,
            model=descent.model,
        )

    async def _choose_with_retry(
        self,
        item_name: str,
        category_hint: str,
        parent: Optional[TaxonomyNode],
        candidates: Sequence[TaxonomyNode],
        attempts: int,
    ) -> LevelDecision:
        attempts = max(attempts, 1)
        for attempt in range(attempts):
            try:
                return await self._choose_once(item_name, category_hint, parent, candidates)
            except BaseRefnormError as e:
                if attempt + 1 >= attempts or not self.error_handler.should_retry(e):
                    raise
                delay = self.settings.retry_delay * (2 ** attempt)
                logger.debug(
                    f"Level request for '{item_name}' failed (attempt {attempt + 1}/{attempts}): "
                    f"{e}; retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        raise AIBackendError(f"No attempts made for '{item_name}'")

    async def _choose_once(
        self,
        item_name: str,
        category_hint: str,
        parent: Optional[TaxonomyNode],
        candidates: Sequence[TaxonomyNode],
    ) -> LevelDecision:
        context = ErrorContext(
            operation="classify_level",
            model=self.model,
            item_name=item_name,
            taxonomy_code=parent.code if parent else None,
        )
        try:
            if self.request_timeout:
                return await asyncio.wait_for(
                    self.backend.choose(item_name, category_hint, parent, candidates),
                    timeout=self.request_timeout,
                )
            return await self.backend.choose(item_name, category_hint, parent, candidates)
        except BaseRefnormError:
            raise
        except asyncio.TimeoutError as e:
            raise AIBackendError(
                f"Level request timed out after {self.request_timeout}s", context=context, cause=e
            ) from e
        except Exception as e:
            raise self.error_handler.wrap_error(e, context) from e

    @staticmethod
    def _finish(result: ClassificationResult, start: float) -> ClassificationResult:
        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result
