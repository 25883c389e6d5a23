"""AI backends that pick one taxonomy child per level."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from ..errors import BaseRefnormError, ErrorHandler, ResponseParseError
from ..llm import LLMClient
from .taxonomy import TaxonomyNode

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You classify goods and services into a hierarchical product classifier. "
    "At each step you are shown the candidate child codes of one level and must "
    "pick exactly one of them, or decline if none fits."
)

DECLINE_VALUES = ("", "none", "null")

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class LevelDecision:
    """What the backend chose at one level; ``code`` None means it declined."""
    code: Optional[str]
    confidence: Optional[float] = None
    raw: str = ""
    model: Optional[str] = None


class LevelBackend(Protocol):
    """Chooses one candidate child code at a single taxonomy level."""

    async def choose(
        self,
        item_name: str,
        category_hint: str,
        parent: Optional[TaxonomyNode],
        candidates: Sequence[TaxonomyNode],
    ) -> LevelDecision:
        ...


def build_level_prompt(
    item_name: str,
    category_hint: str,
    parent: Optional[TaxonomyNode],
    candidates: Sequence[TaxonomyNode],
) -> str:
    """Render the single-level classification request."""
    lines = [
        f"Item: {item_name}",
        f"Category hint: {category_hint or '-'}",
    ]
    if parent is not None:
        lines.append(f"Current group: {parent.code} {parent.name}")
    else:
        lines.append("Current group: top level")
    lines.append("")
    lines.append("Candidates:")
    for node in candidates:
        lines.append(f"- {node.code}: {node.name}")
    lines.append("")
    lines.append(
        'Answer with JSON only: {"code": "<one candidate code or null>", '
        '"confidence": <number between 0 and 1>}'
    )
    return "\n".join(lines)


def parse_level_response(raw: str, candidates: Sequence[TaxonomyNode]) -> LevelDecision:
    """
    Parse the backend's JSON answer.

    Raises:
        ResponseParseError: Empty, non-JSON or off-list answers
    """
    if not raw or not raw.strip():
        raise ResponseParseError("Empty response from AI backend", raw_response=raw)

    text = raw.strip()
    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        text = fenced.group(1).strip()
    else:
        braced = _OBJECT_PATTERN.search(text)
        if braced:
            text = braced.group(0)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"Response is not valid JSON: {e}", raw_response=raw) from e

    if not isinstance(data, dict):
        raise ResponseParseError("Response JSON is not an object", raw_response=raw)

    code = data.get("code")
    if code is not None:
        code = str(code).strip()
        if code.lower() in DECLINE_VALUES:
            code = None

    if code is not None and code not in {node.code for node in candidates}:
        raise ResponseParseError(f"Response names unknown code '{code}'", raw_response=raw)

    return LevelDecision(code=code, confidence=_as_confidence(data.get("confidence")), raw=raw)


def _as_confidence(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class LLMLevelBackend:
    """Level backend that asks an LLM through ``LLMClient``."""

    def __init__(self, client: LLMClient, error_handler: Optional[ErrorHandler] = None):
        self.client = client
        self.error_handler = error_handler or ErrorHandler()

    @property
    def model(self) -> str:
        return self.client.model

    async def choose(
        self,
        item_name: str,
        category_hint: str,
        parent: Optional[TaxonomyNode],
        candidates: Sequence[TaxonomyNode],
    ) -> LevelDecision:
        prompt = build_level_prompt(item_name, category_hint, parent, candidates)

        with self.error_handler.error_context(
            operation="classify_level",
            model=self.model,
            item_name=item_name,
            taxonomy_code=parent.code if parent else None,
        ) as context:
            try:
                raw = await self.client.complete(
                    prompt,
                    system_prompt=SYSTEM_PROMPT,
                    response_format={"type": "json_object"},
                )
            except BaseRefnormError:
                raise
            except Exception as e:
                raise self.error_handler.wrap_error(e, context) from e

            decision = parse_level_response(raw, candidates)

        decision.model = self.model
        return decision


class PrioritizedBackend:
    """
    Tries several model backends in priority order.

    The order comes from ``order_fn`` (typically ``ModelPriorityStore.ordered``)
    and is re-read on every call, so a benchmark that updates priorities takes
    effect without rebuilding the classifier.
    """

    def __init__(
        self,
        backends: Dict[str, LevelBackend],
        order_fn: Optional[Callable[[List[str]], List[str]]] = None,
    ):
        if not backends:
            raise ValueError("PrioritizedBackend needs at least one backend")
        self.backends = dict(backends)
        self.order_fn = order_fn

    @property
    def model(self) -> str:
        return self.ordered_models()[0]

    def ordered_models(self) -> List[str]:
        models = list(self.backends)
        if self.order_fn is None:
            return models
        ordered = [m for m in self.order_fn(models) if m in self.backends]
        return ordered + [m for m in models if m not in ordered]

    async def choose(
        self,
        item_name: str,
        category_hint: str,
        parent: Optional[TaxonomyNode],
        candidates: Sequence[TaxonomyNode],
    ) -> LevelDecision:
        last_error: Optional[Exception] = None
        for model in self.ordered_models():
            try:
                decision = await self.backends[model].choose(item_name, category_hint, parent, candidates)
            except Exception as e:
                logger.warning(f"Model {model} failed for '{item_name}': {e}")
                last_error = e
                continue
            if decision.model is None:
                decision.model = model
            return decision

        raise last_error
