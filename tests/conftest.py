"""Test configuration and fixtures for the normalization core."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from refnorm.classification import LevelDecision, TaxonomyNode, TaxonomyTree
from refnorm.config import ClassifierSettings
from refnorm.models import Record


TAXONOMY_NODES = [
    ("C", "Продукция обрабатывающих производств", None),
    ("25", "Изделия металлические готовые", "C"),
    ("25.9", "Изделия металлические прочие", "25"),
    ("25.94", "Изделия крепежные", "25.9"),
    ("25.94.1", "Болты и винты", "25.94"),
    ("25.94.2", "Гайки", "25.94"),
    ("25.94.3", "Шайбы", "25.94"),
    ("32", "Изделия готовые прочие", "C"),
    ("32.99", "Изделия готовые прочие, не включенные в другие группировки", "32"),
    ("32.99.5", "Прочие готовые изделия, не включенные в другие группировки", "32.99"),
    ("S", "Услуги общественные и личные прочие", None),
    ("96.09", "Услуги индивидуальные прочие", "S"),
    ("96.09.1", "Услуги индивидуальные прочие, не включенные в другие группировки", "96.09"),
]

# Parent code (None for the top level) -> child code picked by the fake AI
BOLT_PATH = {None: "C", "C": "25", "25.94": "25.94.1"}
NUT_PATH = {None: "C", "C": "25", "25.94": "25.94.2"}


def make_record(record_id: int, name: str = "", quality_score: Optional[float] = None, **attributes) -> Record:
    """Build a record whose attribute bag is the given keyword arguments."""
    return Record(
        id=record_id,
        name=name or f"Контрагент {record_id}",
        reference=f"ref-{record_id}",
        attributes=attributes,
        source_database="test.db",
        quality_score=quality_score,
    )


class ScriptedBackend:
    """Level backend that answers from a parent -> code script."""

    def __init__(
        self,
        choices: Dict[Optional[str], Optional[str]],
        confidence: Optional[float] = 0.9,
        model: str = "test-model",
        delay: float = 0.0,
    ):
        self.choices = choices
        self.confidence = confidence
        self.model = model
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def choose(self, item_name, category_hint, parent, candidates):
        self.calls.append({
            "item_name": item_name,
            "category_hint": category_hint,
            "parent": parent.code if parent else None,
            "candidates": [node.code for node in candidates],
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        code = self.choices.get(parent.code if parent else None)
        return LevelDecision(code=code, confidence=self.confidence, raw="{}", model=self.model)


@pytest.fixture
def taxonomy_nodes() -> List[TaxonomyNode]:
    return [TaxonomyNode(code=code, name=name, parent_code=parent) for code, name, parent in TAXONOMY_NODES]


@pytest.fixture
def taxonomy_tree(taxonomy_nodes) -> TaxonomyTree:
    return TaxonomyTree(taxonomy_nodes)


@pytest.fixture
def classifier_settings() -> ClassifierSettings:
    """Settings with no backoff so retry tests run instantly."""
    return ClassifierSettings(retry_attempts=3, retry_delay=0.0)


@pytest.fixture
def bolt_backend() -> ScriptedBackend:
    return ScriptedBackend(BOLT_PATH)


@pytest.fixture
def counterparties() -> List[Record]:
    """Three-way chain: 1-2 share a tax ID, 2-3 share a business ID, plus an unrelated record."""
    return [
        make_record(1, "ООО Ромашка", ИНН="7701234567"),
        make_record(2, "Ромашка", ИНН="7701234567", БИН="123456789012"),
        make_record(3, "ТОО Ромашка Казахстан", БИН="123456789012"),
        make_record(4, "ИП Иванов", ИНН="500100732259"),
    ]


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def backend_factory():
    return ScriptedBackend


@pytest.fixture
def nut_path() -> Dict[Optional[str], Optional[str]]:
    return dict(NUT_PATH)


@pytest.fixture
def bolt_path() -> Dict[Optional[str], Optional[str]]:
    return dict(BOLT_PATH)
