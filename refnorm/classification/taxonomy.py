"""
Taxonomy Tree

Read-only hierarchical code tree (e.g. a national product/service classifier)
used by the hierarchical classifier. Trees are built once from a
``TaxonomySource``; refreshing means building a new tree.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, Union

from ..errors import TaxonomyUnavailableError

logger = logging.getLogger(__name__)

MATCH_EXACT = "exact"
MATCH_SUBSTRING = "substring"


def normalize_name(value: str) -> str:
    """Case- and whitespace-insensitive form of a name."""
    value = value.lower().replace("ё", "е")
    return re.sub(r"\s+", " ", value).strip()


@dataclass(frozen=True)
class TaxonomyNode:
    """A single classifier code."""
    code: str
    name: str
    parent_code: Optional[str] = None
    level: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "parent_code": self.parent_code,
            "level": self.level,
        }


class TaxonomySource(Protocol):
    """Anything that can produce the flat node list of a taxonomy."""

    def load(self) -> Iterable[TaxonomyNode]:
        ...


class InMemoryTaxonomySource:
    """Taxonomy source over an already materialized node list."""

    def __init__(self, nodes: Iterable[Union[TaxonomyNode, Dict[str, Any]]]):
        self._nodes = list(nodes)

    def load(self) -> List[TaxonomyNode]:
        return [_coerce_node(node) for node in self._nodes]


class JSONTaxonomySource:
    """
    Taxonomy source backed by a JSON file.

    Accepts either a flat list of ``{"code", "name", "parent_code"}`` objects
    or a nested form where each object carries a ``children`` list.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> List[TaxonomyNode]:
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if isinstance(data, dict):
            data = data.get("nodes", [data])
        if not isinstance(data, list):
            raise ValueError(f"Unexpected taxonomy document in {self.path}")

        nodes: List[TaxonomyNode] = []
        for entry in data:
            nodes.extend(_flatten(entry, None))
        return nodes


def _coerce_node(node: Union[TaxonomyNode, Dict[str, Any]]) -> TaxonomyNode:
    if isinstance(node, TaxonomyNode):
        return node
    return TaxonomyNode(
        code=str(node["code"]),
        name=str(node.get("name", "")),
        parent_code=node.get("parent_code") or None,
        level=int(node.get("level") or 0),
    )


def _flatten(entry: Dict[str, Any], parent_code: Optional[str]) -> List[TaxonomyNode]:
    if "children" not in entry:
        data = dict(entry)
        if parent_code and not data.get("parent_code"):
            data["parent_code"] = parent_code
        return [_coerce_node(data)]

    node = _coerce_node({
        "code": entry["code"],
        "name": entry.get("name", ""),
        "parent_code": entry.get("parent_code") or parent_code,
        "level": entry.get("level"),
    })
    nodes = [node]
    for child in entry.get("children") or []:
        nodes.extend(_flatten(child, node.code))
    return nodes


class TaxonomyTree:
    """Immutable taxonomy with parent/child navigation and local name matching."""

    def __init__(self, nodes: Iterable[TaxonomyNode]):
        raw: Dict[str, TaxonomyNode] = {}
        for node in nodes:
            if node.code in raw:
                raise TaxonomyUnavailableError(f"Duplicate taxonomy code: {node.code}")
            raw[node.code] = node

        if not raw:
            raise TaxonomyUnavailableError("Taxonomy is empty")

        for node in raw.values():
            if node.parent_code and node.parent_code not in raw:
                raise TaxonomyUnavailableError(
                    f"Taxonomy node {node.code} references unknown parent {node.parent_code}"
                )

        self._children: Dict[Optional[str], List[str]] = {}
        for code, node in raw.items():
            self._children.setdefault(node.parent_code, []).append(code)

        # Levels come from depth, not from the source
        self._nodes: Dict[str, TaxonomyNode] = {}
        stack: List[Tuple[str, int]] = [(code, 1) for code in reversed(self._children.get(None, []))]
        while stack:
            code, level = stack.pop()
            node = raw[code]
            self._nodes[code] = TaxonomyNode(node.code, node.name, node.parent_code, level)
            for child in reversed(self._children.get(code, [])):
                stack.append((child, level + 1))

        if len(self._nodes) != len(raw):
            raise TaxonomyUnavailableError("Taxonomy contains a parent cycle")

        self._leaves = [node for node in self._nodes.values() if self.is_leaf(node.code)]
        self._leaf_names = [(normalize_name(node.name), node) for node in self._leaves]

    @classmethod
    def from_source(cls, source: TaxonomySource) -> "TaxonomyTree":
        """Build a tree from a source, wrapping any load failure."""
        try:
            nodes = list(source.load())
        except TaxonomyUnavailableError:
            raise
        except Exception as e:
            raise TaxonomyUnavailableError(f"Failed to load taxonomy: {e}", cause=e) from e

        tree = cls(nodes)
        logger.info(f"Loaded taxonomy: {len(tree)} nodes, {len(tree.leaves())} leaves")
        return tree

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, code: str) -> bool:
        return code in self._nodes

    def get(self, code: Optional[str]) -> Optional[TaxonomyNode]:
        if code is None:
            return None
        return self._nodes.get(code)

    def roots(self) -> List[TaxonomyNode]:
        return self.children(None)

    def children(self, code: Optional[str]) -> List[TaxonomyNode]:
        return [self._nodes[child] for child in self._children.get(code, [])]

    def is_leaf(self, code: str) -> bool:
        return not self._children.get(code)

    def leaves(self) -> List[TaxonomyNode]:
        return list(self._leaves)

    def parent(self, code: str) -> Optional[TaxonomyNode]:
        node = self._nodes.get(code)
        if node is None:
            return None
        return self.get(node.parent_code)

    def path(self, code: str) -> List[TaxonomyNode]:
        """Nodes from the root down to ``code`` inclusive."""
        path = []
        node = self._nodes.get(code)
        while node is not None:
            path.append(node)
            node = self.get(node.parent_code)
        return list(reversed(path))

    def find_local(self, item_name: str, min_length: int = 4) -> Optional[Tuple[TaxonomyNode, str]]:
        """
        Resolve an item against leaf names without AI.

        Returns:
            ``(leaf, "exact")`` for an exact normalized match, otherwise the
            longest leaf name contained in the item name (or containing it)
            as ``(leaf, "substring")``, or None
        """
        name = normalize_name(item_name)
        if not name:
            return None

        for leaf_name, leaf in self._leaf_names:
            if leaf_name == name:
                return leaf, MATCH_EXACT

        best: Optional[TaxonomyNode] = None
        best_length = 0
        for leaf_name, leaf in self._leaf_names:
            if len(leaf_name) < min_length:
                continue
            if leaf_name in name or (len(name) >= min_length and name in leaf_name):
                if len(leaf_name) > best_length:
                    best = leaf
                    best_length = len(leaf_name)

        if best is None:
            return None
        return best, MATCH_SUBSTRING

    def search(self, word: str, leaves_only: bool = True) -> Optional[TaxonomyNode]:
        """First node (in tree order) whose name contains ``word``."""
        word = normalize_name(word)
        if not word:
            return None
        candidates = self._leaves if leaves_only else self._nodes.values()
        for node in candidates:
            if word in normalize_name(node.name):
                return node
        return None
