"""Disjoint-set (union-find) keyed by record ID."""

from typing import Dict, Hashable, Iterable, List


class DisjointSet:
    """Union-find with path compression and union by size."""

    def __init__(self, elements: Iterable[Hashable] = ()):
        self._parent: Dict[Hashable, Hashable] = {}
        self._size: Dict[Hashable, int] = {}
        for element in elements:
            self.add(element)

    def __contains__(self, element: Hashable) -> bool:
        return element in self._parent

    def __len__(self) -> int:
        return len(self._parent)

    def add(self, element: Hashable) -> None:
        if element not in self._parent:
            self._parent[element] = element
            self._size[element] = 1

    def find(self, element: Hashable) -> Hashable:
        self.add(element)
        root = element
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[element] != root:
            self._parent[element], element = root, self._parent[element]
        return root

    def union(self, a: Hashable, b: Hashable) -> Hashable:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return root_a
        if self._size[root_a] < self._size[root_b]:
            root_a, root_b = root_b, root_a
        self._parent[root_b] = root_a
        self._size[root_a] += self._size[root_b]
        return root_a

    def union_all(self, elements: Iterable[Hashable]) -> None:
        first = None
        for element in elements:
            if first is None:
                first = element
                self.add(element)
            else:
                self.union(first, element)

    def groups(self) -> List[List[Hashable]]:
        """Return the components, each in insertion order, ordered by first member."""
        components: Dict[Hashable, List[Hashable]] = {}
        for element in self._parent:
            components.setdefault(self.find(element), []).append(element)
        return list(components.values())
