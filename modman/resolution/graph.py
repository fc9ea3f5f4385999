# modman/resolution/graph.py
from __future__ import annotations
from collections.abc import Iterator
from dataclasses import dataclass, field

from modman.mods.models import ModRecord

__all__ = ["DependencyGraphNode", "DependencyGraph"]

_WHITE, _GRAY, _BLACK = 0, 1, 2



@dataclass
class DependencyGraphNode:
    """Per-resolution view of one mod. Never persisted."""
    modId: str
    record: ModRecord
    satisfied: set[str] = field(default_factory=set)
    missing: set[str] = field(default_factory=set)
    conflicting: set[str] = field(default_factory=set)
    loadsAfter: set[str] = field(default_factory=set)     # Soft hint edges that were kept



class DependencyGraph:
    """
    Directed graph over canonical mod ids.

    An edge `a -> b` means "a loads after b" (a hard dependency or a kept soft
    hint). Traversals iterate ids and neighbours in sorted order and use
    explicit stacks, so results are deterministic and depth is not bounded
    by the interpreter's recursion limit.
    """

    def __init__(self) -> None:
        self.nodes: dict[str, DependencyGraphNode] = {}
        self._edges: dict[str, set[str]] = {}

    def __contains__(self, modId: object) -> bool:
        return modId in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def addNode(self, record: ModRecord, modId: str) -> DependencyGraphNode:
        node = DependencyGraphNode(modId=modId, record=record)
        self.nodes[modId] = node
        self._edges.setdefault(modId, set())
        return node

    def addEdge(self, fromId: str, toId: str) -> None:
        """`fromId` loads after `toId`."""
        self._edges.setdefault(fromId, set()).add(toId)

    def loadsAfter(self, modId: str) -> list[str]:
        return sorted(self._edges.get(modId, ()))

    def reaches(self, startId: str, targetId: str) -> bool:
        """True when a path startId -> ... -> targetId exists (startId == targetId counts)."""
        if startId == targetId:
            return True
        seen = {startId}
        stack = [startId]
        while stack:
            current = stack.pop()
            for nxt in self._edges.get(current, ()):
                if nxt == targetId:
                    return True
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return False

    # ----- Traversals -----

    def findCycles(self) -> list[list[str]]:
        """
        White/gray/black DFS. Every back edge into a gray node yields the
        stack slice from that node to the edge's source. The same cycle
        reached from different back edges is reported once.
        """
        color = {modId: _WHITE for modId in self.nodes}
        cycles: list[list[str]] = []
        seenKeys: set[tuple[str, ...]] = set()

        for start in sorted(self.nodes):
            if color[start] != _WHITE:
                continue

            color[start] = _GRAY
            path: list[str] = [start]
            stack: list[tuple[str, Iterator[str]]] = [(start, iter(self.loadsAfter(start)))]

            while stack:
                current, neighbours = stack[-1]
                nxt = next(neighbours, None)

                if nxt is None:
                    color[current] = _BLACK
                    stack.pop()
                    path.pop()
                    continue

                state = color.get(nxt)
                if state is None:
                    continue  # Edge to an id outside the graph
                if state == _WHITE:
                    color[nxt] = _GRAY
                    path.append(nxt)
                    stack.append((nxt, iter(self.loadsAfter(nxt))))
                elif state == _GRAY:
                    cycle = path[path.index(nxt):]
                    key = _rotationKey(cycle)
                    if key not in seenKeys:
                        seenKeys.add(key)
                        cycles.append(cycle)

        return cycles

    def topologicalOrder(self) -> list[str]:
        """
        DFS post-order over lexicographic ids: every id comes after everything
        it loads after. Only meaningful on an acyclic graph.
        """
        visited: set[str] = set()
        order: list[str] = []

        for start in sorted(self.nodes):
            if start in visited:
                continue
            visited.add(start)
            stack: list[tuple[str, Iterator[str]]] = [(start, iter(self.loadsAfter(start)))]

            while stack:
                current, neighbours = stack[-1]
                nxt = next(neighbours, None)
                if nxt is None:
                    order.append(current)
                    stack.pop()
                elif nxt in self.nodes and nxt not in visited:
                    visited.add(nxt)
                    stack.append((nxt, iter(self.loadsAfter(nxt))))

        return order



def _rotationKey(cycle: list[str]) -> tuple[str, ...]:
    pivot = cycle.index(min(cycle))
    return tuple(cycle[pivot:] + cycle[:pivot])
