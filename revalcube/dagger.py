"""
Dagger — Reactive dependency graph behind the simulation market.

Market observables (quotes, the evaluation date) are leaf nodes; instruments,
coupons and model builders are derived nodes that cache their value until an
underlier changes. When a leaf changes, Dagger walks the graph breadth-first and
marks every dependent dirty; values are recomputed lazily on the next read.

How notifications travel is governed by the observation mode of the owning
market:
- updates enabled: propagate immediately
- updates deferred: queue the changed leaves and propagate on flush()
- updates disabled: never propagate (callers must mark nodes dirty themselves)

Key concepts:
- Node: base class with underliers and a compute() method
- Quote: leaf node holding an observable market value
- DependencyGraph: tracks edges, handles dirty propagation via BFS
"""

from abc import ABC, abstractmethod
from collections import defaultdict, deque
import logging

logger = logging.getLogger(__name__)


class CycleError(Exception):
    """Raised when a cycle is detected in the dependency graph."""


class Node(ABC):
    """Base class for every lazily evaluated node in the graph."""

    def __init__(self, name):
        self.name = name
        self._value = None
        self._dirty = True
        self._graph = None

    @property
    def underliers(self):
        """Return list of nodes this node depends on."""
        return []

    @abstractmethod
    def compute(self):
        """Recompute this node's value from its underliers."""

    @property
    def value(self):
        if self._dirty:
            self.compute()
            self._dirty = False
        return self._value

    @property
    def dirty(self):
        return self._dirty

    def mark_dirty(self):
        self._dirty = True

    def unregister_with(self, underlier):
        """Stop receiving notifications from ``underlier``."""
        if self._graph is not None:
            self._graph.unregister(self, underlier)

    def __repr__(self):
        return f"{self.__class__.__name__}({self.name!r}, value={self._value})"


class Quote(Node):
    """Leaf node representing an observable market value."""

    def __init__(self, name, value=0.0):
        super().__init__(name)
        self._value = value
        self._dirty = False

    def compute(self):
        pass  # leaf, set externally

    def set_value(self, value):
        if value == self._value:
            return
        self._value = value
        self._dirty = False
        if self._graph is not None:
            self._graph.invalidate(self)


class DependencyGraph:
    """
    Tracks the dependency edges between nodes of one market.

    Edges are keyed by node name, so names must be unique within a graph.
    """

    def __init__(self):
        self._nodes = {}  # name -> Node
        self._dependents = defaultdict(set)  # name -> set of dependent names
        self.updates_enabled = True
        self._deferring = False
        self._deferred = []

    def register(self, node):
        """Register a node and its dependency edges."""
        name = node.name
        self._nodes[name] = node
        node._graph = self
        for underlier in node.underliers:
            if underlier.name not in self._nodes:
                self.register(underlier)
            self._dependents[underlier.name].add(name)

        if self._has_cycle():
            del self._nodes[name]
            node._graph = None
            for underlier in node.underliers:
                self._dependents[underlier.name].discard(name)
            raise CycleError(f"Registering {name!r} would create a cycle")
        return node

    def unregister(self, dependent, underlier):
        """Remove the edge ``underlier -> dependent``; a missing edge is ignored."""
        self._dependents[underlier.name].discard(dependent.name)

    def dependents(self, name):
        return set(self._dependents.get(name, set()))

    def _has_cycle(self):
        """DFS-based cycle detection."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {name: WHITE for name in self._nodes}

        def dfs(node):
            color[node] = GRAY
            for dep in self._dependents.get(node, set()):
                if dep not in color:
                    continue
                if color[dep] == GRAY:
                    return True
                if color[dep] == WHITE and dfs(dep):
                    return True
            color[node] = BLACK
            return False

        for node in self._nodes:
            if color[node] == WHITE:
                if dfs(node):
                    return True
        return False

    def invalidate(self, source):
        """
        Propagate a change of ``source`` to every node depending on it.

        Returns the set of names marked dirty (empty when updates are
        disabled or deferred).
        """
        if not self.updates_enabled:
            return set()
        if self._deferring:
            self._deferred.append(source)
            return set()
        return self._propagate([source])

    def _propagate(self, sources):
        affected = set()
        queue = deque()
        for source in sources:
            queue.extend(self._dependents.get(source.name, set()))

        while queue:
            name = queue.popleft()
            if name in affected:
                continue
            affected.add(name)
            self._nodes[name].mark_dirty()
            queue.extend(self._dependents.get(name, set()))
        return affected

    def defer_updates(self):
        self._deferring = True

    def flush(self):
        """Stop deferring and propagate every change queued in the meantime."""
        self._deferring = False
        if not self._deferred:
            return set()
        sources = {s.name: s for s in self._deferred}
        self._deferred = []
        if not self.updates_enabled:
            return set()
        return self._propagate(sources.values())

    @property
    def nodes(self):
        return dict(self._nodes)

    def __contains__(self, name):
        return name in self._nodes

    def __repr__(self):
        return f"DependencyGraph(nodes={len(self._nodes)})"
