"""Dependency graph for stack orchestration.

Builds an execution graph from Topology.stacks and computes traversal
orderings for apply (dependencies first) and destroy (dependents first).
"""

import heapq
import logging
from dataclasses import dataclass, field
from typing import Optional

from config import ConfigError
from topology import StackSpec, Topology

logger = logging.getLogger(__name__)


@dataclass
class ExecutionNode:
    """A node in the execution graph with dependency edges.

    Wraps a StackSpec and adds graph structure for traversal.

    Attributes:
        spec: The underlying StackSpec definition
        index: Declaration position in the topology (tie-breaker)
        dependencies: Nodes that must be complete before this one
        dependents: Nodes that depend on this one
    """
    spec: StackSpec
    index: int
    dependencies: list['ExecutionNode'] = field(default_factory=list)
    dependents: list['ExecutionNode'] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def is_root(self) -> bool:
        return not self.dependencies

    @property
    def is_leaf(self) -> bool:
        return not self.dependents

    def __repr__(self) -> str:
        return f"ExecutionNode({self.name}, deps={[d.name for d in self.dependencies]})"


class StackGraph:
    """Execution graph built from a Topology.

    Provides ordered traversal for lifecycle operations:
    - apply_order(): every dependency before its dependents
    - destroy_order(): exact reverse of apply_order()

    Independent nodes keep declaration order. The order is computed once
    and memoized.
    """

    def __init__(self, topology: Topology):
        """Build execution graph from topology.

        Args:
            topology: Topology with at least one stack

        Raises:
            ConfigError: If the topology has no stacks, an edge names an
                unknown stack, or the edges contain a cycle
        """
        if not topology.stacks:
            raise ConfigError("StackGraph requires a topology with stacks")

        self.topology = topology
        self._nodes: dict[str, ExecutionNode] = {}
        self._order: Optional[list[ExecutionNode]] = None
        self._build_graph(topology.stacks)
        # Fail fast on cycles, before anyone can issue a backend call
        self.apply_order()

    def _build_graph(self, stacks: list[StackSpec]) -> None:
        for i, spec in enumerate(stacks):
            if spec.name in self._nodes:
                raise ConfigError(f"Duplicate stack name: '{spec.name}'")
            self._nodes[spec.name] = ExecutionNode(spec=spec, index=i)

        for spec in stacks:
            node = self._nodes[spec.name]
            for dep_name in spec.depends_on:
                if dep_name not in self._nodes:
                    raise ConfigError(
                        f"Stack '{spec.name}' depends on unknown stack '{dep_name}'")
                dep = self._nodes[dep_name]
                node.dependencies.append(dep)
                dep.dependents.append(node)

    @property
    def nodes(self) -> list[ExecutionNode]:
        """Nodes in declaration order."""
        return sorted(self._nodes.values(), key=lambda n: n.index)

    def get_node(self, name: str) -> ExecutionNode:
        """Get an ExecutionNode by name.

        Raises:
            KeyError: If node name not found
        """
        return self._nodes[name]

    def apply_order(self) -> list[ExecutionNode]:
        """Return nodes in apply order (dependencies before dependents).

        Kahn's algorithm with a heap keyed on declaration index, so the
        result is the lowest-index node whose dependencies are all placed.

        Raises:
            ConfigError: If the dependency edges contain a cycle
        """
        if self._order is not None:
            return list(self._order)

        remaining = {name: len(node.dependencies) for name, node in self._nodes.items()}
        ready = [(node.index, node.name) for node in self._nodes.values() if not node.dependencies]
        heapq.heapify(ready)

        ordered: list[ExecutionNode] = []
        while ready:
            _, name = heapq.heappop(ready)
            node = self._nodes[name]
            ordered.append(node)
            for dependent in node.dependents:
                remaining[dependent.name] -= 1
                if remaining[dependent.name] == 0:
                    heapq.heappush(ready, (dependent.index, dependent.name))

        if len(ordered) != len(self._nodes):
            stuck = sorted(
                (n for n in self._nodes.values() if remaining[n.name] > 0),
                key=lambda n: n.index,
            )
            raise ConfigError(
                f"Dependency cycle detected among stacks: {', '.join(n.name for n in stuck)}")

        self._order = ordered
        logger.debug(f"Apply order: {' -> '.join(n.name for n in ordered)}")
        return list(ordered)

    def destroy_order(self) -> list[ExecutionNode]:
        """Return nodes in destroy order (dependents before dependencies).

        Exact reverse of apply_order.
        """
        return list(reversed(self.apply_order()))

    def ancestors(self, name: str) -> set[str]:
        """Names of every stack reachable through dependency edges."""
        found: set[str] = set()
        pending = list(self._nodes[name].dependencies)
        while pending:
            node = pending.pop()
            if node.name in found:
                continue
            found.add(node.name)
            pending.extend(node.dependencies)
        return found
