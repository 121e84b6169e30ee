# src/tickflow/core/dag.py
"""Graph operations for scheduling and feedback detection.

Uses NetworkX for graph operations including:
- Evaluation ordering (topological where acyclic)
- Cycle detection
- Reachability for feedback classification
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, cast

import networkx as nx
from networkx import DiGraph

from tickflow.contracts.enums import FeedbackKind, NodeKind

if TYPE_CHECKING:
    from tickflow.core.scenario import BaseNode, Scenario

# Kinds pinned to the front and back of the evaluation order
_FIRST_KINDS = (NodeKind.DATA_SOURCE,)
_LAST_KINDS = (NodeKind.SINK,)


@dataclass
class NodeInfo:
    """Information about a node in the scenario graph."""

    node_id: str
    kind: NodeKind
    declaration_index: int


class ScenarioGraph:
    """Connectivity of one graph level (top level or a module interior).

    Wraps NetworkX DiGraph with domain-specific operations. Edges run from an
    emitting node to its destination; Groups are nodes without edges.
    """

    def __init__(self) -> None:
        self._graph: DiGraph[str] = nx.DiGraph()

    @property
    def node_count(self) -> int:
        """Number of nodes in the graph."""
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        """Number of edges in the graph."""
        return self._graph.number_of_edges()

    def has_node(self, node_id: str) -> bool:
        """Check if node exists."""
        return self._graph.has_node(node_id)

    def add_node(self, node_id: str, *, kind: NodeKind) -> None:
        """Add a node; declaration order is the insertion order."""
        info = NodeInfo(node_id=node_id, kind=kind, declaration_index=self.node_count)
        self._graph.add_node(node_id, info=info)

    def add_edge(self, from_node: str, to_node: str, *, label: str = "") -> None:
        """Add an edge between nodes.

        Args:
            from_node: Emitting node ID
            to_node: Destination node ID
            label: Output port name, if any
        """
        self._graph.add_edge(from_node, to_node, label=label)

    def get_node_info(self, node_id: str) -> NodeInfo:
        """Get NodeInfo for a node.

        Raises:
            KeyError: If node doesn't exist
        """
        if not self._graph.has_node(node_id):
            raise KeyError(f"Node not found: {node_id}")
        return cast(NodeInfo, self._graph.nodes[node_id]["info"])

    def get_edges(self) -> list[tuple[str, str, dict[str, Any]]]:
        """Get all edges with their data."""
        return [(u, v, dict(data)) for u, v, data in self._graph.edges(data=True)]

    def is_acyclic(self) -> bool:
        """Check if the graph is acyclic."""
        return nx.is_directed_acyclic_graph(self._graph)

    def find_cycle(self) -> list[str]:
        """Return one cycle as a node list, or [] when acyclic."""
        try:
            return [u for u, _ in nx.find_cycle(self._graph)]
        except nx.NetworkXNoCycle:
            return []

    def _declared(self, node_ids: Sequence[str]) -> list[str]:
        return sorted(node_ids, key=lambda n: self.get_node_info(n).declaration_index)

    def evaluation_order(self) -> list[str]:
        """Deterministic per-tick evaluation order.

        DataSources first and Sinks last; everything else in topological
        order of the condensation (strongly connected components), with ties
        and the members of each cycle in declaration order.
        """
        condensed = nx.condensation(self._graph)
        members: dict[int, list[str]] = {
            component: self._declared(list(condensed.nodes[component]["members"]))
            for component in condensed.nodes
        }

        def component_key(component: int) -> int:
            return min(self.get_node_info(n).declaration_index for n in members[component])

        middle: list[str] = []
        for component in nx.lexicographical_topological_sort(condensed, key=component_key):
            middle.extend(members[component])

        first = [n for n in middle if self.get_node_info(n).kind in _FIRST_KINDS]
        last = [n for n in middle if self.get_node_info(n).kind in _LAST_KINDS]
        rest = [n for n in middle if n not in first and n not in last]
        return first + rest + last

    def classify_emission(self, source: str, destination: str) -> FeedbackKind | None:
        """Classify an emission as self/external feedback, or None.

        An emission is feedback when it lands on the emitter itself or on a
        node from which the emitter can be reached again.
        """
        if source == destination:
            return FeedbackKind.SELF
        if (
            self._graph.has_node(source)
            and self._graph.has_node(destination)
            and nx.has_path(self._graph, destination, source)
        ):
            return FeedbackKind.EXTERNAL
        return None

    def upstream_of(self, node_id: str) -> set[str]:
        """All nodes that can reach ``node_id``."""
        return set(nx.ancestors(self._graph, node_id))

    @classmethod
    def from_nodes(cls, nodes: Sequence[BaseNode], *, enclosing: str | None = None) -> ScenarioGraph:
        """Build a graph for one level of a scenario.

        Edges to ``enclosing`` (a module's exit) and disconnected ports are
        not part of the level's graph.
        """
        graph = cls()
        for node in nodes:
            graph.add_node(node.node_id, kind=node.kind)
        for node in nodes:
            for port in node.output_ports():
                target = port.destination_node_id
                if target and target != enclosing and graph.has_node(target):
                    graph.add_edge(node.node_id, target, label=port.name or "")
        return graph

    @classmethod
    def from_scenario(cls, scenario: Scenario) -> ScenarioGraph:
        """Build the top-level graph of a validated scenario."""
        return cls.from_nodes(scenario.nodes)
