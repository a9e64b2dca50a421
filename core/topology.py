"""
PRIVDAG TOPOLOGY - Ordering and Cycle Detection

Two engines over the same edge set:

1. Kahn pass (pure Python, deterministic)
   topological_sort() builds an adjacency map and in-degree counts for every
   node touching an edge, seeds a queue with the zero in-degree nodes and
   emits nodes as their in-degree drops to zero. The graph is acyclic iff
   every endpoint was emitted. On a cycle, a witness node and one concrete
   cycle are recovered from the unemitted remainder.

2. rustworkx bridge
   build_digraph() mirrors the edge set into a rx.PyDiGraph (string id <->
   integer index maps) and execution_layers() groups an acyclic graph into
   parallel execution waves with rx.topological_generations().

Determinism:
    The seed order is node insertion order (when nodes are supplied), then
    first appearance in the edge list. Same inputs, same order, every run.

Complexity: O(V + E) for every function in this module.
"""
import rustworkx as rx
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Iterable

from core.schemas import Node, Edge
from core.graph_store import GraphError


class CycleError(GraphError):
    """Raised when an operation needs an acyclic graph and gets a cycle."""
    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Cycle detected: {' -> '.join(cycle + cycle[:1])}")


@dataclass
class TopologyResult:
    """
    Outcome of one Kahn pass.

    order only holds nodes that touch at least one edge. On a cycle,
    cycle_witness is a node on a cycle and cycle lists that cycle in edge
    direction (the closing edge runs from the last entry back to the first).
    """
    order: List[str] = field(default_factory=list)
    has_cycle: bool = False
    cycle_witness: Optional[str] = None
    cycle: List[str] = field(default_factory=list)

    def to_dict(self):
        result = {"order": list(self.order), "hasCycle": self.has_cycle}
        if self.has_cycle:
            result["cycleWitness"] = self.cycle_witness
            result["cycle"] = list(self.cycle)
        return result


# =============================================================================
# KAHN PASS
# =============================================================================

def _seed_order(endpoints: Iterable[str], nodes: Optional[List[Node]]) -> List[str]:
    """Endpoints by node insertion order, unknown endpoints after, by first sight."""
    endpoints = list(endpoints)
    if not nodes:
        return endpoints
    rank = {}
    for node in nodes:
        rank.setdefault(node.id, len(rank))
    first_seen = {nid: i for i, nid in enumerate(endpoints)}
    return sorted(
        endpoints,
        key=lambda nid: (0, rank[nid]) if nid in rank else (1, first_seen[nid]),
    )


def topological_sort(edges: List[Edge], nodes: Optional[List[Node]] = None) -> TopologyResult:
    """
    Kahn's algorithm over the endpoints of edges.

    Args:
        edges: Edge set (parallel edges and dangling endpoints are fine)
        nodes: Optional full node list; only used to fix the seed order

    Returns:
        TopologyResult
    """
    adjacency: Dict[str, List[str]] = {}
    predecessors: Dict[str, List[str]] = {}
    in_degree: Dict[str, int] = {}

    for edge in edges:
        for nid in (edge.source, edge.target):
            if nid not in in_degree:
                in_degree[nid] = 0
                adjacency[nid] = []
                predecessors[nid] = []
        adjacency[edge.source].append(edge.target)
        predecessors[edge.target].append(edge.source)
        in_degree[edge.target] += 1

    seeded = _seed_order(in_degree.keys(), nodes)
    queue = deque(nid for nid in seeded if in_degree[nid] == 0)
    order: List[str] = []
    visited = set()

    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        order.append(current)

        for successor in adjacency[current]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                queue.append(successor)

    if len(order) == len(in_degree):
        return TopologyResult(order=order)

    # Every unemitted node still has an unemitted predecessor, so walking
    # predecessors from any of them must revisit a node, and that node sits
    # on a cycle.
    start = next(nid for nid in seeded if nid not in visited)
    walk: List[str] = []
    position: Dict[str, int] = {}
    current = start
    while current not in position:
        position[current] = len(walk)
        walk.append(current)
        current = next(p for p in predecessors[current] if p not in visited)

    loop = walk[position[current]:]
    cycle = [loop[0]] + list(reversed(loop[1:]))
    return TopologyResult(order=order, has_cycle=True, cycle_witness=current, cycle=cycle)


def is_acyclic(edges: List[Edge]) -> bool:
    return not topological_sort(edges).has_cycle


# =============================================================================
# RUSTWORKX BRIDGE
# =============================================================================

@dataclass
class DigraphBridge:
    """A rx.PyDiGraph plus the id <-> index maps that make it addressable."""
    graph: rx.PyDiGraph
    node_map: Dict[str, int]
    inv_map: Dict[int, str]

    def ids(self, indices: Iterable[int]) -> List[str]:
        return [self.inv_map[idx] for idx in indices]


def build_digraph(edges: List[Edge], nodes: Optional[List[Node]] = None) -> DigraphBridge:
    """
    Mirror a node/edge set into rustworkx.

    Nodes are added first in insertion order (isolated ones included),
    then any endpoint the node list does not know about.
    """
    graph = rx.PyDiGraph(multigraph=True)
    node_map: Dict[str, int] = {}

    def index_of(nid: str) -> int:
        if nid not in node_map:
            node_map[nid] = graph.add_node(nid)
        return node_map[nid]

    for node in nodes or []:
        index_of(node.id)
    for edge in edges:
        graph.add_edge(index_of(edge.source), index_of(edge.target), edge.id)

    return DigraphBridge(
        graph=graph,
        node_map=node_map,
        inv_map={idx: nid for nid, idx in node_map.items()},
    )


def execution_layers(edges: List[Edge], nodes: Optional[List[Node]] = None) -> List[List[str]]:
    """
    Group nodes into waves that can run in parallel.

    Wave k holds the nodes whose longest chain of predecessors has length k.
    Within a wave, nodes keep insertion order.

    Raises:
        CycleError: If the edge set contains a cycle
    """
    bridge = build_digraph(edges, nodes)
    if len(bridge.node_map) == 0:
        return []
    try:
        generations = rx.topological_generations(bridge.graph)
    except rx.DAGHasCycle:
        raise CycleError(topological_sort(edges, nodes).cycle)
    return [bridge.ids(sorted(generation)) for generation in generations]
