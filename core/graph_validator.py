"""
PRIVDAG GRAPH VALIDATOR - The Semantic Gate

Composes every check into one verdict for a graph:

    validate_nodes        identity, id shape, ports, positions, participants
  + validate_connections  edge rules and acyclicity (connection_rules.py)
  + check_completeness    required node categories, orphan participants
  = GraphValidationResult (plus topological order and orphan nodes)

Every check runs; nothing short-circuits. The graph is valid iff no error
was recorded. Orphan nodes are reported as a fact, not as an error.
"""
import re
from typing import Dict, List, Optional

from core.ontology import ErrorCode, NodeKind
from core.schemas import (
    Node,
    Edge,
    Participant,
    ComputeTaskData,
    DataResourceData,
    ComputeResourceData,
    ValidationResult,
    GraphValidationResult,
)
from core.connection_rules import validate_connections
from core.topology import topological_sort
from core.graph_store import GraphStore, find_orphans
from core.layout import is_within_bounds
from infrastructure.config import BoundsConfig, get_config

# Counter-style ids (node_12) or canonical UUIDs
NODE_ID_PATTERN = re.compile(
    r"^(?:node_\d+|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$",
    re.IGNORECASE,
)


# =============================================================================
# NODE CHECKS
# =============================================================================

def _check_ports(node: Node, result: ValidationResult) -> None:
    task = node.data
    if not isinstance(task, ComputeTaskData):
        return
    seen = set()
    for port in task.input_ports + task.output_ports:
        if not port.id:
            result.add(
                f"nodes.{node.id}.data",
                f"Task {node.id} has a port without an id",
                ErrorCode.INVALID_TASK_PORTS,
            )
        elif port.id in seen:
            result.add(
                f"nodes.{node.id}.data",
                f"Task {node.id} declares port {port.id} more than once",
                ErrorCode.INVALID_TASK_PORTS,
            )
        seen.add(port.id)


def validate_nodes(
    nodes: List[Node],
    participants: Optional[List[Participant]] = None,
    bounds: Optional[BoundsConfig] = None,
) -> ValidationResult:
    """
    Node-level checks.

    Args:
        nodes: Nodes in graph order
        participants: Declared participants. When given, every node-level
            participant reference must name one of them.
        bounds: Legal position area (config [bounds] by default)
    """
    result = ValidationResult()
    if bounds is None:
        bounds = get_config().bounds
    declared = {p.id for p in participants} if participants is not None else None

    seen_ids = set()
    for node in nodes:
        if node.id in seen_ids:
            result.add(
                f"nodes.{node.id}.id",
                f"Node id {node.id} is used more than once",
                ErrorCode.DUPLICATE_NODE_ID,
            )
        seen_ids.add(node.id)

    for node in nodes:
        if not NODE_ID_PATTERN.match(node.id):
            result.add(
                f"nodes.{node.id}.id",
                f"Node id {node.id} is neither node_<n> nor a UUID",
                ErrorCode.INVALID_NODE_ID_FORMAT,
            )

        _check_ports(node, result)

        if not is_within_bounds(node.position, bounds):
            result.add(
                f"nodes.{node.id}.position",
                f"Node {node.id} at ({node.position.x}, {node.position.y}) is outside "
                f"({bounds.min_x}, {bounds.min_y})-({bounds.max_x}, {bounds.max_y})",
                ErrorCode.INVALID_NODE_POSITION,
            )

        if declared is not None and node.participant_id and node.participant_id not in declared:
            result.add(
                f"nodes.{node.id}.participantId",
                f"Node {node.id} references undeclared participant {node.participant_id}",
                ErrorCode.INVALID_PARTICIPANT_ID,
            )

    return result


# =============================================================================
# COMPLETENESS
# =============================================================================

def implied_participants(nodes: List[Node]) -> List[str]:
    """Participants named inside payloads (data source, resource owner), in order."""
    implied: Dict[str, None] = {}
    for node in nodes:
        if isinstance(node.data, DataResourceData):
            implied.setdefault(node.data.source, None)
        elif isinstance(node.data, ComputeResourceData):
            implied.setdefault(node.data.participant_id, None)
    return [p for p in implied if p]


def check_completeness(nodes: List[Node]) -> ValidationResult:
    """A graph needs data and a task, and every implied participant needs a node."""
    result = ValidationResult()

    if not any(n.kind == NodeKind.DATA.value for n in nodes):
        result.add(
            "nodes",
            "A task graph needs at least one data resource",
            ErrorCode.MISSING_DATA_RESOURCE,
        )
    if not any(n.kind == NodeKind.COMPUTE.value for n in nodes):
        result.add(
            "nodes",
            "A task graph needs at least one compute task",
            ErrorCode.MISSING_COMPUTE_TASK,
        )

    represented = {n.participant_id for n in nodes if n.participant_id}
    for participant in implied_participants(nodes):
        if participant not in represented:
            result.add(
                "nodes",
                f"Participant {participant} is not represented by any node",
                ErrorCode.ORPHAN_PARTICIPANT,
            )

    return result


# =============================================================================
# FULL GRAPH
# =============================================================================

def validate_graph(
    nodes: List[Node],
    edges: List[Edge],
    participants: Optional[List[Participant]] = None,
    bounds: Optional[BoundsConfig] = None,
) -> GraphValidationResult:
    """
    Validate a whole graph.

    Returns:
        GraphValidationResult; topological_order is set only when acyclic
    """
    topology = topological_sort(edges, nodes)
    orphans = find_orphans(nodes, edges)

    result = GraphValidationResult(
        has_cycles=topology.has_cycle,
        has_orphan_nodes=len(orphans) > 0,
        topological_order=None if topology.has_cycle else topology.order,
        orphan_nodes=orphans,
    )
    result.extend(validate_nodes(nodes, participants, bounds))
    result.extend(validate_connections(nodes, edges, topology))
    result.extend(check_completeness(nodes))
    return result


def validate_current_graph(
    store: GraphStore,
    participants: Optional[List[Participant]] = None,
    graph_id: Optional[str] = None,
) -> GraphValidationResult:
    """
    Validate the active graph (or graph_id) on a read-consistent snapshot.

    Raises:
        GraphNotFoundError: If there is no such graph
    """
    graph = store.snapshot(graph_id)
    return validate_graph(graph.node_list, graph.edge_list, participants)
