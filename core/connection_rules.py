"""
PRIVDAG CONNECTION RULES - Edge Legality

Evaluates every edge against independent rules and reports every violation
(never stops at the first one):

1. Endpoint existence     SourceNodeNotFound / TargetNodeNotFound
2. No self-loop           SelfConnection
3. Data-resource sink     InvalidDataResourceTarget (data -> data)
4. Export-task source     InvalidExportTaskSource (data-export -> data-export)
5. Port compatibility     IncompatibleTaskConnection (typed ports disagree)
6. Unique edge ids        DuplicateEdgeId
7. Acyclicity             CircularDependency (one graph-level issue)

Inputs are never mutated.
"""
from typing import Dict, List, Optional

from core.ontology import ErrorCode, NodeKind, is_export_task
from core.schemas import Node, Edge, ComputeTaskData, Port, ValidationResult, enum_value
from core.topology import topological_sort, TopologyResult


def _task(node: Optional[Node]) -> Optional[ComputeTaskData]:
    if node is not None and isinstance(node.data, ComputeTaskData):
        return node.data
    return None


def _port(node: Optional[Node], handle: Optional[str]) -> Optional[Port]:
    task = _task(node)
    if task is None or not handle:
        return None
    return task.find_port(handle)


def check_edge(edge: Edge, node_map: Dict[str, Node]) -> ValidationResult:
    """Per-edge rules (1-5) for a single edge."""
    result = ValidationResult()
    source = node_map.get(edge.source)
    target = node_map.get(edge.target)

    if source is None:
        result.add(
            f"edges.{edge.id}.source",
            f"Source node {edge.source} does not exist",
            ErrorCode.SOURCE_NODE_NOT_FOUND,
        )
    if target is None:
        result.add(
            f"edges.{edge.id}.target",
            f"Target node {edge.target} does not exist",
            ErrorCode.TARGET_NODE_NOT_FOUND,
        )

    if edge.source == edge.target:
        result.add(
            f"edges.{edge.id}",
            "A connection cannot link a node to itself",
            ErrorCode.SELF_CONNECTION,
        )

    if source is None or target is None:
        return result

    if source.kind == NodeKind.DATA.value and target.kind == NodeKind.DATA.value:
        result.add(
            f"edges.{edge.id}",
            "A data resource cannot be the target of another data resource",
            ErrorCode.INVALID_DATA_RESOURCE_TARGET,
        )

    source_task, target_task = _task(source), _task(target)
    if (
        source_task is not None and target_task is not None
        and is_export_task(enum_value(source_task.task_type))
        and is_export_task(enum_value(target_task.task_type))
    ):
        result.add(
            f"edges.{edge.id}",
            "A data export task cannot feed another data export task",
            ErrorCode.INVALID_EXPORT_TASK_SOURCE,
        )

    out_port = _port(source, edge.source_handle)
    in_port = _port(target, edge.target_handle)
    if (
        out_port is not None and in_port is not None
        and out_port.data_type is not None and in_port.data_type is not None
        and enum_value(out_port.data_type) != enum_value(in_port.data_type)
    ):
        result.add(
            f"edges.{edge.id}",
            f"Port {out_port.id} ({enum_value(out_port.data_type)}) cannot feed "
            f"port {in_port.id} ({enum_value(in_port.data_type)})",
            ErrorCode.INCOMPATIBLE_TASK_CONNECTION,
        )

    return result


def validate_connections(
    nodes: List[Node],
    edges: List[Edge],
    topology: Optional[TopologyResult] = None,
) -> ValidationResult:
    """
    Check every edge of a graph.

    Args:
        nodes: All nodes of the graph (first occurrence wins on duplicate ids)
        edges: All edges of the graph
        topology: A Kahn pass already computed for these edges, if any

    Returns:
        ValidationResult with every violation found
    """
    result = ValidationResult()
    node_map: Dict[str, Node] = {}
    for node in nodes:
        node_map.setdefault(node.id, node)

    seen_edge_ids = set()
    for edge in edges:
        if edge.id in seen_edge_ids:
            result.add(
                f"edges.{edge.id}.id",
                f"Edge id {edge.id} is used more than once",
                ErrorCode.DUPLICATE_EDGE_ID,
            )
        seen_edge_ids.add(edge.id)
        result.extend(check_edge(edge, node_map))

    if topology is None:
        topology = topological_sort(edges, nodes)
    if topology.has_cycle:
        result.add(
            "edges",
            f"The graph contains a circular dependency through {topology.cycle_witness}",
            ErrorCode.CIRCULAR_DEPENDENCY,
        )

    return result
