"""
PRIVDAG GRAPH STORE - The Authoritative In-Memory State

Holds any number of independent task graphs, each addressable by id, plus
a pointer to the currently active graph. Every mutating operation targets
an explicit graph id or, when none is given, the active graph.

Invariants maintained here:
- Node and edge ids are unique within a graph (minted by IdGenerator)
- A node's element type always matches its payload tag
- Deleting a node deletes every edge that references it, atomically
- At most one edge per (source, target) pair is created through add_edge
- The dirty flag is set by every effective mutation and cleared on export

Error tiers:
- Programmer errors (unknown graph where one is required, malformed
  payloads) raise GraphError subclasses
- Deleting something already gone, or re-adding an existing connection,
  is a silent no-op
- Graph legality is NOT checked here; see graph_validator.py

Thread Safety:
    One RLock guards every graph and the id counters. Readers that need a
    consistent view across several calls should use snapshot().
"""
import logging
import threading
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Mapping

import msgspec

from core.identifiers import IdGenerator, max_suffix, NODE_PREFIX, EDGE_PREFIX
from core.schemas import (
    Node,
    Edge,
    Position,
    Size,
    Viewport,
    ConnectionData,
    NodePayload,
    PAYLOAD_TYPES,
    payload_kind,
    enum_value,
    now_utc,
)
from infrastructure.logger import MutationLogger, LoggerConfig, get_logger as get_mutation_logger
from infrastructure.config import AppConfig, get_config

log = logging.getLogger("privdag.store")


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class GraphError(Exception):
    """Base exception for graph store operations."""
    pass


class GraphNotFoundError(GraphError):
    """Raised when an operation requires a graph that does not exist."""
    def __init__(self, graph_id: Optional[str]):
        self.graph_id = graph_id
        if graph_id is None:
            super().__init__("No active graph")
        else:
            super().__init__(f"Graph not found: {graph_id}")


class DuplicateGraphError(GraphError):
    """Raised when creating a graph under an id that is taken."""
    def __init__(self, graph_id: str):
        self.graph_id = graph_id
        super().__init__(f"Graph already exists: {graph_id}")


class InvalidPayloadError(GraphError):
    """Raised when a node payload, position or connection data is malformed."""
    pass


# =============================================================================
# GRAPH STATE
# =============================================================================

@dataclass
class GraphState:
    """
    One task graph.

    nodes and edges are dicts keyed by id; Python dicts keep insertion
    order, which is the order exports and topological seeding rely on.
    """
    id: str
    name: str
    nodes: Dict[str, Node] = field(default_factory=dict)
    edges: Dict[str, Edge] = field(default_factory=dict)
    dirty: bool = False
    viewport: Optional[Viewport] = None
    created_at: str = field(default_factory=now_utc)

    @property
    def node_list(self) -> List[Node]:
        return list(self.nodes.values())

    @property
    def edge_list(self) -> List[Edge]:
        return list(self.edges.values())

    def find_edge(self, source: str, target: str) -> Optional[Edge]:
        for edge in self.edges.values():
            if edge.source == source and edge.target == target:
                return edge
        return None

    def copy(self) -> "GraphState":
        """Shallow copy; nodes and edges are immutable from the store's view."""
        return GraphState(
            id=self.id,
            name=self.name,
            nodes=dict(self.nodes),
            edges=dict(self.edges),
            dirty=self.dirty,
            viewport=self.viewport,
            created_at=self.created_at,
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "dirty": self.dirty,
            "nodeCount": len(self.nodes),
            "edgeCount": len(self.edges),
            "createdAt": self.created_at,
        }


def _coerce(value: Any, target: type, what: str) -> Any:
    """Accept a Struct of the target type or its wire (dict) form."""
    if isinstance(value, target):
        return value
    try:
        return msgspec.convert(value, target)
    except msgspec.ValidationError as e:
        raise InvalidPayloadError(f"Invalid {what}: {e}") from e


# =============================================================================
# GRAPH STORE
# =============================================================================

class GraphStore:
    """
    Registry of task graphs with invariant-preserving CRUD.

    Usage:
        store = GraphStore()
        store.create_graph("g1", "Joint statistics")

        data = store.add_node("data", {"x": 40, "y": 40},
                              DataResourceData.create("users", source="bank"))
        task = store.add_node("compute", {"x": 40, "y": 300},
                              ComputeTaskData.create("intersect", "PSI"))
        store.add_edge(data.id, task.id)

        store.find_orphan_nodes()   # []
    """

    def __init__(
        self,
        id_generator: Optional[IdGenerator] = None,
        mutation_logger: Optional[MutationLogger] = None,
        default_size: Optional[Size] = None,
    ):
        """
        Args:
            id_generator: Shared id source. A fresh one by default.
            mutation_logger: Event sink. The global MutationLogger by default.
            default_size: Size given to nodes created without one.
        """
        self._graphs: Dict[str, GraphState] = {}
        self._active_graph_id: Optional[str] = None
        self._ids = id_generator or IdGenerator()
        self._mutation_logger = mutation_logger
        self._default_size = default_size or Size(width=160.0, height=80.0)
        self._lock = threading.RLock()

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None) -> "GraphStore":
        """Store wired to the [layout] and [logging] config sections."""
        config = config or get_config()
        mutation_logger = MutationLogger(LoggerConfig(
            enable_file_log=config.logging.mutation_file_log,
            log_path=Path(config.logging.mutation_log_path),
            buffer_size=config.logging.mutation_buffer_size,
        ))
        return cls(
            mutation_logger=mutation_logger,
            default_size=Size(
                width=config.layout.default_node_width,
                height=config.layout.default_node_height,
            ),
        )

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def ids(self) -> IdGenerator:
        return self._ids

    @property
    def mutations(self) -> MutationLogger:
        if self._mutation_logger is None:
            return get_mutation_logger()
        return self._mutation_logger

    @property
    def active_graph_id(self) -> Optional[str]:
        return self._active_graph_id

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # =========================================================================
    # GRAPH OPERATIONS
    # =========================================================================

    def create_graph(self, graph_id: str, name: Optional[str] = None) -> GraphState:
        """
        Insert an empty graph.

        The first graph created (or any graph created while none is active)
        becomes the active graph.

        Raises:
            DuplicateGraphError: If graph_id is taken
        """
        with self._lock:
            if graph_id in self._graphs:
                raise DuplicateGraphError(graph_id)
            graph = GraphState(id=graph_id, name=name or f"Graph {len(self._graphs) + 1}")
            self._install(graph)
            self.mutations.log_graph_created(graph_id)
            log.info("Created graph %s (%s)", graph_id, graph.name)
            return graph

    def delete_graph(self, graph_id: str) -> None:
        """Remove a graph. Clears the active pointer if it pointed here. Idempotent."""
        with self._lock:
            if self._graphs.pop(graph_id, None) is None:
                return
            if self._active_graph_id == graph_id:
                self._active_graph_id = None
            self.mutations.log_graph_deleted(graph_id)
            log.info("Deleted graph %s", graph_id)

    def set_active_graph(self, graph_id: str) -> None:
        with self._lock:
            if graph_id not in self._graphs:
                raise GraphNotFoundError(graph_id)
            self._active_graph_id = graph_id

    def has_graph(self, graph_id: str) -> bool:
        with self._lock:
            return graph_id in self._graphs

    def get_graph(self, graph_id: Optional[str] = None) -> GraphState:
        """
        Live graph state (the active graph by default).

        Raises:
            GraphNotFoundError: If the graph does not exist / nothing is active
        """
        with self._lock:
            return self._require(graph_id)

    def snapshot(self, graph_id: Optional[str] = None) -> GraphState:
        """Read-consistent copy for validation and export passes."""
        with self._lock:
            return self._require(graph_id).copy()

    def list_graphs(self) -> List[GraphState]:
        with self._lock:
            return list(self._graphs.values())

    def new_graph_id(self) -> str:
        """An unused graph_<n> id."""
        with self._lock:
            graph_id = self._ids.next_graph_id()
            while graph_id in self._graphs:
                graph_id = self._ids.next_graph_id()
            return graph_id

    def import_graph(
        self,
        nodes: List[Node],
        edges: List[Edge],
        name: str,
        viewport: Optional[Viewport] = None,
    ) -> GraphState:
        """
        Load already-validated elements into a brand-new graph.

        The graph gets a fresh id (never the document's own). The id
        generator is advanced past every counter-style id loaded, and is
        never moved backwards. The new graph starts clean.
        """
        with self._lock:
            graph_id = self.new_graph_id()
            graph = GraphState(
                id=graph_id,
                name=name,
                nodes={n.id: n for n in nodes},
                edges={e.id: e for e in edges},
                viewport=viewport,
            )
            self._install(graph)

            self._ids.reset(
                max(max_suffix(graph.nodes, NODE_PREFIX), self._ids.node_watermark),
                max(max_suffix(graph.edges, EDGE_PREFIX), self._ids.edge_watermark),
            )
            self.mutations.log_graph_imported(graph_id, len(graph.nodes))
            log.info(
                "Imported graph %s (%s): %d nodes, %d edges",
                graph_id, name, len(graph.nodes), len(graph.edges),
            )
            return graph

    # =========================================================================
    # NODE OPERATIONS
    # =========================================================================

    def add_node(
        self,
        node_type: str,
        position: Any,
        payload: Any,
        *,
        label: Optional[str] = None,
        participant_id: Optional[str] = None,
        size: Any = None,
        graph_id: Optional[str] = None,
    ) -> Node:
        """
        Create a node and append it to the graph.

        Args:
            node_type: Element kind ("data", "compute", "model", "compute-resource")
            position: Position or {"x": .., "y": ..}
            payload: Payload Struct, or its wire dict (the "type" tag may be omitted)
            label: Display label (defaults to the payload name)
            participant_id: Owning participant (defaults to the one the payload names)
            size: Size or {"width": .., "height": ..}

        Raises:
            GraphNotFoundError: If the target graph does not exist
            InvalidPayloadError: If the payload is malformed or of another kind
        """
        with self._lock:
            graph = self._require(graph_id)
            kind = enum_value(node_type)
            payload_type = PAYLOAD_TYPES.get(kind)
            if payload_type is None:
                raise InvalidPayloadError(f"Unknown node type: {kind!r}")

            if isinstance(payload, Mapping):
                payload = _coerce({**payload, "type": payload.get("type", kind)}, NodePayload, "payload")
            if not isinstance(payload, payload_type):
                raise InvalidPayloadError(
                    f"Payload of kind {payload_kind(payload)!r} cannot back a {kind!r} node"
                    if isinstance(payload, tuple(PAYLOAD_TYPES.values()))
                    else f"Invalid payload for a {kind!r} node"
                )

            node = Node.create(
                id=self._ids.next_node_id(),
                data=payload,
                position=_coerce(position, Position, "position"),
                label=label,
                participant_id=participant_id,
                size=_coerce(size, Size, "size") if size is not None else self._default_size,
            )
            graph.nodes[node.id] = node
            graph.dirty = True
            self.mutations.log_node_created(graph.id, node.id, kind)
            log.debug("Added node %s (%s) to %s", node.id, kind, graph.id)
            return node

    def get_node(self, node_id: str, graph_id: Optional[str] = None) -> Optional[Node]:
        with self._lock:
            graph = self._resolve(graph_id)
            return graph.nodes.get(node_id) if graph else None

    def delete_node(self, node_id: str, graph_id: Optional[str] = None) -> None:
        """Remove a node together with every edge touching it. No-op if absent."""
        with self._lock:
            graph = self._resolve(graph_id)
            if graph is None or node_id not in graph.nodes:
                return
            node = graph.nodes.pop(node_id)
            doomed = [
                edge_id for edge_id, edge in graph.edges.items()
                if edge.source == node_id or edge.target == node_id
            ]
            for edge_id in doomed:
                del graph.edges[edge_id]
            graph.dirty = True
            self.mutations.log_node_deleted(graph.id, node_id, node.kind, len(doomed))
            log.debug("Deleted node %s from %s (%d edges cascaded)", node_id, graph.id, len(doomed))

    def update_node(
        self,
        node_id: str,
        partial_payload: Mapping[str, Any],
        graph_id: Optional[str] = None,
    ) -> Optional[Node]:
        """
        Shallow-merge fields into a node's payload. No-op if the node is absent.

        Keys may use wire (camelCase) or attribute (snake_case) names. The
        merged payload is re-validated as a whole; the payload kind cannot
        change.

        Raises:
            InvalidPayloadError: If the merged payload is invalid (node untouched)
        """
        with self._lock:
            graph = self._resolve(graph_id)
            if graph is None or node_id not in graph.nodes:
                return None
            node = graph.nodes[node_id]
            payload_type = type(node.data)
            wire_names = {f.name: f.encode_name for f in msgspec.structs.fields(payload_type)}

            merged = msgspec.to_builtins(node.data)
            for key, value in partial_payload.items():
                wire_key = wire_names.get(key, key)
                if wire_key == "type" and enum_value(value) != node.kind:
                    raise InvalidPayloadError(
                        f"Cannot change payload kind of {node_id} from {node.kind!r}"
                    )
                merged[wire_key] = msgspec.to_builtins(value)

            updated = msgspec.structs.replace(
                node, data=_coerce(merged, payload_type, "payload")
            )
            graph.nodes[node_id] = updated
            graph.dirty = True
            self.mutations.log_node_updated(graph.id, node_id, node.kind)
            return updated

    def move_node(
        self,
        node_id: str,
        position: Any,
        graph_id: Optional[str] = None,
    ) -> Optional[Node]:
        """Set a node's position. No-op if the node is absent."""
        with self._lock:
            graph = self._resolve(graph_id)
            if graph is None or node_id not in graph.nodes:
                return None
            moved = msgspec.structs.replace(
                graph.nodes[node_id], position=_coerce(position, Position, "position")
            )
            graph.nodes[node_id] = moved
            graph.dirty = True
            self.mutations.log_node_updated(graph.id, node_id, moved.kind)
            return moved

    # =========================================================================
    # EDGE OPERATIONS
    # =========================================================================

    def add_edge(
        self,
        source: str,
        target: str,
        data: Any = None,
        *,
        edge_type: Optional[str] = None,
        source_handle: Optional[str] = None,
        target_handle: Optional[str] = None,
        graph_id: Optional[str] = None,
    ) -> Edge:
        """
        Connect source to target.

        If an edge with the same (source, target) pair exists, it is
        returned and nothing changes: no new id, no dirty flag. Endpoints
        are not checked here; dangling references are a validation verdict.

        Raises:
            GraphNotFoundError: If the target graph does not exist
            InvalidPayloadError: If data is not valid connection data
        """
        with self._lock:
            graph = self._require(graph_id)
            existing = graph.find_edge(source, target)
            if existing is not None:
                return existing

            connection_data = _coerce(data, ConnectionData, "connection data") if data is not None else None
            edge = Edge(
                id=self._ids.next_edge_id(),
                source=source,
                target=target,
                type=edge_type,
                source_handle=source_handle,
                target_handle=target_handle,
                data=connection_data,
            )
            graph.edges[edge.id] = edge
            graph.dirty = True
            self.mutations.log_edge_created(graph.id, edge.id, source, target)
            log.debug("Added edge %s: %s -> %s in %s", edge.id, source, target, graph.id)
            return edge

    def delete_edge(self, edge_id: str, graph_id: Optional[str] = None) -> None:
        """Remove an edge by id. No-op if absent."""
        with self._lock:
            graph = self._resolve(graph_id)
            if graph is None or edge_id not in graph.edges:
                return
            edge = graph.edges.pop(edge_id)
            graph.dirty = True
            self.mutations.log_edge_deleted(graph.id, edge_id, edge.source, edge.target)

    # =========================================================================
    # QUERIES & GRAPH-LEVEL STATE
    # =========================================================================

    def find_orphan_nodes(self, graph_id: Optional[str] = None) -> List[str]:
        """Ids of nodes touched by no edge, in node insertion order."""
        with self._lock:
            graph = self._resolve(graph_id)
            if graph is None:
                return []
            return find_orphans(graph.node_list, graph.edge_list)

    def set_viewport(self, viewport: Any, graph_id: Optional[str] = None) -> Viewport:
        with self._lock:
            graph = self._require(graph_id)
            graph.viewport = _coerce(viewport, Viewport, "viewport")
            return graph.viewport

    def mark_clean(self, graph_id: Optional[str] = None) -> None:
        """Record that the graph matches its last saved/exported state."""
        with self._lock:
            self._require(graph_id).dirty = False

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _install(self, graph: GraphState) -> None:
        self._graphs[graph.id] = graph
        if self._active_graph_id is None:
            self._active_graph_id = graph.id

    def _resolve(self, graph_id: Optional[str]) -> Optional[GraphState]:
        key = graph_id if graph_id is not None else self._active_graph_id
        if key is None:
            return None
        return self._graphs.get(key)

    def _require(self, graph_id: Optional[str]) -> GraphState:
        graph = self._resolve(graph_id)
        if graph is None:
            raise GraphNotFoundError(graph_id if graph_id is not None else self._active_graph_id)
        return graph

    def __len__(self) -> int:
        return len(self._graphs)

    def __contains__(self, graph_id: str) -> bool:
        return self.has_graph(graph_id)


def find_orphans(nodes: List[Node], edges: List[Edge]) -> List[str]:
    """Nodes that are neither the source nor the target of any edge."""
    connected = set()
    for edge in edges:
        connected.add(edge.source)
        connected.add(edge.target)
    return [n.id for n in nodes if n.id not in connected]
