"""
PRIVDAG CORE - Graph integrity and topology engine.

This package provides:
- The task graph data model (schemas, ontology)
- The in-memory Graph Store and id generation
- Topology analysis, connection rules and graph-level validation
- The JSON document boundary (export / schema gate / import)
"""

from core.graph_store import (
    GraphStore,
    GraphState,
    GraphError,
    GraphNotFoundError,
    DuplicateGraphError,
    InvalidPayloadError,
)
from core.identifiers import IdGenerator
from core.topology import topological_sort, execution_layers, TopologyResult, CycleError
from core.connection_rules import validate_connections
from core.graph_validator import validate_graph, validate_nodes, validate_current_graph
from core.document import (
    export_graph,
    export_current_graph,
    import_document,
    validate_document,
    ImportResult,
)

__all__ = [
    "GraphStore",
    "GraphState",
    "GraphError",
    "GraphNotFoundError",
    "DuplicateGraphError",
    "InvalidPayloadError",
    "IdGenerator",
    "topological_sort",
    "execution_layers",
    "TopologyResult",
    "CycleError",
    "validate_connections",
    "validate_graph",
    "validate_nodes",
    "validate_current_graph",
    "export_graph",
    "export_current_graph",
    "import_document",
    "validate_document",
    "ImportResult",
]
