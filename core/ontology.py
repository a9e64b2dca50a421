"""
PRIVDAG ONTOLOGY - The Dictionary of the System

If schemas.py is the Grammar (how elements and connections are shaped),
ontology.py is the Dictionary (the words a task graph may use).

This module defines:
- Enums: The vocabulary (NodeKind, ComputeTaskType, FieldType, ...)
- ErrorCode: The semantic validation taxonomy (graph-level verdicts)
- SchemaErrorCode: The syntactic taxonomy used by the document schema gate
- Lookup helpers used by the validators

Two error namespaces are kept apart. A SchemaErrorCode
says "this document is not shaped like a task graph"; an ErrorCode says
"this is a task graph, but it is not a legal one".
"""
from typing import Dict, FrozenSet
from enum import Enum


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class NodeKind(str, Enum):
    """Canvas element kinds. The value is the wire tag."""
    DATA = "data"                            # Data resource (table / file)
    COMPUTE = "compute"                      # Compute task (PSI, MPC, FL, ...)
    MODEL = "model"                          # Model resource (TEE method)
    COMPUTE_RESOURCE = "compute-resource"    # Compute resource (TEE host)


class ComputeTaskType(str, Enum):
    """Algorithm family of a compute task."""
    PSI = "PSI"                      # Private set intersection
    MPC = "MPC"                      # Multi-party computation
    PIR = "PIR"                      # Private information retrieval
    FL = "FL"                        # Federated learning
    DATA_IMPORT = "data-import"
    DATA_EXPORT = "data-export"
    DATA_FILTER = "data-filter"
    DATA_JOIN = "data-join"


class FieldType(str, Enum):
    """Column / parameter / port data types."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    ARRAY = "array"
    OBJECT = "object"


class MarkerType(str, Enum):
    """Connection end marker shapes."""
    ARROW = "arrow"
    TRAPEZOID = "trapezoid"


class ConnectionType(str, Enum):
    """What a connection carries."""
    DATA = "data"
    CONTROL = "control"


class DataResourceType(str, Enum):
    TABLE = "table"
    FILE = "file"


class ParticipantType(str, Enum):
    """Role of a participant (swimlane owner)."""
    DATA = "data"
    COMPUTE = "compute"
    RESULT = "result"


# =============================================================================
# ERROR TAXONOMIES
# =============================================================================

class ErrorCode(str, Enum):
    """Stable semantic error codes returned by the graph validators."""
    DUPLICATE_NODE_ID = "DuplicateNodeId"
    INVALID_NODE_ID_FORMAT = "InvalidNodeIdFormat"
    INVALID_TASK_PORTS = "InvalidTaskPorts"
    INVALID_NODE_POSITION = "InvalidNodePosition"
    INVALID_PARTICIPANT_ID = "InvalidParticipantId"
    DUPLICATE_EDGE_ID = "DuplicateEdgeId"
    SOURCE_NODE_NOT_FOUND = "SourceNodeNotFound"
    TARGET_NODE_NOT_FOUND = "TargetNodeNotFound"
    SELF_CONNECTION = "SelfConnection"
    INVALID_DATA_RESOURCE_TARGET = "InvalidDataResourceTarget"
    INVALID_EXPORT_TASK_SOURCE = "InvalidExportTaskSource"
    CIRCULAR_DEPENDENCY = "CircularDependency"
    INCOMPATIBLE_TASK_CONNECTION = "IncompatibleTaskConnection"
    MISSING_DATA_RESOURCE = "MissingDataResource"
    MISSING_COMPUTE_TASK = "MissingComputeTask"
    ORPHAN_PARTICIPANT = "OrphanParticipant"
    INCOMPATIBLE_VERSION = "IncompatibleVersion"


class SchemaErrorCode(str, Enum):
    """Codes for structural (schema gate) violations, one per violation kind."""
    MISSING_FIELD = "MissingField"
    INVALID_TYPE = "InvalidType"
    INVALID_ENUM_VALUE = "InvalidEnumValue"
    OUT_OF_RANGE = "OutOfRange"
    INVALID_VALUE = "InvalidValue"
    CONFLICTING_TASK_CONFIG = "ConflictingTaskConfig"
    ELEMENT_TYPE_MISMATCH = "ElementTypeMismatch"


# Codes that make a document impossible to load, even as a draft:
# the store keys nodes and edges by id.
IDENTITY_ERROR_CODES: FrozenSet[str] = frozenset({
    ErrorCode.DUPLICATE_NODE_ID.value,
    ErrorCode.DUPLICATE_EDGE_ID.value,
})


# =============================================================================
# LOOKUPS
# =============================================================================

# Participant role implied by the kind of node that references it
PARTICIPANT_ROLE_BY_KIND: Dict[str, ParticipantType] = {
    NodeKind.DATA.value: ParticipantType.DATA,
    NodeKind.COMPUTE_RESOURCE.value: ParticipantType.COMPUTE,
}


def is_export_task(task_type: str) -> bool:
    """True for the data-export task family."""
    return task_type == ComputeTaskType.DATA_EXPORT.value
