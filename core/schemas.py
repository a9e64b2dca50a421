"""
PRIVDAG SCHEMAS - The Grammar of the System

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how a task graph is structured).

This module defines the data structures that flow through the store and
across the JSON document boundary:
- Element payloads: a closed tagged union over the four node kinds
- Node / Edge: canvas elements and connections
- Participant / Viewport / GraphDocument: the exported document
- ValidationIssue / ValidationResult: structured verdicts (never exceptions)

Design Principles:
1. ONE SHAPE FOR MEMORY AND WIRE: Structs are renamed to camelCase on the
   wire, so the in-memory node IS the exported element
2. TAGGED PAYLOADS: The payload kind is read from its tag, never by probing
   for the presence of a field
3. CONSTRAINTS IN THE TYPE: Numeric ranges live in msgspec.Meta so the
   schema gate and the Python constructors agree
4. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
"""
import msgspec
from typing import Optional, Dict, Any, List, Literal, Union, Annotated
from dataclasses import dataclass, field
from datetime import datetime, timezone

from core.ontology import (
    NodeKind,
    ComputeTaskType,
    FieldType,
    MarkerType,
    ConnectionType,
    DataResourceType,
    ParticipantType,
)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def now_utc() -> str:
    """Fast UTC timestamp as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def enum_value(value: Any) -> Any:
    """Plain value of an Enum member, or the value itself."""
    return getattr(value, "value", value)


# Messages raised from __post_init__; the schema gate maps them to codes
CONFLICTING_TASK_CONFIG_MESSAGE = "At most one task config branch may be set"
ELEMENT_TYPE_MISMATCH_MESSAGE = "Element type does not match its data type"

PositiveFloat = Annotated[float, msgspec.Meta(gt=0)]
NonNegativeInt = Annotated[int, msgspec.Meta(ge=0)]
NonNegativeFloat = Annotated[float, msgspec.Meta(ge=0)]
CoreCount = Annotated[int, msgspec.Meta(ge=1)]
Zoom = Annotated[float, msgspec.Meta(ge=0.1, le=5)]


# =============================================================================
# GEOMETRY & STATE
# =============================================================================

class Position(msgspec.Struct, kw_only=True):
    """Canvas coordinates of an element's top-left corner."""
    x: float
    y: float


class Size(msgspec.Struct, kw_only=True):
    width: PositiveFloat
    height: PositiveFloat


class ElementState(msgspec.Struct, kw_only=True, rename="camel"):
    """Interaction state the editor keeps per element."""
    selected: bool
    disabled: bool
    show_connection_points: bool

    @classmethod
    def idle(cls) -> "ElementState":
        return cls(selected=False, disabled=False, show_connection_points=False)


# =============================================================================
# PAYLOAD BUILDING BLOCKS
# =============================================================================

class FieldDef(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
    """A column of a data resource."""
    name: str
    type: FieldType
    nullable: bool
    is_primary_key: Optional[bool] = None
    description: Optional[str] = None


class MethodParameter(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
    """A parameter of a model resource's method."""
    name: str
    type: FieldType
    required: bool
    default_value: Any = None
    description: Optional[str] = None


class PSIConfig(msgspec.Struct, kw_only=True, omit_defaults=True):
    algorithm: str
    anonymization: Optional[str] = None


class MPCConfig(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
    protocol: str
    security_level: Optional[int] = None


class FLConfig(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
    framework: str
    model_type: str
    rounds: Optional[int] = None


class TaskConfig(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
    """
    Per-algorithm-family settings of a compute task.

    A closed union: at most one branch is populated. An empty config is
    legal (tasks such as data-filter carry no family settings).
    """
    psi_config: Optional[PSIConfig] = None
    mpc_config: Optional[MPCConfig] = None
    fl_config: Optional[FLConfig] = None
    generic_config: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        populated = [
            name for name in ("psi_config", "mpc_config", "fl_config", "generic_config")
            if getattr(self, name) is not None
        ]
        if len(populated) > 1:
            raise ValueError(
                f"{CONFLICTING_TASK_CONFIG_MESSAGE} (got {', '.join(populated)})"
            )

    @property
    def branch(self) -> Optional[str]:
        """Name of the populated branch, if any."""
        for name in ("psi_config", "mpc_config", "fl_config", "generic_config"):
            if getattr(self, name) is not None:
                return name
        return None


class Port(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
    """Named input/output port of a compute task."""
    id: str
    name: str
    data_type: Optional[FieldType] = None


# =============================================================================
# ELEMENT PAYLOADS (Tagged Union on "type")
# =============================================================================

class DataResourceData(
    msgspec.Struct, tag_field="type", tag="data",
    kw_only=True, rename="camel", omit_defaults=True,
):
    """Table or file owned by a participant."""
    name: str
    source: str                         # Owning participant
    table_name: str
    primary_key: str
    row_count: NonNegativeInt
    data_type: DataResourceType
    description: Optional[str] = None
    fields: Optional[List[FieldDef]] = None

    @classmethod
    def create(
        cls,
        name: str,
        source: str,
        table_name: Optional[str] = None,
        primary_key: str = "id",
        row_count: int = 0,
        data_type: str = DataResourceType.TABLE.value,
        **kwargs,
    ) -> "DataResourceData":
        return cls(
            name=name,
            source=source,
            table_name=table_name if table_name is not None else name,
            primary_key=primary_key,
            row_count=row_count,
            data_type=DataResourceType(data_type),
            **kwargs,
        )


class ComputeTaskData(
    msgspec.Struct, tag_field="type", tag="compute",
    kw_only=True, rename="camel", omit_defaults=True,
):
    """A privacy-computation step and its ports."""
    name: str
    task_type: ComputeTaskType
    config: TaskConfig
    attached_models: List[str]
    input_ports: List[Port]
    output_ports: List[Port]
    attached_compute_resource: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def create(
        cls,
        name: str,
        task_type: str,
        config: Optional[TaskConfig] = None,
        input_ports: Optional[List[Port]] = None,
        output_ports: Optional[List[Port]] = None,
        attached_models: Optional[List[str]] = None,
        **kwargs,
    ) -> "ComputeTaskData":
        return cls(
            name=name,
            task_type=ComputeTaskType(task_type),
            config=config or TaskConfig(),
            attached_models=list(attached_models or []),
            input_ports=list(input_ports or []),
            output_ports=list(output_ports or []),
            **kwargs,
        )

    def find_port(self, port_id: str) -> Optional[Port]:
        """Look up an input or output port by id."""
        for port in self.input_ports + self.output_ports:
            if port.id == port_id:
                return port
        return None


class ModelResourceData(
    msgspec.Struct, tag_field="type", tag="model",
    kw_only=True, rename="camel", omit_defaults=True,
):
    """A method exposed by a trusted execution environment model."""
    name: str
    method_name: str
    parameters: List[MethodParameter]
    return_type: FieldType
    model_type: Literal["TEE"]
    description: Optional[str] = None

    @classmethod
    def create(
        cls,
        name: str,
        method_name: str,
        parameters: Optional[List[MethodParameter]] = None,
        return_type: str = FieldType.OBJECT.value,
        **kwargs,
    ) -> "ModelResourceData":
        return cls(
            name=name,
            method_name=method_name,
            parameters=list(parameters or []),
            return_type=FieldType(return_type),
            model_type="TEE",
            **kwargs,
        )


class ComputeResourceData(
    msgspec.Struct, tag_field="type", tag="compute-resource",
    kw_only=True, rename="camel", omit_defaults=True,
):
    """A TEE host owned by a participant."""
    name: str
    participant_id: str
    resource_type: Literal["TEE"]
    cores: CoreCount
    memory: NonNegativeFloat
    available: bool

    @classmethod
    def create(
        cls,
        name: str,
        participant_id: str,
        cores: int = 1,
        memory: float = 0,
        available: bool = True,
    ) -> "ComputeResourceData":
        return cls(
            name=name,
            participant_id=participant_id,
            resource_type="TEE",
            cores=cores,
            memory=memory,
            available=available,
        )


NodePayload = Union[DataResourceData, ComputeTaskData, ModelResourceData, ComputeResourceData]

PAYLOAD_TYPES: Dict[str, type] = {
    NodeKind.DATA.value: DataResourceData,
    NodeKind.COMPUTE.value: ComputeTaskData,
    NodeKind.MODEL.value: ModelResourceData,
    NodeKind.COMPUTE_RESOURCE.value: ComputeResourceData,
}


def payload_kind(payload: NodePayload) -> str:
    """The tag a payload is discriminated by."""
    return type(payload).__struct_config__.tag


# =============================================================================
# NODE (Canvas Element)
# =============================================================================

class Node(msgspec.Struct, kw_only=True, rename="camel"):
    """
    A typed vertex of the task graph.

    The element type and the payload tag always agree; a data-resource
    node can never carry compute-task ports.
    """
    id: str
    type: NodeKind
    position: Position
    label: str
    participant_id: str
    data: NodePayload
    size: Size
    state: ElementState

    def __post_init__(self):
        if enum_value(self.type) != payload_kind(self.data):
            raise ValueError(
                f"{ELEMENT_TYPE_MISMATCH_MESSAGE}: "
                f"{enum_value(self.type)!r} != {payload_kind(self.data)!r}"
            )

    @classmethod
    def create(
        cls,
        id: str,
        data: NodePayload,
        position: Optional[Position] = None,
        label: Optional[str] = None,
        participant_id: Optional[str] = None,
        size: Optional[Size] = None,
        state: Optional[ElementState] = None,
    ) -> "Node":
        """
        Factory deriving the element type from the payload tag.

        Label defaults to the payload name; participant defaults to the
        participant the payload itself names (data source / resource owner).
        """
        kind = payload_kind(data)
        if participant_id is None:
            participant_id = default_participant(data)
        return cls(
            id=id,
            type=NodeKind(kind),
            position=position or Position(x=0.0, y=0.0),
            label=label if label is not None else data.name,
            participant_id=participant_id,
            data=data,
            size=size or Size(width=160.0, height=80.0),
            state=state or ElementState.idle(),
        )

    @property
    def kind(self) -> str:
        return enum_value(self.type)


def default_participant(payload: NodePayload) -> str:
    """Participant a payload implies on its own, or an empty string."""
    if isinstance(payload, DataResourceData):
        return payload.source
    if isinstance(payload, ComputeResourceData):
        return payload.participant_id
    return ""


# =============================================================================
# EDGE (Connection)
# =============================================================================

class ConnectionData(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
    """Rendering and semantic metadata of a connection."""
    source_marker: MarkerType
    target_marker: MarkerType
    connection_type: ConnectionType
    label: Optional[str] = None
    animated: Optional[bool] = None

    @classmethod
    def create(
        cls,
        connection_type: str = ConnectionType.DATA.value,
        source_marker: str = MarkerType.ARROW.value,
        target_marker: str = MarkerType.ARROW.value,
        **kwargs,
    ) -> "ConnectionData":
        return cls(
            source_marker=MarkerType(source_marker),
            target_marker=MarkerType(target_marker),
            connection_type=ConnectionType(connection_type),
            **kwargs,
        )


class Edge(msgspec.Struct, kw_only=True, rename="camel", omit_defaults=True):
    """A directed connection. Endpoints are checked by the validators, not here."""
    id: str
    source: str
    target: str
    type: Optional[str] = None
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    data: Optional[ConnectionData] = None


# =============================================================================
# DOCUMENT
# =============================================================================

class Participant(msgspec.Struct, kw_only=True, omit_defaults=True):
    """A logical party owning data or compute."""
    id: str
    name: str
    type: Optional[ParticipantType] = None
    color: Optional[str] = None
    description: Optional[str] = None


class Viewport(msgspec.Struct, kw_only=True):
    """Pan/zoom of the canvas. The identity viewport is the default."""
    x: float = 0.0
    y: float = 0.0
    zoom: Zoom = 1.0


class GraphDocument(msgspec.Struct, kw_only=True, rename="camel"):
    """The versioned, exported form of one graph."""
    id: str
    name: str
    version: str
    created_at: str
    updated_at: str
    elements: List[Node]
    connections: List[Edge]
    participants: List[Participant] = msgspec.field(default_factory=list)
    viewport: Viewport = msgspec.field(default_factory=Viewport)


class DocumentEnvelope(msgspec.Struct, kw_only=True, rename="camel"):
    """
    Top level of an incoming document, with collections left untyped.

    The schema gate checks the envelope first, then each collection entry
    on its own, so one bad element never hides the errors of the next.
    """
    id: str
    name: str
    version: str
    created_at: str
    updated_at: str
    elements: List[Any]
    connections: List[Any]
    participants: List[Any] = msgspec.field(default_factory=list)
    viewport: Any = None


# =============================================================================
# VALIDATION RESULTS
# =============================================================================

@dataclass
class ValidationIssue:
    """A single violation: where, what, and a stable code."""
    path: str
    message: str
    code: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "message": self.message, "code": self.code}


@dataclass
class ValidationResult:
    """Every violation found in one pass. Valid iff nothing was recorded."""
    errors: List[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return len(self.errors) == 0

    @property
    def codes(self) -> List[str]:
        return [e.code for e in self.errors]

    def add(self, path: str, message: str, code: Any) -> None:
        self.errors.append(ValidationIssue(path=path, message=message, code=enum_value(code)))

    def extend(self, other: "ValidationResult") -> None:
        self.errors.extend(other.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class GraphValidationResult(ValidationResult):
    """Graph-level verdict plus the topology facts computed on the way."""
    has_cycles: bool = False
    has_orphan_nodes: bool = False
    topological_order: Optional[List[str]] = None
    orphan_nodes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            "hasCycles": self.has_cycles,
            "hasOrphanNodes": self.has_orphan_nodes,
            "orphanNodes": list(self.orphan_nodes),
        })
        if self.topological_order is not None:
            result["topologicalOrder"] = list(self.topological_order)
        return result


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

_encoder = msgspec.json.Encoder()


def to_wire(obj: Any) -> Any:
    """Struct (or container of Structs) to JSON-ready builtins."""
    return msgspec.to_builtins(obj)


def serialize_node(node: Node) -> bytes:
    return _encoder.encode(node)


def serialize_edges(edges: List[Edge]) -> bytes:
    return _encoder.encode(edges)
