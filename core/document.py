"""
PRIVDAG DOCUMENT - The JSON Boundary

Converts graphs to and from the versioned task graph document:

    {id, name, version, createdAt, updatedAt,
     elements, connections, participants, viewport}

Export is a pure function of a graph snapshot plus the clock.

Import is all-or-nothing and runs two distinct gates:
1. Schema gate (syntactic): the raw, parsed JSON is converted piecewise
   through the msgspec schema. The envelope, the viewport and every
   element, connection and participant are converted separately, so one
   malformed entry does not hide the others. Violations carry
   SchemaErrorCode codes, plus IncompatibleVersion for unsupported versions.
2. Semantic gate: the Graph-Level Validator, with ErrorCode codes.

Only a document that passes is loaded, into a brand-new graph.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import msgspec

from core.ontology import ErrorCode, SchemaErrorCode, IDENTITY_ERROR_CODES, PARTICIPANT_ROLE_BY_KIND
from core.schemas import (
    Node,
    Edge,
    Participant,
    Viewport,
    GraphDocument,
    DocumentEnvelope,
    ValidationIssue,
    ValidationResult,
    CONFLICTING_TASK_CONFIG_MESSAGE,
    ELEMENT_TYPE_MISMATCH_MESSAGE,
    now_utc,
)
from core.graph_store import GraphStore, GraphState, InvalidPayloadError
from core.graph_validator import validate_graph
from infrastructure.config import get_config

log = logging.getLogger("privdag.document")

FILENAME_PREFIX = "task-graph-"
FILE_EXTENSION = ".json"
INDENT_SPACES = 2

_ERROR_PATTERN = re.compile(r"^(?P<message>.*?)(?: - at `(?P<path>[^`]*)`)?$", re.DOTALL)
_MISSING_FIELD_PATTERN = re.compile(r"^Object missing required field `(?P<field>[^`]+)`")
_RANGE_PATTERN = re.compile(r"^Expected `[^`]+` (?:>=|<=|>|<) ")
_INDEX_PATTERN = re.compile(r"\[(\d+)\]")


# =============================================================================
# SCHEMA ISSUE TRANSLATION
# =============================================================================

def _join(*parts: str) -> str:
    return ".".join(p for p in parts if p)


def _wire_path(path: str) -> str:
    """msgspec location ("$.elements[0].data") to dotted form ("elements.0.data")."""
    if path.startswith("$"):
        path = path[1:]
    return _INDEX_PATTERN.sub(r".\1", path).lstrip(".")


def classify_schema_error(message: str) -> str:
    """One SchemaErrorCode per kind of msgspec validation failure."""
    if CONFLICTING_TASK_CONFIG_MESSAGE in message:
        return SchemaErrorCode.CONFLICTING_TASK_CONFIG.value
    if ELEMENT_TYPE_MISMATCH_MESSAGE in message:
        return SchemaErrorCode.ELEMENT_TYPE_MISMATCH.value
    if message.startswith("Object missing required field"):
        return SchemaErrorCode.MISSING_FIELD.value
    if message.startswith("Invalid enum value"):
        return SchemaErrorCode.INVALID_ENUM_VALUE.value
    if _RANGE_PATTERN.match(message):
        return SchemaErrorCode.OUT_OF_RANGE.value
    if message.startswith("Expected `"):
        return SchemaErrorCode.INVALID_TYPE.value
    return SchemaErrorCode.INVALID_VALUE.value


def schema_issue(error: msgspec.ValidationError, prefix: str = "") -> ValidationIssue:
    """Translate a msgspec ValidationError into a {path, message, code} triple."""
    match = _ERROR_PATTERN.match(str(error))
    message = match.group("message")
    relative = _wire_path(match.group("path") or "")
    missing = _MISSING_FIELD_PATTERN.match(message)
    if missing:
        relative = _join(relative, missing.group("field"))
    return ValidationIssue(
        path=_join(prefix, relative),
        message=message,
        code=classify_schema_error(message),
    )


def _convert(value: Any, target: type, prefix: str, result: ValidationResult) -> Any:
    try:
        return msgspec.convert(value, target)
    except msgspec.ValidationError as e:
        result.errors.append(schema_issue(e, prefix))
        return None


# =============================================================================
# SCHEMA GATE
# =============================================================================

def validate_document(
    raw: Any,
    supported_versions: Optional[List[str]] = None,
) -> Tuple[ValidationResult, Optional[GraphDocument]]:
    """
    Structural validation of an untrusted, already-parsed document.

    Args:
        raw: Parsed JSON (dicts, lists, scalars)
        supported_versions: Accepted document versions (config by default)

    Returns:
        (result, document). document is None unless result.valid.
    """
    result = ValidationResult()
    if supported_versions is None:
        supported_versions = get_config().schema.supported_versions

    if not isinstance(raw, dict):
        result.add("", f"Expected `object`, got `{type(raw).__name__}`", SchemaErrorCode.INVALID_TYPE)
        return result, None

    envelope = _convert(raw, DocumentEnvelope, "", result)

    viewport = None
    if raw.get("viewport") is not None:
        viewport = _convert(raw["viewport"], Viewport, "viewport", result)

    collections: Dict[str, List[Any]] = {}
    for key, target in (("elements", Node), ("connections", Edge), ("participants", Participant)):
        items = raw.get(key)
        converted = []
        if isinstance(items, list):
            for index, item in enumerate(items):
                converted.append(_convert(item, target, f"{key}.{index}", result))
        collections[key] = converted

    version = raw.get("version")
    if isinstance(version, str) and version not in supported_versions:
        result.add(
            "version",
            f"Unsupported document version {version!r} "
            f"(supported: {', '.join(supported_versions)})",
            ErrorCode.INCOMPATIBLE_VERSION,
        )

    if not result.valid:
        return result, None

    document = GraphDocument(
        id=envelope.id,
        name=envelope.name,
        version=envelope.version,
        created_at=envelope.created_at,
        updated_at=envelope.updated_at,
        elements=collections["elements"],
        connections=collections["connections"],
        participants=collections["participants"],
        viewport=viewport or Viewport(),
    )
    return result, document


# =============================================================================
# EXPORT
# =============================================================================

def derive_participants(nodes: List[Node]) -> List[Participant]:
    """One participant per distinct node-level participant reference, in node order."""
    participants: Dict[str, Participant] = {}
    for node in nodes:
        pid = node.participant_id
        if pid and pid not in participants:
            participants[pid] = Participant(
                id=pid,
                name=f"Participant {pid}",
                type=PARTICIPANT_ROLE_BY_KIND.get(node.kind),
            )
    return list(participants.values())


def export_graph(
    graph: GraphState,
    participants: Optional[List[Any]] = None,
) -> GraphDocument:
    """
    Build the versioned document for a graph.

    Args:
        graph: Graph state (a snapshot, ideally)
        participants: Explicit participants (Structs or dicts); derived from
            the nodes when omitted

    Raises:
        InvalidPayloadError: If an explicit participant is malformed
    """
    if participants is None:
        resolved = derive_participants(graph.node_list)
    else:
        try:
            resolved = msgspec.convert(
                [msgspec.to_builtins(p) for p in participants], List[Participant]
            )
        except msgspec.ValidationError as e:
            raise InvalidPayloadError(f"Invalid participant: {e}") from e

    timestamp = now_utc()
    return GraphDocument(
        id=graph.id,
        name=graph.name,
        version=get_config().schema.current_version,
        created_at=timestamp,
        updated_at=timestamp,
        elements=graph.node_list,
        connections=graph.edge_list,
        participants=resolved,
        viewport=graph.viewport or Viewport(),
    )


def export_current_graph(
    store: GraphStore,
    participants: Optional[List[Any]] = None,
    graph_id: Optional[str] = None,
) -> GraphDocument:
    """
    Export the active graph (or graph_id) and clear its dirty flag.

    Raises:
        GraphNotFoundError: If there is no such graph
    """
    with store.lock:
        graph = store.snapshot(graph_id)
        document = export_graph(graph, participants)
        store.mark_clean(graph.id)
    log.info("Exported graph %s (%d elements)", graph.id, len(document.elements))
    return document


def generate_filename(graph_name: str, today: Optional[date] = None) -> str:
    """Default download name, without extension: task-graph-<name>-<YYYY-MM-DD>."""
    if today is None:
        today = datetime.now(timezone.utc).date()
    return f"{FILENAME_PREFIX}{graph_name}-{today.isoformat()}"


def dumps(document: GraphDocument) -> bytes:
    """Pretty JSON, 2-space indent."""
    return msgspec.json.format(msgspec.json.encode(document), indent=INDENT_SPACES)


def loads(data: bytes) -> Any:
    """Parse JSON bytes into builtins (the schema gate takes it from there)."""
    return msgspec.json.decode(data)


# =============================================================================
# IMPORT
# =============================================================================

@dataclass
class ImportResult:
    """Outcome of an import. graph_id is set only on success."""
    success: bool
    graph_id: Optional[str] = None
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "success": self.success,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }
        if self.graph_id is not None:
            result["graphId"] = self.graph_id
        return result


def import_document(
    store: GraphStore,
    raw: Any,
    name: Optional[str] = None,
    supported_versions: Optional[List[str]] = None,
    require_valid_graph: bool = True,
) -> ImportResult:
    """
    Schema gate, then semantic gate, then load into a new graph.

    Args:
        store: Destination store
        raw: Parsed JSON document
        name: Name for the new graph (defaults to the document's name)
        supported_versions: Accepted versions (config by default)
        require_valid_graph: When False, graph-level errors become warnings
            and the draft is loaded anyway, except for duplicate node or
            edge ids, which can never be loaded

    Returns:
        ImportResult (never raises on bad input)
    """
    schema, document = validate_document(raw, supported_versions)
    if not schema.valid:
        log.warning("Rejected document: %d schema violation(s)", len(schema.errors))
        return ImportResult(success=False, errors=schema.errors)

    semantic = validate_graph(
        document.elements,
        document.connections,
        participants=document.participants or None,
    )
    if require_valid_graph:
        blocking = semantic.errors
    else:
        blocking = [e for e in semantic.errors if e.code in IDENTITY_ERROR_CODES]
    if blocking:
        log.warning("Rejected document %s: %d graph violation(s)", document.id, len(semantic.errors))
        return ImportResult(success=False, errors=semantic.errors)

    graph = store.import_graph(
        document.elements,
        document.connections,
        name=name or document.name,
        viewport=document.viewport,
    )
    return ImportResult(
        success=True,
        graph_id=graph.id,
        warnings=[] if require_valid_graph else semantic.errors,
    )
