"""
Unit tests for core/document.py - the JSON boundary

Tests:
- Schema gate: every violation collected, stable paths and codes
- Export: document shape, derived participants, dirty flag
- Import: all-or-nothing, draft mode, id reseeding
- Round trip through the file format
"""
from datetime import date

import msgspec
import pytest

from core.ontology import SchemaErrorCode
from core.schemas import Participant, Viewport, to_wire
from core.graph_store import GraphStore, GraphNotFoundError, InvalidPayloadError
from core.document import (
    classify_schema_error,
    validate_document,
    derive_participants,
    export_graph,
    export_current_graph,
    generate_filename,
    dumps,
    loads,
    import_document,
    ImportResult,
)


@pytest.fixture
def exported(sample_graph):
    """The sample graph as a parsed (builtins) document."""
    store, _ = sample_graph
    return loads(dumps(export_current_graph(store)))


@pytest.fixture
def target_store(mutation_logger):
    return GraphStore(mutation_logger=mutation_logger)


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

@pytest.mark.parametrize("message,code", [
    ("Object missing required field `id`", "MissingField"),
    ("Invalid enum value 'hexagon'", "InvalidEnumValue"),
    ("Expected `float` <= 5.0", "OutOfRange"),
    ("Expected `int` >= 1", "OutOfRange"),
    ("Expected `str`, got `int`", "InvalidType"),
    ("Invalid value 'widget'", "InvalidValue"),
    ("At most one task config branch may be set (got psi_config, fl_config)", "ConflictingTaskConfig"),
    ("Element type does not match its data type: 'data' != 'compute'", "ElementTypeMismatch"),
])
def test_classify_schema_error(message, code):
    assert classify_schema_error(message) == code


# =============================================================================
# SCHEMA GATE
# =============================================================================

def test_valid_document_passes(exported):
    result, document = validate_document(exported)

    assert result.valid
    assert len(document.elements) == 4
    assert document.elements[2].data.config.psi_config.algorithm == "ecdh"


def test_non_object_document():
    result, document = validate_document(["not", "a", "document"])
    assert document is None
    assert result.codes == [SchemaErrorCode.INVALID_TYPE.value]
    assert result.errors[0].path == ""


def test_zoom_out_of_range_is_a_schema_error(exported):
    exported["viewport"] = {"x": 0, "y": 0, "zoom": 10}
    result, document = validate_document(exported)

    assert document is None
    assert result.codes == ["OutOfRange"]
    assert result.errors[0].path == "viewport.zoom"


def test_missing_field_path(exported):
    del exported["elements"][1]["label"]
    result, _ = validate_document(exported)

    assert result.codes == ["MissingField"]
    assert result.errors[0].path == "elements.1.label"


def test_every_bad_entry_is_reported(exported):
    """One malformed element does not hide the errors of the next."""
    exported["elements"][0]["data"]["rowCount"] = -5
    exported["elements"][3]["type"] = "blob"
    exported["connections"][0]["data"] = {"sourceMarker": "hexagon", "targetMarker": "arrow", "connectionType": "data"}
    exported["participants"].append({"name": "No id"})

    result, document = validate_document(exported)

    assert document is None
    assert result.codes == ["OutOfRange", "InvalidEnumValue", "InvalidEnumValue", "MissingField"]
    assert [e.path for e in result.errors] == [
        "elements.0.data.rowCount",
        "elements.3.type",
        "connections.0.data.sourceMarker",
        "participants.2.id",
    ]


def test_conflicting_task_config(exported):
    exported["elements"][2]["data"]["config"]["mpcConfig"] = {"protocol": "spdz"}
    result, _ = validate_document(exported)
    assert result.codes == ["ConflictingTaskConfig"]
    assert result.errors[0].path.startswith("elements.2")


def test_element_type_mismatch(exported):
    exported["elements"][0]["type"] = "compute"
    result, _ = validate_document(exported)
    assert result.codes == ["ElementTypeMismatch"]
    assert result.errors[0].path == "elements.0"


def test_unsupported_version(exported):
    exported["version"] = "2.0.0"
    result, _ = validate_document(exported)

    assert result.codes == ["IncompatibleVersion"]
    assert result.errors[0].path == "version"
    assert validate_document(exported, supported_versions=["1.0.0", "2.0.0"])[0].valid


def test_unsupported_version_reported_alongside_envelope_errors(exported):
    del exported["name"]
    exported["version"] = "9.9.9"
    result, document = validate_document(exported)

    assert document is None
    assert result.codes == ["MissingField", "IncompatibleVersion"]
    assert [e.path for e in result.errors] == ["name", "version"]


def test_missing_envelope_fields():
    result, _ = validate_document({"elements": [], "connections": []})
    assert "MissingField" in result.codes
    assert result.errors[0].path in {"id", "name", "version", "createdAt", "updatedAt"}


# =============================================================================
# EXPORT
# =============================================================================

def test_export_document_shape(sample_graph):
    store, nodes = sample_graph
    document = export_current_graph(store)
    wire = to_wire(document)

    assert set(wire) == {
        "id", "name", "version", "createdAt", "updatedAt",
        "elements", "connections", "participants", "viewport",
    }
    assert wire["id"] == "g1"
    assert wire["version"] == "1.0.0"
    assert wire["createdAt"] == wire["updatedAt"]
    assert wire["viewport"] == {"x": 0.0, "y": 0.0, "zoom": 1.0}
    assert [e["id"] for e in wire["elements"]] == [n.id for n in nodes.values()]
    assert [c["id"] for c in wire["connections"]] == ["edge_1", "edge_2", "edge_3"]


def test_export_clears_dirty_flag(sample_graph):
    store, _ = sample_graph
    assert store.get_graph().dirty
    export_current_graph(store)
    assert not store.get_graph().dirty


def test_export_without_graph(target_store):
    with pytest.raises(GraphNotFoundError):
        export_current_graph(target_store)


def test_derived_participants(sample_graph):
    store, _ = sample_graph
    participants = derive_participants(store.get_graph().node_list)

    assert [p.id for p in participants] == ["bank", "insurer"]
    assert participants[0].name == "Participant bank"
    assert participants[0].type == "data"


def test_explicit_participants(sample_graph):
    store, _ = sample_graph
    document = export_graph(store.get_graph(), [{"id": "bank", "name": "Bank", "type": "data"}])
    assert document.participants == [Participant(id="bank", name="Bank", type="data")]

    with pytest.raises(InvalidPayloadError):
        export_graph(store.get_graph(), [{"name": "nameless"}])


def test_export_keeps_viewport(sample_graph):
    store, _ = sample_graph
    store.set_viewport({"x": 10, "y": 20, "zoom": 2})
    assert export_graph(store.get_graph()).viewport == Viewport(x=10, y=20, zoom=2)


def test_generate_filename():
    assert generate_filename("Joint stats", date(2024, 3, 9)) == "task-graph-Joint stats-2024-03-09"


def test_dumps_is_indented(sample_graph):
    store, _ = sample_graph
    text = dumps(export_current_graph(store)).decode()
    assert text.startswith('{\n  "id": "g1"')


# =============================================================================
# IMPORT
# =============================================================================

def test_round_trip_preserves_graph(sample_graph, exported, target_store):
    """Export then import yields the same nodes and edges (ids included)."""
    store, _ = sample_graph
    source = store.get_graph()

    result = import_document(target_store, exported)

    assert result.success, result.to_dict()
    imported = target_store.get_graph(result.graph_id)
    assert imported.node_list == source.node_list
    assert imported.edge_list == source.edge_list
    assert imported.name == source.name
    assert not imported.dirty
    assert target_store.active_graph_id == result.graph_id


def test_import_reseeds_ids(exported, target_store):
    result = import_document(target_store, exported, name="Copy")

    assert target_store.get_graph(result.graph_id).name == "Copy"
    assert target_store.add_edge("node_1", "node_4").id == "edge_4"


def test_schema_failure_leaves_store_untouched(exported, target_store):
    exported["viewport"] = {"x": 0, "y": 0, "zoom": 10}
    result = import_document(target_store, exported)

    assert not result.success
    assert result.graph_id is None
    assert len(target_store) == 0


def test_semantic_failure_rejects(exported, target_store):
    exported["connections"].append({"id": "edge_9", "source": "node_4", "target": "node_3"})
    result = import_document(target_store, exported)

    assert not result.success
    assert "CircularDependency" in [e.code for e in result.errors]
    assert len(target_store) == 0


def test_draft_import_keeps_warnings(exported, target_store):
    exported["connections"].append({"id": "edge_9", "source": "node_4", "target": "node_3"})
    result = import_document(target_store, exported, require_valid_graph=False)

    assert result.success
    assert [w.code for w in result.warnings] == ["CircularDependency"]
    assert len(target_store.get_graph().edges) == 4


def test_draft_import_still_rejects_duplicate_ids(exported, target_store):
    exported["elements"][1]["id"] = exported["elements"][0]["id"]
    result = import_document(target_store, exported, require_valid_graph=False)

    assert not result.success
    assert "DuplicateNodeId" in [e.code for e in result.errors]


def test_declared_participants_are_enforced(exported, target_store):
    exported["participants"] = [{"id": "bank", "name": "Bank"}]
    result = import_document(target_store, exported)

    assert not result.success
    assert [e.code for e in result.errors] == ["InvalidParticipantId"]
    assert result.errors[0].path == "nodes.node_2.participantId"


def test_import_result_dict():
    body = ImportResult(success=True, graph_id="graph_1").to_dict()
    assert body == {"success": True, "errors": [], "warnings": [], "graphId": "graph_1"}


def test_loads_rejects_invalid_json():
    with pytest.raises(msgspec.DecodeError):
        loads(b"{not json")
