"""
Unit tests for core/graph_validator.py

Tests the semantic gate:
- Node-level checks (identity, id shape, ports, bounds, participants)
- Completeness (required categories, orphan participants)
- The composed GraphValidationResult
"""
import pytest

from core.ontology import ErrorCode
from core.schemas import (
    Node,
    Edge,
    Position,
    Participant,
    DataResourceData,
    ComputeTaskData,
    ComputeResourceData,
    Port,
)
from core.graph_validator import (
    NODE_ID_PATTERN,
    validate_nodes,
    check_completeness,
    implied_participants,
    validate_graph,
    validate_current_graph,
)
from core.graph_store import GraphStore, GraphNotFoundError
from infrastructure.config import BoundsConfig


def _data(nid, source="bank", **kwargs):
    return Node.create(id=nid, data=DataResourceData.create(f"t_{nid}", source=source), **kwargs)


def _task(nid, task_type="PSI", participant_id="bank", **kwargs):
    return Node.create(
        id=nid,
        data=ComputeTaskData.create(f"task_{nid}", task_type, **kwargs),
        participant_id=participant_id,
    )


# =============================================================================
# NODE CHECKS
# =============================================================================

@pytest.mark.parametrize("node_id,ok", [
    ("node_1", True),
    ("node_1234", True),
    ("3F2504E0-4F89-11D3-9A0C-0305E82C3301", True),
    ("node_", False),
    ("node_1x", False),
    ("xnode_1", False),
    ("edge_1", False),
    ("3f2504e0-4f89-11d3-9a0c", False),
])
def test_node_id_pattern(node_id, ok):
    assert bool(NODE_ID_PATTERN.match(node_id)) is ok


def test_duplicate_node_ids():
    result = validate_nodes([_data("node_1"), _task("node_1")])
    assert result.codes == ["DuplicateNodeId"]
    assert result.errors[0].path == "nodes.node_1.id"


def test_invalid_node_id_format():
    result = validate_nodes([_data("customers")])
    assert result.codes == ["InvalidNodeIdFormat"]


def test_invalid_task_ports():
    duplicate = _task("node_1", input_ports=[Port(id="a", name="A")], output_ports=[Port(id="a", name="B")])
    empty = _task("node_2", input_ports=[Port(id="", name="Nameless")])

    result = validate_nodes([duplicate, empty])
    assert result.codes == ["InvalidTaskPorts", "InvalidTaskPorts"]
    assert result.errors[0].path == "nodes.node_1.data"


def test_position_bounds():
    bounds = BoundsConfig(min_x=0, min_y=0, max_x=100, max_y=100)
    nodes = [
        _data("node_1", position=Position(x=100, y=100)),
        _data("node_2", position=Position(x=-1, y=50)),
        _data("node_3", position=Position(x=50, y=101)),
    ]
    result = validate_nodes(nodes, bounds=bounds)

    assert result.codes == ["InvalidNodePosition", "InvalidNodePosition"]
    assert [e.path for e in result.errors] == ["nodes.node_2.position", "nodes.node_3.position"]


def test_participant_references_checked_only_when_declared():
    nodes = [_data("node_1", source="bank"), _task("node_2", participant_id="nobody")]
    assert validate_nodes(nodes).valid

    declared = [Participant(id="bank", name="Bank")]
    result = validate_nodes(nodes, participants=declared)
    assert result.codes == ["InvalidParticipantId"]
    assert result.errors[0].path == "nodes.node_2.participantId"


# =============================================================================
# COMPLETENESS
# =============================================================================

def test_missing_compute_task_only():
    """A graph with only data resources fails with exactly MissingComputeTask."""
    result = check_completeness([_data("node_1"), _data("node_2")])
    assert result.codes == ["MissingComputeTask"]


def test_missing_data_resource():
    result = check_completeness([_task("node_1")])
    assert result.codes == ["MissingDataResource"]


def test_empty_graph_misses_both():
    assert check_completeness([]).codes == ["MissingDataResource", "MissingComputeTask"]


def test_implied_participants_in_order():
    nodes = [
        _data("node_1", source="insurer"),
        Node.create(id="node_2", data=ComputeResourceData.create("tee", "cloud")),
        _data("node_3", source="insurer"),
    ]
    assert implied_participants(nodes) == ["insurer", "cloud"]


def test_orphan_participant():
    """A participant named only inside a payload must own some node."""
    nodes = [_data("node_1", source="bank", participant_id="hospital"), _task("node_2", participant_id="hospital")]
    result = check_completeness(nodes)

    assert result.codes == [ErrorCode.ORPHAN_PARTICIPANT.value]
    assert "bank" in result.errors[0].message


# =============================================================================
# FULL GRAPH
# =============================================================================

def test_sample_graph_is_valid(sample_graph):
    store, nodes = sample_graph
    result = validate_current_graph(store)

    assert result.valid, result.to_dict()
    assert not result.has_cycles
    assert not result.has_orphan_nodes
    assert result.topological_order == [n.id for n in nodes.values()]


def test_cycle_clears_topological_order():
    nodes = [_data("node_1"), _task("node_2"), _task("node_3")]
    edges = [
        Edge(id="edge_1", source="node_1", target="node_2"),
        Edge(id="edge_2", source="node_2", target="node_3"),
        Edge(id="edge_3", source="node_3", target="node_2"),
    ]
    result = validate_graph(nodes, edges)

    assert not result.valid
    assert result.has_cycles
    assert result.topological_order is None
    assert "CircularDependency" in result.codes


def test_orphans_are_facts_not_errors():
    nodes = [_data("node_1"), _task("node_2"), _task("node_3")]
    edges = [Edge(id="edge_1", source="node_1", target="node_2")]
    result = validate_graph(nodes, edges)

    assert result.valid
    assert result.has_orphan_nodes
    assert result.orphan_nodes == ["node_3"]


def test_all_checks_run_together():
    nodes = [_data("bad id"), _data("node_2")]
    edges = [Edge(id="edge_1", source="bad id", target="node_2")]
    result = validate_graph(nodes, edges)

    assert set(result.codes) == {
        "InvalidNodeIdFormat",
        "InvalidDataResourceTarget",
        "MissingComputeTask",
    }


def test_validate_current_graph_by_id(sample_graph):
    store, _ = sample_graph
    store.create_graph("g2")
    result = validate_current_graph(store, graph_id="g2")
    assert result.codes == ["MissingDataResource", "MissingComputeTask"]


def test_validate_current_graph_without_graph(mutation_logger):
    with pytest.raises(GraphNotFoundError):
        validate_current_graph(GraphStore(mutation_logger=mutation_logger))
