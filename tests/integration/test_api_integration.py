"""
Integration Tests for the PrivDAG API

Drives the full stack over HTTP, the way the editor does:
- Build a task graph node by node
- Validate it, export it, re-import the exported document
- Import rejections carry every issue and leave the store untouched

These tests use the Starlette TestClient (httpx) to simulate real HTTP
requests without requiring a running server.
"""
import pytest
from starlette.testclient import TestClient

from api.routes import create_app, set_store
from core.graph_store import GraphStore
from infrastructure.logger import MutationLogger

pytestmark = pytest.mark.integration


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def store():
    store = GraphStore(mutation_logger=MutationLogger())
    set_store(store)
    return store


@pytest.fixture
def api_client(store):
    return TestClient(create_app())


@pytest.fixture
def built_graph(api_client):
    """A three-party pipeline built through the API; returns the node ids by role."""
    api_client.post("/graphs", json={"id": "joint", "name": "Joint risk model"})

    def add(kind, x, y, data, **extra):
        response = api_client.post("/graphs/joint/nodes", json={
            "type": kind, "position": {"x": x, "y": y}, "data": data, **extra,
        })
        assert response.status_code == 201, response.text
        return response.json()["id"]

    def data_resource(name, source):
        return {
            "name": name, "source": source, "tableName": name,
            "primaryKey": "id", "rowCount": 1000, "dataType": "table",
            "fields": [{"name": "id", "type": "string", "nullable": False, "isPrimaryKey": True}],
        }

    ids = {
        "bank": add("data", 200, 40, data_resource("customers", "bank")),
        "insurer": add("data", 600, 40, data_resource("claims", "insurer")),
        "tee": add("compute-resource", 900, 300, {
            "name": "enclave", "participantId": "cloud", "resourceType": "TEE",
            "cores": 16, "memory": 64, "available": True,
        }),
        "train": add("compute", 400, 300, {
            "name": "train", "taskType": "FL",
            "config": {"flConfig": {"framework": "fate", "modelType": "lr", "rounds": 10}},
            "attachedModels": [], "inputPorts": [{"id": "in", "name": "In", "dataType": "array"}],
            "outputPorts": [{"id": "model", "name": "Model", "dataType": "object"}],
            "attachedComputeResource": "enclave",
        }, participantId="cloud"),
        "export": add("compute", 400, 900, {
            "name": "publish", "taskType": "data-export", "config": {},
            "attachedModels": [], "inputPorts": [{"id": "in", "name": "In", "dataType": "object"}],
            "outputPorts": [],
        }, participantId="bank"),
    }

    for source, target in (("bank", "train"), ("insurer", "train"), ("tee", "train")):
        api_client.post("/graphs/joint/edges", json={"source": ids[source], "target": ids[target]})
    api_client.post("/graphs/joint/edges", json={
        "source": ids["train"], "target": ids["export"],
        "sourceHandle": "model", "targetHandle": "in",
        "data": {"sourceMarker": "arrow", "targetMarker": "trapezoid", "connectionType": "data"},
    })
    return ids


# =============================================================================
# WORKFLOW TESTS
# =============================================================================

class TestBuildValidateExport:
    """A graph built over HTTP validates, exports and re-imports intact."""

    def test_built_graph_is_valid(self, api_client, built_graph):
        body = api_client.get("/graphs/joint/validate").json()
        assert body["valid"] is True, body["errors"]
        assert body["topologicalOrder"][-1] == built_graph["export"]

    def test_export_download(self, api_client, built_graph):
        response = api_client.get("/graphs/joint/export")
        assert response.status_code == 200
        assert "task-graph-Joint risk model-" in response.headers["content-disposition"]

        document = response.json()
        assert [e["id"] for e in document["elements"]] == list(built_graph.values())
        assert {p["id"] for p in document["participants"]} == {"bank", "insurer", "cloud"}
        assert document["connections"][3]["data"]["targetMarker"] == "trapezoid"

    def test_export_marks_clean(self, api_client, built_graph):
        assert api_client.get("/graphs/joint").json()["dirty"] is True
        api_client.get("/graphs/joint/export")
        assert api_client.get("/graphs/joint").json()["dirty"] is False

    def test_round_trip(self, api_client, built_graph):
        document = api_client.get("/graphs/joint/export").json()

        response = api_client.post("/import?name=Copy", json=document)
        assert response.status_code == 201, response.text
        graph_id = response.json()["graphId"]

        original = api_client.get("/graphs/joint").json()
        copy = api_client.get(f"/graphs/{graph_id}").json()
        assert copy["name"] == "Copy"
        assert copy["nodes"] == original["nodes"]
        assert copy["edges"] == original["edges"]

    def test_ids_continue_after_import(self, api_client, built_graph, store):
        document = api_client.get("/graphs/joint/export").json()
        graph_id = api_client.post("/import", json=document).json()["graphId"]

        response = api_client.post(f"/graphs/{graph_id}/edges", json={
            "source": built_graph["insurer"], "target": built_graph["export"],
        })
        assert response.json()["id"] == "edge_5"


class TestImportRejections:
    """Rejected documents list every issue and change nothing."""

    def test_schema_errors(self, api_client, built_graph, store):
        document = api_client.get("/graphs/joint/export").json()
        document["viewport"] = {"x": 0, "y": 0, "zoom": 10}
        document["elements"][0]["position"] = {"x": "left", "y": 0}

        response = api_client.post("/import", json=document)
        body = response.json()

        assert response.status_code == 422
        assert body["success"] is False
        assert [e["path"] for e in body["errors"]] == ["viewport.zoom", "elements.0.position.x"]
        assert len(store) == 1

    def test_semantic_errors(self, api_client, built_graph, store):
        document = api_client.get("/graphs/joint/export").json()
        document["connections"].append({"id": "edge_99", "source": built_graph["bank"], "target": built_graph["insurer"]})

        response = api_client.post("/import", json=document)
        assert response.status_code == 422
        assert [e["code"] for e in response.json()["errors"]] == ["InvalidDataResourceTarget"]
        assert len(store) == 1

    def test_draft_import(self, api_client, built_graph, store):
        document = api_client.get("/graphs/joint/export").json()
        document["connections"].append({"id": "edge_99", "source": built_graph["bank"], "target": built_graph["insurer"]})

        response = api_client.post("/import?draft=true", json=document)
        assert response.status_code == 201
        assert [w["code"] for w in response.json()["warnings"]] == ["InvalidDataResourceTarget"]
        assert len(store) == 2

    def test_not_a_document(self, api_client, store):
        response = api_client.post("/import", json=[1, 2, 3])
        assert response.status_code == 422
        assert response.json()["errors"][0]["code"] == "InvalidType"

    def test_invalid_json(self, api_client):
        response = api_client.post("/import", content=b"{", headers={"content-type": "application/json"})
        assert response.status_code == 400
