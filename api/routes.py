"""
PRIVDAG API ROUTES - The HTTP Interface

RESTful adapter over a process-wide GraphStore using Starlette. The editor
front end (an external collaborator) drives the engine through these calls.

Endpoints:
- GET    /health                               - Health check
- GET    /graphs                               - List graphs + active pointer
- POST   /graphs                               - Create graph
- GET    /graphs/{graph_id}                    - Graph contents
- DELETE /graphs/{graph_id}                    - Delete graph (idempotent)
- POST   /graphs/{graph_id}/activate           - Set the active graph
- POST   /graphs/{graph_id}/nodes              - Add node
- PATCH  /graphs/{graph_id}/nodes/{node_id}    - Merge payload / move node
- DELETE /graphs/{graph_id}/nodes/{node_id}    - Delete node (cascades)
- POST   /graphs/{graph_id}/edges              - Add edge (de-duplicated)
- DELETE /graphs/{graph_id}/edges/{edge_id}    - Delete edge
- GET    /graphs/{graph_id}/orphans            - Orphan node ids
- GET    /graphs/{graph_id}/topology           - Order, cycle, execution layers
- GET    /graphs/{graph_id}/validate           - Graph-level verdict
- GET    /graphs/{graph_id}/export             - Versioned document
- GET    /validate                             - Verdict for the active graph
- GET    /export                               - Document for the active graph
- POST   /import                               - Import a document (?name=&draft=)

Design:
- Starlette routes for ASGI compatibility with Granian
- msgspec for JSON serialization of Structs
- Validation failures are 200/422 bodies with every issue, never 500s
"""
from starlette.applications import Starlette
from starlette.responses import JSONResponse, Response
from starlette.routing import Route
from starlette.requests import Request
from typing import Optional, Any, Dict, List
import msgspec
import logging

from core.graph_store import (
    GraphStore,
    GraphNotFoundError,
    DuplicateGraphError,
    InvalidPayloadError,
)
from core.schemas import Position
from core.topology import topological_sort, execution_layers
from core.graph_validator import validate_current_graph
from core.document import export_current_graph, import_document, generate_filename, FILE_EXTENSION

logger = logging.getLogger("privdag.api")

_json_encoder = msgspec.json.Encoder()


# =============================================================================
# GLOBAL STORE
# =============================================================================

_store: Optional[GraphStore] = None


def get_store() -> GraphStore:
    """Get or create the global GraphStore instance."""
    global _store
    if _store is None:
        _store = GraphStore.from_config()
    return _store


def set_store(store: Optional[GraphStore]) -> None:
    """Set the global GraphStore instance (the injection point for tests)."""
    global _store
    _store = store


# =============================================================================
# HELPERS
# =============================================================================

def json_response(data: Any, status_code: int = 200, headers: Optional[Dict[str, str]] = None) -> Response:
    """Create JSON response using msgspec (handles Structs directly)."""
    return Response(
        content=_json_encoder.encode(data),
        status_code=status_code,
        media_type="application/json",
        headers=headers,
    )


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    """Create error response."""
    return JSONResponse({"error": message}, status_code=status_code)


async def _read_json(request: Request) -> Any:
    body = await request.body()
    if not body:
        return {}
    return msgspec.json.decode(body)


def _graph_body(store: GraphStore, graph_id: str) -> Dict[str, Any]:
    graph = store.snapshot(graph_id)
    body = graph.summary()
    body["active"] = graph.id == store.active_graph_id
    body["nodes"] = msgspec.to_builtins(graph.node_list)
    body["edges"] = msgspec.to_builtins(graph.edge_list)
    body["viewport"] = msgspec.to_builtins(graph.viewport) if graph.viewport else None
    return body


# =============================================================================
# HEALTH
# =============================================================================

async def health(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({
        "status": "healthy",
        "service": "privdag",
        "version": "0.1.0",
    })


# =============================================================================
# GRAPH OPERATIONS
# =============================================================================

async def list_graphs(request: Request) -> JSONResponse:
    store = get_store()
    return JSONResponse({
        "activeGraphId": store.active_graph_id,
        "graphs": [g.summary() for g in store.list_graphs()],
    })


async def create_graph(request: Request) -> Response:
    """
    Create an empty graph.

    Body:
        {"id": "g1", "name": "Joint statistics"}   (both optional)
    """
    try:
        body = await _read_json(request)
    except msgspec.DecodeError as e:
        return error_response(f"Invalid JSON: {e}")
    if not isinstance(body, dict):
        return error_response("Body must be a JSON object")

    store = get_store()
    graph_id = body.get("id") or store.new_graph_id()
    try:
        graph = store.create_graph(graph_id, body.get("name"))
    except DuplicateGraphError as e:
        return error_response(str(e), status_code=409)
    return json_response(graph.summary(), status_code=201)


async def get_graph(request: Request) -> Response:
    store = get_store()
    try:
        return json_response(_graph_body(store, request.path_params["graph_id"]))
    except GraphNotFoundError as e:
        return error_response(str(e), status_code=404)


async def delete_graph(request: Request) -> JSONResponse:
    graph_id = request.path_params["graph_id"]
    get_store().delete_graph(graph_id)
    return JSONResponse({"deleted": graph_id})


async def activate_graph(request: Request) -> JSONResponse:
    graph_id = request.path_params["graph_id"]
    try:
        get_store().set_active_graph(graph_id)
    except GraphNotFoundError as e:
        return error_response(str(e), status_code=404)
    return JSONResponse({"activeGraphId": graph_id})


# =============================================================================
# NODE OPERATIONS
# =============================================================================

async def create_node(request: Request) -> Response:
    """
    Add a node.

    Body:
        {"type": "compute", "position": {"x": 0, "y": 200},
         "data": {...payload...}, "label": "...", "participantId": "...",
         "size": {"width": 160, "height": 80}}
    """
    try:
        body = await _read_json(request)
    except msgspec.DecodeError as e:
        return error_response(f"Invalid JSON: {e}")
    if not isinstance(body, dict):
        return error_response("Body must be a JSON object")
    for required in ("type", "position", "data"):
        if required not in body:
            return error_response(f"Missing field: {required}", status_code=422)

    store = get_store()
    try:
        node = store.add_node(
            body["type"],
            body["position"],
            body["data"],
            label=body.get("label"),
            participant_id=body.get("participantId"),
            size=body.get("size"),
            graph_id=request.path_params["graph_id"],
        )
    except GraphNotFoundError as e:
        return error_response(str(e), status_code=404)
    except InvalidPayloadError as e:
        return error_response(str(e), status_code=422)
    return json_response(node, status_code=201)


async def update_node(request: Request) -> Response:
    """
    Merge payload fields and/or move a node.

    Body:
        {"data": {"rowCount": 1200}, "position": {"x": 10, "y": 20}}

    An absent node is not an error: the response says updated=false.
    """
    try:
        body = await _read_json(request)
    except msgspec.DecodeError as e:
        return error_response(f"Invalid JSON: {e}")
    if not isinstance(body, dict):
        return error_response("Body must be a JSON object")

    store = get_store()
    graph_id = request.path_params["graph_id"]
    node_id = request.path_params["node_id"]
    if not store.has_graph(graph_id):
        return error_response(f"Graph not found: {graph_id}", status_code=404)

    position = None
    if body.get("position") is not None:
        try:
            position = msgspec.convert(body["position"], Position)
        except msgspec.ValidationError as e:
            return error_response(f"Invalid position: {e}", status_code=422)

    node = None
    try:
        with store.lock:
            if isinstance(body.get("data"), dict):
                node = store.update_node(node_id, body["data"], graph_id=graph_id)
            if position is not None:
                node = store.move_node(node_id, position, graph_id=graph_id)
    except InvalidPayloadError as e:
        return error_response(str(e), status_code=422)

    return json_response({"updated": node is not None, "node": node})


async def delete_node(request: Request) -> JSONResponse:
    store = get_store()
    graph_id = request.path_params["graph_id"]
    node_id = request.path_params["node_id"]
    if not store.has_graph(graph_id):
        return error_response(f"Graph not found: {graph_id}", status_code=404)
    store.delete_node(node_id, graph_id=graph_id)
    return JSONResponse({"deleted": node_id})


# =============================================================================
# EDGE OPERATIONS
# =============================================================================

async def create_edge(request: Request) -> Response:
    """
    Connect two nodes. 201 when created, 200 when the pair already existed.

    Body:
        {"source": "node_1", "target": "node_2",
         "data": {"sourceMarker": "arrow", "targetMarker": "arrow",
                  "connectionType": "data"},
         "sourceHandle": "out", "targetHandle": "in"}
    """
    try:
        body = await _read_json(request)
    except msgspec.DecodeError as e:
        return error_response(f"Invalid JSON: {e}")
    if not isinstance(body, dict):
        return error_response("Body must be a JSON object")
    if not body.get("source") or not body.get("target"):
        return error_response("source and target are required", status_code=422)

    store = get_store()
    graph_id = request.path_params["graph_id"]
    try:
        with store.lock:
            before = len(store.get_graph(graph_id).edges)
            edge = store.add_edge(
                body["source"],
                body["target"],
                body.get("data"),
                edge_type=body.get("type"),
                source_handle=body.get("sourceHandle"),
                target_handle=body.get("targetHandle"),
                graph_id=graph_id,
            )
            created = len(store.get_graph(graph_id).edges) > before
    except GraphNotFoundError as e:
        return error_response(str(e), status_code=404)
    except InvalidPayloadError as e:
        return error_response(str(e), status_code=422)
    return json_response(edge, status_code=201 if created else 200)


async def delete_edge(request: Request) -> JSONResponse:
    store = get_store()
    graph_id = request.path_params["graph_id"]
    edge_id = request.path_params["edge_id"]
    if not store.has_graph(graph_id):
        return error_response(f"Graph not found: {graph_id}", status_code=404)
    store.delete_edge(edge_id, graph_id=graph_id)
    return JSONResponse({"deleted": edge_id})


# =============================================================================
# ANALYSIS
# =============================================================================

async def get_orphans(request: Request) -> JSONResponse:
    store = get_store()
    graph_id = request.path_params["graph_id"]
    if not store.has_graph(graph_id):
        return error_response(f"Graph not found: {graph_id}", status_code=404)
    orphans = store.find_orphan_nodes(graph_id)
    return JSONResponse({"count": len(orphans), "orphans": orphans})


async def get_topology(request: Request) -> JSONResponse:
    """Topological order, cycle diagnostics and (when acyclic) execution layers."""
    store = get_store()
    try:
        graph = store.snapshot(request.path_params["graph_id"])
    except GraphNotFoundError as e:
        return error_response(str(e), status_code=404)

    topology = topological_sort(graph.edge_list, graph.node_list)
    body = topology.to_dict()
    if not topology.has_cycle:
        layers = execution_layers(graph.edge_list, graph.node_list)
        body["layerCount"] = len(layers)
        body["layers"] = layers
    return JSONResponse(body)


def _validate(graph_id: Optional[str]) -> JSONResponse:
    try:
        result = validate_current_graph(get_store(), graph_id=graph_id)
    except GraphNotFoundError as e:
        return error_response(str(e), status_code=404)
    return JSONResponse(result.to_dict())


def _export(graph_id: Optional[str]) -> Response:
    try:
        document = export_current_graph(get_store(), graph_id=graph_id)
    except GraphNotFoundError as e:
        return error_response(str(e), status_code=404)
    filename = generate_filename(document.name) + FILE_EXTENSION
    return json_response(
        document,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def validate_graph_endpoint(request: Request) -> JSONResponse:
    return _validate(request.path_params["graph_id"])


async def validate_active_graph(request: Request) -> JSONResponse:
    return _validate(None)


async def export_graph_endpoint(request: Request) -> Response:
    return _export(request.path_params["graph_id"])


async def export_active_graph(request: Request) -> Response:
    return _export(None)


# =============================================================================
# IMPORT
# =============================================================================

async def import_graph_endpoint(request: Request) -> JSONResponse:
    """
    Import a task graph document (the request body) into a new graph.

    Query:
        name:  Name of the new graph (defaults to the document name)
        draft: "true" to load graphs with semantic errors (as warnings)
    """
    try:
        raw = await _read_json(request)
    except msgspec.DecodeError as e:
        return error_response(f"Invalid JSON: {e}")

    draft = request.query_params.get("draft", "false").lower() in ("1", "true", "yes")
    result = import_document(
        get_store(),
        raw,
        name=request.query_params.get("name"),
        require_valid_graph=not draft,
    )
    if not result.success:
        logger.info("Import rejected with %d issue(s)", len(result.errors))
        return JSONResponse(result.to_dict(), status_code=422)
    return JSONResponse(result.to_dict(), status_code=201)


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_routes() -> List[Route]:
    """Create all API routes."""
    return [
        Route("/health", health, methods=["GET"]),

        # Graph operations
        Route("/graphs", list_graphs, methods=["GET"]),
        Route("/graphs", create_graph, methods=["POST"]),
        Route("/graphs/{graph_id}", get_graph, methods=["GET"]),
        Route("/graphs/{graph_id}", delete_graph, methods=["DELETE"]),
        Route("/graphs/{graph_id}/activate", activate_graph, methods=["POST"]),

        # Node operations
        Route("/graphs/{graph_id}/nodes", create_node, methods=["POST"]),
        Route("/graphs/{graph_id}/nodes/{node_id}", update_node, methods=["PATCH"]),
        Route("/graphs/{graph_id}/nodes/{node_id}", delete_node, methods=["DELETE"]),

        # Edge operations
        Route("/graphs/{graph_id}/edges", create_edge, methods=["POST"]),
        Route("/graphs/{graph_id}/edges/{edge_id}", delete_edge, methods=["DELETE"]),

        # Analysis
        Route("/graphs/{graph_id}/orphans", get_orphans, methods=["GET"]),
        Route("/graphs/{graph_id}/topology", get_topology, methods=["GET"]),
        Route("/graphs/{graph_id}/validate", validate_graph_endpoint, methods=["GET"]),
        Route("/graphs/{graph_id}/export", export_graph_endpoint, methods=["GET"]),
        Route("/validate", validate_active_graph, methods=["GET"]),
        Route("/export", export_active_graph, methods=["GET"]),

        # Import
        Route("/import", import_graph_endpoint, methods=["POST"]),
    ]


def create_app() -> Starlette:
    """Create the Starlette application."""
    from starlette.middleware import Middleware
    from starlette.middleware.cors import CORSMiddleware

    # CORS middleware for the editor front end
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    ]

    return Starlette(
        routes=create_routes(),
        middleware=middleware,
        debug=False,
    )


# Default app instance for Granian
app = create_app()
