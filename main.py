"""
PRIVDAG MAIN - Entry Point and CLI

Commands:
    serve         - Start the API server
    validate      - Run the schema gate and graph validation on a document
    order         - Print topological order and execution layers of a document
    export-check  - Import a document and print its re-export

Usage:
    # Start API (development, auto-reload)
    python main.py serve

    # Production server
    python main.py serve --prod --workers 4

    # Check a document before handing it to the editor
    python main.py validate task-graph-demo-2026-10-19.json

    # Accept graphs with semantic errors (report them as warnings)
    python main.py validate --draft draft.json

    # Execution order
    python main.py order task-graph-demo-2026-10-19.json
"""
import sys
import logging
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent))


def run_dev_server(host: str = "127.0.0.1", port: int = 8000):
    """Run development server with Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    print(f"Starting PrivDAG API server on {host}:{port}")
    print("Press Ctrl+C to stop")

    granian = Granian(
        target="api.routes:app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        workers=1,
        reload=True,
    )
    granian.serve()


def run_prod_server(host: str = "0.0.0.0", port: int = 8000, workers: int = 4):
    """Run production server with Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    print(f"Starting PrivDAG API server on {host}:{port} with {workers} workers")

    granian = Granian(
        target="api.routes:app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        workers=workers,
        reload=False,
    )
    granian.serve()


def _load_document(path: str):
    """Read and parse a JSON document, exiting on I/O or syntax errors."""
    import msgspec
    from core.document import loads

    try:
        return loads(Path(path).read_bytes())
    except OSError as e:
        print(f"Cannot read {path}: {e}")
        sys.exit(2)
    except msgspec.DecodeError as e:
        print(f"Invalid JSON in {path}: {e}")
        sys.exit(2)


def _print_issues(title: str, issues) -> None:
    print(f"{title} ({len(issues)}):")
    for issue in issues:
        print(f"  [{issue.code}] {issue.path or '<root>'}: {issue.message}")


def cmd_serve(args):
    """Handle serve command."""
    if args.prod:
        run_prod_server(args.host, args.port, args.workers)
    else:
        run_dev_server(args.host, args.port)


def cmd_validate(args):
    """Handle validate command - schema gate, then graph-level validation."""
    from core.graph_store import GraphStore
    from core.document import import_document

    raw = _load_document(args.file)
    result = import_document(GraphStore(), raw, require_valid_graph=not args.draft)

    if result.errors:
        _print_issues("Errors", result.errors)
    if result.warnings:
        _print_issues("Warnings", result.warnings)
    if not result.success:
        sys.exit(1)
    print(f"{args.file}: valid")


def cmd_order(args):
    """Handle order command - topological order and execution layers."""
    from core.document import validate_document
    from core.topology import topological_sort, execution_layers

    raw = _load_document(args.file)
    schema, document = validate_document(raw)
    if not schema.valid:
        _print_issues("Schema errors", schema.errors)
        sys.exit(1)

    topology = topological_sort(document.connections, document.elements)
    if topology.has_cycle:
        print(f"Cycle detected: {' -> '.join(topology.cycle + topology.cycle[:1])}")
        sys.exit(1)

    print("Order: " + " -> ".join(topology.order))
    for index, layer in enumerate(execution_layers(document.connections, document.elements)):
        print(f"  Layer {index}: {', '.join(layer)}")


def cmd_export_check(args):
    """Handle export-check command - import, then print the re-exported document."""
    from core.graph_store import GraphStore
    from core.document import import_document, export_current_graph, dumps

    raw = _load_document(args.file)
    store = GraphStore()
    result = import_document(store, raw, require_valid_graph=False)
    if not result.success:
        _print_issues("Errors", result.errors)
        sys.exit(1)
    document = export_current_graph(store, graph_id=result.graph_id)
    sys.stdout.write(dumps(document).decode("utf-8") + "\n")


def main():
    """Main entry point with subcommands."""
    import argparse
    from infrastructure.config import get_config, configure_logging

    parser = argparse.ArgumentParser(
        description="PrivDAG - Privacy-computation task graph engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--workers", type=int, default=4, help="Number of workers (prod)")
    serve_parser.add_argument("--prod", action="store_true", help="Run in production mode")
    serve_parser.set_defaults(func=cmd_serve)

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a task graph document")
    validate_parser.add_argument("file", help="Path to a task graph JSON document")
    validate_parser.add_argument("--draft", action="store_true", help="Report graph errors as warnings")
    validate_parser.set_defaults(func=cmd_validate)

    # order command
    order_parser = subparsers.add_parser("order", help="Print execution order of a document")
    order_parser.add_argument("file", help="Path to a task graph JSON document")
    order_parser.set_defaults(func=cmd_order)

    # export-check command
    check_parser = subparsers.add_parser("export-check", help="Import then re-export a document")
    check_parser.add_argument("file", help="Path to a task graph JSON document")
    check_parser.set_defaults(func=cmd_export_check)

    args = parser.parse_args()

    logging.basicConfig(format="%(asctime)s %(name)s %(levelname)s %(message)s")
    configure_logging(get_config())
    if args.verbose:
        logging.getLogger("privdag").setLevel(logging.DEBUG)

    if args.command is None:
        args.command = "serve"
        args.host = "127.0.0.1"
        args.port = 8000
        args.workers = 1
        args.prod = False
        args.func = cmd_serve

    args.func(args)


if __name__ == "__main__":
    main()
