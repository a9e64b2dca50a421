"""
Pytest configuration and shared fixtures for the PrivDAG test suite.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset global state before each test to ensure isolation."""
    from api.routes import set_store
    from infrastructure.config import set_config
    from infrastructure.logger import configure_logger, LoggerConfig

    set_store(None)
    set_config(None)
    configure_logger(LoggerConfig())

    yield

    set_store(None)
    set_config(None)


@pytest.fixture
def mutation_logger():
    """Provide a private, in-memory MutationLogger."""
    from infrastructure.logger import MutationLogger
    return MutationLogger()


@pytest.fixture
def fresh_store(mutation_logger):
    """Provide a fresh GraphStore with one active, empty graph ("g1")."""
    from core.graph_store import GraphStore
    store = GraphStore(mutation_logger=mutation_logger)
    store.create_graph("g1", "Test graph")
    return store


@pytest.fixture
def sample_graph(fresh_store):
    """
    A valid two-party PSI pipeline:

        bank_data ----\\
                       +--> psi --> export
        insurer_data -/
    """
    from core.schemas import DataResourceData, ComputeTaskData, PSIConfig, TaskConfig, Port

    store = fresh_store
    bank = store.add_node(
        "data", {"x": 200, "y": 40},
        DataResourceData.create("customers", source="bank", row_count=5000),
    )
    insurer = store.add_node(
        "data", {"x": 600, "y": 40},
        DataResourceData.create("policies", source="insurer", row_count=1200),
    )
    psi = store.add_node(
        "compute", {"x": 400, "y": 300},
        ComputeTaskData.create(
            "intersect",
            "PSI",
            config=TaskConfig(psi_config=PSIConfig(algorithm="ecdh")),
            input_ports=[Port(id="left", name="Left"), Port(id="right", name="Right")],
            output_ports=[Port(id="out", name="Result")],
        ),
        participant_id="bank",
    )
    export = store.add_node(
        "compute", {"x": 400, "y": 900},
        ComputeTaskData.create("publish", "data-export"),
        participant_id="bank",
    )
    store.add_edge(bank.id, psi.id)
    store.add_edge(insurer.id, psi.id)
    store.add_edge(psi.id, export.id)

    return store, {"bank": bank, "insurer": insurer, "psi": psi, "export": export}
