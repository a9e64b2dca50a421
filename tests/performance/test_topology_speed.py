"""
PRIVDAG PERFORMANCE TESTS

Checks that topology analysis and validation stay linear on large graphs.

Performance Targets (generous, CI-safe):
- Kahn pass over a 10K node / ~20K edge DAG: < 500ms
- Execution layers (rustworkx) on the same DAG: < 500ms
- Full validation of a 5K node graph: < 2000ms
- Deleting a hub node with 2K incident edges: < 200ms

Run with: pytest tests/performance/test_topology_speed.py -v
"""
import random
import statistics
import time
from typing import Any, Callable, List, Tuple

import pytest

from core.schemas import Node, Edge, Position, DataResourceData, ComputeTaskData
from core.topology import topological_sort, execution_layers
from core.graph_validator import validate_graph
from core.graph_store import GraphStore
from infrastructure.logger import MutationLogger


def measure(func: Callable[[], Any], iterations: int = 3) -> Tuple[float, Any]:
    """Run func a few times; return (mean_ms, last result)."""
    times_ms = []
    result = None
    for _ in range(iterations):
        start = time.perf_counter()
        result = func()
        times_ms.append((time.perf_counter() - start) * 1000)
    return statistics.mean(times_ms), result


def random_dag(node_count: int, fan_in: int = 2, seed: int = 42) -> Tuple[List[Node], List[Edge]]:
    """Data resources feeding a layered chain of compute tasks. Edges only point forward."""
    rng = random.Random(seed)
    nodes = [Node.create(id="node_1", data=DataResourceData.create("root", source="p"), position=Position(x=0, y=0))]
    for i in range(2, node_count + 1):
        nodes.append(Node.create(
            id=f"node_{i}",
            data=ComputeTaskData.create(f"task_{i}", "MPC"),
            position=Position(x=i % 1000, y=i % 1000),
            participant_id="p",
        ))

    edges = []
    for i in range(2, node_count + 1):
        for source in {rng.randint(1, i - 1) for _ in range(fan_in)}:
            edges.append(Edge(id=f"edge_{len(edges) + 1}", source=f"node_{source}", target=f"node_{i}"))
    return nodes, edges


@pytest.fixture(scope="module")
def large_dag():
    return random_dag(10000)


def test_kahn_pass_10k(large_dag):
    nodes, edges = large_dag
    mean_ms, result = measure(lambda: topological_sort(edges, nodes))

    assert not result.has_cycle
    assert len(result.order) == len(nodes)
    assert mean_ms < 500, f"Kahn pass took {mean_ms:.1f}ms"


def test_execution_layers_10k(large_dag):
    nodes, edges = large_dag
    mean_ms, layers = measure(lambda: execution_layers(edges, nodes))

    assert sum(len(layer) for layer in layers) == len(nodes)
    assert mean_ms < 500, f"Layering took {mean_ms:.1f}ms"


def test_validation_5k():
    nodes, edges = random_dag(5000)
    mean_ms, result = measure(lambda: validate_graph(nodes, edges))

    assert result.valid, result.codes[:5]
    assert mean_ms < 2000, f"Validation took {mean_ms:.1f}ms"


def test_hub_delete_cascade():
    store = GraphStore(mutation_logger=MutationLogger())
    store.create_graph("g")
    hub = store.add_node("compute", {"x": 0, "y": 0}, ComputeTaskData.create("hub", "PSI"))
    for i in range(2000):
        store.add_edge(hub.id, f"node_x{i}")

    start = time.perf_counter()
    store.delete_node(hub.id)
    elapsed_ms = (time.perf_counter() - start) * 1000

    assert store.get_graph().edges == {}
    assert elapsed_ms < 200, f"Cascade took {elapsed_ms:.1f}ms"
