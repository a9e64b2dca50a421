"""
PRIVDAG IDENTIFIERS - Counter-Style Id Minting

Node and edge ids are a fixed prefix plus a strictly increasing counter:
    node_1, node_2, ...    edge_1, edge_2, ...

After an import, reset() reseeds the counters past the largest suffix
seen in the document so freshly minted ids never collide with loaded ones.

Not thread-safe on its own: GraphStore calls it under its lock.
"""
import re
from typing import Iterable, Optional

NODE_PREFIX = "node_"
EDGE_PREFIX = "edge_"
GRAPH_PREFIX = "graph_"

_SUFFIX_PATTERNS = {
    NODE_PREFIX: re.compile(r"^node_(\d+)$"),
    EDGE_PREFIX: re.compile(r"^edge_(\d+)$"),
    GRAPH_PREFIX: re.compile(r"^graph_(\d+)$"),
}


def parse_suffix(value: str, prefix: str) -> Optional[int]:
    """Numeric suffix of a counter-style id, or None for any other shape."""
    match = _SUFFIX_PATTERNS[prefix].match(value)
    if match is None:
        return None
    return int(match.group(1))


def max_suffix(values: Iterable[str], prefix: str) -> int:
    """Largest counter suffix among the given ids (0 when there is none)."""
    highest = 0
    for value in values:
        suffix = parse_suffix(value, prefix)
        if suffix is not None and suffix > highest:
            highest = suffix
    return highest


class IdGenerator:
    """Mints node_/edge_/graph_ ids from independent counters starting at 1."""

    def __init__(self):
        self._next_node = 1
        self._next_edge = 1
        self._next_graph = 1

    def next_node_id(self) -> str:
        value = f"{NODE_PREFIX}{self._next_node}"
        self._next_node += 1
        return value

    def next_edge_id(self) -> str:
        value = f"{EDGE_PREFIX}{self._next_edge}"
        self._next_edge += 1
        return value

    def next_graph_id(self) -> str:
        value = f"{GRAPH_PREFIX}{self._next_graph}"
        self._next_graph += 1
        return value

    def reset(self, max_node_seen: int = 0, max_edge_seen: int = 0) -> None:
        """Reseed both counters to one past the given watermarks."""
        self._next_node = max_node_seen + 1
        self._next_edge = max_edge_seen + 1

    @property
    def node_watermark(self) -> int:
        """Largest node counter handed out (or reserved) so far."""
        return self._next_node - 1

    @property
    def edge_watermark(self) -> int:
        return self._next_edge - 1
