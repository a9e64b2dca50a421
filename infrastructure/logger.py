"""
PRIVDAG MUTATION LOGGER - The Edit History

Every effective Graph Store mutation becomes one MutationEvent. Events are
data, not diagnostics: they answer "what happened to graph X, in what
order", which is what editor-session debugging and replay need.

Architecture:
- MutationEvent: One msgspec record per mutation, numbered per logger
- EventHistory: Bounded in-memory history with a single filtering query
- JsonlSink: Optional append-only JSONL journal, one file per UTC day
- MutationLogger: The facade the store talks to (history + sink + listeners)

Usage:
    mutations = MutationLogger()
    mutations.log_node_created("graph_1", "node_3", "compute")
    mutations.log_edge_created("graph_1", "edge_1", "node_1", "node_3")

    mutations.events(graph_id="graph_1")
    mutations.events(mutation_type=MutationType.EDGE_CREATED, last=10)

Diagnostic logging goes through the stdlib `privdag.*` loggers instead.
"""
import msgspec
from typing import Optional, List, Callable, Any
from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from collections import deque
import threading
import logging

log = logging.getLogger("privdag.mutations")

JOURNAL_PREFIX = "mutations_"
JOURNAL_SUFFIX = ".jsonl"


# =============================================================================
# EVENT MODEL
# =============================================================================

class MutationType(str, Enum):
    GRAPH_CREATED = "GRAPH_CREATED"
    GRAPH_DELETED = "GRAPH_DELETED"
    GRAPH_IMPORTED = "GRAPH_IMPORTED"
    NODE_CREATED = "NODE_CREATED"
    NODE_UPDATED = "NODE_UPDATED"
    NODE_DELETED = "NODE_DELETED"
    EDGE_CREATED = "EDGE_CREATED"
    EDGE_DELETED = "EDGE_DELETED"


class MutationEvent(msgspec.Struct, kw_only=True, omit_defaults=True):
    """
    One store mutation.

    count carries the cascade size for NODE_DELETED (edges removed with
    the node) and the node count for GRAPH_IMPORTED.
    """
    timestamp: str
    sequence: int
    mutation_type: str
    graph_id: str
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    edge_id: Optional[str] = None
    source_id: Optional[str] = None
    target_id: Optional[str] = None
    count: int = 0


def _journal_day(moment: Optional[datetime] = None) -> str:
    return (moment or datetime.now(timezone.utc)).strftime("%Y-%m-%d")


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class LoggerConfig:
    enable_file_log: bool = False
    log_path: Path = Path("./workspace/logs")
    buffer_size: int = 10000            # Events kept in memory

    def __post_init__(self):
        self.log_path = Path(self.log_path)


# =============================================================================
# IN-MEMORY HISTORY
# =============================================================================

class EventHistory:
    """
    Bounded, sequenced history of mutation events.

    The oldest events fall off once max_size is reached. Sequence numbers
    keep counting regardless, so gaps at the front show what was dropped.
    """

    def __init__(self, max_size: int = 10000):
        self._events: deque = deque(maxlen=max_size)
        self._counter = 0
        self._lock = threading.RLock()

    def record(self, mutation_type: MutationType, graph_id: str, **fields: Any) -> MutationEvent:
        """Number, timestamp and store a new event."""
        with self._lock:
            self._counter += 1
            event = MutationEvent(
                timestamp=datetime.now(timezone.utc).isoformat(),
                sequence=self._counter,
                mutation_type=mutation_type.value,
                graph_id=graph_id,
                **fields,
            )
            self._events.append(event)
            return event

    def add(self, event: MutationEvent) -> None:
        """Store an already-built event (e.g. replayed from a journal)."""
        with self._lock:
            self._events.append(event)

    def query(
        self,
        graph_id: Optional[str] = None,
        node_id: Optional[str] = None,
        mutation_type: Optional[str] = None,
        since: Optional[str] = None,
        last: Optional[int] = None,
    ) -> List[MutationEvent]:
        """Events matching every given filter, oldest first; last keeps the tail."""
        if mutation_type is not None:
            mutation_type = getattr(mutation_type, "value", mutation_type)
        with self._lock:
            matched = [
                e for e in self._events
                if (graph_id is None or e.graph_id == graph_id)
                and (node_id is None or e.node_id == node_id)
                and (mutation_type is None or e.mutation_type == mutation_type)
                and (since is None or e.timestamp >= since)
            ]
        if last is not None:
            return matched[-last:] if last > 0 else []
        return matched

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


# =============================================================================
# JSONL JOURNAL
# =============================================================================

class JsonlSink:
    """Appends events to <log_dir>/mutations_<YYYY-MM-DD>.jsonl, switching files at midnight UTC."""

    def __init__(self, log_dir: Path):
        self._log_dir = Path(log_dir)
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._handle = None
        self._day: Optional[str] = None
        self._encoder = msgspec.json.Encoder()
        self._lock = threading.Lock()

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def write(self, event: MutationEvent) -> None:
        line = self._encoder.encode(event) + b"\n"
        with self._lock:
            try:
                self._open_for(_journal_day())
                self._handle.write(line)
                self._handle.flush()
            except OSError as e:
                log.warning("Mutation journal write failed: %s", e)

    def _open_for(self, day: str) -> None:
        if self._day == day and self._handle is not None:
            return
        if self._handle is not None:
            self._handle.close()
        self._handle = open(self._log_dir / f"{JOURNAL_PREFIX}{day}{JOURNAL_SUFFIX}", "ab")
        self._day = day

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None
                self._day = None


def read_journal(log_dir: Path, day: str) -> List[MutationEvent]:
    """Events journaled on one UTC day. Undecodable lines are skipped."""
    path = Path(log_dir) / f"{JOURNAL_PREFIX}{day}{JOURNAL_SUFFIX}"
    if not path.exists():
        return []

    decoder = msgspec.json.Decoder(type=MutationEvent)
    events = []
    with open(path, "rb") as f:
        for number, raw in enumerate(f, start=1):
            raw = raw.strip()
            if not raw:
                continue
            try:
                events.append(decoder.decode(raw))
            except (msgspec.DecodeError, msgspec.ValidationError):
                log.debug("Skipping bad journal line %s:%d", path, number)
    return events


# =============================================================================
# MUTATION LOGGER
# =============================================================================

Listener = Callable[[MutationEvent], None]


class MutationLogger:
    """
    What the Graph Store reports its mutations to.

    Each log_* call records one event in the history, appends it to the
    journal when file logging is on, and hands it to every listener. A
    failing listener is logged and skipped; it never fails the mutation.
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()
        self._history = EventHistory(self.config.buffer_size)
        self._sink: Optional[JsonlSink] = (
            JsonlSink(self.config.log_path) if self.config.enable_file_log else None
        )
        self._listeners: List[Listener] = []

    @property
    def history(self) -> EventHistory:
        return self._history

    def _record(self, mutation_type: MutationType, graph_id: str, **fields: Any) -> MutationEvent:
        event = self._history.record(mutation_type, graph_id, **fields)
        if self._sink is not None:
            self._sink.write(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception("Mutation listener %r failed", listener)
        return event

    # =========================================================================
    # GRAPHS
    # =========================================================================

    def log_graph_created(self, graph_id: str) -> MutationEvent:
        return self._record(MutationType.GRAPH_CREATED, graph_id)

    def log_graph_deleted(self, graph_id: str) -> MutationEvent:
        return self._record(MutationType.GRAPH_DELETED, graph_id)

    def log_graph_imported(self, graph_id: str, node_count: int) -> MutationEvent:
        return self._record(MutationType.GRAPH_IMPORTED, graph_id, count=node_count)

    # =========================================================================
    # NODES
    # =========================================================================

    def log_node_created(self, graph_id: str, node_id: str, node_type: str) -> MutationEvent:
        return self._record(MutationType.NODE_CREATED, graph_id, node_id=node_id, node_type=node_type)

    def log_node_updated(self, graph_id: str, node_id: str, node_type: str) -> MutationEvent:
        return self._record(MutationType.NODE_UPDATED, graph_id, node_id=node_id, node_type=node_type)

    def log_node_deleted(
        self,
        graph_id: str,
        node_id: str,
        node_type: str,
        edges_removed: int = 0,
    ) -> MutationEvent:
        return self._record(
            MutationType.NODE_DELETED, graph_id,
            node_id=node_id, node_type=node_type, count=edges_removed,
        )

    # =========================================================================
    # EDGES
    # =========================================================================

    def log_edge_created(self, graph_id: str, edge_id: str, source_id: str, target_id: str) -> MutationEvent:
        return self._record(
            MutationType.EDGE_CREATED, graph_id,
            edge_id=edge_id, source_id=source_id, target_id=target_id,
        )

    def log_edge_deleted(self, graph_id: str, edge_id: str, source_id: str, target_id: str) -> MutationEvent:
        return self._record(
            MutationType.EDGE_DELETED, graph_id,
            edge_id=edge_id, source_id=source_id, target_id=target_id,
        )

    # =========================================================================
    # QUERIES & LISTENERS
    # =========================================================================

    def events(self, **filters: Any) -> List[MutationEvent]:
        """See EventHistory.query for the accepted filters."""
        return self._history.query(**filters)

    def journal(self, day: Optional[str] = None) -> List[MutationEvent]:
        """Events journaled today (or on day). Empty when file logging is off."""
        if self._sink is None:
            return []
        return read_journal(self._sink.log_dir, day or _journal_day())

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def close(self) -> None:
        if self._sink is not None:
            self._sink.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_global_logger: Optional[MutationLogger] = None


def get_logger() -> MutationLogger:
    """The process-wide MutationLogger, created on first use."""
    global _global_logger
    if _global_logger is None:
        _global_logger = MutationLogger()
    return _global_logger


def configure_logger(config: LoggerConfig) -> MutationLogger:
    """Replace the process-wide MutationLogger (closing the old journal)."""
    global _global_logger
    if _global_logger is not None:
        _global_logger.close()
    _global_logger = MutationLogger(config)
    return _global_logger
