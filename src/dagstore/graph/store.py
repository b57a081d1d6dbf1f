"""Storage backend protocol and dict-based implementation.

The DagStore protocol defines the low-level row operations that DagService
delegates to. Implementations handle raw CRUD, transactions and referential
integrity; DagService provides the public API with reference resolution,
cycle validation and error semantics.

DictDagStore keeps everything in process memory. SqliteDagStore provides
durable SQLite-backed storage.
"""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from dagstore.graph.errors import IntegrityConflictError, InvalidPayloadError
from dagstore.graph.models import EdgeRecord, JSONValue, NodeRecord

if TYPE_CHECKING:
    from collections.abc import Iterator
    from contextlib import AbstractContextManager


def dump_payload(step: str, data: JSONValue) -> str:
    """Encode a node or edge payload as JSON text.

    Raises:
        InvalidPayloadError: *data* holds values JSON cannot represent.
    """
    try:
        return json.dumps(data)
    except (TypeError, ValueError) as e:
        raise InvalidPayloadError(step, str(e)) from e


@runtime_checkable
class DagStore(Protocol):
    """Storage backend protocol for DagService.

    Implementations must:

    - serialise writers inside :meth:`transaction` and roll back on any
      exception raised inside it;
    - reject duplicate ids and edge endpoints that are not nodes of the
      edge's own graph with :class:`IntegrityConflictError`;
    - return rows of a graph in insertion order.

    Absence is never an error at this level: fetches return None, deletes of
    missing rows are no-ops and updates report zero affected rows.
    """

    # -- Schema ----------------------------------------------------------------

    def create_schema(self) -> None:
        """Create storage structures if they do not exist."""
        ...

    def drop_schema(self) -> None:
        """Drop storage structures if they exist."""
        ...

    # -- Transactions ----------------------------------------------------------

    def transaction(self) -> AbstractContextManager[None]:
        """Open a serialised write transaction; nested calls join the outer one."""
        ...

    # -- Nodes -----------------------------------------------------------------

    def insert_node(self, graph_id: str, node_id: str, data: JSONValue) -> None:
        """Insert a node row."""
        ...

    def fetch_node(self, node_id: str) -> NodeRecord | None:
        """Get a node row by id, or None if not found."""
        ...

    def fetch_nodes(self, graph_id: str) -> list[NodeRecord]:
        """Return all node rows of a graph in insertion order."""
        ...

    def update_node_data(self, node_id: str, data: JSONValue) -> int:
        """Replace a node's payload. Return the number of rows affected."""
        ...

    def delete_node(self, node_id: str) -> None:
        """Delete a node row. Backends may or may not cascade to edges."""
        ...

    # -- Edges -----------------------------------------------------------------

    def insert_edge(
        self,
        graph_id: str,
        edge_id: str,
        from_node_id: str,
        to_node_id: str,
        data: JSONValue,
    ) -> None:
        """Insert an edge row."""
        ...

    def fetch_edge(self, edge_id: str) -> EdgeRecord | None:
        """Get an edge row by id, or None if not found."""
        ...

    def fetch_edges(self, graph_id: str) -> list[EdgeRecord]:
        """Return all edge rows of a graph in insertion order."""
        ...

    def update_edge(
        self,
        edge_id: str,
        from_node_id: str,
        to_node_id: str,
        data: JSONValue,
    ) -> int:
        """Rewrite an edge's endpoints and payload. Return rows affected."""
        ...

    def delete_edge(self, edge_id: str) -> None:
        """Delete an edge row."""
        ...

    def delete_edges_touching(self, node_id: str) -> None:
        """Delete every edge where *node_id* is the source or the target."""
        ...

    # -- Graphs ----------------------------------------------------------------

    def delete_graph(self, graph_id: str) -> None:
        """Delete every edge and node row owned by *graph_id*."""
        ...

    def close(self) -> None:
        """Release backend resources."""
        ...


class DictDagStore:
    """In-memory dict-based DAG store.

    Rows live in insertion-ordered dicts keyed by id. Transactions take an
    instance lock and snapshot both dicts; an exception restores the
    snapshot. Payloads are stored as their JSON round trip, so they compare
    equal to what the SQLite backend returns. Deleting a node does not
    cascade: edges that still reference it make the delete fail, so callers
    must remove them first.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, NodeRecord] = {}
        self._edges: dict[str, EdgeRecord] = {}
        self._lock = threading.RLock()
        self._depth = 0

    # -- Schema ----------------------------------------------------------------

    def create_schema(self) -> None:
        """No-op: the dicts always exist."""

    def drop_schema(self) -> None:
        with self._lock:
            self._nodes = {}
            self._edges = {}

    # -- Transactions ----------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            # Records are frozen, so shallow copies are enough to restore.
            snapshot = (dict(self._nodes), dict(self._edges))
            self._depth = 1
            try:
                yield
            except BaseException:
                self._nodes, self._edges = snapshot
                raise
            finally:
                self._depth = 0

    # -- Nodes -----------------------------------------------------------------

    def insert_node(self, graph_id: str, node_id: str, data: JSONValue) -> None:
        with self._lock:
            if node_id in self._nodes:
                raise IntegrityConflictError(f"insert node {node_id}", "duplicate node id")
            self._nodes[node_id] = NodeRecord(
                id=node_id,
                graph_id=graph_id,
                data=json.loads(dump_payload(f"insert node {node_id}", data)),
                created_at=datetime.now(UTC),
            )

    def fetch_node(self, node_id: str) -> NodeRecord | None:
        with self._lock:
            record = self._nodes.get(node_id)
            return record.model_copy(deep=True) if record is not None else None

    def fetch_nodes(self, graph_id: str) -> list[NodeRecord]:
        with self._lock:
            return [
                n.model_copy(deep=True) for n in self._nodes.values() if n.graph_id == graph_id
            ]

    def update_node_data(self, node_id: str, data: JSONValue) -> int:
        payload = json.loads(dump_payload(f"update node {node_id}", data))
        with self._lock:
            record = self._nodes.get(node_id)
            if record is None:
                return 0
            self._nodes[node_id] = record.model_copy(update={"data": payload})
            return 1

    def delete_node(self, node_id: str) -> None:
        with self._lock:
            if node_id not in self._nodes:
                return
            for edge in self._edges.values():
                if node_id in edge.endpoints:
                    raise IntegrityConflictError(
                        f"delete node {node_id}", f"still referenced by edge {edge.id}"
                    )
            del self._nodes[node_id]

    # -- Edges -----------------------------------------------------------------

    def insert_edge(
        self,
        graph_id: str,
        edge_id: str,
        from_node_id: str,
        to_node_id: str,
        data: JSONValue,
    ) -> None:
        step = f"insert edge {edge_id}"
        with self._lock:
            if edge_id in self._edges:
                raise IntegrityConflictError(step, "duplicate edge id")
            self._check_endpoints(step, graph_id, from_node_id, to_node_id)
            self._edges[edge_id] = EdgeRecord(
                id=edge_id,
                graph_id=graph_id,
                from_node_id=from_node_id,
                to_node_id=to_node_id,
                data=json.loads(dump_payload(step, data)),
                created_at=datetime.now(UTC),
            )

    def fetch_edge(self, edge_id: str) -> EdgeRecord | None:
        with self._lock:
            record = self._edges.get(edge_id)
            return record.model_copy(deep=True) if record is not None else None

    def fetch_edges(self, graph_id: str) -> list[EdgeRecord]:
        with self._lock:
            return [
                e.model_copy(deep=True) for e in self._edges.values() if e.graph_id == graph_id
            ]

    def update_edge(
        self,
        edge_id: str,
        from_node_id: str,
        to_node_id: str,
        data: JSONValue,
    ) -> int:
        step = f"update edge {edge_id}"
        payload = json.loads(dump_payload(step, data))
        with self._lock:
            record = self._edges.get(edge_id)
            if record is None:
                return 0
            self._check_endpoints(step, record.graph_id, from_node_id, to_node_id)
            self._edges[edge_id] = record.model_copy(
                update={
                    "from_node_id": from_node_id,
                    "to_node_id": to_node_id,
                    "data": payload,
                }
            )
            return 1

    def delete_edge(self, edge_id: str) -> None:
        with self._lock:
            self._edges.pop(edge_id, None)

    def delete_edges_touching(self, node_id: str) -> None:
        with self._lock:
            self._edges = {
                eid: e for eid, e in self._edges.items() if node_id not in e.endpoints
            }

    def _check_endpoints(self, step: str, graph_id: str, *node_ids: str) -> None:
        for node_id in node_ids:
            node = self._nodes.get(node_id)
            if node is None or node.graph_id != graph_id:
                raise IntegrityConflictError(
                    step, f"node {node_id} does not exist in graph {graph_id}"
                )

    # -- Graphs ----------------------------------------------------------------

    def delete_graph(self, graph_id: str) -> None:
        with self._lock:
            self._edges = {eid: e for eid, e in self._edges.items() if e.graph_id != graph_id}
            self._nodes = {nid: n for nid, n in self._nodes.items() if n.graph_id != graph_id}

    def close(self) -> None:
        """No-op: nothing to release."""
