"""SQLite-backed DAG storage.

SqliteDagStore implements the DagStore protocol using stdlib sqlite3. The
connection runs in autocommit mode; :meth:`SqliteDagStore.transaction` issues
``BEGIN IMMEDIATE`` so that the read-validate-write sequence of a mutation
holds the database write lock from its first read to its commit. Separate
store instances (or processes) opened on the same file are serialised by
SQLite itself; threads sharing one instance are serialised by an instance
lock.

Edges reference nodes through composite ``(graph_id, node_id)`` foreign keys,
which rejects dangling and cross-graph endpoints and cascades node deletes.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dagstore.graph.errors import IntegrityConflictError, StoreError
from dagstore.graph.models import EdgeRecord, JSONValue, NodeRecord
from dagstore.graph.store import dump_payload
from dagstore.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator

log = get_logger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS dag_nodes (
    seq        INTEGER PRIMARY KEY AUTOINCREMENT,
    id         TEXT NOT NULL UNIQUE,
    graph_id   TEXT NOT NULL,
    data       JSON NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    UNIQUE (graph_id, id)
);

CREATE TABLE IF NOT EXISTS dag_edges (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    id           TEXT NOT NULL UNIQUE,
    graph_id     TEXT NOT NULL,
    from_node_id TEXT NOT NULL,
    to_node_id   TEXT NOT NULL,
    data         JSON NOT NULL DEFAULT '{}',
    created_at   TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    FOREIGN KEY (graph_id, from_node_id)
        REFERENCES dag_nodes (graph_id, id) ON DELETE CASCADE,
    FOREIGN KEY (graph_id, to_node_id)
        REFERENCES dag_nodes (graph_id, id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_dag_nodes_graph ON dag_nodes(graph_id);
CREATE INDEX IF NOT EXISTS idx_dag_edges_graph ON dag_edges(graph_id);
CREATE INDEX IF NOT EXISTS idx_dag_edges_from  ON dag_edges(graph_id, from_node_id);
CREATE INDEX IF NOT EXISTS idx_dag_edges_to    ON dag_edges(graph_id, to_node_id);
"""

_NODE_COLUMNS = "id, graph_id, data, created_at"
_EDGE_COLUMNS = "id, graph_id, from_node_id, to_node_id, data, created_at"


class SqliteDagStore:
    """SQLite-backed DAG store.

    Use ``":memory:"`` for a private in-process database (tests), or a file
    path for a durable one shared by several store instances.
    """

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        *,
        busy_timeout: float = 5.0,
        ensure_schema: bool = True,
    ) -> None:
        """Open or create a SQLite DAG database.

        Args:
            db_path: Path to ``.db`` file, or ``":memory:"`` for in-memory.
            busy_timeout: Seconds to wait for another writer's lock before
                failing with :class:`StoreError`.
            ensure_schema: Create tables on open if they are missing.
        """
        self._db_path = str(db_path) if isinstance(db_path, Path) else db_path
        self._lock = threading.RLock()
        self._depth = 0
        try:
            self._conn = sqlite3.connect(
                self._db_path,
                timeout=busy_timeout,
                isolation_level=None,  # autocommit; transactions are explicit
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            if self._db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as e:
            raise StoreError("connect", detail=str(e)) from e

        if ensure_schema:
            self.create_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()

    # -- Schema ----------------------------------------------------------------

    def create_schema(self) -> None:
        with self._lock:
            try:
                self._conn.executescript(_SCHEMA)
            except sqlite3.Error as e:
                raise StoreError("create schema", detail=str(e)) from e

    def drop_schema(self) -> None:
        with self.transaction():
            self._execute("drop edges table", "DROP TABLE IF EXISTS dag_edges")
            self._execute("drop nodes table", "DROP TABLE IF EXISTS dag_nodes")

    # -- Transactions ----------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Run the enclosed block in one ``BEGIN IMMEDIATE`` transaction.

        Commits on normal exit, rolls back on any exception. A nested call
        from the thread that already holds the transaction joins it.

        Raises:
            StoreError: If the transaction cannot be started (nothing written)
                or committed (rolled back).
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError("begin", detail=str(e)) from e

            self._depth = 1
            try:
                yield
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error as e:
                    raise StoreError("commit", write_attempted=True, detail=str(e)) from e
            except BaseException:
                self._rollback()
                raise
            finally:
                self._depth = 0

    def _rollback(self) -> None:
        if not self._conn.in_transaction:
            return
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            # The original failure is already propagating; keep it.
            log.warning("rollback_failed", db_path=self._db_path, error=str(e))

    # -- Statement helpers -----------------------------------------------------

    def _execute(self, step: str, sql: str, params: tuple[Any, ...] = ()) -> int:
        """Run a write statement and return the affected-row count."""
        with self._lock:
            try:
                return self._conn.execute(sql, params).rowcount
            except sqlite3.IntegrityError as e:
                raise IntegrityConflictError(step, str(e)) from e
            except sqlite3.Error as e:
                raise StoreError(step, write_attempted=True, detail=str(e)) from e

    def _query(self, step: str, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(step, write_attempted=self._depth > 0, detail=str(e)) from e

    # -- Nodes -----------------------------------------------------------------

    def insert_node(self, graph_id: str, node_id: str, data: JSONValue) -> None:
        step = f"insert node {node_id}"
        self._execute(
            step,
            "INSERT INTO dag_nodes (id, graph_id, data) VALUES (?, ?, ?)",
            (node_id, graph_id, dump_payload(step, data)),
        )

    def fetch_node(self, node_id: str) -> NodeRecord | None:
        rows = self._query(
            "get node",
            f"SELECT {_NODE_COLUMNS} FROM dag_nodes WHERE id = ?",
            (node_id,),
        )
        return self._row_to_node(rows[0]) if rows else None

    def fetch_nodes(self, graph_id: str) -> list[NodeRecord]:
        rows = self._query(
            "list nodes",
            f"SELECT {_NODE_COLUMNS} FROM dag_nodes WHERE graph_id = ? ORDER BY created_at, seq",
            (graph_id,),
        )
        return [self._row_to_node(row) for row in rows]

    def update_node_data(self, node_id: str, data: JSONValue) -> int:
        step = f"update node {node_id}"
        return self._execute(
            step,
            "UPDATE dag_nodes SET data = ? WHERE id = ?",
            (dump_payload(step, data), node_id),
        )

    def delete_node(self, node_id: str) -> None:
        self._execute(f"delete node {node_id}", "DELETE FROM dag_nodes WHERE id = ?", (node_id,))

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
        self._execute(
            step,
            "INSERT INTO dag_edges (id, graph_id, from_node_id, to_node_id, data) "
            "VALUES (?, ?, ?, ?, ?)",
            (edge_id, graph_id, from_node_id, to_node_id, dump_payload(step, data)),
        )

    def fetch_edge(self, edge_id: str) -> EdgeRecord | None:
        rows = self._query(
            "get edge",
            f"SELECT {_EDGE_COLUMNS} FROM dag_edges WHERE id = ?",
            (edge_id,),
        )
        return self._row_to_edge(rows[0]) if rows else None

    def fetch_edges(self, graph_id: str) -> list[EdgeRecord]:
        rows = self._query(
            "list edges",
            f"SELECT {_EDGE_COLUMNS} FROM dag_edges WHERE graph_id = ? ORDER BY created_at, seq",
            (graph_id,),
        )
        return [self._row_to_edge(row) for row in rows]

    def update_edge(
        self,
        edge_id: str,
        from_node_id: str,
        to_node_id: str,
        data: JSONValue,
    ) -> int:
        step = f"update edge {edge_id}"
        return self._execute(
            step,
            "UPDATE dag_edges SET from_node_id = ?, to_node_id = ?, data = ? WHERE id = ?",
            (from_node_id, to_node_id, dump_payload(step, data), edge_id),
        )

    def delete_edge(self, edge_id: str) -> None:
        self._execute(f"delete edge {edge_id}", "DELETE FROM dag_edges WHERE id = ?", (edge_id,))

    def delete_edges_touching(self, node_id: str) -> None:
        self._execute(
            f"delete edges of node {node_id}",
            "DELETE FROM dag_edges WHERE from_node_id = ? OR to_node_id = ?",
            (node_id, node_id),
        )

    # -- Graphs ----------------------------------------------------------------

    def delete_graph(self, graph_id: str) -> None:
        with self.transaction():
            self._execute(
                f"delete edges of graph {graph_id}",
                "DELETE FROM dag_edges WHERE graph_id = ?",
                (graph_id,),
            )
            self._execute(
                f"delete nodes of graph {graph_id}",
                "DELETE FROM dag_nodes WHERE graph_id = ?",
                (graph_id,),
            )

    # -- Row conversion --------------------------------------------------------

    @staticmethod
    def _row_to_node(row: sqlite3.Row) -> NodeRecord:
        return NodeRecord(
            id=row["id"],
            graph_id=row["graph_id"],
            data=json.loads(row["data"]),
            created_at=_parse_timestamp(row["created_at"]),
        )

    @staticmethod
    def _row_to_edge(row: sqlite3.Row) -> EdgeRecord:
        return EdgeRecord(
            id=row["id"],
            graph_id=row["graph_id"],
            from_node_id=row["from_node_id"],
            to_node_id=row["to_node_id"],
            data=json.loads(row["data"]),
            created_at=_parse_timestamp(row["created_at"]),
        )


def _parse_timestamp(value: str) -> datetime:
    # strftime('now') yields UTC without an offset.
    stamp = datetime.fromisoformat(value)
    return stamp if stamp.tzinfo is not None else stamp.replace(tzinfo=UTC)
