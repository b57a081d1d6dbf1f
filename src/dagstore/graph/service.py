"""DAG service: the public API over a DagStore.

DagService owns no graph state. Every mutating call re-reads what it needs
from the store, so any number of service instances may share one database.

Three operations can introduce a cycle and are validated against the full
post-mutation edge set:

- ``replace_graph`` resolves refs and validates before opening its
  transaction, then deletes the old content and inserts the new.
- ``add_edge`` and ``update_edge`` load the graph, splice in the change and
  validate inside one store transaction, so no concurrent writer can commit
  between the read and the write.

Everything else is a plain row operation. Errors are never retried here.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from contextlib import contextmanager
from typing import TYPE_CHECKING

from dagstore.graph.algorithms import validate_acyclic
from dagstore.graph.cancellation import CancelToken
from dagstore.graph.errors import (
    CycleDetectedError,
    EdgeNotFoundError,
    EmptyGraphIdError,
    MissingEndpointError,
    NodeNotFoundError,
)
from dagstore.graph.models import Edge, EdgeRecord, Graph, JSONValue, Node, NodeRecord
from dagstore.graph.resolver import IdGenerator, new_id, resolve_references
from dagstore.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator

    from dagstore.config import DagStoreConfig
    from dagstore.graph.store import DagStore

log = get_logger(__name__)

Validator = Callable[..., None]
"""``validator(node_ids, edge_pairs, graph_id=...)``; raises CycleDetectedError."""


class DagService:
    """Cycle-checked graph operations over a storage backend.

    Every method takes an optional keyword-only ``cancel`` token. It is
    checked before any transaction opens and between steps inside one;
    when it fires the operation raises OperationCancelledError and the
    open transaction is rolled back.

    Graph-keyed methods reject an empty graph id with EmptyGraphIdError
    before touching the store.
    """

    def __init__(
        self,
        store: DagStore,
        *,
        id_generator: IdGenerator = new_id,
        validator: Validator = validate_acyclic,
    ) -> None:
        self._store = store
        self._new_id = id_generator
        self._validate = validator

    @classmethod
    def from_config(cls, config: DagStoreConfig) -> DagService:
        """Build a service over the backend named in *config*."""
        from dagstore.graph.sqlite_store import SqliteDagStore
        from dagstore.graph.store import DictDagStore

        store: DagStore
        if config.backend == "memory":
            store = DictDagStore()
        else:
            store = SqliteDagStore(config.db_path, busy_timeout=config.busy_timeout)
        return cls(store)

    @property
    def store(self) -> DagStore:
        return self._store

    def close(self) -> None:
        self._store.close()

    # -------------------------------------------------------------------------
    # Schema
    # -------------------------------------------------------------------------

    def create_schema(self) -> None:
        self._store.create_schema()
        log.info("schema_created")

    def drop_schema(self) -> None:
        self._store.drop_schema()
        log.info("schema_dropped")

    # -------------------------------------------------------------------------
    # Graphs
    # -------------------------------------------------------------------------

    def replace_graph(self, graph: Graph, *, cancel: CancelToken | None = None) -> Graph:
        """Replace everything stored under ``graph.id`` with *graph*.

        Nodes and edges without ids get generated ones; edge refs are
        resolved to node ids. The result carries no refs.

        Raises:
            DuplicateReferenceError, UnknownReferenceError, MissingEndpointError:
                Ref resolution failed. Nothing was written.
            CycleDetectedError: The new edge set has a cycle. Nothing was written.
            IntegrityConflictError: Storage rejected a row; rolled back.
        """
        _require_graph_id(graph.id)
        token = cancel or CancelToken()
        resolved = resolve_references(graph.nodes, graph.edges, id_generator=self._new_id)
        self._check(graph.id, resolved.node_ids(), resolved.edge_pairs())

        with self._write("replace graph", token) as step:
            step("delete old content")
            self._store.delete_graph(graph.id)
            step("insert nodes")
            for node in resolved.nodes:
                self._store.insert_node(graph.id, node.id or "", node.data)
            step("insert edges")
            for edge in resolved.edges:
                self._store.insert_edge(
                    graph.id,
                    edge.id or "",
                    edge.from_node_id or "",
                    edge.to_node_id or "",
                    edge.data,
                )
            step("commit")

        log.info(
            "graph_replaced",
            graph_id=graph.id,
            nodes=len(resolved.nodes),
            edges=len(resolved.edges),
        )
        return Graph(id=graph.id, nodes=resolved.nodes, edges=resolved.edges)

    def get_graph(self, graph_id: str, *, cancel: CancelToken | None = None) -> Graph | None:
        """Return the whole graph, or None if it has no nodes."""
        _require_graph_id(graph_id)
        token = cancel or CancelToken()
        token.raise_if_cancelled("get graph")
        with self._store.transaction():
            nodes = self._store.fetch_nodes(graph_id)
            if not nodes:
                return None
            token.raise_if_cancelled("list edges")
            edges = self._store.fetch_edges(graph_id)
        return Graph(
            id=graph_id,
            nodes=[n.to_node() for n in nodes],
            edges=[e.to_edge() for e in edges],
        )

    def delete_graph(self, graph_id: str, *, cancel: CancelToken | None = None) -> None:
        """Delete every node and edge of *graph_id*. Missing graphs are fine."""
        _require_graph_id(graph_id)
        token = cancel or CancelToken()
        with self._write("delete graph", token):
            self._store.delete_graph(graph_id)
        log.info("graph_deleted", graph_id=graph_id)

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def add_node(self, graph_id: str, node: Node, *, cancel: CancelToken | None = None) -> str:
        """Insert a node and return its id (generated if absent)."""
        _require_graph_id(graph_id)
        token = cancel or CancelToken()
        token.raise_if_cancelled("add node")
        node_id = node.id or self._new_id()
        self._store.insert_node(graph_id, node_id, node.data)
        log.debug("node_added", graph_id=graph_id, node_id=node_id)
        return node_id

    def get_node(self, node_id: str, *, cancel: CancelToken | None = None) -> NodeRecord | None:
        (cancel or CancelToken()).raise_if_cancelled("get node")
        return self._store.fetch_node(node_id)

    def update_node(
        self,
        node_id: str,
        data: JSONValue,
        *,
        cancel: CancelToken | None = None,
    ) -> None:
        """Replace a node's payload.

        Raises:
            NodeNotFoundError: No node has *node_id*.
        """
        (cancel or CancelToken()).raise_if_cancelled("update node")
        if self._store.update_node_data(node_id, data) == 0:
            raise NodeNotFoundError(node_id)
        log.debug("node_updated", node_id=node_id)

    def delete_node(self, node_id: str, *, cancel: CancelToken | None = None) -> None:
        """Delete a node and every edge where it is source or target."""
        token = cancel or CancelToken()
        with self._write("delete node", token) as step:
            self._store.delete_edges_touching(node_id)
            step("delete node row")
            self._store.delete_node(node_id)
        log.debug("node_deleted", node_id=node_id)

    def list_nodes(
        self, graph_id: str, *, cancel: CancelToken | None = None
    ) -> list[NodeRecord]:
        _require_graph_id(graph_id)
        (cancel or CancelToken()).raise_if_cancelled("list nodes")
        return self._store.fetch_nodes(graph_id)

    # -------------------------------------------------------------------------
    # Edges
    # -------------------------------------------------------------------------

    def add_edge(self, graph_id: str, edge: Edge, *, cancel: CancelToken | None = None) -> str:
        """Insert an edge if it keeps the graph acyclic; return its id.

        Raises:
            MissingEndpointError: The edge lacks a from/to node id.
            CycleDetectedError: The edge would close a cycle.
            IntegrityConflictError: An endpoint is not a node of *graph_id*,
                or the id is already taken.
        """
        _require_graph_id(graph_id)
        token = cancel or CancelToken()
        edge_id = edge.id or self._new_id()
        from_id, to_id = _endpoints(edge, edge_id)

        with self._write("add edge", token) as step:
            node_ids, pairs = self._load(graph_id)
            pairs.append((from_id, to_id))
            step("validate")
            self._check(graph_id, node_ids, pairs, edge_id=edge_id)
            step("insert edge")
            self._store.insert_edge(graph_id, edge_id, from_id, to_id, edge.data)

        log.debug("edge_added", graph_id=graph_id, edge_id=edge_id)
        return edge_id

    def get_edge(self, edge_id: str, *, cancel: CancelToken | None = None) -> EdgeRecord | None:
        (cancel or CancelToken()).raise_if_cancelled("get edge")
        return self._store.fetch_edge(edge_id)

    def update_edge(
        self,
        edge_id: str,
        from_node_id: str,
        to_node_id: str,
        data: JSONValue,
        *,
        cancel: CancelToken | None = None,
    ) -> None:
        """Rewrite an edge's endpoints and payload if the graph stays acyclic.

        Raises:
            EdgeNotFoundError: No edge has *edge_id*. Checked before any other
                validation.
            MissingEndpointError: *from_node_id* or *to_node_id* is empty.
            CycleDetectedError: The new endpoints would close a cycle.
            IntegrityConflictError: A new endpoint is not a node of the edge's graph.
        """
        token = cancel or CancelToken()
        with self._write("update edge", token) as step:
            current = self._store.fetch_edge(edge_id)
            if current is None:
                raise EdgeNotFoundError(edge_id)
            if not from_node_id:
                raise MissingEndpointError("from", edge_id)
            if not to_node_id:
                raise MissingEndpointError("to", edge_id)
            graph_id = current.graph_id

            step("load graph")
            node_ids = [n.id for n in self._store.fetch_nodes(graph_id)]
            pairs = [
                (from_node_id, to_node_id) if e.id == edge_id else e.endpoints
                for e in self._store.fetch_edges(graph_id)
            ]
            step("validate")
            self._check(graph_id, node_ids, pairs, edge_id=edge_id)
            step("update edge row")
            if self._store.update_edge(edge_id, from_node_id, to_node_id, data) == 0:
                raise EdgeNotFoundError(edge_id)

        log.debug("edge_updated", graph_id=graph_id, edge_id=edge_id)

    def delete_edge(self, edge_id: str, *, cancel: CancelToken | None = None) -> None:
        (cancel or CancelToken()).raise_if_cancelled("delete edge")
        self._store.delete_edge(edge_id)
        log.debug("edge_deleted", edge_id=edge_id)

    def list_edges(
        self, graph_id: str, *, cancel: CancelToken | None = None
    ) -> list[EdgeRecord]:
        _require_graph_id(graph_id)
        (cancel or CancelToken()).raise_if_cancelled("list edges")
        return self._store.fetch_edges(graph_id)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @contextmanager
    def _write(self, operation: str, token: CancelToken) -> Iterator[Callable[[str], None]]:
        """Open a store transaction and yield a step checkpoint.

        Calling the checkpoint with a step name raises OperationCancelledError
        if *token* has fired; the exception rolls the transaction back.
        """
        token.raise_if_cancelled(operation)

        def checkpoint(step: str) -> None:
            token.raise_if_cancelled(f"{operation}: {step}", write_attempted=True)

        with self._store.transaction():
            checkpoint("begin")
            yield checkpoint

    def _load(self, graph_id: str) -> tuple[list[str], list[tuple[str, str]]]:
        """Return node ids and edge endpoint pairs of a graph, in insertion order."""
        nodes = self._store.fetch_nodes(graph_id)
        edges = self._store.fetch_edges(graph_id)
        return [n.id for n in nodes], [e.endpoints for e in edges]

    def _check(
        self,
        graph_id: str,
        node_ids: Iterable[str],
        pairs: Iterable[tuple[str, str]],
        *,
        edge_id: str | None = None,
    ) -> None:
        try:
            self._validate(node_ids, pairs, graph_id=graph_id)
        except CycleDetectedError:
            log.warning("cycle_rejected", graph_id=graph_id, edge_id=edge_id)
            raise


def _endpoints(edge: Edge, edge_id: str) -> tuple[str, str]:
    if not edge.from_node_id:
        raise MissingEndpointError("from", edge_id)
    if not edge.to_node_id:
        raise MissingEndpointError("to", edge_id)
    return edge.from_node_id, edge.to_node_id


def _require_graph_id(graph_id: str) -> None:
    if not graph_id:
        raise EmptyGraphIdError()
