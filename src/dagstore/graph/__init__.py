"""Graph package - persisted directed acyclic graphs.

Nodes and edges are stored per owning graph key. DagService is the public
entry point; it resolves refs, rejects cycles and delegates rows to a
DagStore backend.
"""

from dagstore.graph.errors import (
    CycleDetectedError,
    DagError,
    DagNotFoundError,
    DagValidationError,
    DuplicateReferenceError,
    EmptyGraphIdError,
    EdgeNotFoundError,
    ErrorClass,
    IntegrityConflictError,
    InvalidPayloadError,
    MissingEndpointError,
    NodeNotFoundError,
    OperationCancelledError,
    StoreError,
    UnknownReferenceError,
    classify,
)
from dagstore.graph.models import Edge, EdgeRecord, Graph, Node, NodeRecord
from dagstore.graph.cancellation import CancelToken
from dagstore.graph.algorithms import has_cycle, validate_acyclic
from dagstore.graph.resolver import ResolvedGraph, new_id, resolve_references
from dagstore.graph.store import DagStore, DictDagStore
from dagstore.graph.sqlite_store import SqliteDagStore
from dagstore.graph.service import DagService

__all__ = [
    "CancelToken",
    "CycleDetectedError",
    "DagError",
    "DagNotFoundError",
    "DagService",
    "DagStore",
    "DagValidationError",
    "DictDagStore",
    "DuplicateReferenceError",
    "EmptyGraphIdError",
    "Edge",
    "EdgeNotFoundError",
    "EdgeRecord",
    "ErrorClass",
    "Graph",
    "IntegrityConflictError",
    "InvalidPayloadError",
    "MissingEndpointError",
    "Node",
    "NodeNotFoundError",
    "NodeRecord",
    "OperationCancelledError",
    "ResolvedGraph",
    "SqliteDagStore",
    "StoreError",
    "UnknownReferenceError",
    "classify",
    "has_cycle",
    "new_id",
    "resolve_references",
    "validate_acyclic",
]
