"""DAG error types.

Every error raised by the core derives from :class:`DagError` and carries an
``error_class`` so a request layer can map failures without inspecting
individual types:

- ``CLIENT``: the request itself is invalid (cycle, unknown ref, empty graph
  id, non-JSON payload, integrity conflict). Nothing was applied.
- ``NOT_FOUND``: an update targeted an id that does not exist.
- ``SERVER``: the storage collaborator failed or the operation was cancelled.

Absence on get/list/delete is not an error and never raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Literal

Side = Literal["from", "to"]


class ErrorClass(Enum):
    """Stable failure classes exposed to the request layer."""

    CLIENT = "client"
    NOT_FOUND = "not_found"
    SERVER = "server"


class DagError(Exception):
    """Base class for all dagstore errors."""

    error_class: ClassVar[ErrorClass] = ErrorClass.SERVER


def classify(exc: BaseException) -> ErrorClass:
    """Return the error class for *exc* (SERVER for anything foreign)."""
    if isinstance(exc, DagError):
        return exc.error_class
    return ErrorClass.SERVER


# ---------------------------------------------------------------------------
# Validation failures (always raised before anything is written)
# ---------------------------------------------------------------------------


class DagValidationError(DagError):
    """Base class for failures discovered before any write."""

    error_class = ErrorClass.CLIENT


class CycleDetectedError(DagValidationError):
    """Raised when a mutation would leave a directed cycle in the graph."""

    def __init__(self, graph_id: str | None = None) -> None:
        self.graph_id = graph_id
        msg = "cycle detected, graph is not acyclic"
        if graph_id:
            msg += f" (graph '{graph_id}')"
        super().__init__(msg)


@dataclass
class UnknownReferenceError(DagValidationError):
    """Raised when an edge names a ref that no node in the call declared.

    Attributes:
        ref: The ref label that could not be resolved.
        side: Which end of the edge carried it.
    """

    ref: str
    side: Side

    def __post_init__(self) -> None:
        super().__init__(f"unknown {self.side}_node_ref '{self.ref}'")


@dataclass
class DuplicateReferenceError(DagValidationError):
    """Raised when two nodes in one replace-graph call declare the same ref."""

    ref: str

    def __post_init__(self) -> None:
        super().__init__(f"duplicate node ref '{self.ref}'")


@dataclass
class MissingEndpointError(DagValidationError):
    """Raised when an edge has neither an id nor a ref for one of its sides."""

    side: Side
    edge_id: str | None = None

    def __post_init__(self) -> None:
        msg = f"edge has no {self.side}_node_id"
        if self.edge_id:
            msg += f" (edge '{self.edge_id}')"
        super().__init__(msg)


class EmptyGraphIdError(DagValidationError):
    """Raised when a graph-keyed operation is given an empty graph id."""

    def __init__(self) -> None:
        super().__init__("graph id must not be empty")


@dataclass
class InvalidPayloadError(DagValidationError):
    """Raised when a node or edge ``data`` value cannot be encoded as JSON.

    Attributes:
        step: The write that carried the payload (e.g. ``insert node n1``).
        detail: The encoder's own description.
    """

    step: str
    detail: str = ""

    def __post_init__(self) -> None:
        msg = f"payload is not JSON during {self.step}"
        if self.detail:
            msg += f": {self.detail}"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Not-found (update targets only)
# ---------------------------------------------------------------------------


class DagNotFoundError(DagError):
    """Base class for update targets that do not exist."""

    error_class = ErrorClass.NOT_FOUND


@dataclass
class NodeNotFoundError(DagNotFoundError):
    node_id: str

    def __post_init__(self) -> None:
        super().__init__(f"node '{self.node_id}' not found")


@dataclass
class EdgeNotFoundError(DagNotFoundError):
    edge_id: str

    def __post_init__(self) -> None:
        super().__init__(f"edge '{self.edge_id}' not found")


# ---------------------------------------------------------------------------
# Storage-detected failures
# ---------------------------------------------------------------------------


@dataclass
class IntegrityConflictError(DagError):
    """Raised when storage rejects a row: duplicate id or dangling endpoint.

    Attributes:
        step: The storage step that failed (e.g. ``insert edge e1``).
        detail: The storage layer's own description.
    """

    step: str
    detail: str = ""

    error_class: ClassVar[ErrorClass] = ErrorClass.CLIENT

    def __post_init__(self) -> None:
        msg = f"integrity conflict during {self.step}"
        if self.detail:
            msg += f": {self.detail}"
        super().__init__(msg)


@dataclass
class StoreError(DagError):
    """Raised when the storage collaborator fails.

    Attributes:
        step: The step that failed (``begin``, ``insert node n1``, ``commit`` ...).
        write_attempted: False if nothing was written before the failure;
            True if a write transaction was open and has been rolled back.
        detail: The underlying error text.
    """

    step: str
    write_attempted: bool = False
    detail: str = ""

    error_class: ClassVar[ErrorClass] = ErrorClass.SERVER

    def __post_init__(self) -> None:
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        state = "rolled back" if self.write_attempted else "nothing written"
        msg = f"store failure during {self.step} ({state})"
        if self.detail:
            msg += f": {self.detail}"
        return msg


@dataclass
class OperationCancelledError(StoreError):
    """Raised when a cancellation or deadline is observed mid-operation."""

    def _format_message(self) -> str:
        state = "rolled back" if self.write_attempted else "nothing written"
        return f"operation cancelled at {self.step} ({state})"
