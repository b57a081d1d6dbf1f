"""Entity model for persisted DAGs.

Two families of shapes live here:

- Transfer shapes (``Graph``, ``Node``, ``Edge``) are what callers send and
  receive. Nodes and edges may carry temporary reference keys (``ref``,
  ``from_node_ref``, ``to_node_ref``) so that a bulk write can wire edges to
  nodes before those nodes have stable identifiers.
- Record shapes (``NodeRecord``, ``EdgeRecord``) mirror stored rows. They carry
  the owning graph key and the insertion timestamp, and have no reference
  fields at all, so a ref can never reach storage.

``data`` is an opaque JSON value. Its schema belongs to the caller.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - pydantic needs it at runtime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

JSONValue = Any


def _empty_payload() -> JSONValue:
    return {}


# ---------------------------------------------------------------------------
# Transfer shapes
# ---------------------------------------------------------------------------


class Node(BaseModel):
    """A vertex as seen by callers.

    ``id`` is assigned by the service when absent. ``ref`` is only meaningful
    inside a single replace-graph call.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    ref: str | None = None
    data: JSONValue = Field(default_factory=_empty_payload)


class Edge(BaseModel):
    """A directed connection as seen by callers.

    Each side is given either as a stable node id or, during replace-graph
    only, as a node ref.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    from_node_id: str | None = None
    to_node_id: str | None = None
    from_node_ref: str | None = None
    to_node_ref: str | None = None
    data: JSONValue = Field(default_factory=_empty_payload)


class Graph(BaseModel):
    """All nodes and edges sharing one owning key."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to plain JSON-compatible data, omitting unset ids and refs."""
        return {
            "id": self.id,
            "nodes": [_drop_none(n.model_dump(mode="json")) for n in self.nodes],
            "edges": [_drop_none(e.model_dump(mode="json")) for e in self.edges],
        }


def _drop_none(payload: dict[str, Any]) -> dict[str, Any]:
    # Only top-level fields; ``data`` may legitimately contain nulls.
    return {k: v for k, v in payload.items() if v is not None or k == "data"}


# ---------------------------------------------------------------------------
# Record shapes
# ---------------------------------------------------------------------------


class NodeRecord(BaseModel):
    """A stored node row."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    graph_id: str = Field(min_length=1)
    data: JSONValue = Field(default_factory=_empty_payload)
    created_at: datetime

    def to_node(self) -> Node:
        return Node(id=self.id, data=self.data)


class EdgeRecord(BaseModel):
    """A stored edge row."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    graph_id: str = Field(min_length=1)
    from_node_id: str = Field(min_length=1)
    to_node_id: str = Field(min_length=1)
    data: JSONValue = Field(default_factory=_empty_payload)
    created_at: datetime

    def to_edge(self) -> Edge:
        return Edge(
            id=self.id,
            from_node_id=self.from_node_id,
            to_node_id=self.to_node_id,
            data=self.data,
        )

    @property
    def endpoints(self) -> tuple[str, str]:
        return self.from_node_id, self.to_node_id
