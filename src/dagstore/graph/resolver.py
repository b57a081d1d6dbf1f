"""Reference resolution for bulk graph writes.

A replace-graph call may wire edges to nodes by caller-chosen ``ref`` labels
instead of stable ids. Resolution assigns ids, maps refs to them, rewrites
edge endpoints and strips every ref. It does no I/O and must finish before a
transaction is opened, so a bad ref can never leave a partial write.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from dagstore.graph.errors import (
    DuplicateReferenceError,
    MissingEndpointError,
    Side,
    UnknownReferenceError,
)
from dagstore.graph.models import Edge, Node

IdGenerator = Callable[[], str]


def new_id() -> str:
    """Generate a collision-resistant identifier."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class ResolvedGraph:
    """Nodes and edges with every id assigned and every ref removed."""

    nodes: list[Node]
    edges: list[Edge]

    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes if n.id is not None]

    def edge_pairs(self) -> list[tuple[str, str]]:
        return [(e.from_node_id or "", e.to_node_id or "") for e in self.edges]


def resolve_references(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    *,
    id_generator: IdGenerator = new_id,
) -> ResolvedGraph:
    """Assign ids and resolve edge refs for one bulk write.

    Args:
        nodes: Nodes in caller order. Each may carry an id, a ref, both or neither.
        edges: Edges in caller order. An explicit endpoint id wins over a ref
            for the same side.
        id_generator: Source of fresh ids.

    Returns:
        New node/edge objects; the inputs are left untouched.

    Raises:
        DuplicateReferenceError: Two nodes declare the same ref.
        UnknownReferenceError: An edge names a ref no node declared.
        MissingEndpointError: An edge side has neither id nor ref.
    """
    ref_map: dict[str, str] = {}
    resolved_nodes: list[Node] = []

    for node in nodes:
        node_id = node.id or id_generator()
        if node.ref:
            if node.ref in ref_map:
                raise DuplicateReferenceError(node.ref)
            ref_map[node.ref] = node_id
        resolved_nodes.append(Node(id=node_id, data=node.data))

    resolved_edges: list[Edge] = []
    for edge in edges:
        from_id = edge.from_node_id or _lookup(ref_map, edge.from_node_ref, "from", edge.id)
        to_id = edge.to_node_id or _lookup(ref_map, edge.to_node_ref, "to", edge.id)
        resolved_edges.append(
            Edge(
                id=edge.id or id_generator(),
                from_node_id=from_id,
                to_node_id=to_id,
                data=edge.data,
            )
        )

    return ResolvedGraph(nodes=resolved_nodes, edges=resolved_edges)


def _lookup(
    ref_map: dict[str, str],
    ref: str | None,
    side: Side,
    edge_id: str | None,
) -> str:
    if not ref:
        raise MissingEndpointError(side, edge_id)
    try:
        return ref_map[ref]
    except KeyError:
        raise UnknownReferenceError(ref, side) from None
