"""Tests for reference resolution in bulk writes."""

from __future__ import annotations

import uuid
from collections.abc import Callable

import pytest

from dagstore.graph.errors import (
    DuplicateReferenceError,
    MissingEndpointError,
    UnknownReferenceError,
)
from dagstore.graph.models import Edge, Node
from dagstore.graph.resolver import new_id, resolve_references


def test_new_id_is_a_uuid() -> None:
    value = new_id()
    assert str(uuid.UUID(value)) == value
    assert new_id() != value


class TestResolveReferences:
    """Happy-path resolution."""

    def test_refs_become_node_ids(self, sequential_ids: Callable[[], str]) -> None:
        nodes = [Node(ref="a", data={"q": 1}), Node(ref="b", data={"q": 2})]
        edges = [Edge(from_node_ref="a", to_node_ref="b", data={"answer": "yes"})]

        resolved = resolve_references(nodes, edges, id_generator=sequential_ids)

        assert [n.id for n in resolved.nodes] == ["id-0", "id-1"]
        assert [n.data for n in resolved.nodes] == [{"q": 1}, {"q": 2}]
        edge = resolved.edges[0]
        assert edge.id == "id-2"
        assert (edge.from_node_id, edge.to_node_id) == ("id-0", "id-1")
        assert edge.data == {"answer": "yes"}

    def test_refs_are_stripped(self) -> None:
        resolved = resolve_references(
            [Node(ref="a"), Node(ref="b")],
            [Edge(from_node_ref="a", to_node_ref="b")],
        )
        assert all(n.ref is None for n in resolved.nodes)
        assert all(e.from_node_ref is None and e.to_node_ref is None for e in resolved.edges)

    def test_preassigned_ids_are_kept(self, sequential_ids: Callable[[], str]) -> None:
        nodes = [Node(id="root", ref="r"), Node(ref="leaf")]
        edges = [Edge(id="e-root", from_node_ref="r", to_node_ref="leaf")]

        resolved = resolve_references(nodes, edges, id_generator=sequential_ids)

        assert resolved.node_ids() == ["root", "id-0"]
        assert resolved.edges[0].id == "e-root"
        assert resolved.edge_pairs() == [("root", "id-0")]

    def test_explicit_endpoint_id_wins_over_ref(self) -> None:
        nodes = [Node(id="n1", ref="a"), Node(id="n2", ref="b"), Node(id="n3", ref="c")]
        edges = [Edge(from_node_id="n3", from_node_ref="a", to_node_ref="b")]

        resolved = resolve_references(nodes, edges)

        assert resolved.edge_pairs() == [("n3", "n2")]

    def test_edges_may_use_ids_only(self) -> None:
        nodes = [Node(id="n1"), Node(id="n2")]
        edges = [Edge(from_node_id="n1", to_node_id="n2")]
        assert resolve_references(nodes, edges).edge_pairs() == [("n1", "n2")]

    def test_nodes_without_ref_or_id_get_ids(self) -> None:
        resolved = resolve_references([Node(data=1), Node(data=2)], [])
        ids = resolved.node_ids()
        assert len(ids) == 2
        assert all(ids)
        assert ids[0] != ids[1]

    def test_inputs_are_not_mutated(self) -> None:
        nodes = [Node(ref="a"), Node(ref="b")]
        edges = [Edge(from_node_ref="a", to_node_ref="b")]

        resolve_references(nodes, edges)

        assert nodes[0].id is None
        assert nodes[0].ref == "a"
        assert edges[0].id is None
        assert edges[0].from_node_id is None


class TestResolveReferenceErrors:
    """Failures that must abort the whole call."""

    def test_unknown_from_ref(self) -> None:
        with pytest.raises(UnknownReferenceError) as exc_info:
            resolve_references([Node(ref="a")], [Edge(from_node_ref="ghost", to_node_ref="a")])
        assert exc_info.value.ref == "ghost"
        assert exc_info.value.side == "from"
        assert "ghost" in str(exc_info.value)

    def test_unknown_to_ref(self) -> None:
        with pytest.raises(UnknownReferenceError) as exc_info:
            resolve_references([Node(ref="a")], [Edge(from_node_ref="a", to_node_ref="nope")])
        assert exc_info.value.ref == "nope"
        assert exc_info.value.side == "to"

    def test_duplicate_ref_is_rejected(self) -> None:
        """Reusing a ref label is an error, not last-wins."""
        with pytest.raises(DuplicateReferenceError) as exc_info:
            resolve_references([Node(ref="a"), Node(ref="a")], [])
        assert exc_info.value.ref == "a"

    def test_edge_side_without_id_or_ref(self) -> None:
        with pytest.raises(MissingEndpointError) as exc_info:
            resolve_references([Node(ref="a")], [Edge(id="e1", from_node_ref="a")])
        assert exc_info.value.side == "to"
        assert exc_info.value.edge_id == "e1"
