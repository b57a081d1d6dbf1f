"""Cycle detection over a graph's full node/edge set.

The validator is a pure function. Callers must hand it the complete edge set
that would exist after a mutation, not just the edge being added: a cycle is a
property of global reachability.
"""

from __future__ import annotations

from collections.abc import Iterable

from dagstore.graph.errors import CycleDetectedError

_UNVISITED = 0
_IN_PROGRESS = 1
_DONE = 2


def has_cycle(node_ids: Iterable[str], edges: Iterable[tuple[str, str]]) -> bool:
    """Return True if the directed edges contain a cycle.

    Uses a three-state depth-first search: reaching a node that is still
    in progress means a back edge, hence a cycle. Self-loops are the
    one-node case of the same rule.

    Args:
        node_ids: Declared node ids of the graph.
        edges: ``(from_node_id, to_node_id)`` pairs.

    Returns:
        True if at least one directed cycle exists.
    """
    adjacency: dict[str, list[str]] = {}
    state: dict[str, int] = {}

    for node_id in node_ids:
        state.setdefault(node_id, _UNVISITED)

    for source, target in edges:
        adjacency.setdefault(source, []).append(target)
        # Endpoint-only ids still need a state entry.
        state.setdefault(source, _UNVISITED)
        state.setdefault(target, _UNVISITED)

    for root in list(state):
        if state[root] != _UNVISITED:
            continue

        state[root] = _IN_PROGRESS
        stack: list[tuple[str, int]] = [(root, 0)]
        while stack:
            node_id, index = stack[-1]
            targets = adjacency.get(node_id, ())
            if index == len(targets):
                state[node_id] = _DONE
                stack.pop()
                continue

            stack[-1] = (node_id, index + 1)
            target = targets[index]
            target_state = state[target]
            if target_state == _IN_PROGRESS:
                return True
            if target_state == _UNVISITED:
                state[target] = _IN_PROGRESS
                stack.append((target, 0))

    return False


def validate_acyclic(
    node_ids: Iterable[str],
    edges: Iterable[tuple[str, str]],
    *,
    graph_id: str | None = None,
) -> None:
    """Raise :class:`CycleDetectedError` if the edges contain a cycle."""
    if has_cycle(node_ids, edges):
        raise CycleDetectedError(graph_id)
