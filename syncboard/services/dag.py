"""DAG utilities for board validation and execution layering."""

from __future__ import annotations

from typing import TYPE_CHECKING

from syncboard.exceptions import ValidationError
from syncboard.schemas.board import EdgeAction

if TYPE_CHECKING:
    from syncboard.schemas.board import Board, BoardEdge

WHITE, GRAY, BLACK = 0, 1, 2

_VALID_ACTIONS = frozenset(action.value for action in EdgeAction)


def has_cycle(nodes: list[str], edges: list[tuple[str, str]]) -> bool:
    """Return True if the directed graph contains a cycle.

    Uses iterative DFS with white/gray/black coloring; a back-edge to a
    GRAY node closes a cycle. O(V+E) time. Edge endpoints missing from
    ``nodes`` are still visited.

    Args:
        nodes: node ids, visited in this order.
        edges: list of (source, target) tuples.
    """
    adj: dict[str, list[str]] = {}
    all_nodes: list[str] = list(nodes)
    seen = set(all_nodes)
    for source, target in edges:
        adj.setdefault(source, []).append(target)
        for node in (source, target):
            if node not in seen:
                seen.add(node)
                all_nodes.append(node)

    color: dict[str, int] = {n: WHITE for n in all_nodes}

    for start in all_nodes:
        if color[start] != WHITE:
            continue
        # Stack entries: (node, child_index). child_index tracks iteration
        # progress through adj[node].
        stack: list[tuple[str, int]] = [(start, 0)]
        color[start] = GRAY
        while stack:
            node, idx = stack[-1]
            children = adj.get(node, [])
            if idx < len(children):
                stack[-1] = (node, idx + 1)
                child = children[idx]
                if color[child] == GRAY:
                    return True
                if color[child] == WHITE:
                    color[child] = GRAY
                    stack.append((child, 0))
            else:
                color[node] = BLACK
                stack.pop()

    return False


def detect_cycles(board: Board) -> None:
    """Raise ``ValidationError`` if the board's edges form a cycle."""
    nodes = [node.id for node in board.nodes]
    edges = [(edge.source_id, edge.target_id) for edge in board.edges]
    if has_cycle(nodes, edges):
        raise ValidationError(f"board '{board.name}' contains a cycle, which is not allowed")


def validate_board(board: Board) -> None:
    """Check ids, references, self-loops, actions and acyclicity."""
    if not board.id:
        raise ValidationError("board ID is required")
    if not board.name:
        raise ValidationError("board name is required")

    node_ids: set[str] = set()
    for node in board.nodes:
        if not node.id:
            raise ValidationError("node ID is required")
        if node.id in node_ids:
            raise ValidationError(f"duplicate node ID: {node.id}")
        node_ids.add(node.id)

    edge_ids: set[str] = set()
    for edge in board.edges:
        if not edge.id:
            raise ValidationError("edge ID is required")
        if edge.id in edge_ids:
            raise ValidationError(f"duplicate edge ID: {edge.id}")
        edge_ids.add(edge.id)

        if edge.source_id not in node_ids:
            raise ValidationError(
                f"edge '{edge.id}' references unknown source node '{edge.source_id}'"
            )
        if edge.target_id not in node_ids:
            raise ValidationError(
                f"edge '{edge.id}' references unknown target node '{edge.target_id}'"
            )
        if edge.source_id == edge.target_id:
            raise ValidationError(f"edge '{edge.id}' cannot connect a node to itself")
        if edge.action not in _VALID_ACTIONS:
            raise ValidationError(f"edge '{edge.id}' has invalid action '{edge.action}'")

    detect_cycles(board)


def edge_dependencies(edges: list[BoardEdge]) -> dict[str, set[str]]:
    """Map each edge id to the ids of edges ending at its source node."""
    incoming: dict[str, list[str]] = {}
    for edge in edges:
        incoming.setdefault(edge.target_id, []).append(edge.id)
    return {edge.id: set(incoming.get(edge.source_id, [])) for edge in edges}


def compute_layers(edges: list[BoardEdge]) -> list[list[BoardEdge]]:
    """Group edges into execution layers with Kahn's algorithm over edges.

    Edges in one layer have no dependencies on each other and may run in
    parallel; layers run in order. Within a layer, edges keep their input
    order.

    Raises:
        ValidationError: if some edges can never be scheduled (a cycle).
    """
    deps = edge_dependencies(edges)
    resolved: set[str] = set()
    remaining = list(edges)
    layers: list[list[BoardEdge]] = []

    while remaining:
        layer = [edge for edge in remaining if deps[edge.id] <= resolved]
        if not layer:
            raise ValidationError("could not resolve remaining edges: board contains a cycle")
        resolved.update(edge.id for edge in layer)
        layer_ids = {edge.id for edge in layer}
        remaining = [edge for edge in remaining if edge.id not in layer_ids]
        layers.append(layer)

    return layers
