"""Tests for board validation and execution layering."""

from __future__ import annotations

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from syncboard.exceptions import ValidationError
from syncboard.schemas.board import Board, BoardEdge, BoardNode
from syncboard.services.dag import compute_layers, edge_dependencies, has_cycle, validate_board

PROPERTY_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)


def make_board(nodes: list[str], edges: list[tuple[str, str, str]], **kwargs: object) -> Board:
    return Board(
        id=str(kwargs.pop("board_id", "b1")),
        name=str(kwargs.pop("name", "Board")),
        nodes=[BoardNode(id=node, label=node.upper()) for node in nodes],
        edges=[BoardEdge(id=eid, source_id=src, target_id=tgt) for eid, src, tgt in edges],
    )


def layer_ids(layers: list[list[BoardEdge]]) -> list[list[str]]:
    return [[edge.id for edge in layer] for layer in layers]


class TestHasCycle:
    def test_empty_graph(self) -> None:
        assert has_cycle([], []) is False

    def test_linear_chain(self) -> None:
        assert has_cycle(["a", "b", "c"], [("a", "b"), ("b", "c")]) is False

    def test_triangle(self) -> None:
        assert has_cycle(["a", "b", "c"], [("a", "b"), ("b", "c"), ("c", "a")]) is True

    def test_self_loop(self) -> None:
        assert has_cycle(["a"], [("a", "a")]) is True

    def test_diamond_is_acyclic(self) -> None:
        edges = [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")]
        assert has_cycle(["a", "b", "c", "d"], edges) is False

    def test_endpoints_missing_from_node_list_are_visited(self) -> None:
        assert has_cycle([], [("x", "y"), ("y", "x")]) is True

    def test_long_chain_does_not_recurse(self) -> None:
        nodes = [f"n{i}" for i in range(5000)]
        edges = [(nodes[i], nodes[i + 1]) for i in range(len(nodes) - 1)]
        assert has_cycle(nodes, edges) is False


class TestValidateBoard:
    def test_accepts_valid_board(self) -> None:
        validate_board(make_board(["a", "b"], [("e1", "a", "b")]))

    def test_rejects_cycle(self) -> None:
        board = make_board(
            ["a", "b", "c"], [("e1", "a", "b"), ("e2", "b", "c"), ("e3", "c", "a")]
        )
        with pytest.raises(ValidationError, match="cycle"):
            validate_board(board)

    def test_rejects_missing_id_and_name(self) -> None:
        with pytest.raises(ValidationError, match="board ID is required"):
            validate_board(make_board([], [], board_id=""))
        with pytest.raises(ValidationError, match="board name is required"):
            validate_board(make_board([], [], name=""))

    def test_rejects_duplicate_node(self) -> None:
        with pytest.raises(ValidationError, match="duplicate node ID: a"):
            validate_board(make_board(["a", "a"], []))

    def test_rejects_duplicate_edge(self) -> None:
        board = make_board(["a", "b", "c"], [("e1", "a", "b"), ("e1", "b", "c")])
        with pytest.raises(ValidationError, match="duplicate edge ID: e1"):
            validate_board(board)

    def test_rejects_unknown_endpoint(self) -> None:
        with pytest.raises(ValidationError, match="unknown target node 'z'"):
            validate_board(make_board(["a"], [("e1", "a", "z")]))

    def test_rejects_self_loop(self) -> None:
        with pytest.raises(ValidationError, match="cannot connect a node to itself"):
            validate_board(make_board(["a"], [("e1", "a", "a")]))

    def test_rejects_invalid_action(self) -> None:
        board = make_board(["a", "b"], [("e1", "a", "b")])
        board.edges[0].action = "teleport"
        with pytest.raises(ValidationError, match="invalid action 'teleport'"):
            validate_board(board)


class TestComputeLayers:
    def test_linear(self) -> None:
        board = make_board(["a", "b", "c"], [("e1", "a", "b"), ("e2", "b", "c")])
        assert layer_ids(compute_layers(board.edges)) == [["e1"], ["e2"]]

    def test_diamond(self) -> None:
        board = make_board(
            ["a", "b", "c", "d"],
            [("e1", "a", "b"), ("e2", "a", "c"), ("e3", "b", "d"), ("e4", "c", "d")],
        )
        assert layer_ids(compute_layers(board.edges)) == [["e1", "e2"], ["e3", "e4"]]

    def test_independent_edges_share_a_layer(self) -> None:
        board = make_board(["a", "b", "c", "d"], [("e1", "a", "b"), ("e2", "c", "d")])
        assert layer_ids(compute_layers(board.edges)) == [["e1", "e2"]]

    def test_input_order_preserved_within_layer(self) -> None:
        board = make_board(["a", "b", "c", "d"], [("e2", "c", "d"), ("e1", "a", "b")])
        assert layer_ids(compute_layers(board.edges)) == [["e2", "e1"]]

    def test_cycle_raises(self) -> None:
        board = make_board(["a", "b"], [("e1", "a", "b"), ("e2", "b", "a")])
        with pytest.raises(ValidationError, match="cycle"):
            compute_layers(board.edges)

    def test_dependencies(self) -> None:
        board = make_board(["a", "b", "c"], [("e1", "a", "b"), ("e2", "b", "c")])
        assert edge_dependencies(board.edges) == {"e1": set(), "e2": {"e1"}}


@st.composite
def acyclic_boards(draw: st.DrawFn) -> Board:
    """Random DAGs: edges only go from a lower to a higher node index."""
    count = draw(st.integers(min_value=2, max_value=9))
    nodes = [f"n{i}" for i in range(count)]
    pairs = draw(
        st.lists(
            st.tuples(
                st.integers(min_value=0, max_value=count - 1),
                st.integers(min_value=0, max_value=count - 1),
            ).filter(lambda pair: pair[0] < pair[1]),
            max_size=20,
        )
    )
    order = draw(st.permutations(range(len(pairs))))
    edges = [(f"e{i}", nodes[pairs[i][0]], nodes[pairs[i][1]]) for i in order]
    return make_board(nodes, edges)


class TestLayeringProperties:
    @PROPERTY_SETTINGS
    @given(board=acyclic_boards())
    def test_every_edge_lands_in_exactly_one_layer(self, board: Board) -> None:
        layers = compute_layers(board.edges)
        flat = [edge.id for layer in layers for edge in layer]
        assert sorted(flat) == sorted(edge.id for edge in board.edges)

    @PROPERTY_SETTINGS
    @given(board=acyclic_boards())
    def test_dependencies_run_in_earlier_layers(self, board: Board) -> None:
        layers = compute_layers(board.edges)
        index = {edge.id: i for i, layer in enumerate(layers) for edge in layer}
        for edge_id, deps in edge_dependencies(board.edges).items():
            for dep in deps:
                assert index[dep] < index[edge_id]

    @PROPERTY_SETTINGS
    @given(board=acyclic_boards())
    def test_generated_dags_validate(self, board: Board) -> None:
        validate_board(board)
        nodes = [node.id for node in board.nodes]
        pairs = [(edge.source_id, edge.target_id) for edge in board.edges]
        assert has_cycle(nodes, pairs) is False

    @PROPERTY_SETTINGS
    @given(board=acyclic_boards(), data=st.data())
    def test_back_edge_is_detected(self, board: Board, data: st.DataObject) -> None:
        if not board.edges:
            return
        edge = data.draw(st.sampled_from(board.edges))
        nodes = [node.id for node in board.nodes]
        pairs = [(e.source_id, e.target_id) for e in board.edges]
        pairs.append((edge.target_id, edge.source_id))
        assert has_cycle(nodes, pairs) is True
