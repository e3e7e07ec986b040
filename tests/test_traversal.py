import pytest

from graphlower.errors import ErrorCode, StructuralError
from graphlower.traversal import bfs, dfs


DIAMOND = {"A": ["B", "C"], "B": ["D"], "C": ["D"], "D": []}
PREDECESSORS = {"A": 0, "B": 1, "C": 1, "D": 2}


def test_dfs_visits_diamond_join_once():
    visits = []
    visited = dfs("A", lambda n: DIAMOND[n], lambda n: visits.append(n) or True)

    assert visited == {"A", "B", "C", "D"}
    assert visits.count("D") == 1
    assert sorted(visits) == ["A", "B", "C", "D"]


def test_dfs_prunes_successors_when_visit_returns_false():
    visited = dfs("A", lambda n: DIAMOND[n], lambda n: n != "B")
    # D is still reached through C
    assert visited == {"A", "B", "C", "D"}

    visited = dfs("A", lambda n: DIAMOND[n], lambda n: n == "A")
    assert visited == {"A", "B", "C"}


def test_dfs_terminates_on_cycle():
    graph = {"A": ["B"], "B": ["A"]}
    assert dfs("A", lambda n: graph[n], lambda n: True) == {"A", "B"}


def test_bfs_processes_node_after_all_predecessors():
    order = []

    def move_forward(queue, node):
        queue.extend(DIAMOND[node])

    bfs("A", lambda n: max(1, PREDECESSORS[n]), lambda n: order.append(n) or True, move_forward)

    assert order[0] == "A"
    assert order[-1] == "D"
    assert set(order[1:3]) == {"B", "C"}


def test_bfs_visit_false_stops_propagation():
    order = []

    def move_forward(queue, node):
        queue.extend(DIAMOND[node])

    bfs("A", lambda n: 1, lambda n: order.append(n) or n == "A", move_forward)
    assert order == ["A", "B", "C"]


def test_bfs_raises_on_cycle_instead_of_looping():
    # B waits for A and C, but C is only reachable through B
    graph = {"A": ["B"], "B": ["C"], "C": ["B"]}
    entries = {"A": 1, "B": 2, "C": 1}

    def move_forward(queue, node):
        queue.extend(graph[node])

    with pytest.raises(StructuralError) as excinfo:
        bfs("A", lambda n: entries[n], lambda n: True, move_forward)
    assert excinfo.value.code == ErrorCode.E007


def test_bfs_raises_on_too_many_arrivals():
    def move_forward(queue, node):
        queue.extend(DIAMOND[node])

    # D declares a single entry but is reached from B and C
    with pytest.raises(StructuralError) as excinfo:
        bfs("A", lambda n: 1, lambda n: True, move_forward)
    assert excinfo.value.code == ErrorCode.E006


def test_bfs_reports_pending_nodes_after_walk():
    graph = {"root": ["X", "Y"], "X": [], "Y": ["Z"], "Z": []}
    entries = {"X": 1, "Y": 1, "Z": 2}

    def move_forward(queue, node):
        queue.extend(graph[node])

    with pytest.raises(StructuralError) as excinfo:
        bfs("root", lambda n: entries[n], lambda n: True, move_forward)
    assert excinfo.value.code == ErrorCode.E007
