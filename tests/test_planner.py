from itertools import permutations

import pytest

from playlist_curator.services.planner import Move, apply_moves, index_map, iter_plan, plan_moves, splice


@pytest.mark.parametrize("target", list(permutations(["a", "b", "c", "d", "e"])))
def test_plan_reaches_every_permutation(target):
    current = ["a", "b", "c", "d", "e"]

    moves = plan_moves(current, list(target))

    assert apply_moves(current, moves) == list(target)
    assert len(moves) <= len(target) - 1


def test_already_ordered_needs_no_moves():
    assert plan_moves(["a", "b", "c"], ["a", "b", "c"]) == []


def test_rotating_last_to_front_is_one_move():
    assert plan_moves(["1", "2", "3"], ["3", "1", "2"]) == [Move(entry_id="3", from_index=2, to_index=0)]


def test_correct_prefix_costs_nothing():
    moves = plan_moves(["a", "b", "c", "e", "d"], ["a", "b", "c", "d", "e"])

    assert moves == [Move(entry_id="d", from_index=4, to_index=3)]


def test_missing_target_ids_are_skipped_without_a_gap():
    moves = plan_moves(["a", "b", "c"], ["c", "ghost", "a", "b"])

    assert moves == [Move(entry_id="c", from_index=2, to_index=0)]
    assert apply_moves(["a", "b", "c"], moves) == ["c", "a", "b"]


def test_entries_not_in_target_drift_to_the_end():
    current = ["x", "a", "y", "b"]

    moves = plan_moves(current, ["b", "a"])

    assert apply_moves(current, moves)[:2] == ["b", "a"]


def test_iter_plan_reports_every_step():
    simulated = ["b", "a"]
    steps = []
    for step, move in iter_plan(lambda: simulated, ["a", "b"]):
        steps.append(step)
        if move is not None:
            splice(simulated, move.from_index, move.to_index)

    assert steps == [0, 1]
    assert simulated == ["a", "b"]


def test_index_map_skips_entries_without_id():
    assert index_map(["a", None, "b"]) == {"a": 0, "b": 2}
