"""
Tests for bracket recomputation over immutable node snapshots.

Five-seed bracket used throughout (team id = 100 + seed):
    1: gold:R1:4v5      104 v 105
    2: gold:R1:2v3      102 v 103
    3: gold:R2:1vW45    101 v W(1)     ref: loser(2)
    4: gold:R3:final    W(3) v W(2)    ref: loser(3)
"""
from dataclasses import replace

import pytest

from courtside.services.bracket_engine import BracketNode, recompute, topological_order
from courtside.services.bracket_templates import RefRule
from courtside.services.errors import ValidationError
from courtside.services.match_lifecycle import compute_match_snapshot


def _result(team_a, team_b, a_wins=True):
    sets = [(25, 20), (25, 20)] if a_wins else [(20, 25), (20, 25)]
    return compute_match_snapshot(sets, team_a, team_b)


def _bracket():
    return {
        1: BracketNode(1, "gold:R1:4v5", "gold", 1, 1, "C1", "scheduled", 104, 105),
        2: BracketNode(2, "gold:R1:2v3", "gold", 1, 1, "C4", "scheduled", 102, 103),
        3: BracketNode(
            3,
            "gold:R2:1vW45",
            "gold",
            2,
            2,
            "C4",
            "scheduled",
            team_a_id=101,
            team_b_from=(1, "winner"),
            ref_source="rule",
            ref_rules=(RefRule("gold:R1:2v3", "loser"),),
        ),
        4: BracketNode(
            4,
            "gold:R3:final",
            "gold",
            3,
            3,
            "C4",
            "scheduled",
            team_a_from=(3, "winner"),
            team_b_from=(2, "winner"),
            ref_source="rule",
            ref_rules=(RefRule("gold:R2:1vW45", "loser"),),
        ),
    }


def _finalize(nodes, match_id, a_wins=True):
    node = nodes[match_id]
    nodes[match_id] = replace(node, status="final", result=_result(node.team_a_id, node.team_b_id, a_wins))


def _apply(nodes, diff):
    for change in diff.changes.values():
        nodes[change.match_id] = replace(
            nodes[change.match_id],
            team_a_id=change.team_a_id,
            team_b_id=change.team_b_id,
            status=change.status,
            result=change.result,
            ref_team_ids=tuple(change.ref_team_ids),
        )


def test_unresolved_slots_stay_empty():
    nodes = _bracket()
    diff = recompute(list(nodes.values()))
    assert diff.is_empty
    assert nodes[3].team_b_id is None


def test_winner_advances_into_round_two():
    nodes = _bracket()
    _finalize(nodes, 1)  # 4 beats 5
    diff = recompute(list(nodes.values()))
    assert diff.updated_match_ids == [3]
    assert diff.changes[3].team_b_id == 104
    assert diff.cleared_match_ids == []


def test_recompute_is_idempotent():
    nodes = _bracket()
    _finalize(nodes, 1)
    _finalize(nodes, 2)
    _apply(nodes, recompute(list(nodes.values())))
    assert recompute(list(nodes.values())).is_empty


def test_final_gets_round_two_winner():
    nodes = _bracket()
    _finalize(nodes, 1)
    _apply(nodes, recompute(list(nodes.values())))
    _finalize(nodes, 3)  # seed 1 wins
    _apply(nodes, recompute(list(nodes.values())))
    assert nodes[4].team_a_id == 101
    assert nodes[4].team_b_id is None


def test_rule_ref_resolves_from_loser():
    nodes = _bracket()
    _finalize(nodes, 2)  # 2 beats 3
    diff = recompute(list(nodes.values()))
    assert diff.changes[3].ref_team_ids == [103]
    assert diff.changes[4].team_b_id == 102


def test_changed_source_clears_downstream_final_and_cascades():
    nodes = _bracket()
    _finalize(nodes, 1)
    _apply(nodes, recompute(list(nodes.values())))
    _finalize(nodes, 3)
    _apply(nodes, recompute(list(nodes.values())))
    assert nodes[4].team_a_id == 101

    # Round one is corrected: 5 beat 4
    _finalize(nodes, 1, a_wins=False)
    diff = recompute(list(nodes.values()))
    assert diff.cleared_match_ids == [3]
    assert diff.changes[3].team_b_id == 105
    assert diff.changes[3].status == "ended"
    assert diff.changes[3].result is None
    assert diff.changes[4].team_a_id is None
    assert diff.changes[4].status == "scheduled"


def test_order_of_finalization_does_not_matter():
    first = _bracket()
    _finalize(first, 1)
    _finalize(first, 2)
    _apply(first, recompute(list(first.values())))

    second = _bracket()
    _finalize(second, 2)
    _apply(second, recompute(list(second.values())))
    _finalize(second, 1)
    _apply(second, recompute(list(second.values())))

    for match_id in first:
        assert (first[match_id].team_a_id, first[match_id].team_b_id, first[match_id].ref_team_ids) == (
            second[match_id].team_a_id,
            second[match_id].team_b_id,
            second[match_id].ref_team_ids,
        )


def test_manual_refs_are_left_alone():
    nodes = _bracket()
    nodes[3] = replace(nodes[3], ref_source="manual", ref_team_ids=(999,))
    _finalize(nodes, 2)
    diff = recompute(list(nodes.values()))
    assert 3 not in diff.changes


def test_ref_tie_break_picks_closest_team():
    semi = BracketNode(
        10,
        "gold:R2:M1",
        "gold",
        2,
        3,
        "C1",
        "scheduled",
        team_a_id=1,
        team_b_id=4,
        ref_source="rule",
        ref_rules=(RefRule("gold:R1:M1", "loser"), RefRule("gold:R1:M2", "loser")),
        location=(36.85, -76.29),
    )
    m1 = BracketNode(11, "gold:R1:M1", "gold", 1, 1, "C1", "final", 1, 8, result=_result(1, 8))
    m2 = BracketNode(12, "gold:R1:M2", "gold", 1, 1, "C2", "final", 4, 5, result=_result(4, 5))
    # Team 8 is in New York, team 5 in Virginia Beach
    locations = {8: (40.71, -74.01), 5: (36.85, -75.98)}
    diff = recompute([semi, m1, m2], locations)
    assert diff.changes[10].ref_team_ids == [5]


def test_deeper_bracket_propagates_in_one_pass():
    nodes = [
        BracketNode(1, "all:R1:M1", "all", 1, 1, "C1", "final", 1, 16, result=_result(1, 16)),
        BracketNode(2, "all:R2:M1", "all", 2, 2, "C1", "final", 1, 8, team_a_from=(1, "winner"), result=_result(1, 8)),
        BracketNode(3, "all:R3:M1", "all", 3, 3, "C1", "final", 1, 4, team_a_from=(2, "winner"), result=_result(1, 4)),
        BracketNode(4, "all:R4:M1", "all", 4, 4, "C1", "scheduled", 1, 2, team_a_from=(3, "winner")),
    ]
    nodes[0] = replace(nodes[0], result=_result(1, 16, a_wins=False))
    diff = recompute(nodes)
    assert diff.changes[2].team_a_id == 16
    assert diff.cleared_match_ids == [2, 3]
    assert diff.changes[3].team_a_id is None
    assert diff.changes[4].team_a_id is None


def test_topological_order_breaks_ties_by_round_block_and_court():
    nodes = list(_bracket().values())
    assert [n.match_id for n in topological_order(nodes)] == [1, 2, 3, 4]


def test_cycle_is_rejected():
    a = BracketNode(1, "x:R1:M1", "x", 1, 1, "C1", "scheduled", team_a_from=(2, "winner"))
    b = BracketNode(2, "x:R1:M2", "x", 1, 1, "C2", "scheduled", team_a_from=(1, "winner"))
    with pytest.raises(ValidationError):
        topological_order([a, b])
