"""
Tests for round-robin generation, (round block, court) packing and clock times.
"""
from itertools import combinations

import pytest

from courtside.services.errors import ValidationError
from courtside.services.format_registry import get_format
from courtside.services.match_scheduler import (
    PlayoffSlotPlan,
    PoolMatchSet,
    format_clock,
    generate_round_robin,
    resolve_stage_start_round_block,
    round_block_start_minutes,
    schedule_matches,
    schedule_playoff_matches,
    select_crossover_courts,
)


def _pairs(matches):
    return {frozenset((m.team_a_id, m.team_b_id)) for m in matches}


class TestRoundRobin:
    def test_three_team_pool_fixed_order(self):
        matches = generate_round_robin([10, 20, 30], 3)
        assert [(m.team_a_id, m.team_b_id, m.ref_team_id) for m in matches] == [
            (10, 20, 30),
            (20, 30, 10),
            (10, 30, 20),
        ]

    def test_three_team_pool_each_team_refs_once(self):
        matches = generate_round_robin([10, 20, 30], 3)
        assert sorted(m.ref_team_id for m in matches) == [10, 20, 30]

    def test_four_team_pool_covers_every_pair_with_bye(self):
        matches = generate_round_robin([1, 2, 3, 4], 4)
        assert len(matches) == 6
        assert _pairs(matches) == {frozenset(p) for p in combinations([1, 2, 3, 4], 2)}
        for m in matches:
            assert m.ref_team_id not in (m.team_a_id, m.team_b_id)
            assert m.bye_team_id not in (m.team_a_id, m.team_b_id, m.ref_team_id)

    @pytest.mark.parametrize("size", [2, 5, 6])
    def test_circle_method_sizes(self, size):
        team_ids = list(range(1, size + 1))
        matches = generate_round_robin(team_ids, size)
        assert len(matches) == size * (size - 1) // 2
        assert _pairs(matches) == {frozenset(p) for p in combinations(team_ids, 2)}
        for m in matches:
            assert m.ref_team_id not in (m.team_a_id, m.team_b_id)

    def test_circle_method_every_team_refs(self):
        matches = generate_round_robin([1, 2, 3, 4, 5], 5)
        assert {m.ref_team_id for m in matches} == {1, 2, 3, 4, 5}

    def test_wrong_roster_size_rejected(self):
        with pytest.raises(ValidationError):
            generate_round_robin([1, 2, 3], 4)

    def test_duplicate_teams_rejected(self):
        with pytest.raises(ValidationError):
            generate_round_robin([1, 1, 2], 3)


class TestScheduleMatches:
    def _sets(self):
        return [
            PoolMatchSet(key="A", home_court="C1", matches=["A1", "A2", "A3"]),
            PoolMatchSet(key="B", home_court="C2", matches=["B1", "B2", "B3"]),
        ]

    def test_uses_ceil_blocks_and_no_court_twice(self):
        slots = schedule_matches(self._sets(), ["C1", "C2", "C3"], 1)
        assert len(slots) == 6
        assert sorted({s.round_block for s in slots}) == [1, 2]
        for block in (1, 2):
            courts = [s.court for s in slots if s.round_block == block]
            assert len(courts) == len(set(courts))

    def test_interleaves_pools_and_prefers_home_court(self):
        slots = schedule_matches(self._sets(), ["C1", "C2", "C3"], 1)
        assert [(s.item, s.round_block, s.court) for s in slots] == [
            ("A1", 1, "C1"),
            ("B1", 1, "C2"),
            ("A2", 1, "C3"),
            ("B2", 2, "C2"),
            ("A3", 2, "C1"),
            ("B3", 2, "C3"),
        ]

    def test_start_round_block_offsets(self):
        slots = schedule_matches(self._sets(), ["C1", "C2", "C3"], 5)
        assert sorted({s.round_block for s in slots}) == [5, 6]

    def test_requires_courts(self):
        with pytest.raises(ValidationError):
            schedule_matches(self._sets(), [], 1)


class TestCrossoverCourts:
    FACILITIES = [
        {"name": "North", "courts": ["N1", "N2"]},
        {"name": "South", "courts": ["S1", "S2", "S3"]},
    ]

    def test_single_facility_keeps_source_courts(self):
        assert select_crossover_courts(["N1", "N2"], self.FACILITIES) == ["N1", "N2"]

    def test_split_pools_move_to_larger_facility(self):
        assert select_crossover_courts(["N2", "S1"], self.FACILITIES) == ["S1", "S2"]

    def test_no_home_courts_uses_every_court(self):
        assert select_crossover_courts([None, None], self.FACILITIES) == ["N1", "N2", "S1", "S2", "S3"]


class TestStageStart:
    def test_after_generated_stage(self):
        fmt = get_format("odu_15_5courts_v1")
        assert resolve_stage_start_round_block(fmt, "poolPlay2", {"poolPlay1": [1, 2, 3, 4, 5]}, 5) == 6

    def test_estimates_ungenerated_stages(self):
        fmt = get_format("odu_15_5courts_v1")
        assert resolve_stage_start_round_block(fmt, "poolPlay2", {}, 5) == 4
        assert resolve_stage_start_round_block(fmt, "playoffs", {"poolPlay1": [1, 2, 3]}, 5) == 7

    def test_first_stage_starts_at_one(self):
        fmt = get_format("classic_12_3x4_gold8_silver4_v1")
        assert resolve_stage_start_round_block(fmt, "poolPlay1", {}, 3) == 1


class TestPlayoffScheduling:
    def test_pinned_slots_used_when_courts_suffice(self):
        plans = [
            PlayoffSlotPlan(key="a", bracket_round=1, pinned=(0, 0)),
            PlayoffSlotPlan(key="b", bracket_round=1, pinned=(0, 4)),
            PlayoffSlotPlan(key="c", bracket_round=2, pinned=(1, 4)),
        ]
        slots = schedule_playoff_matches(plans, ["P1", "P2", "P3", "P4", "P5"], 10)
        assert [(s.key, s.round_block, s.court) for s in slots] == [
            ("a", 10, "P1"),
            ("b", 10, "P5"),
            ("c", 11, "P5"),
        ]

    def test_falls_back_to_round_chunks(self):
        plans = [PlayoffSlotPlan(key=f"r1-{i}", bracket_round=1, pinned=(0, i)) for i in range(5)]
        plans.append(PlayoffSlotPlan(key="r2", bracket_round=2, pinned=(1, 0)))
        slots = schedule_playoff_matches(plans, ["P1", "P2", "P3"], 4)
        blocks = {s.key: s.round_block for s in slots}
        assert [blocks[f"r1-{i}"] for i in range(5)] == [4, 4, 4, 5, 5]
        assert blocks["r2"] == 6


class TestClock:
    def test_plain_day(self):
        settings = {"day_start_time": "09:00", "match_duration_minutes": 60}
        assert format_clock(round_block_start_minutes(1, settings)) == "09:00"
        assert format_clock(round_block_start_minutes(3, settings)) == "11:00"

    def test_lunch_pushes_later_blocks(self):
        settings = {
            "day_start_time": "09:00",
            "match_duration_minutes": 60,
            "lunch_start_time": "12:00",
            "lunch_duration_minutes": 45,
        }
        assert format_clock(round_block_start_minutes(3, settings)) == "11:00"
        assert format_clock(round_block_start_minutes(4, settings)) == "12:45"
        assert format_clock(round_block_start_minutes(5, settings)) == "13:45"

    def test_lunch_before_day_start_is_ignored(self):
        settings = {
            "day_start_time": "14:00",
            "match_duration_minutes": 60,
            "lunch_start_time": "12:00",
            "lunch_duration_minutes": 45,
        }
        starts = [format_clock(round_block_start_minutes(b, settings)) for b in (1, 2, 3)]
        assert starts == ["14:00", "15:00", "16:00"]

    def test_day_starting_inside_lunch_waits_for_its_end(self):
        settings = {
            "day_start_time": "12:15",
            "match_duration_minutes": 60,
            "lunch_start_time": "12:00",
            "lunch_duration_minutes": 45,
        }
        assert format_clock(round_block_start_minutes(1, settings)) == "12:45"
        assert format_clock(round_block_start_minutes(2, settings)) == "13:45"

    def test_invalid_clock_rejected(self):
        with pytest.raises(ValidationError):
            round_block_start_minutes(1, {"day_start_time": "nine"})
