import pytest
from sqlmodel import select

from courtside.models.match import MATCH_STATUS_FINAL, PHASE_PLAYOFFS, REF_SOURCE_RULE, Match
from courtside.models.scoreboard import Scoreboard
from courtside.services import generation
from courtside.services.errors import ConflictError, ValidationError
from courtside.services.format_registry import DEFAULT_15_TEAM_FORMAT_ID
from courtside.services.generation import generate_stage
from courtside.services.match_lifecycle import finalize_match, unfinalize_match
from courtside.services.pool_builder import autofill_serpentine, initialize_pools, seed_followup_pools
from courtside.services.realtime import EventPublisher
from courtside.services.scoreboards import orphaned_scoreboard_ids
from tests.helpers import finalize_stage, make_teams, make_tournament, record_sets, stage_matches

TWELVE = "classic_12_3x4_gold8_silver4_v1"
FOURTEEN = "classic_14_mixedpools_crossover_gold8_silver6_v1"


def _count(session, model):
    return len(session.exec(select(model)).all())


def _by_key(session, tournament):
    matches = session.exec(select(Match).where(Match.tournament_id == tournament.id, Match.phase == PHASE_PLAYOFFS)).all()
    return {m.bracket_match_key: m for m in matches}


@pytest.fixture
def twelve(session):
    tournament = make_tournament(session, format_id=TWELVE)
    teams = make_teams(session, tournament, 12)
    initialize_pools(session, tournament, "poolPlay1")
    autofill_serpentine(session, tournament, "poolPlay1")
    return tournament, [t.id for t in teams]


class TestPoolStage:
    def test_round_robins_for_every_pool(self, session, twelve):
        tournament, _ = twelve
        publisher = EventPublisher()
        received = []
        publisher.subscribe(tournament.id, received.append)

        outcome = generate_stage(session, tournament, "poolPlay1", publisher=publisher)

        assert len(outcome.matches) == 18
        assert sorted({m.round_block for m in outcome.matches}) == [1, 2, 3, 4, 5, 6]
        slots = {(m.round_block, m.court) for m in outcome.matches}
        assert len(slots) == 18
        for match in outcome.matches:
            assert match.scoreboard_id is not None
            assert len(match.ref_team_ids) == 1
            assert match.ref_team_ids[0] not in (match.team_a_id, match.team_b_id)
        assert outcome.matches[0].label.startswith("Pool A Match")
        assert tournament.status == "pool_play"
        assert [e.type.value for e in received] == ["MATCHES_GENERATED"]

    def test_scoreboards_carry_team_names(self, session, twelve):
        tournament, _ = twelve
        outcome = generate_stage(session, tournament, "poolPlay1")
        match = outcome.matches[0]
        board = session.get(Scoreboard, match.scoreboard_id)
        assert board.title == match.label
        assert board.team_a_name.startswith("Team ")

    def test_regeneration_needs_force(self, session, twelve):
        tournament, _ = twelve
        generate_stage(session, tournament, "poolPlay1")

        with pytest.raises(ConflictError) as excinfo:
            generate_stage(session, tournament, "poolPlay1")
        assert excinfo.value.existing == {"stage_key": "poolPlay1", "matches": 18, "scoreboards": 18}

        outcome = generate_stage(session, tournament, "poolPlay1", force=True)
        assert outcome.deleted_matches == 18
        assert outcome.deleted_scoreboards == 18
        assert _count(session, Match) == 18
        assert _count(session, Scoreboard) == 18
        assert orphaned_scoreboard_ids(session, tournament.id) == []

    def test_failed_clear_keeps_matches_and_scoreboards_together(self, session, twelve, monkeypatch):
        tournament, _ = twelve
        generate_stage(session, tournament, "poolPlay1")

        def broken_delete(*args, **kwargs):
            raise RuntimeError("scoreboard store unavailable")

        monkeypatch.setattr(generation, "delete_scoreboards", broken_delete)
        with pytest.raises(RuntimeError):
            generate_stage(session, tournament, "poolPlay1", force=True)

        assert _count(session, Match) == 18
        assert _count(session, Scoreboard) == 18
        assert orphaned_scoreboard_ids(session, tournament.id) == []

    def test_incomplete_pool_is_rejected(self, session):
        tournament = make_tournament(session, format_id=TWELVE)
        make_teams(session, tournament, 11)
        initialize_pools(session, tournament, "poolPlay1")
        autofill_serpentine(session, tournament, "poolPlay1")
        with pytest.raises(ValidationError):
            generate_stage(session, tournament, "poolPlay1")
        assert _count(session, Match) == 0

    def test_failure_midway_leaves_nothing_behind(self, session, twelve, monkeypatch):
        tournament, _ = twelve
        real_create = generation.create_scoreboard
        calls = {"n": 0}

        def flaky_create(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 5:
                raise RuntimeError("scoreboard service unavailable")
            return real_create(*args, **kwargs)

        monkeypatch.setattr(generation, "create_scoreboard", flaky_create)
        with pytest.raises(RuntimeError):
            generate_stage(session, tournament, "poolPlay1")
        assert _count(session, Match) == 0
        assert _count(session, Scoreboard) == 0


class TestPlayoffs:
    def test_requires_finished_pool_play(self, session, twelve):
        tournament, _ = twelve
        with pytest.raises(ValidationError):
            generate_stage(session, tournament, "playoffs")
        generate_stage(session, tournament, "poolPlay1")
        with pytest.raises(ValidationError):
            generate_stage(session, tournament, "playoffs")

    def test_brackets_seeded_from_cumulative_standings(self, session, twelve):
        tournament, ids = twelve
        generate_stage(session, tournament, "poolPlay1")
        finalize_stage(session, tournament, "poolPlay1")

        outcome = generate_stage(session, tournament, "playoffs")
        assert len(outcome.matches) == 10
        assert min(m.round_block for m in outcome.matches) == 7
        assert tournament.status == "playoffs"

        by_key = _by_key(session, tournament)
        assert (by_key["gold:R1:M1"].team_a_id, by_key["gold:R1:M1"].team_b_id) == (ids[0], ids[7])
        assert (by_key["gold:R1:M2"].team_a_id, by_key["gold:R1:M2"].team_b_id) == (ids[3], ids[4])
        assert (by_key["silver:R1:M1"].team_a_id, by_key["silver:R1:M1"].team_b_id) == (ids[8], ids[11])

        semi = by_key["gold:R2:M1"]
        assert semi.team_a_id is None and semi.team_b_id is None
        assert semi.team_a_from_match_id == by_key["gold:R1:M1"].id
        assert semi.team_b_from_match_id == by_key["gold:R1:M2"].id
        assert semi.ref_source == REF_SOURCE_RULE
        assert semi.ref_team_ids == []

    def test_winners_advance_and_refs_follow_rules(self, session, twelve):
        tournament, ids = twelve
        generate_stage(session, tournament, "poolPlay1")
        finalize_stage(session, tournament, "poolPlay1")
        generate_stage(session, tournament, "playoffs")
        by_key = _by_key(session, tournament)

        for key in ("gold:R1:M1", "gold:R1:M2"):
            record_sets(session, by_key[key], [(25, 10), (25, 10)])
            finalize_match(session, tournament, by_key[key], override=True)

        semi = session.get(Match, by_key["gold:R2:M1"].id)
        assert (semi.team_a_id, semi.team_b_id) == (ids[0], ids[3])
        assert semi.ref_team_ids == [ids[7]]
        board = session.get(Scoreboard, semi.scoreboard_id)
        assert board.team_a_name == "Team 01"

        record_sets(session, semi, [(25, 10), (25, 10)])
        finalize_match(session, tournament, semi, override=True)
        final = session.get(Match, by_key["gold:R3:M1"].id)
        assert final.team_a_id == ids[0]

        outcome = unfinalize_match(session, tournament, session.get(Match, by_key["gold:R1:M1"].id))
        assert semi.id in outcome.recompute.cleared_match_ids
        session.refresh(semi)
        session.refresh(final)
        assert semi.team_a_id is None
        assert semi.status == "ended"
        assert semi.result is None
        assert semi.ref_team_ids == [ids[4]]
        assert final.team_a_id is None

    def test_force_regenerates_playoffs(self, session, twelve):
        tournament, _ = twelve
        generate_stage(session, tournament, "poolPlay1")
        finalize_stage(session, tournament, "poolPlay1")
        generate_stage(session, tournament, "playoffs")

        with pytest.raises(ConflictError):
            generate_stage(session, tournament, "playoffs")
        outcome = generate_stage(session, tournament, "playoffs", force=True)
        assert outcome.deleted_matches == 10
        assert len(outcome.matches) == 10
        assert orphaned_scoreboard_ids(session, tournament.id) == []
        assert len(stage_matches(session, tournament, "poolPlay1")) == 18


def test_crossover_between_three_team_pools(session):
    tournament = make_tournament(
        session,
        format_id=FOURTEEN,
        facilities=[
            {"name": "North", "courts": ["N1", "N2"]},
            {"name": "South", "courts": ["S1", "S2", "S3"]},
        ],
    )
    ids = [t.id for t in make_teams(session, tournament, 14)]
    initialize_pools(session, tournament, "poolPlay1")
    autofill_serpentine(session, tournament, "poolPlay1")
    generate_stage(session, tournament, "poolPlay1")

    with pytest.raises(ValidationError):
        generate_stage(session, tournament, "crossover")

    finalize_stage(session, tournament, "poolPlay1")
    outcome = generate_stage(session, tournament, "crossover")

    pairings = sorted(
        ((m.team_a_id, m.team_b_id), m.ref_team_ids[0]) for m in outcome.matches
    )
    assert pairings == sorted(
        [
            ((ids[2], ids[3]), ids[10]),
            ((ids[5], ids[4]), ids[11]),
            ((ids[10], ids[11]), ids[4]),
        ]
    )
    assert {m.court for m in outcome.matches} <= {"S1", "S2"}
    assert {m.facility for m in outcome.matches} == {"South"}
    assert min(m.round_block for m in outcome.matches) == 5
    assert max(m.round_block for m in outcome.matches) == 6
    assert outcome.matches[0].label.startswith("Crossover C")


def test_fifteen_team_five_team_brackets(session):
    tournament = make_tournament(session, format_id=DEFAULT_15_TEAM_FORMAT_ID, courts=("C1", "C2", "C3", "C4", "C5"))
    make_teams(session, tournament, 15)
    initialize_pools(session, tournament, "poolPlay1")
    autofill_serpentine(session, tournament, "poolPlay1")
    generate_stage(session, tournament, "poolPlay1")
    finalize_stage(session, tournament, "poolPlay1")

    initialize_pools(session, tournament, "poolPlay2")
    seed_followup_pools(session, tournament, "poolPlay2")
    pool2 = generate_stage(session, tournament, "poolPlay2")
    assert min(m.round_block for m in pool2.matches) == 4
    finalize_stage(session, tournament, "poolPlay2")

    outcome = generate_stage(session, tournament, "playoffs")
    assert len(outcome.matches) == 12
    assert min(m.round_block for m in outcome.matches) == 7

    by_key = _by_key(session, tournament)
    gold_opener = by_key["gold:R1:4v5"]
    assert (gold_opener.round_block, gold_opener.court) == (7, "C1")
    assert gold_opener.ref_team_ids == [by_key["bronze:R2:1vW45"].team_a_id]
    assert by_key["gold:R3:final"].court == "C4"
    assert all(m.status != MATCH_STATUS_FINAL for m in outcome.matches)
