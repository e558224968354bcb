import pytest

from courtside.models.match import (
    MATCH_STATUS_ENDED,
    MATCH_STATUS_FINAL,
    MATCH_STATUS_LIVE,
    MATCH_STATUS_SCHEDULED,
    PHASE_POOL,
    Match,
)
from courtside.services.errors import ConflictError, ValidationError
from courtside.services.match_lifecycle import (
    compute_match_snapshot,
    finalize_match,
    set_status,
    unfinalize_match,
)
from courtside.services.realtime import EventPublisher
from courtside.services.scoreboards import create_scoreboard
from tests.helpers import make_teams, make_tournament, record_sets


class TestSnapshot:
    def test_two_set_sweep(self):
        snapshot = compute_match_snapshot([(25, 20), (25, 18)], 1, 2)
        assert snapshot["winner_team_id"] == 1
        assert snapshot["loser_team_id"] == 2
        assert (snapshot["sets_won_a"], snapshot["sets_won_b"]) == (2, 0)
        assert snapshot["points_for_a"] == 50
        assert snapshot["points_for_b"] == 38
        assert snapshot["points_against_b"] == 50

    def test_three_setter_for_side_b(self):
        snapshot = compute_match_snapshot([{"a": 25, "b": 20}, {"a": 22, "b": 25}, {"a": 10, "b": 15}], 1, 2)
        assert snapshot["winner_team_id"] == 2
        assert snapshot["sets_played"] == 3
        assert [s["set_no"] for s in snapshot["set_scores"]] == [1, 2, 3]

    def test_scores_key_form(self):
        snapshot = compute_match_snapshot([{"scores": [25, 10]}, {"scores": [25, 12]}], 5, 6)
        assert snapshot["winner_team_id"] == 5

    def test_best_of_one(self):
        snapshot = compute_match_snapshot([(21, 19)], 1, 2, best_of=1)
        assert snapshot["winner_team_id"] == 1

    @pytest.mark.parametrize(
        "sets",
        [
            [],
            [(25, 20)],
            [(25, 20), (20, 25)],
            [(25, 25), (25, 20)],
            [(25, 20), (25, 20), (25, 20)],
            [(25, 20), (25, 20), (25, 20), (25, 20)],
            [(25, -1), (25, 20)],
            [(25, 20, 3), (25, 20)],
            [("x", 20), (25, 20)],
        ],
    )
    def test_indecisive_or_malformed_sets_are_rejected(self, sets):
        with pytest.raises(ValidationError):
            compute_match_snapshot(sets, 1, 2)

    def test_unresolved_participant(self):
        with pytest.raises(ValidationError):
            compute_match_snapshot([(25, 20), (25, 20)], 1, None)

    def test_even_best_of(self):
        with pytest.raises(ValidationError):
            compute_match_snapshot([(25, 20), (25, 20)], 1, 2, best_of=2)


@pytest.fixture
def pool_match(session):
    tournament = make_tournament(session, format_id="classic_12_3x4_gold8_silver4_v1")
    teams = make_teams(session, tournament, 2)
    scoreboard = create_scoreboard(session, tournament.id, "Pool A Match 1", teams[0].name, teams[1].name)
    match = Match(
        tournament_id=tournament.id,
        stage_key="poolPlay1",
        phase=PHASE_POOL,
        team_a_id=teams[0].id,
        team_b_id=teams[1].id,
        scoreboard_id=scoreboard.id,
    )
    session.add(match)
    session.commit()
    session.refresh(match)
    return tournament, match


class TestSessionLifecycle:
    def test_status_transitions(self, session, pool_match):
        _, match = pool_match
        set_status(session, match, MATCH_STATUS_LIVE)
        assert match.started_at is not None
        set_status(session, match, MATCH_STATUS_ENDED)
        assert match.ended_at is not None
        set_status(session, match, MATCH_STATUS_SCHEDULED)
        assert match.started_at is None and match.ended_at is None

    def test_final_is_not_a_plain_status(self, session, pool_match):
        _, match = pool_match
        with pytest.raises(ValidationError):
            set_status(session, match, MATCH_STATUS_FINAL)
        with pytest.raises(ValidationError):
            set_status(session, match, "paused")

    def test_finalize_requires_ended(self, session, pool_match):
        tournament, match = pool_match
        record_sets(session, match, [(25, 10), (25, 10)])
        with pytest.raises(ConflictError):
            finalize_match(session, tournament, match)

    def test_finalize_and_unfinalize(self, session, pool_match):
        tournament, match = pool_match
        publisher = EventPublisher()
        received = []
        publisher.subscribe(tournament.id, received.append)

        record_sets(session, match, [(25, 10), (20, 25), (15, 9)])
        set_status(session, match, MATCH_STATUS_ENDED)
        outcome = finalize_match(session, tournament, match, finalized_by="desk", publisher=publisher)

        assert outcome.match.status == MATCH_STATUS_FINAL
        assert outcome.match.result["winner_team_id"] == match.team_a_id
        assert outcome.match.finalized_by == "desk"
        assert outcome.recompute is None
        assert [e.type.value for e in received] == ["MATCH_STATUS_UPDATED", "MATCH_FINALIZED", "STANDINGS_UPDATED"]

        with pytest.raises(ConflictError):
            finalize_match(session, tournament, match)
        with pytest.raises(ValidationError):
            set_status(session, match, MATCH_STATUS_LIVE)

        outcome = unfinalize_match(session, tournament, match)
        assert outcome.match.status == MATCH_STATUS_ENDED
        assert outcome.match.result is None
        assert outcome.match.finalized_at is None

    def test_unfinalize_requires_final(self, session, pool_match):
        tournament, match = pool_match
        with pytest.raises(ConflictError):
            unfinalize_match(session, tournament, match)

    def test_incomplete_scoreboard_blocks_finalize(self, session, pool_match):
        tournament, match = pool_match
        record_sets(session, match, [(25, 10)])
        with pytest.raises(ValidationError):
            finalize_match(session, tournament, match, override=True)
        assert match.status == MATCH_STATUS_SCHEDULED

    def test_best_of_comes_from_settings(self, session, pool_match):
        tournament, match = pool_match
        tournament.settings = {"best_of": 1}
        session.add(tournament)
        session.commit()
        record_sets(session, match, [(21, 15)])
        outcome = finalize_match(session, tournament, match, override=True)
        assert outcome.match.result["sets_played"] == 1
