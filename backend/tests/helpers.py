"""Shared builders for service-level tests."""
from typing import List, Optional, Sequence

from sqlmodel import Session, select

from courtside.models.match import MATCH_STATUS_FINAL, Match
from courtside.models.scoreboard import Scoreboard
from courtside.models.team import Team
from courtside.models.tournament import Tournament
from courtside.services.match_lifecycle import finalize_match


def make_tournament(
    session: Session,
    format_id: Optional[str] = None,
    courts: Sequence[str] = ("C1", "C2", "C3"),
    facilities: Optional[List[dict]] = None,
    settings: Optional[dict] = None,
) -> Tournament:
    tournament = Tournament(
        name="Test Open",
        format_id=format_id,
        facilities=facilities if facilities is not None else [{"name": "Main", "courts": list(courts)}],
        settings=settings or {},
    )
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


def make_teams(session: Session, tournament: Tournament, count: int, seeded: bool = True) -> List[Team]:
    teams = []
    for index in range(count):
        team = Team(
            tournament_id=tournament.id,
            name=f"Team {index + 1:02d}",
            seed=index + 1 if seeded else None,
            order_index=index,
        )
        session.add(team)
        teams.append(team)
    session.commit()
    for team in teams:
        session.refresh(team)
    return teams


def record_sets(session: Session, match: Match, sets: Sequence[tuple]) -> Scoreboard:
    """Write completed sets onto a match's scoreboard, as the scoring device would."""
    scoreboard = session.get(Scoreboard, match.scoreboard_id)
    scoreboard.sets = [{"a": a, "b": b} for a, b in sets]
    session.add(scoreboard)
    session.commit()
    session.refresh(scoreboard)
    return scoreboard


def stage_matches(session: Session, tournament: Tournament, stage_key: str) -> List[Match]:
    return session.exec(
        select(Match)
        .where(Match.tournament_id == tournament.id, Match.stage_key == stage_key)
        .order_by(Match.round_block, Match.court)
    ).all()


def finalize_stage(session: Session, tournament: Tournament, stage_key: str) -> None:
    """Finalize every open match of a stage with side A sweeping 25-10, 25-10."""
    for match in stage_matches(session, tournament, stage_key):
        if match.status == MATCH_STATUS_FINAL:
            continue
        record_sets(session, match, [(25, 10), (25, 10)])
        finalize_match(session, tournament, match, finalized_by="test", override=True)
