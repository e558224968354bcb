"""
Playoff bracket view and manual recomputation.
"""
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session, select

from courtside.database import get_session
from courtside.models.match import PHASE_PLAYOFFS, Match
from courtside.models.team import Team
from courtside.models.tournament import Tournament
from courtside.routes.matches import MatchResponse
from courtside.services.bracket_engine import recompute_bracket_progression
from courtside.services.errors import EngineError
from courtside.services.realtime import EventPublisher, TournamentEventType, get_event_publisher
from courtside.services.scoreboards import team_label
from courtside.utils.http_errors import to_http_exception

router = APIRouter()


class BracketMatchView(MatchResponse):
    team_a_name: str
    team_b_name: str
    ref_team_names: List[str] = []
    winner_team_id: Optional[int] = None


class BracketView(BaseModel):
    bracket: str
    rounds: Dict[int, List[BracketMatchView]]


class PlayoffsResponse(BaseModel):
    tournament_id: int
    brackets: List[BracketView]


class RecomputeResponse(BaseModel):
    brackets: List[str]
    updated_match_ids: List[int]
    cleared_match_ids: List[int]


def _get_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.get("/tournaments/{tournament_id}/playoffs", response_model=PlayoffsResponse)
def get_playoffs(tournament_id: int, session: Session = Depends(get_session)):
    """Brackets grouped by round; unresolved participants render as TBD"""
    _get_tournament(session, tournament_id)
    matches = session.exec(
        select(Match)
        .where(Match.tournament_id == tournament_id, Match.phase == PHASE_PLAYOFFS)
        .order_by(Match.bracket_round, Match.round_block, Match.court, Match.id)
    ).all()
    names = {t.id: t.display_name for t in session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()}

    by_bracket: Dict[str, Dict[int, List[BracketMatchView]]] = {}
    for match in matches:
        view = BracketMatchView(
            **MatchResponse.model_validate(match).model_dump(),
            team_a_name=team_label(names, match.team_a_id),
            team_b_name=team_label(names, match.team_b_id),
            ref_team_names=[team_label(names, tid) for tid in match.ref_team_ids or []],
            winner_team_id=(match.result or {}).get("winner_team_id"),
        )
        rounds = by_bracket.setdefault(match.bracket or "", {})
        rounds.setdefault(match.bracket_round or 0, []).append(view)

    return PlayoffsResponse(
        tournament_id=tournament_id,
        brackets=[BracketView(bracket=key, rounds=rounds) for key, rounds in sorted(by_bracket.items())],
    )


@router.post("/tournaments/{tournament_id}/playoffs/recompute", response_model=RecomputeResponse)
def recompute_playoffs(
    tournament_id: int,
    bracket: Optional[str] = Query(None),
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Re-run bracket progression; safe to call any number of times"""
    _get_tournament(session, tournament_id)
    try:
        outcome = recompute_bracket_progression(session, tournament_id, bracket)
    except EngineError as e:
        raise to_http_exception(e)
    publisher.publish(
        tournament_id,
        TournamentEventType.PLAYOFFS_BRACKET_UPDATED,
        {
            "bracket": bracket,
            "brackets": outcome.brackets,
            "affected_match_ids": outcome.updated_match_ids,
            "cleared_match_ids": outcome.cleared_match_ids,
        },
    )
    return RecomputeResponse(
        brackets=outcome.brackets,
        updated_match_ids=outcome.updated_match_ids,
        cleared_match_ids=outcome.cleared_match_ids,
    )
