from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session, select

from courtside.database import get_session
from courtside.models.match import Match
from courtside.models.team import Team
from courtside.models.tournament import Tournament
from courtside.routes.matches import MatchResponse
from courtside.services.errors import EngineError
from courtside.services.generation import generate_stage
from courtside.services.match_scheduler import format_clock, round_block_start_minutes
from courtside.services.realtime import EventPublisher, get_event_publisher
from courtside.services.scoreboards import team_label
from courtside.utils.http_errors import to_http_exception

router = APIRouter()


class GenerateResponse(BaseModel):
    stage_key: str
    match_ids: List[int]
    deleted_matches: int
    deleted_scoreboards: int


class ScheduleEntry(MatchResponse):
    start_time: Optional[str] = None
    team_a_name: str
    team_b_name: str
    ref_team_names: List[str] = []


def _get_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.post("/tournaments/{tournament_id}/stages/{stage_key}/generate", response_model=GenerateResponse)
def generate_stage_matches(
    tournament_id: int,
    stage_key: str,
    force: bool = Query(False),
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """
    Generate every match of a stage (pool play, crossover or playoffs).

    Existing matches for the stage are a 409 unless force=true, in which case
    they are deleted together with their scoreboards first.
    """
    tournament = _get_tournament(session, tournament_id)
    try:
        outcome = generate_stage(session, tournament, stage_key, force=force, publisher=publisher)
    except EngineError as e:
        raise to_http_exception(e)
    return GenerateResponse(
        stage_key=outcome.stage_key,
        match_ids=[m.id for m in outcome.matches],
        deleted_matches=outcome.deleted_matches,
        deleted_scoreboards=outcome.deleted_scoreboards,
    )


@router.get("/tournaments/{tournament_id}/schedule", response_model=List[ScheduleEntry])
def get_schedule(
    tournament_id: int,
    stage_key: Optional[str] = Query(None),
    session: Session = Depends(get_session),
):
    """Matches in play order with wall-clock start times and team names (TBD when unresolved)"""
    tournament = _get_tournament(session, tournament_id)
    settings = tournament.resolved_settings()

    query = select(Match).where(Match.tournament_id == tournament_id)
    if stage_key:
        query = query.where(Match.stage_key == stage_key)
    matches = session.exec(query.order_by(Match.round_block, Match.court, Match.id)).all()
    names = {t.id: t.display_name for t in session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()}

    entries = []
    for match in matches:
        try:
            start = round_block_start_minutes(match.round_block, settings)
        except EngineError as e:
            raise to_http_exception(e)
        entries.append(
            ScheduleEntry(
                **MatchResponse.model_validate(match).model_dump(),
                start_time=format_clock(start),
                team_a_name=team_label(names, match.team_a_id),
                team_b_name=team_label(names, match.team_b_id),
                ref_team_names=[team_label(names, tid) for tid in match.ref_team_ids or []],
            )
        )
    return entries
