from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session

from courtside.database import get_session
from courtside.models.tournament import Tournament
from courtside.services.errors import EngineError
from courtside.services.realtime import EventPublisher, TournamentEventType, get_event_publisher
from courtside.services.standings import (
    SCOPE_CUMULATIVE,
    SCOPE_STAGE,
    clear_standings_override,
    compute_standings,
    set_standings_override,
)
from courtside.utils.http_errors import to_http_exception

router = APIRouter()


class StandingsEntryResponse(BaseModel):
    team_id: int
    rank: int
    matches_played: int
    matches_won: int
    matches_lost: int
    sets_won: int
    sets_lost: int
    sets_played: int
    set_pct: float
    points_for: int
    points_against: int
    point_diff: int


class PoolStandingsResponse(BaseModel):
    pool_id: int
    pool_name: str
    complete: bool
    override_applied: bool
    teams: List[StandingsEntryResponse]


class StandingsResponse(BaseModel):
    scope: str
    stage_key: Optional[str] = None
    pools: List[PoolStandingsResponse] = []
    overall: List[StandingsEntryResponse] = []
    overall_override_applied: bool = False


class OverrideRequest(BaseModel):
    stage_key: str
    pool_name: Optional[str] = None
    order: List[int]


def _get_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.get("/tournaments/{tournament_id}/standings", response_model=StandingsResponse)
def get_standings(
    tournament_id: int,
    scope: str = Query(SCOPE_CUMULATIVE),
    stage_key: Optional[str] = Query(None),
    pool_id: Optional[int] = Query(None),
    session: Session = Depends(get_session),
):
    """
    Standings computed from finalized matches.

    scope=pool needs pool_id, scope=stage needs stage_key; cumulative covers
    every pool-play and crossover match.
    """
    tournament = _get_tournament(session, tournament_id)
    try:
        bundle = compute_standings(session, tournament, scope=scope, stage_key=stage_key, pool_id=pool_id)
    except EngineError as e:
        raise to_http_exception(e)
    return StandingsResponse(**asdict(bundle))


@router.put("/tournaments/{tournament_id}/standings/overrides", response_model=StandingsResponse)
def put_standings_override(
    tournament_id: int,
    payload: OverrideRequest,
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Store a manual ranking (exact permutation) for a pool, a stage, or stage_key=cumulative"""
    tournament = _get_tournament(session, tournament_id)
    try:
        set_standings_override(session, tournament, payload.stage_key, payload.order, pool_name=payload.pool_name)
        if payload.stage_key == SCOPE_CUMULATIVE:
            bundle = compute_standings(session, tournament, SCOPE_CUMULATIVE)
        else:
            bundle = compute_standings(session, tournament, SCOPE_STAGE, stage_key=payload.stage_key)
    except EngineError as e:
        raise to_http_exception(e)

    publisher.publish(
        tournament_id,
        TournamentEventType.STANDINGS_UPDATED,
        {"stage_key": payload.stage_key, "pool_name": payload.pool_name, "override": True},
    )
    return StandingsResponse(**asdict(bundle))


@router.delete("/tournaments/{tournament_id}/standings/overrides", status_code=204)
def delete_standings_override(
    tournament_id: int,
    stage_key: str = Query(...),
    pool_name: Optional[str] = Query(None),
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    tournament = _get_tournament(session, tournament_id)
    if not clear_standings_override(session, tournament, stage_key, pool_name=pool_name):
        raise HTTPException(status_code=404, detail="No override stored")
    publisher.publish(
        tournament_id,
        TournamentEventType.STANDINGS_UPDATED,
        {"stage_key": stage_key, "pool_name": pool_name, "override": False},
    )
    return None
