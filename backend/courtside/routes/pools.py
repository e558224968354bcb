from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session

from courtside.database import get_session
from courtside.models.pool import Pool
from courtside.models.tournament import Tournament
from courtside.services.errors import EngineError
from courtside.services.pool_builder import (
    autofill_serpentine,
    initialize_pools,
    list_stage_pools,
    reassign_team,
    seed_followup_pools,
    set_pool_teams,
)
from courtside.services.realtime import EventPublisher, TournamentEventType, get_event_publisher
from courtside.utils.http_errors import to_http_exception

router = APIRouter()


class PoolResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    stage_key: str
    name: str
    required_team_count: int
    team_ids: List[int] = []
    home_court: Optional[str] = None
    facility: Optional[str] = None
    rematch_warnings: Optional[List[Dict[str, Any]]] = None
    created_at: datetime
    updated_at: datetime


class InitializePoolsRequest(BaseModel):
    courts: Optional[List[str]] = None
    force: bool = False


class SetPoolTeamsRequest(BaseModel):
    team_ids: List[int]


class ReassignTeamRequest(BaseModel):
    team_id: int
    target_pool_id: int
    target_index: Optional[int] = None


class FollowupSeedResponse(BaseModel):
    pools: List[PoolResponse]
    total_rematches: int
    swap_attempts: int


def _get_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


def _publish_pools(publisher: EventPublisher, tournament_id: int, pools: List[Pool]) -> None:
    publisher.publish(
        tournament_id,
        TournamentEventType.POOLS_UPDATED,
        {"pool_ids": [p.id for p in pools], "stage_keys": sorted({p.stage_key for p in pools})},
    )


@router.get("/tournaments/{tournament_id}/stages/{stage_key}/pools", response_model=List[PoolResponse])
def get_stage_pools(tournament_id: int, stage_key: str, session: Session = Depends(get_session)):
    _get_tournament(session, tournament_id)
    return list_stage_pools(session, tournament_id, stage_key)


@router.post("/tournaments/{tournament_id}/stages/{stage_key}/pools/initialize", response_model=List[PoolResponse])
def initialize_stage_pools(
    tournament_id: int,
    stage_key: str,
    payload: InitializePoolsRequest,
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Create empty pools for the stage, one per court in order"""
    tournament = _get_tournament(session, tournament_id)
    try:
        pools = initialize_pools(session, tournament, stage_key, courts=payload.courts, force=payload.force)
    except EngineError as e:
        raise to_http_exception(e)
    _publish_pools(publisher, tournament_id, pools)
    return pools


@router.post("/tournaments/{tournament_id}/stages/{stage_key}/pools/autofill", response_model=List[PoolResponse])
def autofill_stage_pools(
    tournament_id: int,
    stage_key: str,
    force: bool = Query(False),
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Serpentine-fill the stage's pools from the seeded team list"""
    tournament = _get_tournament(session, tournament_id)
    try:
        pools = autofill_serpentine(session, tournament, stage_key, force=force)
    except EngineError as e:
        raise to_http_exception(e)
    _publish_pools(publisher, tournament_id, pools)
    return pools


@router.post(
    "/tournaments/{tournament_id}/stages/{stage_key}/pools/seed-followup", response_model=FollowupSeedResponse
)
def seed_stage_followup_pools(
    tournament_id: int,
    stage_key: str,
    force: bool = Query(False),
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Fill a follow-up stage from earlier placements, keeping rematches to a minimum"""
    tournament = _get_tournament(session, tournament_id)
    try:
        plan = seed_followup_pools(session, tournament, stage_key, force=force)
    except EngineError as e:
        raise to_http_exception(e)
    pools = list_stage_pools(session, tournament_id, stage_key)
    _publish_pools(publisher, tournament_id, pools)
    return FollowupSeedResponse(
        pools=[PoolResponse.model_validate(p) for p in pools],
        total_rematches=plan.total_conflicts,
        swap_attempts=plan.attempts,
    )


@router.put("/tournaments/{tournament_id}/pools/{pool_id}/teams", response_model=PoolResponse)
def replace_pool_teams(
    tournament_id: int,
    pool_id: int,
    payload: SetPoolTeamsRequest,
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    tournament = _get_tournament(session, tournament_id)
    try:
        pool = set_pool_teams(session, tournament, pool_id, payload.team_ids)
    except EngineError as e:
        raise to_http_exception(e)
    _publish_pools(publisher, tournament_id, [pool])
    return pool


@router.post("/tournaments/{tournament_id}/pools/{pool_id}/reassign", response_model=List[PoolResponse])
def reassign_pool_team(
    tournament_id: int,
    pool_id: int,
    payload: ReassignTeamRequest,
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Move a team to another pool (or another position in its own pool)"""
    tournament = _get_tournament(session, tournament_id)
    try:
        pools = reassign_team(
            session,
            tournament,
            pool_id,
            payload.team_id,
            payload.target_pool_id,
            payload.target_index,
        )
    except EngineError as e:
        raise to_http_exception(e)
    _publish_pools(publisher, tournament_id, pools)
    return pools
