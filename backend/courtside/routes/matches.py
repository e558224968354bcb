"""
Match lifecycle routes: status, finalize/unfinalize, manual referees.

Only finalize/unfinalize move a match into or out of "final"; playoff
changes recompute the affected brackets before the response is returned.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session, select

from courtside.database import get_session
from courtside.models.match import REF_SOURCE_MANUAL, Match
from courtside.models.team import Team
from courtside.models.tournament import Tournament
from courtside.services.errors import EngineError
from courtside.services.match_lifecycle import finalize_match, set_status, unfinalize_match
from courtside.services.realtime import EventPublisher, TournamentEventType, get_event_publisher
from courtside.utils.http_errors import to_http_exception

router = APIRouter()


class MatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    stage_key: str
    phase: str
    pool_id: Optional[int] = None
    label: Optional[str] = None
    bracket: Optional[str] = None
    bracket_round: Optional[int] = None
    bracket_match_key: Optional[str] = None
    seed_a: Optional[int] = None
    seed_b: Optional[int] = None
    round_block: Optional[int] = None
    facility: Optional[str] = None
    court: Optional[str] = None
    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    team_a_from_match_id: Optional[int] = None
    team_a_from_slot: Optional[str] = None
    team_b_from_match_id: Optional[int] = None
    team_b_from_slot: Optional[str] = None
    ref_team_ids: List[int] = []
    ref_source: str
    bye_team_id: Optional[int] = None
    scoreboard_id: Optional[int] = None
    status: str
    result: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    finalized_by: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str


class FinalizeRequest(BaseModel):
    finalized_by: Optional[str] = None
    override: bool = False


class RefsUpdateRequest(BaseModel):
    ref_team_ids: List[int]


class LifecycleResponse(BaseModel):
    match: MatchResponse
    updated_match_ids: List[int] = []
    cleared_match_ids: List[int] = []


def _get_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


def _get_match(session: Session, tournament_id: int, match_id: int) -> Match:
    match = session.get(Match, match_id)
    if not match or match.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Match not found")
    return match


def _lifecycle_response(outcome) -> LifecycleResponse:
    recompute = outcome.recompute
    return LifecycleResponse(
        match=MatchResponse.model_validate(outcome.match),
        updated_match_ids=recompute.updated_match_ids if recompute else [],
        cleared_match_ids=recompute.cleared_match_ids if recompute else [],
    )


@router.get("/tournaments/{tournament_id}/matches", response_model=List[MatchResponse])
def list_matches(
    tournament_id: int,
    stage_key: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    session: Session = Depends(get_session),
):
    _get_tournament(session, tournament_id)
    query = select(Match).where(Match.tournament_id == tournament_id)
    if stage_key:
        query = query.where(Match.stage_key == stage_key)
    if status:
        query = query.where(Match.status == status)
    return session.exec(query.order_by(Match.round_block, Match.court, Match.id)).all()


@router.get("/tournaments/{tournament_id}/matches/{match_id}", response_model=MatchResponse)
def get_match(tournament_id: int, match_id: int, session: Session = Depends(get_session)):
    return _get_match(session, tournament_id, match_id)


@router.post("/tournaments/{tournament_id}/matches/{match_id}/status", response_model=MatchResponse)
def update_match_status(
    tournament_id: int,
    match_id: int,
    payload: StatusUpdateRequest,
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Set scheduled/live/ended. Final is reachable only through finalize."""
    match = _get_match(session, tournament_id, match_id)
    try:
        return set_status(session, match, payload.status, publisher)
    except EngineError as e:
        raise to_http_exception(e)


@router.post("/tournaments/{tournament_id}/matches/{match_id}/finalize", response_model=LifecycleResponse)
def finalize(
    tournament_id: int,
    match_id: int,
    payload: FinalizeRequest,
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    tournament = _get_tournament(session, tournament_id)
    match = _get_match(session, tournament_id, match_id)
    try:
        outcome = finalize_match(
            session,
            tournament,
            match,
            finalized_by=payload.finalized_by,
            override=payload.override,
            publisher=publisher,
        )
    except EngineError as e:
        raise to_http_exception(e)
    return _lifecycle_response(outcome)


@router.post("/tournaments/{tournament_id}/matches/{match_id}/unfinalize", response_model=LifecycleResponse)
def unfinalize(
    tournament_id: int,
    match_id: int,
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    tournament = _get_tournament(session, tournament_id)
    match = _get_match(session, tournament_id, match_id)
    try:
        outcome = unfinalize_match(session, tournament, match, publisher=publisher)
    except EngineError as e:
        raise to_http_exception(e)
    return _lifecycle_response(outcome)


@router.patch("/tournaments/{tournament_id}/matches/{match_id}/refs", response_model=MatchResponse)
def update_match_refs(
    tournament_id: int,
    match_id: int,
    payload: RefsUpdateRequest,
    session: Session = Depends(get_session),
    publisher: EventPublisher = Depends(get_event_publisher),
):
    """Assign referees by hand. The match leaves rule-driven assignment for good."""
    match = _get_match(session, tournament_id, match_id)

    ref_ids = list(payload.ref_team_ids)
    if len(set(ref_ids)) != len(ref_ids):
        raise HTTPException(status_code=400, detail="Duplicate referee teams")
    known = set(session.exec(select(Team.id).where(Team.tournament_id == tournament_id)).all())
    unknown = [tid for tid in ref_ids if tid not in known]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown team ids for this tournament: {unknown}")
    playing = [tid for tid in ref_ids if tid in (match.team_a_id, match.team_b_id)]
    if playing:
        raise HTTPException(status_code=400, detail=f"Teams {playing} play in this match and cannot referee it")

    match.ref_team_ids = ref_ids
    match.ref_source = REF_SOURCE_MANUAL
    session.add(match)
    session.commit()
    session.refresh(match)

    publisher.publish(
        tournament_id,
        TournamentEventType.MATCH_STATUS_UPDATED,
        {"match_id": match.id, "status": match.status, "ref_team_ids": ref_ids},
    )
    return match
