"""
Team Roster API Routes

Cosmetic fields (name, short name, location) are always editable. Seed and
order index are frozen once a finalized match references the team.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, or_, select

from courtside.database import get_session
from courtside.models.match import MATCH_STATUS_FINAL, Match
from courtside.models.pool import Pool
from courtside.models.team import Team
from courtside.models.tournament import Tournament
from courtside.services.pool_builder import seeding_sort_key

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class TeamCreateRequest(BaseModel):
    name: str
    short_name: Optional[str] = None
    seed: Optional[int] = None
    order_index: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()


class TeamUpdateRequest(BaseModel):
    name: Optional[str] = None
    short_name: Optional[str] = None
    seed: Optional[int] = None
    order_index: Optional[int] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    name: str
    short_name: Optional[str] = None
    seed: Optional[int] = None
    order_index: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime


def _get_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


def _get_team(session: Session, tournament_id: int, team_id: int) -> Team:
    team = session.get(Team, team_id)
    if not team or team.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Team not found")
    return team


def _validate_location(latitude: Optional[float], longitude: Optional[float]) -> None:
    if (latitude is None) != (longitude is None):
        raise HTTPException(status_code=400, detail="latitude and longitude must be set together")
    if latitude is not None and not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        raise HTTPException(status_code=400, detail="Invalid team location")


def finalized_match_ids_for_team(session: Session, tournament_id: int, team_id: int) -> List[int]:
    return session.exec(
        select(Match.id).where(
            Match.tournament_id == tournament_id,
            Match.status == MATCH_STATUS_FINAL,
            or_(Match.team_a_id == team_id, Match.team_b_id == team_id),
        )
    ).all()


# ============================================================================
# Team CRUD Endpoints
# ============================================================================


@router.get("/tournaments/{tournament_id}/teams", response_model=List[TeamResponse])
def get_teams(tournament_id: int, session: Session = Depends(get_session)):
    """
    Get all teams for a tournament in seeding order:
    seed ascending (nulls last), order index, name, id.
    """
    _get_tournament(session, tournament_id)
    teams = session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()
    return sorted(teams, key=seeding_sort_key)


@router.post("/tournaments/{tournament_id}/teams", response_model=TeamResponse, status_code=201)
def create_team(tournament_id: int, request: TeamCreateRequest, session: Session = Depends(get_session)):
    _get_tournament(session, tournament_id)
    _validate_location(request.latitude, request.longitude)

    order_index = request.order_index
    if order_index is None:
        order_index = len(session.exec(select(Team.id).where(Team.tournament_id == tournament_id)).all())

    team = Team(
        tournament_id=tournament_id,
        name=request.name,
        short_name=request.short_name,
        seed=request.seed,
        order_index=order_index,
        latitude=request.latitude,
        longitude=request.longitude,
    )
    try:
        session.add(team)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail=f"Team with name '{request.name}' already exists")
    session.refresh(team)
    return team


@router.patch("/tournaments/{tournament_id}/teams/{team_id}", response_model=TeamResponse)
def update_team(
    tournament_id: int, team_id: int, request: TeamUpdateRequest, session: Session = Depends(get_session)
):
    """Update a team. Seed and order index are rejected once the team has a finalized match."""
    team = _get_team(session, tournament_id, team_id)
    update_data = request.model_dump(exclude_unset=True)

    frozen = [
        name
        for name in ("seed", "order_index")
        if name in update_data and update_data[name] != getattr(team, name)
    ]
    if frozen:
        finalized = finalized_match_ids_for_team(session, tournament_id, team_id)
        if finalized:
            raise HTTPException(
                status_code=409,
                detail={
                    "message": f"Cannot change {', '.join(frozen)} after the team has finalized matches",
                    "existing": {"finalized_match_ids": finalized},
                },
            )

    latitude = update_data.get("latitude", team.latitude)
    longitude = update_data.get("longitude", team.longitude)
    _validate_location(latitude, longitude)

    for field, value in update_data.items():
        if field == "name":
            if not value or not value.strip():
                raise HTTPException(status_code=400, detail="name is required")
            value = value.strip()
        setattr(team, field, value)

    try:
        session.add(team)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail=f"Team with name '{request.name}' already exists")
    session.refresh(team)
    return team


@router.delete("/tournaments/{tournament_id}/teams/{team_id}", status_code=204)
def delete_team(tournament_id: int, team_id: int, session: Session = Depends(get_session)):
    """Delete a team that is not placed in a pool and not in any match."""
    team = _get_team(session, tournament_id, team_id)

    pools = session.exec(select(Pool).where(Pool.tournament_id == tournament_id)).all()
    placed = [p.id for p in pools if team_id in (p.team_ids or [])]
    matches = session.exec(
        select(Match.id).where(
            Match.tournament_id == tournament_id,
            or_(Match.team_a_id == team_id, Match.team_b_id == team_id),
        )
    ).all()
    if placed or matches:
        raise HTTPException(
            status_code=409,
            detail={
                "message": "Team is referenced by pools or matches",
                "existing": {"pool_ids": placed, "match_ids": matches},
            },
        )

    session.delete(team)
    session.commit()
    return None
