from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, field_validator
from sqlmodel import Session, select

from courtside.database import get_session
from courtside.models.team import Team
from courtside.models.tournament import Tournament
from courtside.services.errors import EngineError, ValidationError
from courtside.services.format_registry import FormatDef, get_format, list_formats, suggest_formats
from courtside.services.match_scheduler import parse_clock
from courtside.services.pool_builder import ensure_courts_retained, ensure_format_change_allowed
from courtside.utils.courts import court_names, normalize_facilities
from courtside.utils.http_errors import to_http_exception

router = APIRouter()


class FacilityPayload(BaseModel):
    name: str
    # A list, or a comma string such as "SRC-1, SRC-2"
    courts: Union[List[str], str] = []
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class TournamentSettings(BaseModel):
    best_of: Optional[int] = None
    day_start_time: Optional[str] = None
    match_duration_minutes: Optional[int] = None
    lunch_start_time: Optional[str] = None
    lunch_duration_minutes: Optional[int] = None

    @field_validator("best_of")
    @classmethod
    def validate_best_of(cls, v):
        if v is not None and (v < 1 or v % 2 == 0):
            raise ValueError("best_of must be a positive odd number")
        return v

    @field_validator("day_start_time", "lunch_start_time")
    @classmethod
    def validate_clock(cls, v):
        if v is None:
            return v
        try:
            parse_clock(v)
        except ValidationError as e:
            raise ValueError(str(e))
        return v.strip()

    @field_validator("match_duration_minutes", "lunch_duration_minutes")
    @classmethod
    def validate_minutes(cls, v):
        if v is not None and v <= 0:
            raise ValueError("durations must be positive")
        return v


class TournamentCreate(BaseModel):
    name: str
    code: Optional[str] = None
    format_id: Optional[str] = None
    facilities: List[FacilityPayload] = []
    settings: Optional[TournamentSettings] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()


class TournamentUpdate(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    format_id: Optional[str] = None
    facilities: Optional[List[FacilityPayload]] = None
    settings: Optional[TournamentSettings] = None


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    code: Optional[str] = None
    format_id: Optional[str] = None
    status: str
    facilities: Optional[List[Dict[str, Any]]] = None
    settings: Optional[Dict[str, Any]] = None
    standings_overrides: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class FormatResponse(BaseModel):
    id: str
    name: str
    description: str
    team_counts: List[int]
    min_courts: int
    stages: List[Dict[str, Any]]


def _format_response(format_def: FormatDef) -> FormatResponse:
    stages = []
    for stage in format_def.stages:
        stages.append(
            {
                "key": stage.key,
                "kind": stage.kind,
                "display_name": stage.display_name,
                "pools": [
                    {"name": p.name, "size": p.size, "placements": list(p.placements)} for p in stage.pools
                ],
                "from_pools": list(stage.from_pools),
                "brackets": [
                    {
                        "name": b.name,
                        "key": b.key,
                        "size": b.size,
                        "seeds_from_overall": list(b.seeds_from_overall),
                        "template": b.template,
                    }
                    for b in stage.brackets
                ],
            }
        )
    return FormatResponse(
        id=format_def.id,
        name=format_def.name,
        description=format_def.description,
        team_counts=list(format_def.team_counts),
        min_courts=format_def.min_courts,
        stages=stages,
    )


def _validated_format_id(format_id: Optional[str]) -> Optional[str]:
    if format_id is None or not format_id.strip():
        return None
    if get_format(format_id) is None:
        raise HTTPException(status_code=400, detail=f"Unknown format: {format_id}")
    return format_id.strip()


def _facilities_json(facilities: List[FacilityPayload]) -> List[Dict[str, Any]]:
    try:
        return normalize_facilities([f.model_dump() for f in facilities])
    except EngineError as e:
        raise to_http_exception(e)


# ============================================================================
# Formats
# ============================================================================


@router.get("/formats", response_model=List[FormatResponse])
def get_formats():
    """List every registered tournament format"""
    return [_format_response(f) for f in list_formats()]


@router.get("/formats/suggest", response_model=List[FormatResponse])
def get_format_suggestions(team_count: int = Query(..., ge=1), court_count: int = Query(..., ge=1)):
    """Formats that support the team count and fit on the available courts"""
    return [_format_response(f) for f in suggest_formats(team_count, court_count)]


@router.get("/formats/{format_id}", response_model=FormatResponse)
def get_format_detail(format_id: str):
    format_def = get_format(format_id)
    if format_def is None:
        raise HTTPException(status_code=404, detail="Format not found")
    return _format_response(format_def)


# ============================================================================
# Tournaments
# ============================================================================


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(session: Session = Depends(get_session)):
    """List all tournaments"""
    return session.exec(select(Tournament).order_by(Tournament.id)).all()


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(payload: TournamentCreate, session: Session = Depends(get_session)):
    tournament = Tournament(
        name=payload.name,
        code=payload.code,
        format_id=_validated_format_id(payload.format_id),
        facilities=_facilities_json(payload.facilities),
        settings=payload.settings.model_dump(exclude_none=True) if payload.settings else {},
    )
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    """Get a tournament by ID"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.patch("/tournaments/{tournament_id}", response_model=TournamentResponse)
def update_tournament(tournament_id: int, payload: TournamentUpdate, session: Session = Depends(get_session)):
    """Update tournament fields; settings are merged, facilities replaced.

    The format is locked once pools or matches exist, and facilities may not
    drop a court a pool or match still uses.
    """
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")

    update_data = payload.model_dump(exclude_unset=True)
    if "name" in update_data and payload.name:
        tournament.name = payload.name.strip()
    if "code" in update_data:
        tournament.code = payload.code
    if "format_id" in update_data:
        format_id = _validated_format_id(payload.format_id)
        try:
            ensure_format_change_allowed(session, tournament, format_id)
        except EngineError as e:
            raise to_http_exception(e)
        tournament.format_id = format_id
    if payload.facilities is not None:
        facilities = _facilities_json(payload.facilities)
        try:
            ensure_courts_retained(session, tournament, court_names(facilities))
        except EngineError as e:
            raise to_http_exception(e)
        tournament.facilities = facilities
    if payload.settings is not None:
        merged = dict(tournament.settings or {})
        merged.update(payload.settings.model_dump(exclude_none=True))
        tournament.settings = merged

    tournament.updated_at = datetime.utcnow()
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}/format-suggestions", response_model=List[FormatResponse])
def suggest_tournament_formats(tournament_id: int, session: Session = Depends(get_session)):
    """Formats matching the tournament's current team and court counts"""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    team_count = len(session.exec(select(Team.id).where(Team.tournament_id == tournament_id)).all())
    return [_format_response(f) for f in suggest_formats(team_count, len(court_names(tournament.facilities)))]
