"""
Scoreboard routes: the scoring device's view of a match.

Devices push running scores and completed sets here; finalize reads the
completed sets back.
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, field_validator
from sqlmodel import Session

from courtside.database import get_session
from courtside.models.scoreboard import Scoreboard

router = APIRouter()


class SetScore(BaseModel):
    a: int
    b: int

    @field_validator("a", "b")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("scores must be non-negative")
        return v


class ScoreboardUpdate(BaseModel):
    team_a_score: Optional[int] = None
    team_b_score: Optional[int] = None
    sets: Optional[List[SetScore]] = None


class ScoreboardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tournament_id: int
    title: Optional[str] = None
    team_a_name: str
    team_b_name: str
    team_a_score: int
    team_b_score: int
    sets: List[SetScore] = []
    updated_at: datetime


def _get_scoreboard(session: Session, tournament_id: int, scoreboard_id: int) -> Scoreboard:
    scoreboard = session.get(Scoreboard, scoreboard_id)
    if not scoreboard or scoreboard.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Scoreboard not found")
    return scoreboard


@router.get("/tournaments/{tournament_id}/scoreboards/{scoreboard_id}", response_model=ScoreboardResponse)
def get_scoreboard(tournament_id: int, scoreboard_id: int, session: Session = Depends(get_session)):
    return _get_scoreboard(session, tournament_id, scoreboard_id)


@router.put("/tournaments/{tournament_id}/scoreboards/{scoreboard_id}", response_model=ScoreboardResponse)
def update_scoreboard(
    tournament_id: int, scoreboard_id: int, payload: ScoreboardUpdate, session: Session = Depends(get_session)
):
    scoreboard = _get_scoreboard(session, tournament_id, scoreboard_id)
    if payload.team_a_score is not None:
        scoreboard.team_a_score = payload.team_a_score
    if payload.team_b_score is not None:
        scoreboard.team_b_score = payload.team_b_score
    if payload.sets is not None:
        scoreboard.sets = [s.model_dump() for s in payload.sets]
    scoreboard.updated_at = datetime.utcnow()
    session.add(scoreboard)
    session.commit()
    session.refresh(scoreboard)
    return scoreboard
