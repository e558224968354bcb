from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class Scoreboard(SQLModel, table=True):
    """Scoring device record linked one-to-one with a match.

    The device owns the running score; the engine only reads completed
    sets when finalizing and resets the record when participants change.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    title: Optional[str] = Field(default=None)

    team_a_name: str = Field(default="TBD")
    team_b_name: str = Field(default="TBD")
    team_a_score: int = Field(default=0)
    team_b_score: int = Field(default=0)

    # Completed sets in play order: [{"a": 25, "b": 21}, ...]
    sets: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})
