from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, SQLModel


class Pool(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("tournament_id", "stage_key", "name", name="uq_pool_stage_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    stage_key: str = Field(index=True)
    name: str
    required_team_count: int

    # Ordered roster; length never exceeds required_team_count
    team_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON))

    home_court: Optional[str] = Field(default=None)
    facility: Optional[str] = Field(default=None)

    # Already-played pairs kept together by follow-up seeding: [{"team_a_id": 1, "team_b_id": 2}]
    rematch_warnings: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})
