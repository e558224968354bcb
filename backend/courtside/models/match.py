from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

MATCH_STATUS_SCHEDULED = "scheduled"
MATCH_STATUS_LIVE = "live"
MATCH_STATUS_ENDED = "ended"
MATCH_STATUS_FINAL = "final"
MATCH_STATUSES = (MATCH_STATUS_SCHEDULED, MATCH_STATUS_LIVE, MATCH_STATUS_ENDED, MATCH_STATUS_FINAL)

PHASE_POOL = "pool"
PHASE_CROSSOVER = "crossover"
PHASE_PLAYOFFS = "playoffs"

SLOT_WINNER = "winner"
SLOT_LOSER = "loser"

REF_SOURCE_ROTATION = "rotation"
REF_SOURCE_TEMPLATE = "template"
REF_SOURCE_RULE = "rule"
REF_SOURCE_MANUAL = "manual"


class Match(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    stage_key: str = Field(index=True)
    phase: str  # "pool" | "crossover" | "playoffs"
    pool_id: Optional[int] = Field(default=None, foreign_key="pool.id")
    label: Optional[str] = Field(default=None)

    # Playoff placement
    bracket: Optional[str] = Field(default=None, index=True)  # lowercase bracket name, e.g. "gold"
    bracket_round: Optional[int] = Field(default=None)
    bracket_match_key: Optional[str] = Field(default=None)  # e.g. "gold:R2:1vW45"
    seed_a: Optional[int] = Field(default=None)
    seed_b: Optional[int] = Field(default=None)

    # Time slot + venue
    round_block: Optional[int] = Field(default=None)
    facility: Optional[str] = Field(default=None)
    court: Optional[str] = Field(default=None)

    # Participants: concrete team ids, resolved from source matches when from_* is set
    team_a_id: Optional[int] = Field(default=None, foreign_key="team.id")
    team_b_id: Optional[int] = Field(default=None, foreign_key="team.id")
    team_a_from_match_id: Optional[int] = Field(default=None)
    team_a_from_slot: Optional[str] = Field(default=None)  # "winner" | "loser"
    team_b_from_match_id: Optional[int] = Field(default=None)
    team_b_from_slot: Optional[str] = Field(default=None)

    # Referees
    ref_team_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    ref_source: str = Field(default=REF_SOURCE_ROTATION)  # "rotation" | "template" | "rule" | "manual"
    ref_rules: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    bye_team_id: Optional[int] = Field(default=None)

    scoreboard_id: Optional[int] = Field(default=None, foreign_key="scoreboard.id")

    # Lifecycle; result is set iff status == "final"
    status: str = Field(default=MATCH_STATUS_SCHEDULED)
    result: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    started_at: Optional[datetime] = Field(default=None)
    ended_at: Optional[datetime] = Field(default=None)
    finalized_at: Optional[datetime] = Field(default=None)
    finalized_by: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow)
