from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

TOURNAMENT_STATUS_SETUP = "setup"
TOURNAMENT_STATUS_POOL_PLAY = "pool_play"
TOURNAMENT_STATUS_PLAYOFFS = "playoffs"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "best_of": 3,
    "day_start_time": "09:00",
    "match_duration_minutes": 60,
    "lunch_start_time": None,
    "lunch_duration_minutes": 45,
}


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    code: Optional[str] = Field(default=None, index=True)
    format_id: Optional[str] = Field(default=None)
    status: str = Field(default=TOURNAMENT_STATUS_SETUP)  # "setup" | "pool_play" | "playoffs"

    # [{"name": "SRC", "courts": ["SRC-1", "SRC-2"], "latitude": 36.88, "longitude": -76.30}]
    facilities: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))
    settings: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    # {stage_key | "cumulative": {"pools": {pool_name: [team_id, ...]}, "overall": [team_id, ...]}}
    standings_overrides: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    def resolved_settings(self) -> Dict[str, Any]:
        merged = dict(DEFAULT_SETTINGS)
        merged.update({k: v for k, v in (self.settings or {}).items() if v is not None})
        return merged
