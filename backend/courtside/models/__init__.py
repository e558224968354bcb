from courtside.models.match import Match
from courtside.models.pool import Pool
from courtside.models.scoreboard import Scoreboard
from courtside.models.team import Team
from courtside.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Team",
    "Pool",
    "Match",
    "Scoreboard",
]
