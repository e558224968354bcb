# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from courtside.models.match import Match  # noqa: F401
from courtside.models.pool import Pool  # noqa: F401
from courtside.models.scoreboard import Scoreboard  # noqa: F401
from courtside.models.team import Team  # noqa: F401
from courtside.models.tournament import Tournament  # noqa: F401
