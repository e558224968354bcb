"""
Scoring device records linked to matches.

The engine creates one scoreboard per match, renames its sides when bracket
participants change (zeroing score and set history), and deletes it with
its match.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlmodel import Session, select

from courtside.models.match import Match
from courtside.models.scoreboard import Scoreboard

logger = logging.getLogger(__name__)

TBD = "TBD"


def team_label(names: Dict[int, str], team_id: Optional[int]) -> str:
    if team_id is None:
        return TBD
    return names.get(team_id, TBD)


def create_scoreboard(
    session: Session,
    tournament_id: int,
    title: Optional[str],
    team_a_name: str = TBD,
    team_b_name: str = TBD,
) -> Scoreboard:
    scoreboard = Scoreboard(
        tournament_id=tournament_id,
        title=title,
        team_a_name=team_a_name,
        team_b_name=team_b_name,
    )
    session.add(scoreboard)
    session.commit()
    session.refresh(scoreboard)
    return scoreboard


def sync_scoreboard(session: Session, match: Match, names: Dict[int, str], reset: bool = False) -> Optional[Scoreboard]:
    """Rename scoreboard sides from the match participants; optionally zero it.

    Caller commits.
    """
    if match.scoreboard_id is None:
        return None
    scoreboard = session.get(Scoreboard, match.scoreboard_id)
    if scoreboard is None:
        logger.warning("Match %s links missing scoreboard %s", match.id, match.scoreboard_id)
        return None
    scoreboard.team_a_name = team_label(names, match.team_a_id)
    scoreboard.team_b_name = team_label(names, match.team_b_id)
    if reset:
        scoreboard.team_a_score = 0
        scoreboard.team_b_score = 0
        scoreboard.sets = []
    scoreboard.updated_at = datetime.utcnow()
    session.add(scoreboard)
    return scoreboard


def delete_scoreboards(session: Session, scoreboard_ids: Iterable[int]) -> int:
    """Delete scoreboards by id. Caller commits."""
    ids: List[int] = [sid for sid in scoreboard_ids if sid is not None]
    if not ids:
        return 0
    boards = session.exec(select(Scoreboard).where(Scoreboard.id.in_(ids))).all()
    for board in boards:
        session.delete(board)
    return len(boards)


def orphaned_scoreboard_ids(session: Session, tournament_id: int) -> List[int]:
    """Scoreboards of a tournament that no match links to."""
    linked = {
        sid
        for sid in session.exec(
            select(Match.scoreboard_id).where(Match.tournament_id == tournament_id)
        ).all()
        if sid is not None
    }
    boards = session.exec(select(Scoreboard.id).where(Scoreboard.tournament_id == tournament_id)).all()
    return [sid for sid in boards if sid not in linked]
