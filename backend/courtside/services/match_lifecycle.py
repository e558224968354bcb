"""
Match lifecycle: scheduled -> live -> ended -> final, final -> ended via unfinalize.

live/ended are informational and set directly. finalize/unfinalize are
the only ways into or out of final; finalizing a playoff match recomputes
its bracket (or every bracket when the brackets share referees).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlmodel import Session

from courtside.models.match import (
    MATCH_STATUS_ENDED,
    MATCH_STATUS_FINAL,
    MATCH_STATUS_LIVE,
    MATCH_STATUS_SCHEDULED,
    MATCH_STATUSES,
    PHASE_PLAYOFFS,
    Match,
)
from courtside.models.scoreboard import Scoreboard
from courtside.models.tournament import Tournament
from courtside.services.bracket_engine import RecomputeOutcome, recompute_bracket_progression
from courtside.services.errors import ConflictError, ValidationError
from courtside.services.format_registry import get_format, shares_playoff_refs
from courtside.services.realtime import EventPublisher, TournamentEventType

logger = logging.getLogger(__name__)


@dataclass
class LifecycleOutcome:
    match: Match
    recompute: Optional[RecomputeOutcome] = None
    events: List[str] = field(default_factory=list)


def _set_pair(raw: Any, set_no: int) -> Dict[str, int]:
    if isinstance(raw, Mapping):
        if "scores" in raw:
            pair = raw.get("scores")
        else:
            pair = [raw.get("a"), raw.get("b")]
    else:
        pair = raw
    if not isinstance(pair, (list, tuple)) or len(pair) != 2:
        raise ValidationError(f"Set {set_no} must have exactly two scores")
    try:
        a, b = int(pair[0]), int(pair[1])
    except (TypeError, ValueError):
        raise ValidationError(f"Set {set_no} has non-numeric scores")
    if a < 0 or b < 0:
        raise ValidationError(f"Set {set_no} has negative scores")
    return {"set_no": set_no, "a": a, "b": b}


def compute_match_snapshot(
    sets: Sequence[Any],
    team_a_id: Optional[int],
    team_b_id: Optional[int],
    best_of: int = 3,
) -> Dict[str, Any]:
    """Result snapshot from completed sets; raises ValidationError unless decisive.

    Decisive means: between ceil(best_of/2) and best_of sets, no tied set,
    no set played after one side clinched, and exactly one side clinched.
    """
    if team_a_id is None or team_b_id is None:
        raise ValidationError("Both participants must be resolved before finalizing")
    if best_of < 1 or best_of % 2 == 0:
        raise ValidationError(f"best_of must be a positive odd number, got {best_of}")

    wins_needed = best_of // 2 + 1
    if not isinstance(sets, (list, tuple)):
        raise ValidationError("Scoreboard does not contain completed set history")
    if len(sets) < wins_needed or len(sets) > best_of:
        raise ValidationError(
            f"Scoreboard must contain {wins_needed} to {best_of} completed sets for a best-of-{best_of} match"
        )

    set_scores: List[Dict[str, int]] = []
    sets_won_a = sets_won_b = 0
    points_a = points_b = 0
    for set_no, raw in enumerate(sets, start=1):
        pair = _set_pair(raw, set_no)
        if sets_won_a >= wins_needed or sets_won_b >= wins_needed:
            raise ValidationError(f"Set {set_no} was played after the match was decided")
        if pair["a"] == pair["b"]:
            raise ValidationError(f"Set {set_no} ended in a tie and cannot be finalized")
        if pair["a"] > pair["b"]:
            sets_won_a += 1
        else:
            sets_won_b += 1
        points_a += pair["a"]
        points_b += pair["b"]
        set_scores.append(pair)

    if (sets_won_a >= wins_needed) == (sets_won_b >= wins_needed):
        raise ValidationError(f"Scoreboard does not represent a completed best-of-{best_of} outcome")

    a_won = sets_won_a > sets_won_b
    return {
        "winner_team_id": team_a_id if a_won else team_b_id,
        "loser_team_id": team_b_id if a_won else team_a_id,
        "sets_won_a": sets_won_a,
        "sets_won_b": sets_won_b,
        "sets_played": len(set_scores),
        "points_for_a": points_a,
        "points_against_a": points_b,
        "points_for_b": points_b,
        "points_against_b": points_a,
        "set_scores": set_scores,
    }


def set_status(session: Session, match: Match, status: str, publisher: Optional[EventPublisher] = None) -> Match:
    if status not in MATCH_STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    if status == MATCH_STATUS_FINAL:
        raise ValidationError("Use finalize to set final status")
    if match.status == MATCH_STATUS_FINAL or match.result is not None:
        raise ValidationError("Use unfinalize to change a finalized match")

    now = datetime.utcnow()
    match.status = status
    if status == MATCH_STATUS_LIVE and match.started_at is None:
        match.started_at = now
    elif status == MATCH_STATUS_ENDED:
        match.ended_at = now
    elif status == MATCH_STATUS_SCHEDULED:
        match.started_at = None
        match.ended_at = None
    session.add(match)
    session.commit()
    session.refresh(match)

    if publisher is not None:
        publisher.publish(
            match.tournament_id,
            TournamentEventType.MATCH_STATUS_UPDATED,
            {"match_id": match.id, "status": match.status},
        )
    return match


def _recompute_after_change(
    session: Session, tournament: Tournament, match: Match, publisher: Optional[EventPublisher]
) -> Optional[RecomputeOutcome]:
    if match.phase != PHASE_PLAYOFFS:
        return None
    scope = None if (not match.bracket or shares_playoff_refs(get_format(tournament.format_id))) else match.bracket
    outcome = recompute_bracket_progression(session, tournament.id, scope)
    if publisher is not None:
        publisher.publish(
            tournament.id,
            TournamentEventType.PLAYOFFS_BRACKET_UPDATED,
            {
                "bracket": scope,
                "brackets": outcome.brackets,
                "affected_match_ids": outcome.updated_match_ids,
                "cleared_match_ids": outcome.cleared_match_ids,
            },
        )
    return outcome


def finalize_match(
    session: Session,
    tournament: Tournament,
    match: Match,
    finalized_by: Optional[str] = None,
    override: bool = False,
    publisher: Optional[EventPublisher] = None,
) -> LifecycleOutcome:
    """Freeze the scoreboard's completed sets into the match result."""
    if match.status == MATCH_STATUS_FINAL:
        raise ConflictError("Match is already final", existing={"match_id": match.id, "result": match.result})
    if match.status != MATCH_STATUS_ENDED and not override:
        raise ConflictError(
            "Match must be ended before it can be finalized",
            existing={"match_id": match.id, "status": match.status},
        )
    if match.scoreboard_id is None:
        raise ValidationError("Match does not have a linked scoreboard")
    scoreboard = session.get(Scoreboard, match.scoreboard_id)
    if scoreboard is None:
        raise ValidationError("Linked scoreboard no longer exists")

    best_of = int(tournament.resolved_settings().get("best_of") or 3)
    snapshot = compute_match_snapshot(scoreboard.sets or [], match.team_a_id, match.team_b_id, best_of=best_of)

    now = datetime.utcnow()
    match.result = snapshot
    match.status = MATCH_STATUS_FINAL
    if match.ended_at is None:
        match.ended_at = now
    match.finalized_at = now
    match.finalized_by = finalized_by
    session.add(match)
    session.commit()
    session.refresh(match)
    logger.info("Finalized match %s (winner %s)", match.id, snapshot["winner_team_id"])

    events = [TournamentEventType.MATCH_STATUS_UPDATED.value, TournamentEventType.MATCH_FINALIZED.value]
    if publisher is not None:
        publisher.publish(tournament.id, TournamentEventType.MATCH_STATUS_UPDATED, {"match_id": match.id, "status": match.status})
        publisher.publish(tournament.id, TournamentEventType.MATCH_FINALIZED, {"match_id": match.id, "result": snapshot})
        publisher.publish(tournament.id, TournamentEventType.STANDINGS_UPDATED, {"stage_key": match.stage_key})

    outcome = _recompute_after_change(session, tournament, match, publisher)
    if outcome is not None:
        events.append(TournamentEventType.PLAYOFFS_BRACKET_UPDATED.value)
    session.refresh(match)
    return LifecycleOutcome(match=match, recompute=outcome, events=events)


def unfinalize_match(
    session: Session,
    tournament: Tournament,
    match: Match,
    publisher: Optional[EventPublisher] = None,
) -> LifecycleOutcome:
    if match.status != MATCH_STATUS_FINAL:
        raise ConflictError("Match is not final", existing={"match_id": match.id, "status": match.status})

    match.result = None
    match.status = MATCH_STATUS_ENDED
    match.finalized_at = None
    match.finalized_by = None
    session.add(match)
    session.commit()
    session.refresh(match)
    logger.info("Unfinalized match %s", match.id)

    events = [TournamentEventType.MATCH_STATUS_UPDATED.value, TournamentEventType.MATCH_UNFINALIZED.value]
    if publisher is not None:
        publisher.publish(tournament.id, TournamentEventType.MATCH_STATUS_UPDATED, {"match_id": match.id, "status": match.status})
        publisher.publish(tournament.id, TournamentEventType.MATCH_UNFINALIZED, {"match_id": match.id})
        publisher.publish(tournament.id, TournamentEventType.STANDINGS_UPDATED, {"stage_key": match.stage_key})

    outcome = _recompute_after_change(session, tournament, match, publisher)
    if outcome is not None:
        events.append(TournamentEventType.PLAYOFFS_BRACKET_UPDATED.value)
    session.refresh(match)
    return LifecycleOutcome(match=match, recompute=outcome, events=events)
