"""
Standings: derived rankings from finalized matches.

Nothing here is persisted except manual overrides. Ranking order:
    1. matches won (desc)
    2. set percentage (desc)
    3. point differential (desc)
    4. team id (asc)
A valid override (exact permutation of the ranked team set) replaces the
computed order verbatim. Stored overrides that no longer match the team set
are ignored and logged.
"""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlmodel import Session, select

from courtside.models.match import MATCH_STATUS_FINAL, PHASE_PLAYOFFS, Match
from courtside.models.pool import Pool
from courtside.models.team import Team
from courtside.models.tournament import Tournament
from courtside.services.errors import IntegrityViolation, NotFoundError, ValidationError
from courtside.services.format_registry import (
    STAGE_CROSSOVER,
    get_format,
    resolve_stage,
)

logger = logging.getLogger(__name__)

SCOPE_POOL = "pool"
SCOPE_STAGE = "stage"
SCOPE_CUMULATIVE = "cumulative"
CUMULATIVE_KEY = "cumulative"


@dataclass
class StandingsEntry:
    team_id: int
    rank: int = 0
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    sets_won: int = 0
    sets_lost: int = 0
    sets_played: int = 0
    set_pct: float = 0.0
    points_for: int = 0
    points_against: int = 0
    point_diff: int = 0


@dataclass
class PoolStandings:
    pool_id: int
    pool_name: str
    teams: List[StandingsEntry]
    complete: bool
    override_applied: bool = False


@dataclass
class StandingsBundle:
    scope: str
    stage_key: Optional[str]
    pools: List[PoolStandings] = field(default_factory=list)
    overall: List[StandingsEntry] = field(default_factory=list)
    overall_override_applied: bool = False


# ---------------------------------------------------------------------------
# Pure ranking
# ---------------------------------------------------------------------------


def is_permutation(candidate: Sequence[int], expected: Iterable[int]) -> bool:
    expected_list = list(expected)
    if len(candidate) != len(expected_list):
        return False
    if len(set(candidate)) != len(candidate):
        return False
    return set(candidate) == set(expected_list)


def validate_permutation(candidate: Sequence[int], expected: Iterable[int], label: str = "Override") -> None:
    if not is_permutation(candidate, expected):
        raise ValidationError(f"{label} must list every ranked team exactly once")


def aggregate(
    team_ids: Iterable[int],
    results: Iterable[Tuple[int, int, Mapping[str, Any]]],
) -> Dict[int, StandingsEntry]:
    """Per-team totals from (team_a_id, team_b_id, result) triples.

    Matches involving teams outside *team_ids* still count for the teams
    inside it.
    """
    entries: Dict[int, StandingsEntry] = {tid: StandingsEntry(team_id=tid) for tid in team_ids}

    for team_a_id, team_b_id, result in results:
        for team_id, side, other in ((team_a_id, "a", "b"), (team_b_id, "b", "a")):
            entry = entries.get(team_id)
            if entry is None:
                continue
            entry.matches_played += 1
            if result.get("winner_team_id") == team_id:
                entry.matches_won += 1
            else:
                entry.matches_lost += 1
            entry.sets_won += int(result.get(f"sets_won_{side}", 0))
            entry.sets_lost += int(result.get(f"sets_won_{other}", 0))
            entry.points_for += int(result.get(f"points_for_{side}", 0))
            entry.points_against += int(result.get(f"points_against_{side}", 0))

    for entry in entries.values():
        entry.sets_played = entry.sets_won + entry.sets_lost
        entry.set_pct = entry.sets_won / entry.sets_played if entry.sets_played else 0.0
        entry.point_diff = entry.points_for - entry.points_against
    return entries


def rank_entries(
    entries: Mapping[int, StandingsEntry],
    override: Optional[Sequence[int]] = None,
) -> List[StandingsEntry]:
    if override is not None:
        validate_permutation(override, entries.keys())
        ordered = [entries[tid] for tid in override]
    else:
        ordered = sorted(
            entries.values(),
            key=lambda e: (-e.matches_won, -e.set_pct, -e.point_diff, e.team_id),
        )
    for rank, entry in enumerate(ordered, start=1):
        entry.rank = rank
    return ordered


# ---------------------------------------------------------------------------
# Session-backed standings
# ---------------------------------------------------------------------------


def _final_results(matches: Iterable[Match]) -> List[Tuple[int, int, Mapping[str, Any]]]:
    return [
        (m.team_a_id, m.team_b_id, m.result)
        for m in matches
        if m.status == MATCH_STATUS_FINAL and m.result and m.team_a_id and m.team_b_id
    ]


def _stored_override(tournament: Tournament, stage_key: str, pool_name: Optional[str] = None) -> Optional[List[int]]:
    block = (tournament.standings_overrides or {}).get(stage_key) or {}
    if pool_name is None:
        return block.get("overall")
    return (block.get("pools") or {}).get(pool_name)


def _apply_stored_override(
    entries: Dict[int, StandingsEntry], stored: Optional[List[int]], where: str
) -> Tuple[List[StandingsEntry], bool]:
    if stored and is_permutation(stored, entries.keys()):
        return rank_entries(entries, stored), True
    if stored:
        logger.warning("Ignoring stale standings override for %s", where)
    return rank_entries(entries), False


def _stage_pools(session: Session, tournament_id: int, stage_key: str) -> List[Pool]:
    return session.exec(
        select(Pool).where(Pool.tournament_id == tournament_id, Pool.stage_key == stage_key).order_by(Pool.name)
    ).all()


def pool_standings(session: Session, tournament: Tournament, pool: Pool) -> PoolStandings:
    matches = session.exec(select(Match).where(Match.pool_id == pool.id)).all()
    entries = aggregate(pool.team_ids or [], _final_results(matches))
    complete = bool(matches) and all(m.status == MATCH_STATUS_FINAL for m in matches)
    ranked, applied = _apply_stored_override(
        entries, _stored_override(tournament, pool.stage_key, pool.name), f"pool {pool.stage_key}/{pool.name}"
    )
    return PoolStandings(pool_id=pool.id, pool_name=pool.name, teams=ranked, complete=complete, override_applied=applied)


def stage_team_ids(session: Session, tournament: Tournament, stage_key: str) -> List[int]:
    format_def = get_format(tournament.format_id)
    stage = resolve_stage(format_def, stage_key) if format_def else None
    if stage is not None and stage.kind == STAGE_CROSSOVER:
        team_ids: List[int] = []
        for match in session.exec(
            select(Match).where(Match.tournament_id == tournament.id, Match.stage_key == stage_key)
        ).all():
            for tid in (match.team_a_id, match.team_b_id):
                if tid is not None and tid not in team_ids:
                    team_ids.append(tid)
        return team_ids
    team_ids = []
    for pool in _stage_pools(session, tournament.id, stage_key):
        team_ids.extend(pool.team_ids or [])
    return team_ids


def compute_standings(
    session: Session,
    tournament: Tournament,
    scope: str = SCOPE_CUMULATIVE,
    stage_key: Optional[str] = None,
    pool_id: Optional[int] = None,
) -> StandingsBundle:
    if scope == SCOPE_POOL:
        pool = session.get(Pool, pool_id) if pool_id is not None else None
        if pool is None or pool.tournament_id != tournament.id:
            raise NotFoundError("Pool not found")
        standing = pool_standings(session, tournament, pool)
        return StandingsBundle(
            scope=scope,
            stage_key=pool.stage_key,
            pools=[standing],
            overall=standing.teams,
            overall_override_applied=standing.override_applied,
        )

    if scope == SCOPE_STAGE:
        if not stage_key:
            raise ValidationError("stage_key is required for stage standings")
        pools = [pool_standings(session, tournament, p) for p in _stage_pools(session, tournament.id, stage_key)]
        matches = session.exec(
            select(Match).where(Match.tournament_id == tournament.id, Match.stage_key == stage_key)
        ).all()
        entries = aggregate(stage_team_ids(session, tournament, stage_key), _final_results(matches))
        overall, applied = _apply_stored_override(entries, _stored_override(tournament, stage_key), f"stage {stage_key}")
        return StandingsBundle(scope=scope, stage_key=stage_key, pools=pools, overall=overall, overall_override_applied=applied)

    if scope == SCOPE_CUMULATIVE:
        teams = session.exec(select(Team).where(Team.tournament_id == tournament.id)).all()
        matches = session.exec(
            select(Match).where(Match.tournament_id == tournament.id, Match.phase != PHASE_PLAYOFFS)
        ).all()
        entries = aggregate([t.id for t in teams], _final_results(matches))
        overall, applied = _apply_stored_override(entries, _stored_override(tournament, CUMULATIVE_KEY), "cumulative")
        return StandingsBundle(scope=scope, stage_key=None, overall=overall, overall_override_applied=applied)

    raise ValidationError(f"Unknown standings scope: {scope}")


def set_standings_override(
    session: Session,
    tournament: Tournament,
    stage_key: str,
    order: Sequence[int],
    pool_name: Optional[str] = None,
) -> None:
    """Validate and store a manual ranking for a pool, a stage, or cumulative standings."""
    known = {t.id for t in session.exec(select(Team).where(Team.tournament_id == tournament.id)).all()}
    unknown = [tid for tid in order if tid not in known]
    if unknown:
        raise IntegrityViolation(f"Unknown team ids for this tournament: {unknown}")

    if pool_name is not None:
        pool = session.exec(
            select(Pool).where(
                Pool.tournament_id == tournament.id, Pool.stage_key == stage_key, Pool.name == pool_name
            )
        ).first()
        if pool is None:
            raise NotFoundError(f"Pool {pool_name} not found in {stage_key}")
        validate_permutation(order, pool.team_ids or [], label=f"Pool {pool_name} override")
    elif stage_key == CUMULATIVE_KEY:
        validate_permutation(order, known, label="Overall override")
    else:
        validate_permutation(order, stage_team_ids(session, tournament, stage_key), label=f"{stage_key} override")

    overrides = copy.deepcopy(tournament.standings_overrides or {})
    block = overrides.setdefault(stage_key, {"pools": {}, "overall": None})
    if pool_name is not None:
        block.setdefault("pools", {})[pool_name] = list(order)
    else:
        block["overall"] = list(order)
    tournament.standings_overrides = overrides
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    logger.info("Stored standings override for tournament %s stage %s pool %s", tournament.id, stage_key, pool_name)


def clear_standings_override(
    session: Session, tournament: Tournament, stage_key: str, pool_name: Optional[str] = None
) -> bool:
    overrides = copy.deepcopy(tournament.standings_overrides or {})
    block = overrides.get(stage_key)
    if not block:
        return False
    if pool_name is not None:
        removed = (block.get("pools") or {}).pop(pool_name, None) is not None
    else:
        removed = block.get("overall") is not None
        block["overall"] = None
    tournament.standings_overrides = overrides
    session.add(tournament)
    session.commit()
    return removed


def pool_placements(session: Session, tournament: Tournament, stage_key: str) -> Dict[str, List[int]]:
    """Ranked team ids per pool; a pool needs every match final or a valid override."""
    placements: Dict[str, List[int]] = {}
    for pool in _stage_pools(session, tournament.id, stage_key):
        standing = pool_standings(session, tournament, pool)
        if not standing.complete and not standing.override_applied:
            raise ValidationError(f"Pool {pool.name} is not finished; finalize its matches or set an override")
        placements[pool.name] = [entry.team_id for entry in standing.teams]
    return placements
