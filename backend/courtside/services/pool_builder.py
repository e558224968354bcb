"""
Pool Builder: pools per stage, serpentine fill, manual edits, follow-up seeding.

Pools can only change while their stage has no matches. Every roster
change checks: no duplicates, capacity, team belongs to the tournament,
and a team sits in at most one pool of the stage.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from sqlmodel import Session, select

from courtside.models.match import Match
from courtside.models.pool import Pool
from courtside.models.team import Team
from courtside.models.tournament import Tournament
from courtside.services.errors import ConflictError, IntegrityViolation, NotFoundError, ValidationError
from courtside.services.format_registry import (
    STAGE_POOL_PLAY,
    FormatDef,
    StageDef,
    get_format,
    resolve_stage,
    stages_before,
)
from courtside.services.standings import pool_placements
from courtside.utils.courts import court_names, facility_for_court

logger = logging.getLogger(__name__)

SWAP_TIERS = (3, 2, 1)
MAX_SWAP_ATTEMPTS = 50


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def seeding_sort_key(team: Team):
    """Seed asc (unseeded last), then registration order, name, id."""
    return (
        team.seed is None,
        team.seed if team.seed is not None else 0,
        team.order_index,
        team.name.lower(),
        team.id or 0,
    )


def serpentine_assignments(
    team_ids: Sequence[int],
    pool_sizes: Sequence[int],
    existing: Optional[Sequence[Sequence[int]]] = None,
) -> List[List[int]]:
    """Snake teams across pools 1..N, N..1, 1..N, ... skipping full pools.

    *existing* seeds the pools with teams already placed (their slots count
    toward capacity).
    """
    pools: List[List[int]] = [list(existing[i]) if existing else [] for i in range(len(pool_sizes))]
    capacity = sum(pool_sizes) - sum(len(p) for p in pools)
    if len(team_ids) > capacity:
        raise ValidationError(f"{len(team_ids)} teams do not fit in {capacity} open pool slots")
    if not pool_sizes:
        return pools

    count = len(pool_sizes)
    index = 0
    direction = 1
    for team_id in team_ids:
        while len(pools[index]) >= pool_sizes[index]:
            index, direction = _snake_step(index, direction, count)
        pools[index].append(team_id)
        index, direction = _snake_step(index, direction, count)
    return pools


def _snake_step(index: int, direction: int, count: int) -> Tuple[int, int]:
    index += direction
    if index >= count:
        return count - 1, -1
    if index < 0:
        return 0, 1
    return index, direction


def pair_key(team_a_id: int, team_b_id: int) -> FrozenSet[int]:
    return frozenset((team_a_id, team_b_id))


def rematch_pairs(team_ids: Sequence[int], played: Set[FrozenSet[int]]) -> List[Tuple[int, int]]:
    conflicts = []
    for i, left in enumerate(team_ids):
        for right in team_ids[i + 1:]:
            if pair_key(left, right) in played:
                conflicts.append((min(left, right), max(left, right)))
    return conflicts


def parse_placement(token: str) -> Tuple[str, int]:
    token = token.strip().upper()
    if len(token) < 2 or not token[0].isalpha() or not token[1:].isdigit():
        raise ValidationError(f"Invalid placement token: {token}")
    return token[0], int(token[1:])


@dataclass
class FollowupPlan:
    teams_by_pool: Dict[str, List[int]]
    warnings_by_pool: Dict[str, List[Tuple[int, int]]]
    total_conflicts: int
    attempts: int = 0


@dataclass
class _Slot:
    tier: int
    team_id: int


def _evaluate(state: Mapping[str, List[_Slot]], played: Set[FrozenSet[int]]):
    warnings = {name: rematch_pairs([s.team_id for s in slots], played) for name, slots in state.items()}
    return warnings, sum(len(w) for w in warnings.values())


def _swap(state: Mapping[str, List[_Slot]], source: str, target: str, tier: int) -> Optional[Dict[str, List[_Slot]]]:
    next_state = {name: [_Slot(s.tier, s.team_id) for s in slots] for name, slots in state.items()}
    src = next((s for s in next_state[source] if s.tier == tier), None)
    dst = next((s for s in next_state[target] if s.tier == tier), None)
    if src is None or dst is None:
        return None
    src.team_id, dst.team_id = dst.team_id, src.team_id
    return next_state


def build_followup_assignments(
    pool_defs: Sequence,
    placements_by_pool: Mapping[str, Sequence[int]],
    played: Set[FrozenSet[int]],
    max_attempts: int = MAX_SWAP_ATTEMPTS,
) -> FollowupPlan:
    """Fill follow-up pools from placement tokens, then swap same-tier teams to cut rematches.

    Tiers are tried 3, 2, 1; a swap is kept only when it lowers the total
    number of already-played pairs. Stops after *max_attempts* swap trials.
    """
    state: Dict[str, List[_Slot]] = {}
    for pool_def in pool_defs:
        slots = []
        for token in pool_def.placements:
            source_pool, rank = parse_placement(token)
            ranked = placements_by_pool.get(source_pool) or []
            if rank < 1 or rank > len(ranked):
                raise ValidationError(f"Missing team for placement {token}")
            slots.append(_Slot(tier=rank, team_id=ranked[rank - 1]))
        state[pool_def.name] = slots

    warnings, total = _evaluate(state, played)
    best_state, best_warnings, best_total = state, warnings, total
    names = [p.name for p in pool_defs]
    attempts = 0

    for tier in SWAP_TIERS:
        improved = True
        while improved and attempts < max_attempts:
            improved = False
            for name in names:
                if not warnings[name]:
                    continue
                for candidate in names:
                    if candidate == name:
                        continue
                    if attempts >= max_attempts:
                        break
                    attempts += 1
                    next_state = _swap(state, name, candidate, tier)
                    if next_state is None:
                        continue
                    next_warnings, next_total = _evaluate(next_state, played)
                    if next_total < total:
                        state, warnings, total = next_state, next_warnings, next_total
                        improved = True
                        if next_total < best_total:
                            best_state, best_warnings, best_total = next_state, next_warnings, next_total
                        break
                if improved:
                    break

    return FollowupPlan(
        teams_by_pool={name: [s.team_id for s in slots] for name, slots in best_state.items()},
        warnings_by_pool=best_warnings,
        total_conflicts=best_total,
        attempts=attempts,
    )


# ---------------------------------------------------------------------------
# Session operations
# ---------------------------------------------------------------------------


def require_stage(tournament: Tournament, stage_key: str, kind: Optional[str] = None) -> Tuple[FormatDef, StageDef]:
    format_def = get_format(tournament.format_id)
    if format_def is None:
        raise ValidationError("Tournament has no format selected")
    stage = resolve_stage(format_def, stage_key)
    if stage is None:
        raise NotFoundError(f"Stage {stage_key} not found in format {format_def.id}")
    if kind is not None and stage.kind != kind:
        raise ValidationError(f"Stage {stage_key} is not a {kind} stage")
    return format_def, stage


def stage_match_count(session: Session, tournament_id: int, stage_key: str) -> int:
    return len(
        session.exec(
            select(Match.id).where(Match.tournament_id == tournament_id, Match.stage_key == stage_key)
        ).all()
    )


def _ensure_no_matches(session: Session, tournament_id: int, stage_key: str) -> None:
    count = stage_match_count(session, tournament_id, stage_key)
    if count:
        raise ConflictError(
            f"Stage {stage_key} already has matches; pools are locked",
            existing={"stage_key": stage_key, "matches": count},
        )


def list_stage_pools(session: Session, tournament_id: int, stage_key: str) -> List[Pool]:
    return session.exec(
        select(Pool).where(Pool.tournament_id == tournament_id, Pool.stage_key == stage_key).order_by(Pool.name)
    ).all()


def _tournament_team_ids(session: Session, tournament_id: int) -> Set[int]:
    return set(session.exec(select(Team.id).where(Team.tournament_id == tournament_id)).all())


def ensure_format_change_allowed(session: Session, tournament: Tournament, format_id: Optional[str]) -> None:
    """A tournament's format is fixed once any pool or match exists."""
    if format_id == tournament.format_id:
        return
    pools = session.exec(select(Pool.id).where(Pool.tournament_id == tournament.id)).all()
    matches = session.exec(select(Match.id).where(Match.tournament_id == tournament.id)).all()
    if pools or matches:
        raise ConflictError(
            "Format cannot change once pools or matches exist",
            existing={"pools": len(pools), "matches": len(matches)},
        )


def ensure_courts_retained(session: Session, tournament: Tournament, new_courts: Iterable[str]) -> None:
    """Reject a venue change that drops a court a pool or match still uses."""
    pools = session.exec(select(Pool).where(Pool.tournament_id == tournament.id)).all()
    matches = session.exec(select(Match).where(Match.tournament_id == tournament.id)).all()
    in_use = {p.home_court for p in pools if p.home_court} | {m.court for m in matches if m.court}
    missing = sorted(in_use - set(new_courts))
    if missing:
        raise ConflictError(
            f"Courts still in use: {', '.join(missing)}",
            existing={"courts": missing, "pools": len(pools), "matches": len(matches)},
        )


def initialize_pools(
    session: Session,
    tournament: Tournament,
    stage_key: str,
    courts: Optional[Sequence[str]] = None,
    force: bool = False,
) -> List[Pool]:
    """Create the stage's empty pools, each on a distinct court."""
    _, stage = require_stage(tournament, stage_key, STAGE_POOL_PLAY)
    _ensure_no_matches(session, tournament.id, stage_key)

    available = list(courts) if courts else court_names(tournament.facilities)
    known_courts = set(court_names(tournament.facilities))
    unknown = [c for c in available if c not in known_courts]
    if unknown:
        raise ValidationError(f"Unknown courts: {unknown}")
    if len(set(available)) != len(available):
        raise ValidationError("Pool courts must be distinct")
    if len(available) < len(stage.pools):
        raise ValidationError(f"Stage {stage_key} needs {len(stage.pools)} courts, {len(available)} available")

    existing = list_stage_pools(session, tournament.id, stage_key)
    filled = {p.name: len(p.team_ids or []) for p in existing if p.team_ids}
    if filled and not force:
        raise ConflictError(f"Pools for {stage_key} already contain teams", existing={"pools": filled})
    for pool in existing:
        session.delete(pool)
    if existing:
        session.commit()

    pools = []
    for pool_def, court in zip(stage.pools, available):
        pool = Pool(
            tournament_id=tournament.id,
            stage_key=stage_key,
            name=pool_def.name,
            required_team_count=pool_def.size,
            team_ids=[],
            home_court=court,
            facility=facility_for_court(tournament.facilities, court),
        )
        session.add(pool)
        pools.append(pool)
    session.commit()
    for pool in pools:
        session.refresh(pool)
    logger.info("Initialized %d pools for tournament %s stage %s", len(pools), tournament.id, stage_key)
    return pools


def _stage_pools_or_fail(session: Session, tournament: Tournament, stage_key: str) -> List[Pool]:
    pools = list_stage_pools(session, tournament.id, stage_key)
    if not pools:
        raise ValidationError(f"Pools for {stage_key} have not been initialized")
    return pools


def autofill_serpentine(session: Session, tournament: Tournament, stage_key: str, force: bool = False) -> List[Pool]:
    _, stage = require_stage(tournament, stage_key, STAGE_POOL_PLAY)
    _ensure_no_matches(session, tournament.id, stage_key)
    pools = _stage_pools_or_fail(session, tournament, stage_key)

    filled = {p.name: len(p.team_ids or []) for p in pools if p.team_ids}
    if filled and not force:
        raise ConflictError(f"Pools for {stage_key} already contain teams", existing={"pools": filled})

    teams = session.exec(select(Team).where(Team.tournament_id == tournament.id)).all()
    ordered = [t.id for t in sorted(teams, key=seeding_sort_key)]
    assignments = serpentine_assignments(ordered, [p.required_team_count for p in pools])
    for pool, team_ids in zip(pools, assignments):
        pool.team_ids = list(team_ids)
        pool.rematch_warnings = None
        session.add(pool)
    session.commit()
    for pool in pools:
        session.refresh(pool)
    logger.info("Serpentine-filled %d teams into %s/%s", len(ordered), tournament.id, stage_key)
    return pools


def _load_pool(session: Session, tournament: Tournament, pool_id: int) -> Pool:
    pool = session.get(Pool, pool_id)
    if pool is None or pool.tournament_id != tournament.id:
        raise NotFoundError("Pool not found")
    return pool


def set_pool_teams(session: Session, tournament: Tournament, pool_id: int, team_ids: Sequence[int]) -> Pool:
    pool = _load_pool(session, tournament, pool_id)
    _ensure_no_matches(session, tournament.id, pool.stage_key)

    team_ids = list(team_ids)
    if len(set(team_ids)) != len(team_ids):
        raise ValidationError("Pool roster contains duplicate teams")
    if len(team_ids) > pool.required_team_count:
        raise ValidationError(f"Pool {pool.name} holds at most {pool.required_team_count} teams")
    known = _tournament_team_ids(session, tournament.id)
    unknown = [tid for tid in team_ids if tid not in known]
    if unknown:
        raise IntegrityViolation(f"Unknown team ids for this tournament: {unknown}")

    for other in list_stage_pools(session, tournament.id, pool.stage_key):
        if other.id == pool.id:
            continue
        clash = set(other.team_ids or []) & set(team_ids)
        if clash:
            raise ValidationError(f"Teams {sorted(clash)} are already in pool {other.name}")

    pool.team_ids = team_ids
    pool.rematch_warnings = None
    session.add(pool)
    session.commit()
    session.refresh(pool)
    return pool


def reassign_team(
    session: Session,
    tournament: Tournament,
    pool_id: int,
    team_id: int,
    target_pool_id: int,
    target_index: Optional[int] = None,
) -> List[Pool]:
    """Move *team_id* from one pool to another (or to a new position in the same pool)."""
    source = _load_pool(session, tournament, pool_id)
    target = _load_pool(session, tournament, target_pool_id)
    if source.stage_key != target.stage_key:
        raise ValidationError("Teams can only move between pools of the same stage")
    _ensure_no_matches(session, tournament.id, source.stage_key)

    source_ids = list(source.team_ids or [])
    if team_id not in source_ids:
        raise ValidationError(f"Team {team_id} is not in pool {source.name}")

    if source.id == target.id:
        source_ids.remove(team_id)
        index = len(source_ids) if target_index is None else max(0, min(target_index, len(source_ids)))
        source_ids.insert(index, team_id)
        source.team_ids = source_ids
        session.add(source)
        session.commit()
        session.refresh(source)
        return [source]

    target_ids = list(target.team_ids or [])
    if len(target_ids) >= target.required_team_count:
        raise ValidationError(f"Pool {target.name} is full")

    source_ids.remove(team_id)
    index = len(target_ids) if target_index is None else max(0, min(target_index, len(target_ids)))
    target_ids.insert(index, team_id)
    source.team_ids = source_ids
    target.team_ids = target_ids
    source.rematch_warnings = None
    target.rematch_warnings = None
    session.add(source)
    session.add(target)
    session.commit()
    session.refresh(source)
    session.refresh(target)
    return [source, target]


def played_pairs(session: Session, tournament_id: int, stage_keys: Iterable[str]) -> Set[FrozenSet[int]]:
    keys = list(stage_keys)
    if not keys:
        return set()
    matches = session.exec(
        select(Match).where(Match.tournament_id == tournament_id, Match.stage_key.in_(keys))
    ).all()
    return {
        pair_key(m.team_a_id, m.team_b_id)
        for m in matches
        if m.team_a_id is not None and m.team_b_id is not None
    }


def seed_followup_pools(session: Session, tournament: Tournament, stage_key: str, force: bool = False) -> FollowupPlan:
    """Fill a follow-up pool stage from earlier pool placements, minimizing rematches."""
    format_def, stage = require_stage(tournament, stage_key, STAGE_POOL_PLAY)
    if not stage.has_placements:
        raise ValidationError(f"Stage {stage_key} is not seeded from earlier placements")
    _ensure_no_matches(session, tournament.id, stage_key)
    pools = _stage_pools_or_fail(session, tournament, stage_key)
    filled = {p.name: len(p.team_ids or []) for p in pools if p.team_ids}
    if filled and not force:
        raise ConflictError(f"Pools for {stage_key} already contain teams", existing={"pools": filled})

    prior = stages_before(format_def, stage_key)
    earlier = [s for s in prior if s.kind == STAGE_POOL_PLAY]
    placements: Dict[str, List[int]] = {}
    for source_stage in earlier:
        placements.update(pool_placements(session, tournament, source_stage.key))
    played = played_pairs(session, tournament.id, [s.key for s in prior])

    plan = build_followup_assignments(stage.pools, placements, played)
    for pool in pools:
        pool.team_ids = list(plan.teams_by_pool.get(pool.name, []))
        warnings = plan.warnings_by_pool.get(pool.name) or []
        pool.rematch_warnings = [{"team_a_id": a, "team_b_id": b} for a, b in warnings] or None
        session.add(pool)
    session.commit()
    for pool in pools:
        session.refresh(pool)
    logger.info(
        "Seeded follow-up pools %s/%s: %d rematches after %d swap attempts",
        tournament.id,
        stage_key,
        plan.total_conflicts,
        plan.attempts,
    )
    return plan
