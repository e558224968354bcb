"""
Match Scheduler: round-robin generation and (round block, court) assignment.

Everything here is pure: inputs are team ids, court names and format data,
outputs are plain dataclasses. Persistence lives in generation.py.

Scheduling rules:
- no court hosts more than one match per round block
- ceil(total / courts) blocks are used, starting at start_round_block
- matches are interleaved across pools (match 1 of every pool, then match 2, ...)
- within a block each pool takes its home court first, then rotates from it
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from courtside.services.errors import ValidationError
from courtside.services.format_registry import (
    BRACKET_FIVE_TEAM_OPS,
    STAGE_CROSSOVER,
    STAGE_PLAYOFFS,
    STAGE_POOL_PLAY,
    FormatDef,
    StageDef,
    crossover_pairing_count,
    stages_before,
)
from courtside.utils.courts import flatten_courts


# (team_a_index, team_b_index, ref_index, bye_index)
THREE_TEAM_ORDER: Tuple[Tuple[int, int, int, Optional[int]], ...] = (
    (0, 1, 2, None),
    (1, 2, 0, None),
    (0, 2, 1, None),
)

FOUR_TEAM_ORDER: Tuple[Tuple[int, int, int, Optional[int]], ...] = (
    (0, 2, 1, 3),
    (1, 3, 0, 2),
    (0, 3, 2, 1),
    (1, 2, 0, 3),
    (2, 3, 1, 0),
    (0, 1, 3, 2),
)


@dataclass
class RoundRobinMatch:
    order: int  # 1-based position in the pool's play order
    team_a_id: int
    team_b_id: int
    ref_team_id: Optional[int] = None
    bye_team_id: Optional[int] = None


@dataclass
class PoolMatchSet:
    key: str
    home_court: Optional[str]
    matches: Sequence[Any]


@dataclass
class ScheduledSlot:
    key: str
    item: Any
    round_block: int
    court: str


@dataclass
class PlayoffSlotPlan:
    key: str
    bracket_round: int
    item: Any = None
    # (round block offset from stage start, court index) for pinned templates
    pinned: Optional[Tuple[int, int]] = None


def round_robin_match_count(team_count: int) -> int:
    return team_count * (team_count - 1) // 2


def _from_template(team_ids: Sequence[int], template) -> List[RoundRobinMatch]:
    matches = []
    for order, (a, b, ref, bye) in enumerate(template, start=1):
        matches.append(
            RoundRobinMatch(
                order=order,
                team_a_id=team_ids[a],
                team_b_id=team_ids[b],
                ref_team_id=team_ids[ref],
                bye_team_id=team_ids[bye] if bye is not None else None,
            )
        )
    return matches


def _circle_pairings(team_ids: Sequence[int]) -> List[Tuple[int, int]]:
    roster: List[Optional[int]] = list(team_ids)
    if len(roster) % 2 == 1:
        roster.append(None)
    size = len(roster)
    pairs: List[Tuple[int, int]] = []
    for _ in range(size - 1):
        for i in range(size // 2):
            a = roster[i]
            b = roster[size - 1 - i]
            if a is not None and b is not None:
                pairs.append((a, b))
        roster = [roster[0], roster[-1]] + roster[1:-1]
    return pairs


def generate_round_robin(team_ids: Sequence[int], required_size: int) -> List[RoundRobinMatch]:
    """All n*(n-1)/2 pairings for a pool, with a rotating referee.

    Three- and four-team pools use fixed orders in which every team refs
    (three-team: exactly once each). Larger pools use the circle method and
    give each match to the off team with the fewest refs so far.
    """
    if len(team_ids) != required_size:
        raise ValidationError(f"Pool requires {required_size} teams, has {len(team_ids)}")
    if len(set(team_ids)) != len(team_ids):
        raise ValidationError("Pool contains duplicate teams")
    if required_size < 2:
        raise ValidationError("Round robin requires at least 2 teams")

    if required_size == 3:
        return _from_template(team_ids, THREE_TEAM_ORDER)
    if required_size == 4:
        return _from_template(team_ids, FOUR_TEAM_ORDER)

    position = {team_id: index for index, team_id in enumerate(team_ids)}
    ref_counts: Dict[int, int] = {team_id: 0 for team_id in team_ids}
    matches: List[RoundRobinMatch] = []
    for order, (a, b) in enumerate(_circle_pairings(team_ids), start=1):
        candidates = [t for t in team_ids if t not in (a, b)]
        ref = None
        if candidates:
            ref = min(candidates, key=lambda t: (ref_counts[t], position[t]))
            ref_counts[ref] += 1
        matches.append(RoundRobinMatch(order=order, team_a_id=a, team_b_id=b, ref_team_id=ref))
    return matches


def _interleave(pool_match_sets: Sequence[PoolMatchSet]) -> List[Tuple[PoolMatchSet, Any]]:
    queue: List[Tuple[PoolMatchSet, Any]] = []
    longest = max((len(s.matches) for s in pool_match_sets), default=0)
    for index in range(longest):
        for match_set in pool_match_sets:
            if index < len(match_set.matches):
                queue.append((match_set, match_set.matches[index]))
    return queue


def schedule_matches(
    pool_match_sets: Sequence[PoolMatchSet],
    courts: Sequence[str],
    start_round_block: int,
) -> List[ScheduledSlot]:
    if not courts:
        raise ValidationError("At least one court is required to schedule matches")
    if len(set(courts)) != len(courts):
        raise ValidationError("Court names must be unique")
    if start_round_block < 1:
        raise ValidationError("start_round_block must be >= 1")

    court_list = list(courts)
    court_count = len(court_list)
    queue = _interleave(pool_match_sets)
    slots: List[ScheduledSlot] = []

    for block_index in range(math.ceil(len(queue) / court_count)):
        round_block = start_round_block + block_index
        chunk = queue[block_index * court_count:(block_index + 1) * court_count]
        free = set(court_list)
        assigned: Dict[int, str] = {}

        for position, (match_set, _) in enumerate(chunk):
            if match_set.home_court in free:
                assigned[position] = match_set.home_court
                free.discard(match_set.home_court)

        for position, (match_set, _) in enumerate(chunk):
            if position in assigned:
                continue
            home_index = court_list.index(match_set.home_court) if match_set.home_court in court_list else 0
            for offset in range(court_count):
                candidate = court_list[(home_index + offset) % court_count]
                if candidate in free:
                    assigned[position] = candidate
                    free.discard(candidate)
                    break

        for position, (match_set, item) in enumerate(chunk):
            slots.append(
                ScheduledSlot(key=match_set.key, item=item, round_block=round_block, court=assigned[position])
            )
    return slots


def select_crossover_courts(
    source_courts: Sequence[Optional[str]],
    facilities: Optional[Sequence[Dict[str, Any]]],
) -> List[str]:
    """Courts for a crossover between pools.

    Keeps the source pools' courts when they sit in one facility; otherwise
    moves to whichever of their facilities has more courts. Falls back to
    every court when the pools have no home courts.
    """
    refs = flatten_courts(facilities)
    by_name = {ref.name: ref for ref in refs}
    wanted = []
    for court in source_courts:
        if court and court in by_name and court not in wanted:
            wanted.append(court)
    if not wanted:
        return [ref.name for ref in refs]

    source_facilities = []
    for court in wanted:
        facility = by_name[court].facility
        if facility not in source_facilities:
            source_facilities.append(facility)
    if len(source_facilities) == 1:
        return wanted

    courts_by_facility: Dict[Optional[str], List[str]] = {}
    for ref in refs:
        courts_by_facility.setdefault(ref.facility, []).append(ref.name)
    chosen = max(source_facilities, key=lambda f: (len(courts_by_facility.get(f, [])), -source_facilities.index(f)))

    selected = [court for court in wanted if by_name[court].facility == chosen]
    for court in courts_by_facility.get(chosen, []):
        if len(selected) >= len(wanted):
            break
        if court not in selected:
            selected.append(court)
    return selected


def _playoff_round_sizes(stage: StageDef) -> Dict[int, int]:
    sizes: Dict[int, int] = {}
    for bracket in stage.brackets:
        if bracket.template == BRACKET_FIVE_TEAM_OPS:
            per_round = {1: 2, 2: 1, 3: 1}
        else:
            per_round = {}
            slots = 1
            while slots < bracket.size:
                slots *= 2
            round_no = 1
            matches = slots // 2
            while matches >= 1:
                per_round[round_no] = matches
                matches //= 2
                round_no += 1
        for round_no, count in per_round.items():
            sizes[round_no] = sizes.get(round_no, 0) + count
    return sizes


def estimate_stage_blocks(format_def: FormatDef, stage: StageDef, court_count: int) -> int:
    """Round blocks a stage needs when it has not been generated yet."""
    court_count = max(1, court_count)
    if stage.kind == STAGE_POOL_PLAY:
        total = sum(round_robin_match_count(pool.size) for pool in stage.pools)
        return math.ceil(total / court_count)
    if stage.kind == STAGE_CROSSOVER:
        return math.ceil(crossover_pairing_count(format_def, stage) / min(court_count, 2))
    if stage.kind == STAGE_PLAYOFFS:
        return sum(math.ceil(count / court_count) for count in _playoff_round_sizes(stage).values())
    return 0


def resolve_stage_start_round_block(
    format_def: FormatDef,
    stage_key: str,
    blocks_by_stage: Mapping[str, Sequence[int]],
    court_count: int,
) -> int:
    """First round block for *stage_key*: strictly after every earlier stage.

    Earlier stages that already have matches contribute their maximum
    round block; ungenerated ones contribute their estimated length.
    """
    cursor = 0
    for stage in stages_before(format_def, stage_key):
        used = [b for b in blocks_by_stage.get(stage.key, []) if b]
        if used:
            cursor = max(cursor, max(used))
        else:
            cursor += estimate_stage_blocks(format_def, stage, court_count)
    return cursor + 1


def schedule_playoff_matches(
    plans: Sequence[PlayoffSlotPlan],
    courts: Sequence[str],
    start_round_block: int,
) -> List[ScheduledSlot]:
    """Rounds in order, each round chunked across the courts.

    Pinned template positions are used when every plan carries one and the
    venue has enough courts for them.
    """
    if not courts:
        raise ValidationError("At least one court is required to schedule playoffs")
    court_list = list(courts)

    if plans and all(p.pinned is not None for p in plans):
        if max(p.pinned[1] for p in plans) < len(court_list):
            taken = set()
            pinned_slots = []
            for plan in plans:
                offset, court_index = plan.pinned
                slot_key = (offset, court_index)
                if slot_key in taken:
                    raise ValidationError(f"Pinned playoff slot used twice: {plan.key}")
                taken.add(slot_key)
                pinned_slots.append(
                    ScheduledSlot(
                        key=plan.key,
                        item=plan.item,
                        round_block=start_round_block + offset,
                        court=court_list[court_index],
                    )
                )
            return pinned_slots

    by_round: Dict[int, List[PlayoffSlotPlan]] = {}
    for plan in plans:
        by_round.setdefault(plan.bracket_round, []).append(plan)

    slots: List[ScheduledSlot] = []
    round_block = start_round_block
    for round_no in sorted(by_round):
        round_plans = by_round[round_no]
        for chunk_start in range(0, len(round_plans), len(court_list)):
            chunk = round_plans[chunk_start:chunk_start + len(court_list)]
            for court, plan in zip(court_list, chunk):
                slots.append(ScheduledSlot(key=plan.key, item=plan.item, round_block=round_block, court=court))
            round_block += 1
    return slots


def parse_clock(value: str) -> int:
    try:
        hours, minutes = value.strip().split(":")
        parsed = int(hours) * 60 + int(minutes)
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid clock time: {value!r}")
    if not 0 <= parsed < 24 * 60:
        raise ValidationError(f"Invalid clock time: {value!r}")
    return parsed


def round_block_start_minutes(round_block: int, settings: Mapping[str, Any]) -> Optional[int]:
    """Wall-clock start of a round block in minutes after midnight.

    The first block that would overlap the lunch window is pushed to the end
    of lunch; every later block follows from there. A lunch window that ends
    before the day starts never moves anything.
    """
    if round_block is None or round_block < 1:
        return None
    cursor = parse_clock(settings.get("day_start_time") or "09:00")
    duration = int(settings.get("match_duration_minutes") or 60)
    lunch_raw = settings.get("lunch_start_time")
    lunch_start = parse_clock(lunch_raw) if lunch_raw else None
    lunch_duration = int(settings.get("lunch_duration_minutes") or 0)
    lunch_end = lunch_start + lunch_duration if lunch_start is not None else None

    def overlaps_lunch(start: int) -> bool:
        return lunch_start is not None and start < lunch_end and start + duration > lunch_start

    lunch_applied = False
    for _ in range(round_block - 1):
        if not lunch_applied and overlaps_lunch(cursor):
            cursor = lunch_end
            lunch_applied = True
        cursor += duration

    if not lunch_applied and overlaps_lunch(cursor):
        return lunch_end
    return cursor


def format_clock(minutes: Optional[int]) -> Optional[str]:
    if minutes is None:
        return None
    return f"{(minutes // 60) % 24:02d}:{minutes % 60:02d}"
