"""
Referee assignment rules.

A rule-driven match carries an ordered list of rules, each naming a source
match and a slot ("winner"/"loser"). Every rule whose source has a result
yields a candidate; candidates already playing are skipped. When several
remain, the team closest to the match location refs.
"""
from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from courtside.models.match import SLOT_LOSER, SLOT_WINNER
from courtside.services.bracket_templates import RefRule
from courtside.services.errors import ValidationError

EARTH_RADIUS_KM = 6371.0088

Location = Tuple[float, float]


def haversine_km(origin: Location, target: Location) -> float:
    lat1, lng1 = map(math.radians, origin)
    lat2, lng2 = map(math.radians, target)
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def reference_point(
    facility_location: Optional[Location], participant_locations: Iterable[Optional[Location]]
) -> Optional[Location]:
    """Match facility when known, else the participants' mean location."""
    if facility_location is not None:
        return facility_location
    located = [loc for loc in participant_locations if loc is not None]
    if not located:
        return None
    return (
        sum(loc[0] for loc in located) / len(located),
        sum(loc[1] for loc in located) / len(located),
    )


def slot_team(result: Optional[Mapping[str, Any]], slot: str) -> Optional[int]:
    if not result:
        return None
    if slot == SLOT_WINNER:
        return result.get("winner_team_id")
    if slot == SLOT_LOSER:
        return result.get("loser_team_id")
    return None


def rule_candidates(
    rules: Sequence[RefRule],
    results_by_key: Mapping[str, Optional[Mapping[str, Any]]],
    excluded: Set[int],
) -> List[int]:
    """Teams produced by the rules, in rule order, without duplicates or excluded teams."""
    candidates: List[int] = []
    for rule in rules:
        team_id = slot_team(results_by_key.get(rule.source_match_key), rule.slot)
        if team_id is None or team_id in excluded or team_id in candidates:
            continue
        candidates.append(team_id)
    return candidates


def choose_referee(
    candidates: Sequence[int],
    origin: Optional[Location],
    team_locations: Mapping[int, Location],
) -> Optional[int]:
    """Closest candidate to *origin*; teams without a location rank last, rule order breaks ties."""
    if not candidates:
        return None
    if origin is None or len(candidates) == 1:
        return candidates[0]

    def sort_key(indexed: Tuple[int, int]):
        index, team_id = indexed
        location = team_locations.get(team_id)
        if location is None:
            return (1, 0.0, index)
        return (0, haversine_km(origin, location), index)

    return min(enumerate(candidates), key=sort_key)[1]


def rules_to_json(rules: Sequence[RefRule]) -> List[Dict[str, str]]:
    return [{"source_match_key": r.source_match_key, "slot": r.slot} for r in rules]


def rules_from_json(raw: Optional[Sequence[Mapping[str, Any]]]) -> Tuple[RefRule, ...]:
    rules = []
    for entry in raw or []:
        slot = entry.get("slot")
        key = entry.get("source_match_key")
        if slot not in (SLOT_WINNER, SLOT_LOSER) or not key:
            raise ValidationError(f"Invalid referee rule: {dict(entry)}")
        rules.append(RefRule(source_match_key=str(key), slot=slot))
    return tuple(rules)


def crossover_ref_ranks(pairing_count: int, index: int) -> Optional[Tuple[int, int]]:
    """(source pool side 0/1, rank) refereeing crossover pairing *index*."""
    if pairing_count >= 3:
        return {0: (0, 3), 1: (1, 3), 2: (1, 2)}.get(index)
    return {0: (0, 2), 1: (1, 2)}.get(index)
