"""
Bracket Dependency Engine.

Playoff matches form a DAG: a participant slot may name another match's
winner or loser, and rule-driven referees name source matches too.

`recompute()` is pure: it takes immutable node snapshots and returns a
diff. `recompute_bracket_progression()` loads matches, runs it, persists
the diff and keeps the linked scoreboards in sync.

Guarantees:
    - Idempotent (a second run with no new results changes nothing)
    - Depends only on the set of finalized results, not on call order
    - Unresolved slots stay None (rendered as TBD); that is not an error
"""
from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from sqlmodel import Session, select

from courtside.models.match import (
    MATCH_STATUS_ENDED,
    MATCH_STATUS_FINAL,
    PHASE_PLAYOFFS,
    REF_SOURCE_RULE,
    Match,
)
from courtside.models.team import Team
from courtside.models.tournament import Tournament
from courtside.services.bracket_templates import RefRule
from courtside.services.errors import ValidationError
from courtside.services.referee_rules import (
    Location,
    choose_referee,
    reference_point,
    rule_candidates,
    rules_from_json,
    slot_team,
)
from courtside.services.scoreboards import sync_scoreboard
from courtside.utils.courts import facility_location

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BracketNode:
    match_id: int
    match_key: Optional[str]
    bracket: Optional[str]
    bracket_round: int
    round_block: Optional[int]
    court: Optional[str]
    status: str
    team_a_id: Optional[int] = None
    team_b_id: Optional[int] = None
    # (source match id, "winner" | "loser")
    team_a_from: Optional[Tuple[int, str]] = None
    team_b_from: Optional[Tuple[int, str]] = None
    result: Optional[Mapping[str, Any]] = None
    ref_team_ids: Tuple[int, ...] = ()
    ref_source: Optional[str] = None
    ref_rules: Tuple[RefRule, ...] = ()
    location: Optional[Location] = None


@dataclass
class NodeChange:
    match_id: int
    team_a_id: Optional[int]
    team_b_id: Optional[int]
    status: str
    result: Optional[Mapping[str, Any]]
    ref_team_ids: List[int]
    participants_changed: bool = False
    result_cleared: bool = False
    refs_changed: bool = False


@dataclass
class BracketDiff:
    changes: Dict[int, NodeChange] = field(default_factory=dict)

    @property
    def updated_match_ids(self) -> List[int]:
        return sorted(self.changes)

    @property
    def cleared_match_ids(self) -> List[int]:
        return sorted(mid for mid, change in self.changes.items() if change.result_cleared)

    @property
    def is_empty(self) -> bool:
        return not self.changes


def _order_key(node: BracketNode) -> Tuple[int, int, str, int]:
    return (node.bracket_round or 0, node.round_block or 0, node.court or "", node.match_id)


def topological_order(nodes: Sequence[BracketNode]) -> List[BracketNode]:
    """Dependency order, ties broken by round, round block, court name, id."""
    by_id = {n.match_id: n for n in nodes}
    id_by_key = {n.match_key: n.match_id for n in nodes if n.match_key}
    dependents: Dict[int, Set[int]] = {n.match_id: set() for n in nodes}
    indegree: Dict[int, int] = {n.match_id: 0 for n in nodes}

    for node in nodes:
        sources = set()
        for ref in (node.team_a_from, node.team_b_from):
            if ref is not None and ref[0] in by_id:
                sources.add(ref[0])
        for rule in node.ref_rules:
            source_id = id_by_key.get(rule.source_match_key)
            if source_id is not None:
                sources.add(source_id)
        sources.discard(node.match_id)
        for source_id in sources:
            dependents[source_id].add(node.match_id)
            indegree[node.match_id] += 1

    heap = [(_order_key(n), n.match_id) for n in nodes if indegree[n.match_id] == 0]
    heapq.heapify(heap)
    ordered: List[BracketNode] = []
    while heap:
        _, match_id = heapq.heappop(heap)
        ordered.append(by_id[match_id])
        for dependent in dependents[match_id]:
            indegree[dependent] -= 1
            if indegree[dependent] == 0:
                heapq.heappush(heap, (_order_key(by_id[dependent]), dependent))

    if len(ordered) != len(nodes):
        raise ValidationError("Bracket dependencies contain a cycle")
    return ordered


def recompute(
    nodes: Sequence[BracketNode],
    team_locations: Optional[Mapping[int, Location]] = None,
) -> BracketDiff:
    """Resolve every from-slot and rule-driven referee; return what changed.

    One sweep in dependency order is enough: each node reads only sources
    that were settled earlier in the same sweep. A participant change on a
    final match clears its result and reverts it to "ended"; the clear then
    flows to its own dependents.
    """
    team_locations = team_locations or {}
    ordered = topological_order(nodes)
    working: Dict[int, Dict[str, Any]] = {
        n.match_id: {
            "team_a_id": n.team_a_id,
            "team_b_id": n.team_b_id,
            "status": n.status,
            "result": n.result,
            "ref_team_ids": list(n.ref_team_ids),
        }
        for n in nodes
    }
    participants_changed: Set[int] = set()
    cleared: Set[int] = set()

    for node in ordered:
        state = working[node.match_id]
        changed = False
        for side, source in (("team_a_id", node.team_a_from), ("team_b_id", node.team_b_from)):
            if source is None or source[0] not in working:
                continue
            resolved = slot_team(working[source[0]]["result"], source[1])
            if resolved != state[side]:
                state[side] = resolved
                changed = True
        if changed:
            participants_changed.add(node.match_id)
            if state["status"] == MATCH_STATUS_FINAL:
                state["status"] = MATCH_STATUS_ENDED
                state["result"] = None
                cleared.add(node.match_id)

    # Referees once every participant has settled
    results_by_key = {n.match_key: working[n.match_id]["result"] for n in nodes if n.match_key}

    refs_changed: Set[int] = set()
    for node in ordered:
        if node.ref_source != REF_SOURCE_RULE:
            continue
        state = working[node.match_id]
        excluded = {t for t in (state["team_a_id"], state["team_b_id"]) if t is not None}
        candidates = rule_candidates(node.ref_rules, results_by_key, excluded)
        origin = reference_point(
            node.location,
            [team_locations.get(t) for t in (state["team_a_id"], state["team_b_id"]) if t is not None],
        )
        chosen = choose_referee(candidates, origin, team_locations)
        refs = [chosen] if chosen is not None else []
        if refs != state["ref_team_ids"]:
            state["ref_team_ids"] = refs
            refs_changed.add(node.match_id)

    diff = BracketDiff()
    for node in ordered:
        mid = node.match_id
        if mid not in participants_changed and mid not in refs_changed:
            continue
        state = working[mid]
        diff.changes[mid] = NodeChange(
            match_id=mid,
            team_a_id=state["team_a_id"],
            team_b_id=state["team_b_id"],
            status=state["status"],
            result=state["result"],
            ref_team_ids=state["ref_team_ids"],
            participants_changed=mid in participants_changed,
            result_cleared=mid in cleared,
            refs_changed=mid in refs_changed,
        )
    return diff


# ---------------------------------------------------------------------------
# Effect phase
# ---------------------------------------------------------------------------


@dataclass
class RecomputeOutcome:
    brackets: List[str]
    updated_match_ids: List[int]
    cleared_match_ids: List[int]


def node_from_match(match: Match, facilities: Optional[Sequence[Dict[str, Any]]] = None) -> BracketNode:
    return BracketNode(
        match_id=match.id,
        match_key=match.bracket_match_key,
        bracket=match.bracket,
        bracket_round=match.bracket_round or 0,
        round_block=match.round_block,
        court=match.court,
        status=match.status,
        team_a_id=match.team_a_id,
        team_b_id=match.team_b_id,
        team_a_from=(match.team_a_from_match_id, match.team_a_from_slot) if match.team_a_from_match_id else None,
        team_b_from=(match.team_b_from_match_id, match.team_b_from_slot) if match.team_b_from_match_id else None,
        result=match.result,
        ref_team_ids=tuple(match.ref_team_ids or ()),
        ref_source=match.ref_source,
        ref_rules=rules_from_json(match.ref_rules),
        location=facility_location(facilities, match.facility),
    )


def team_locations_for(session: Session, tournament_id: int) -> Dict[int, Location]:
    teams = session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()
    return {
        t.id: (t.latitude, t.longitude)
        for t in teams
        if t.latitude is not None and t.longitude is not None
    }


def recompute_bracket_progression(
    session: Session, tournament_id: int, bracket: Optional[str] = None
) -> RecomputeOutcome:
    """Recompute one bracket (or every playoff bracket when *bracket* is None) and persist the diff."""
    tournament = session.get(Tournament, tournament_id)
    if tournament is None:
        raise ValidationError(f"Tournament {tournament_id} not found")

    query = select(Match).where(Match.tournament_id == tournament_id, Match.phase == PHASE_PLAYOFFS)
    if bracket:
        query = query.where(Match.bracket == bracket)
    matches = session.exec(query).all()
    if not matches:
        return RecomputeOutcome(brackets=[bracket] if bracket else [], updated_match_ids=[], cleared_match_ids=[])

    by_id = {m.id: m for m in matches}
    nodes = [node_from_match(m, tournament.facilities) for m in matches]
    diff = recompute(nodes, team_locations_for(session, tournament_id))

    if not diff.is_empty:
        names = {t.id: t.display_name for t in session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()}
        for change in diff.changes.values():
            match = by_id[change.match_id]
            match.team_a_id = change.team_a_id
            match.team_b_id = change.team_b_id
            match.ref_team_ids = list(change.ref_team_ids)
            if change.result_cleared:
                match.status = change.status
                match.result = None
                match.finalized_at = None
                match.finalized_by = None
            session.add(match)
            if change.participants_changed:
                sync_scoreboard(session, match, names, reset=True)
        session.commit()

    brackets = sorted({m.bracket for m in matches if m.bracket})
    logger.info(
        "Recomputed brackets %s for tournament %s: %d updated, %d cleared",
        brackets,
        tournament_id,
        len(diff.updated_match_ids),
        len(diff.cleared_match_ids),
    )
    return RecomputeOutcome(
        brackets=brackets,
        updated_match_ids=diff.updated_match_ids,
        cleared_match_ids=diff.cleared_match_ids,
    )
