"""
Playoff bracket templates.

Two shapes:

- five-team ops bracket (Gold/Silver/Bronze): R1 4v5 and 2v3, R2 seed 1
  against the 4v5 winner, R3 final between the R2 winner and the 2v3
  winner. Courts and round blocks are pinned so the three brackets share
  five courts; round-one referees come from the other brackets.
- generic N-seed single elimination: seeds laid out in bracket-fold order
  over the next power of two; top seeds take byes into round 2.

Templates are data. Match keys look like "gold:R2:1vW45" or "gold:R1:M2".
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from courtside.models.match import SLOT_LOSER, SLOT_WINNER
from courtside.services.errors import ValidationError
from courtside.services.format_registry import BRACKET_FIVE_TEAM_OPS, BracketDef, StageDef


@dataclass(frozen=True)
class SlotSource:
    match_key: str
    slot: str  # "winner" | "loser"


@dataclass(frozen=True)
class RefRule:
    source_match_key: str
    slot: str


@dataclass(frozen=True)
class BracketMatchTemplate:
    key: str
    bracket: str
    bracket_round: int
    label: str
    seed_a: Optional[int] = None
    seed_b: Optional[int] = None
    team_a_from: Optional[SlotSource] = None
    team_b_from: Optional[SlotSource] = None
    ref_rules: Tuple[RefRule, ...] = ()
    # (bracket key, seed within that bracket) for fixed round-one referees
    ref_seed: Optional[Tuple[str, int]] = None
    # (round block offset, court index)
    pinned: Optional[Tuple[int, int]] = None


def bracket_fold_positions(n: int) -> List[int]:
    """Standard bracket-fold positions for *n* entries (n a power of two).

    Consecutive pairs meet in round one if chalk holds:
      4-entry  -> [1, 4, 2, 3]
      8-entry  -> [1, 8, 4, 5, 3, 6, 2, 7]
    """
    if n == 2:
        return [1, 2]

    half = bracket_fold_positions(n // 2)

    expanded: List[int] = []
    for s in half:
        expanded.append(s)
        expanded.append(n + 1 - s)

    mid = len(expanded) // 2
    top = expanded[:mid]
    bot = expanded[mid:]
    if len(bot) >= 4:
        bot = bot[:-4] + bot[-2:] + bot[-4:-2]

    return top + bot


def match_key(bracket_key: str, round_no: int, suffix: str) -> str:
    return f"{bracket_key}:R{round_no}:{suffix}"


# ---------------------------------------------------------------------------
# Five-team ops bracket
# ---------------------------------------------------------------------------

OPS_R1_4V5 = "4v5"
OPS_R1_2V3 = "2v3"
OPS_R2 = "1vW45"
OPS_FINAL = "final"

# Bracket position (0=Gold, 1=Silver, 2=Bronze) -> suffix -> (round block offset, court index)
FIVE_TEAM_OPS_LAYOUT: Dict[int, Dict[str, Tuple[int, int]]] = {
    0: {OPS_R1_4V5: (0, 0), OPS_R1_2V3: (0, 3), OPS_R2: (1, 3), OPS_FINAL: (2, 3)},
    1: {OPS_R1_4V5: (0, 1), OPS_R1_2V3: (0, 4), OPS_R2: (1, 4), OPS_FINAL: (2, 4)},
    2: {OPS_R1_4V5: (0, 2), OPS_R1_2V3: (1, 0), OPS_R2: (1, 1), OPS_FINAL: (2, 0)},
}

# (bracket position, suffix) -> (referee bracket position, seed)
FIVE_TEAM_OPS_ROUND1_REFS: Dict[Tuple[int, str], Tuple[int, int]] = {
    (0, OPS_R1_4V5): (2, 1),
    (0, OPS_R1_2V3): (1, 1),
    (1, OPS_R1_4V5): (2, 2),
    (1, OPS_R1_2V3): (0, 1),
    (2, OPS_R1_4V5): (2, 3),
}

# (bracket position, suffix) -> referee sources within the same bracket
FIVE_TEAM_OPS_REF_RULES: Dict[Tuple[int, str], Tuple[Tuple[str, str], ...]] = {
    (0, OPS_R2): ((OPS_R1_2V3, SLOT_LOSER),),
    (1, OPS_R2): ((OPS_R1_2V3, SLOT_LOSER),),
    (2, OPS_R1_2V3): ((OPS_R1_4V5, SLOT_LOSER),),
    (2, OPS_R2): ((OPS_R1_2V3, SLOT_LOSER),),
    (0, OPS_FINAL): ((OPS_R2, SLOT_LOSER),),
    (1, OPS_FINAL): ((OPS_R2, SLOT_LOSER),),
    (2, OPS_FINAL): ((OPS_R2, SLOT_LOSER),),
}

_OPS_ROUNDS = {OPS_R1_4V5: 1, OPS_R1_2V3: 1, OPS_R2: 2, OPS_FINAL: 3}


def five_team_ops_templates(
    bracket: BracketDef, position: int, bracket_keys: Sequence[str]
) -> List[BracketMatchTemplate]:
    if bracket.size != 5:
        raise ValidationError(f"{bracket.name} five-team bracket needs 5 seeds, has {bracket.size}")
    if position not in FIVE_TEAM_OPS_LAYOUT:
        raise ValidationError("Five-team ops layout supports at most three brackets")

    key = bracket.key
    name = bracket.name

    def k(suffix: str) -> str:
        return match_key(key, _OPS_ROUNDS[suffix], suffix)

    def rules(suffix: str) -> Tuple[RefRule, ...]:
        return tuple(
            RefRule(source_match_key=k(source), slot=slot)
            for source, slot in FIVE_TEAM_OPS_REF_RULES.get((position, suffix), ())
        )

    def ref_seed(suffix: str) -> Optional[Tuple[str, int]]:
        entry = FIVE_TEAM_OPS_ROUND1_REFS.get((position, suffix))
        if entry is None or entry[0] >= len(bracket_keys):
            return None
        return (bracket_keys[entry[0]], entry[1])

    layout = FIVE_TEAM_OPS_LAYOUT[position]
    return [
        BracketMatchTemplate(
            key=k(OPS_R1_4V5),
            bracket=key,
            bracket_round=1,
            label=f"{name} 4v5",
            seed_a=4,
            seed_b=5,
            ref_rules=rules(OPS_R1_4V5),
            ref_seed=ref_seed(OPS_R1_4V5),
            pinned=layout[OPS_R1_4V5],
        ),
        BracketMatchTemplate(
            key=k(OPS_R1_2V3),
            bracket=key,
            bracket_round=1,
            label=f"{name} 2v3",
            seed_a=2,
            seed_b=3,
            ref_rules=rules(OPS_R1_2V3),
            ref_seed=ref_seed(OPS_R1_2V3),
            pinned=layout[OPS_R1_2V3],
        ),
        BracketMatchTemplate(
            key=k(OPS_R2),
            bracket=key,
            bracket_round=2,
            label=f"{name} 1 vs W(4/5)",
            seed_a=1,
            team_b_from=SlotSource(match_key=k(OPS_R1_4V5), slot=SLOT_WINNER),
            ref_rules=rules(OPS_R2),
            pinned=layout[OPS_R2],
        ),
        BracketMatchTemplate(
            key=k(OPS_FINAL),
            bracket=key,
            bracket_round=3,
            label=f"{name} Final",
            team_a_from=SlotSource(match_key=k(OPS_R2), slot=SLOT_WINNER),
            team_b_from=SlotSource(match_key=k(OPS_R1_2V3), slot=SLOT_WINNER),
            ref_rules=rules(OPS_FINAL),
            pinned=layout[OPS_FINAL],
        ),
    ]


# ---------------------------------------------------------------------------
# Generic single elimination
# ---------------------------------------------------------------------------


def _round_name(round_no: int, total_rounds: int) -> str:
    remaining = total_rounds - round_no
    if remaining == 0:
        return "Final"
    if remaining == 1:
        return "Semifinal"
    if remaining == 2:
        return "Quarterfinal"
    return f"Round {round_no}"


def single_elim_templates(bracket: BracketDef) -> List[BracketMatchTemplate]:
    """Single elimination with byes for any bracket of 2+ seeds.

    Later-round referees are the losers of the feeder matches; when both
    are eligible the distance tie-break picks one.
    """
    if bracket.size < 2:
        raise ValidationError(f"{bracket.name} bracket needs at least 2 seeds")

    slots = 2
    while slots < bracket.size:
        slots *= 2
    total_rounds = slots.bit_length() - 1
    positions = bracket_fold_positions(slots)

    # Each entry is ("seed", n) or ("match", key)
    entries: List[Tuple[str, object]] = []
    templates: List[BracketMatchTemplate] = []

    round_one: List[Tuple[int, int]] = []
    for i in range(0, slots, 2):
        seed_a, seed_b = positions[i], positions[i + 1]
        if seed_b > bracket.size:
            entries.append(("seed", seed_a))
        elif seed_a > bracket.size:
            entries.append(("seed", seed_b))
        else:
            key = match_key(bracket.key, 1, f"M{len(round_one) + 1}")
            round_one.append((seed_a, seed_b))
            entries.append(("match", key))
            templates.append(
                BracketMatchTemplate(
                    key=key,
                    bracket=bracket.key,
                    bracket_round=1,
                    label=f"{bracket.name} {seed_a}v{seed_b}",
                    seed_a=seed_a,
                    seed_b=seed_b,
                )
            )

    round_no = 1
    while len(entries) > 1:
        round_no += 1
        next_entries: List[Tuple[str, object]] = []
        pair_count = len(entries) // 2
        for index in range(pair_count):
            side_a, side_b = entries[2 * index], entries[2 * index + 1]
            key = match_key(bracket.key, round_no, f"M{index + 1}")
            seed_a = side_a[1] if side_a[0] == "seed" else None
            seed_b = side_b[1] if side_b[0] == "seed" else None
            from_a = SlotSource(match_key=side_a[1], slot=SLOT_WINNER) if side_a[0] == "match" else None
            from_b = SlotSource(match_key=side_b[1], slot=SLOT_WINNER) if side_b[0] == "match" else None
            rules = tuple(
                RefRule(source_match_key=source.match_key, slot=SLOT_LOSER)
                for source in (from_a, from_b)
                if source is not None
            )

            if seed_a is not None and seed_b is not None:
                label = f"{bracket.name} {seed_a}v{seed_b}"
            else:
                label = f"{bracket.name} {_round_name(round_no, total_rounds)}"
                if pair_count > 1:
                    label = f"{label} {index + 1}"

            templates.append(
                BracketMatchTemplate(
                    key=key,
                    bracket=bracket.key,
                    bracket_round=round_no,
                    label=label,
                    seed_a=seed_a,
                    seed_b=seed_b,
                    team_a_from=from_a,
                    team_b_from=from_b,
                    ref_rules=rules,
                )
            )
            next_entries.append(("match", key))
        entries = next_entries

    return templates


def build_stage_templates(stage: StageDef) -> List[BracketMatchTemplate]:
    """Every playoff match template for a stage, bracket by bracket."""
    ops_keys = [b.key for b in stage.brackets if b.template == BRACKET_FIVE_TEAM_OPS]
    templates: List[BracketMatchTemplate] = []
    ops_position = 0
    for bracket in stage.brackets:
        if bracket.template == BRACKET_FIVE_TEAM_OPS:
            templates.extend(five_team_ops_templates(bracket, ops_position, ops_keys))
            ops_position += 1
        else:
            templates.extend(single_elim_templates(bracket))
    return templates
