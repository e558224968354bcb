"""
Tournament format registry.

Formats are immutable data: an ordered list of stages (pool play,
crossover, playoffs). New formats are added here as data, never as new
control flow in the generators.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

STAGE_POOL_PLAY = "pool_play"
STAGE_CROSSOVER = "crossover"
STAGE_PLAYOFFS = "playoffs"

BRACKET_SINGLE_ELIM = "single_elim"
BRACKET_FIVE_TEAM_OPS = "five_team_ops"

DEFAULT_15_TEAM_FORMAT_ID = "odu_15_5courts_v1"


@dataclass(frozen=True)
class PoolDef:
    name: str
    size: int
    # Follow-up stages only: placement tokens like "A1" (rank 1 of pool A)
    placements: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BracketDef:
    name: str
    size: int
    seeds_from_overall: Tuple[int, ...]
    template: str = BRACKET_SINGLE_ELIM

    @property
    def key(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class StageDef:
    key: str
    kind: str
    display_name: str
    pools: Tuple[PoolDef, ...] = ()
    from_pools: Tuple[str, ...] = ()
    brackets: Tuple[BracketDef, ...] = ()

    @property
    def has_placements(self) -> bool:
        return any(pool.placements for pool in self.pools)


@dataclass(frozen=True)
class FormatDef:
    id: str
    name: str
    description: str
    team_counts: Tuple[int, ...]
    min_courts: int
    stages: Tuple[StageDef, ...]
    max_courts: Optional[int] = None


def _seed_range(start: int, end: int) -> Tuple[int, ...]:
    return tuple(range(start, end + 1))


def _pools(names: str, size: int) -> Tuple[PoolDef, ...]:
    return tuple(PoolDef(name=name, size=size) for name in names)


FORMATS: Tuple[FormatDef, ...] = (
    FormatDef(
        id="classic_12_3x4_gold8_silver4_v1",
        name="12 Teams: 3x4 Pools, Gold 8 + Silver 4",
        description="Three pools of four, then Gold 8-team and Silver 4-team single elimination brackets.",
        team_counts=(12,),
        min_courts=3,
        stages=(
            StageDef(key="poolPlay1", kind=STAGE_POOL_PLAY, display_name="Pool Play 1", pools=_pools("ABC", 4)),
            StageDef(
                key="playoffs",
                kind=STAGE_PLAYOFFS,
                display_name="Playoffs",
                brackets=(
                    BracketDef(name="Gold", size=8, seeds_from_overall=_seed_range(1, 8)),
                    BracketDef(name="Silver", size=4, seeds_from_overall=_seed_range(9, 12)),
                ),
            ),
        ),
    ),
    FormatDef(
        id="classic_14_mixedpools_crossover_gold8_silver6_v1",
        name="14 Teams: Mixed Pools + Crossover, Gold 8 + Silver 6",
        description=(
            "Two 4-team pools and two 3-team pools, rank-to-rank crossover for the 3-team pools, "
            "then Gold 8 and Silver 6 playoffs."
        ),
        team_counts=(14,),
        min_courts=3,
        stages=(
            StageDef(
                key="poolPlay1",
                kind=STAGE_POOL_PLAY,
                display_name="Pool Play 1",
                pools=_pools("AB", 4) + _pools("CD", 3),
            ),
            StageDef(key="crossover", kind=STAGE_CROSSOVER, display_name="Crossover", from_pools=("C", "D")),
            StageDef(
                key="playoffs",
                kind=STAGE_PLAYOFFS,
                display_name="Playoffs",
                brackets=(
                    BracketDef(name="Gold", size=8, seeds_from_overall=_seed_range(1, 8)),
                    BracketDef(name="Silver", size=6, seeds_from_overall=_seed_range(9, 14)),
                ),
            ),
        ),
    ),
    FormatDef(
        id=DEFAULT_15_TEAM_FORMAT_ID,
        name="ODU 15-Team Classic",
        description=(
            "Pool Play 1 (A-E), Pool Play 2 (F-J) seeded from Pool Play 1 placements with rematch "
            "balancing, then Gold/Silver/Bronze five-team brackets."
        ),
        team_counts=(15,),
        min_courts=3,
        stages=(
            StageDef(key="poolPlay1", kind=STAGE_POOL_PLAY, display_name="Pool Play 1", pools=_pools("ABCDE", 3)),
            StageDef(
                key="poolPlay2",
                kind=STAGE_POOL_PLAY,
                display_name="Pool Play 2",
                pools=(
                    PoolDef(name="F", size=3, placements=("A1", "B2", "C3")),
                    PoolDef(name="G", size=3, placements=("B1", "C2", "D3")),
                    PoolDef(name="H", size=3, placements=("C1", "D2", "E3")),
                    PoolDef(name="I", size=3, placements=("D1", "E2", "A3")),
                    PoolDef(name="J", size=3, placements=("E1", "A2", "B3")),
                ),
            ),
            StageDef(
                key="playoffs",
                kind=STAGE_PLAYOFFS,
                display_name="Playoffs",
                brackets=(
                    BracketDef(name="Gold", size=5, seeds_from_overall=_seed_range(1, 5), template=BRACKET_FIVE_TEAM_OPS),
                    BracketDef(name="Silver", size=5, seeds_from_overall=_seed_range(6, 10), template=BRACKET_FIVE_TEAM_OPS),
                    BracketDef(name="Bronze", size=5, seeds_from_overall=_seed_range(11, 15), template=BRACKET_FIVE_TEAM_OPS),
                ),
            ),
        ),
    ),
    FormatDef(
        id="classic_16_4x4_all16_v1",
        name="16 Teams: 4x4 Pools + 16-Team Playoffs",
        description="Four pools of four, then all teams advance to a 16-team single elimination bracket.",
        team_counts=(16,),
        min_courts=3,
        stages=(
            StageDef(key="poolPlay1", kind=STAGE_POOL_PLAY, display_name="Pool Play 1", pools=_pools("ABCD", 4)),
            StageDef(
                key="playoffs",
                kind=STAGE_PLAYOFFS,
                display_name="Playoffs",
                brackets=(BracketDef(name="All", size=16, seeds_from_overall=_seed_range(1, 16)),),
            ),
        ),
    ),
)


def list_formats() -> List[FormatDef]:
    return list(FORMATS)


def get_format(format_id: Optional[str]) -> Optional[FormatDef]:
    if not format_id or not format_id.strip():
        return None
    normalized = format_id.strip()
    for format_def in FORMATS:
        if format_def.id == normalized:
            return format_def
    return None


def suggest_formats(team_count: int, court_count: int) -> List[FormatDef]:
    """Formats supporting *team_count* teams that fit on *court_count* courts."""
    if team_count <= 0 or court_count <= 0:
        return []
    suggestions = []
    for format_def in FORMATS:
        if team_count not in format_def.team_counts:
            continue
        if court_count < format_def.min_courts:
            continue
        if format_def.max_courts is not None and court_count > format_def.max_courts:
            continue
        suggestions.append(format_def)
    return suggestions


def resolve_stage(format_def: FormatDef, stage_key: str) -> Optional[StageDef]:
    for stage in format_def.stages:
        if stage.key == stage_key:
            return stage
    return None


def stages_before(format_def: FormatDef, stage_key: str) -> List[StageDef]:
    earlier: List[StageDef] = []
    for stage in format_def.stages:
        if stage.key == stage_key:
            return earlier
        earlier.append(stage)
    return earlier


def playoff_stage(format_def: FormatDef) -> Optional[StageDef]:
    for stage in format_def.stages:
        if stage.kind == STAGE_PLAYOFFS:
            return stage
    return None


def round_robin_stages(format_def: FormatDef) -> List[StageDef]:
    """Stages whose results feed cumulative standings."""
    return [s for s in format_def.stages if s.kind in (STAGE_POOL_PLAY, STAGE_CROSSOVER)]


def crossover_pairing_count(format_def: FormatDef, stage: StageDef) -> int:
    """Rank-to-rank pairings: min size of the two source pools."""
    sizes = {}
    for earlier in stages_before(format_def, stage.key):
        for pool in earlier.pools:
            sizes[pool.name] = pool.size
    counts = [sizes.get(name, 0) for name in stage.from_pools]
    return min(counts) if counts else 0


def crossover_source_stage(format_def: FormatDef, stage: StageDef) -> Optional[StageDef]:
    for earlier in reversed(stages_before(format_def, stage.key)):
        if earlier.kind == STAGE_POOL_PLAY:
            return earlier
    return None


def shares_playoff_refs(format_def: Optional[FormatDef]) -> bool:
    """Five-team ops brackets referee each other, so they recompute together."""
    if format_def is None:
        return True
    stage = playoff_stage(format_def)
    if stage is None:
        return False
    return any(b.template == BRACKET_FIVE_TEAM_OPS for b in stage.brackets)
