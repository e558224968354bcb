"""
Stage generation: turn pools, crossovers and playoff templates into matches.

Each generator validates its inputs first, then (with force) deletes the
stage's existing matches and their scoreboards, then creates every match
together with its scoreboard. A failure part-way through deletes whatever
was created, so a stage is either fully generated or untouched.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlmodel import Session, select

from courtside.models.match import (
    MATCH_STATUS_FINAL,
    PHASE_CROSSOVER,
    PHASE_PLAYOFFS,
    PHASE_POOL,
    REF_SOURCE_ROTATION,
    REF_SOURCE_RULE,
    REF_SOURCE_TEMPLATE,
    Match,
)
from courtside.models.scoreboard import Scoreboard
from courtside.models.team import Team
from courtside.models.tournament import (
    TOURNAMENT_STATUS_PLAYOFFS,
    TOURNAMENT_STATUS_POOL_PLAY,
    TOURNAMENT_STATUS_SETUP,
    Tournament,
)
from courtside.services.bracket_engine import recompute_bracket_progression
from courtside.services.bracket_templates import BracketMatchTemplate, build_stage_templates
from courtside.services.errors import ConflictError, ValidationError
from courtside.services.format_registry import (
    STAGE_CROSSOVER,
    STAGE_PLAYOFFS,
    STAGE_POOL_PLAY,
    crossover_pairing_count,
    crossover_source_stage,
    get_format,
    playoff_stage,
)
from courtside.services.match_scheduler import (
    PlayoffSlotPlan,
    PoolMatchSet,
    generate_round_robin,
    resolve_stage_start_round_block,
    schedule_matches,
    schedule_playoff_matches,
    select_crossover_courts,
)
from courtside.services.pool_builder import list_stage_pools, require_stage
from courtside.services.realtime import EventPublisher, TournamentEventType
from courtside.services.referee_rules import crossover_ref_ranks, rules_to_json
from courtside.services.scoreboards import create_scoreboard, delete_scoreboards, team_label
from courtside.services.standings import SCOPE_CUMULATIVE, compute_standings, pool_standings
from courtside.utils.courts import court_names, facility_for_court

logger = logging.getLogger(__name__)


@dataclass
class GenerationOutcome:
    stage_key: str
    matches: List[Match] = field(default_factory=list)
    deleted_matches: int = 0
    deleted_scoreboards: int = 0


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def stage_matches(session: Session, tournament_id: int, stage_key: str) -> List[Match]:
    return session.exec(
        select(Match).where(Match.tournament_id == tournament_id, Match.stage_key == stage_key)
    ).all()


def round_blocks_by_stage(session: Session, tournament_id: int) -> Dict[str, List[int]]:
    blocks: Dict[str, List[int]] = {}
    for stage_key, round_block in session.exec(
        select(Match.stage_key, Match.round_block).where(Match.tournament_id == tournament_id)
    ).all():
        if round_block is not None:
            blocks.setdefault(stage_key, []).append(round_block)
    return blocks


def _team_names(session: Session, tournament_id: int) -> Dict[int, str]:
    return {t.id: t.display_name for t in session.exec(select(Team).where(Team.tournament_id == tournament_id)).all()}


def _venue_courts(tournament: Tournament) -> List[str]:
    courts = court_names(tournament.facilities)
    if not courts:
        raise ValidationError("Tournament has no courts configured")
    return courts


def _clear_existing(session: Session, tournament: Tournament, stage_key: str, force: bool) -> Tuple[int, int]:
    """Delete a stage's matches and their scoreboards in one commit. Without force, existing matches conflict."""
    existing = stage_matches(session, tournament.id, stage_key)
    if not existing:
        return 0, 0
    board_ids = [m.scoreboard_id for m in existing if m.scoreboard_id is not None]
    if not force:
        raise ConflictError(
            f"Stage {stage_key} already has matches; pass force to regenerate",
            existing={"stage_key": stage_key, "matches": len(existing), "scoreboards": len(board_ids)},
        )
    try:
        for match in existing:
            session.delete(match)
        session.flush()
        deleted_boards = delete_scoreboards(session, board_ids)
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Clearing stage %s of tournament %s failed; nothing was deleted", stage_key, tournament.id)
        raise
    logger.info(
        "Deleted %d matches and %d scoreboards from tournament %s stage %s",
        len(existing),
        deleted_boards,
        tournament.id,
        stage_key,
    )
    return len(existing), deleted_boards


def _delete_created(session: Session, match_ids: Sequence[int], board_ids: Sequence[int]) -> None:
    if match_ids:
        for match in session.exec(select(Match).where(Match.id.in_(list(match_ids)))).all():
            session.delete(match)
        session.commit()
    if board_ids:
        for board in session.exec(select(Scoreboard).where(Scoreboard.id.in_(list(board_ids)))).all():
            session.delete(board)
        session.commit()


def _persist_matches(
    session: Session,
    tournament: Tournament,
    stage_key: str,
    planned: Sequence[Match],
    names: Dict[int, str],
    after_create: Optional[Callable[[List[Match]], None]] = None,
) -> List[Match]:
    """Create each planned match with its scoreboard; on any failure remove everything created."""
    created_match_ids: List[int] = []
    created_board_ids: List[int] = []
    created: List[Match] = []
    try:
        for match in planned:
            board = create_scoreboard(
                session,
                tournament.id,
                match.label,
                team_a_name=team_label(names, match.team_a_id),
                team_b_name=team_label(names, match.team_b_id),
            )
            created_board_ids.append(board.id)
            match.scoreboard_id = board.id
            session.add(match)
            session.commit()
            session.refresh(match)
            created_match_ids.append(match.id)
            created.append(match)
        if after_create is not None:
            after_create(created)
    except Exception:
        logger.exception(
            "Generation failed for tournament %s stage %s; removing %d matches and %d scoreboards",
            tournament.id,
            stage_key,
            len(created_match_ids),
            len(created_board_ids),
        )
        session.rollback()
        _delete_created(session, created_match_ids, created_board_ids)
        raise
    return created


def _advance_status(session: Session, tournament: Tournament, status: str) -> None:
    order = [TOURNAMENT_STATUS_SETUP, TOURNAMENT_STATUS_POOL_PLAY, TOURNAMENT_STATUS_PLAYOFFS]
    current = order.index(tournament.status) if tournament.status in order else 0
    if order.index(status) > current:
        tournament.status = status
        session.add(tournament)
        session.commit()
        session.refresh(tournament)


def _publish_generated(publisher: Optional[EventPublisher], tournament: Tournament, outcome: GenerationOutcome) -> None:
    if publisher is None:
        return
    publisher.publish(
        tournament.id,
        TournamentEventType.MATCHES_GENERATED,
        {
            "stage_key": outcome.stage_key,
            "match_ids": [m.id for m in outcome.matches],
            "deleted_matches": outcome.deleted_matches,
        },
    )


# ---------------------------------------------------------------------------
# Pool play
# ---------------------------------------------------------------------------


def generate_pool_stage(
    session: Session,
    tournament: Tournament,
    stage_key: str,
    force: bool = False,
    publisher: Optional[EventPublisher] = None,
) -> GenerationOutcome:
    """Round robins for every pool of the stage, scheduled onto (round block, court)."""
    format_def, stage = require_stage(tournament, stage_key, STAGE_POOL_PLAY)
    pools = list_stage_pools(session, tournament.id, stage_key)
    if len(pools) != len(stage.pools):
        raise ValidationError(f"Stage {stage_key} needs {len(stage.pools)} pools, {len(pools)} initialized")
    courts = _venue_courts(tournament)

    match_sets = []
    for pool in pools:
        round_robin = generate_round_robin(list(pool.team_ids or []), pool.required_team_count)
        match_sets.append(PoolMatchSet(key=str(pool.id), home_court=pool.home_court, matches=round_robin))

    deleted_matches, deleted_boards = _clear_existing(session, tournament, stage_key, force)

    start = resolve_stage_start_round_block(
        format_def, stage_key, round_blocks_by_stage(session, tournament.id), len(courts)
    )
    slots = schedule_matches(match_sets, courts, start)
    pools_by_key = {str(pool.id): pool for pool in pools}

    planned = []
    for slot in slots:
        pool = pools_by_key[slot.key]
        item = slot.item
        planned.append(
            Match(
                tournament_id=tournament.id,
                stage_key=stage_key,
                phase=PHASE_POOL,
                pool_id=pool.id,
                label=f"Pool {pool.name} Match {item.order}",
                round_block=slot.round_block,
                court=slot.court,
                facility=facility_for_court(tournament.facilities, slot.court),
                team_a_id=item.team_a_id,
                team_b_id=item.team_b_id,
                ref_team_ids=[item.ref_team_id] if item.ref_team_id is not None else [],
                ref_source=REF_SOURCE_ROTATION,
                bye_team_id=item.bye_team_id,
            )
        )

    created = _persist_matches(session, tournament, stage_key, planned, _team_names(session, tournament.id))
    _advance_status(session, tournament, TOURNAMENT_STATUS_POOL_PLAY)
    logger.info(
        "Generated %d pool matches for tournament %s stage %s starting at round block %d",
        len(created),
        tournament.id,
        stage_key,
        start,
    )
    outcome = GenerationOutcome(
        stage_key=stage_key, matches=created, deleted_matches=deleted_matches, deleted_scoreboards=deleted_boards
    )
    _publish_generated(publisher, tournament, outcome)
    return outcome


# ---------------------------------------------------------------------------
# Crossover
# ---------------------------------------------------------------------------


def generate_crossover_stage(
    session: Session,
    tournament: Tournament,
    stage_key: str,
    force: bool = False,
    publisher: Optional[EventPublisher] = None,
) -> GenerationOutcome:
    """Rank-to-rank matches between two finished pools, refereed by fixed ranks."""
    format_def, stage = require_stage(tournament, stage_key, STAGE_CROSSOVER)
    source_stage = crossover_source_stage(format_def, stage)
    if source_stage is None or len(stage.from_pools) != 2:
        raise ValidationError(f"Crossover {stage_key} needs exactly two source pools")

    pools_by_name = {p.name: p for p in list_stage_pools(session, tournament.id, source_stage.key)}
    ranked: List[List[int]] = []
    source_pools = []
    for name in stage.from_pools:
        pool = pools_by_name.get(name)
        if pool is None:
            raise ValidationError(f"Source pool {name} has not been initialized")
        standing = pool_standings(session, tournament, pool)
        if not standing.complete and not standing.override_applied:
            raise ValidationError(f"Pool {name} must finish before the crossover can be generated")
        ranked.append([entry.team_id for entry in standing.teams])
        source_pools.append(pool)

    pairing_count = crossover_pairing_count(format_def, stage)
    courts = select_crossover_courts([p.home_court for p in source_pools], tournament.facilities)
    if not courts:
        raise ValidationError("Tournament has no courts configured")

    pairings = []
    for index in range(pairing_count):
        if index >= len(ranked[0]) or index >= len(ranked[1]):
            raise ValidationError(f"Missing rank {index + 1} for crossover")
        ref_team_id = None
        ref_rank = crossover_ref_ranks(pairing_count, index)
        if ref_rank is not None:
            side, rank = ref_rank
            if rank <= len(ranked[side]):
                ref_team_id = ranked[side][rank - 1]
        pairings.append((index + 1, ranked[0][index], ranked[1][index], ref_team_id))

    deleted_matches, deleted_boards = _clear_existing(session, tournament, stage_key, force)

    start = resolve_stage_start_round_block(
        format_def, stage_key, round_blocks_by_stage(session, tournament.id), len(court_names(tournament.facilities))
    )
    slots = schedule_matches([PoolMatchSet(key=stage_key, home_court=courts[0], matches=pairings)], courts, start)

    name_a, name_b = source_pools[0].name, source_pools[1].name
    planned = []
    for slot in slots:
        rank, team_a_id, team_b_id, ref_team_id = slot.item
        planned.append(
            Match(
                tournament_id=tournament.id,
                stage_key=stage_key,
                phase=PHASE_CROSSOVER,
                label=f"Crossover {name_a}{rank} vs {name_b}{rank}",
                round_block=slot.round_block,
                court=slot.court,
                facility=facility_for_court(tournament.facilities, slot.court),
                team_a_id=team_a_id,
                team_b_id=team_b_id,
                ref_team_ids=[ref_team_id] if ref_team_id is not None else [],
                ref_source=REF_SOURCE_TEMPLATE,
            )
        )

    created = _persist_matches(session, tournament, stage_key, planned, _team_names(session, tournament.id))
    logger.info("Generated %d crossover matches for tournament %s", len(created), tournament.id)
    outcome = GenerationOutcome(
        stage_key=stage_key, matches=created, deleted_matches=deleted_matches, deleted_scoreboards=deleted_boards
    )
    _publish_generated(publisher, tournament, outcome)
    return outcome


# ---------------------------------------------------------------------------
# Playoffs
# ---------------------------------------------------------------------------


def playoff_seeds(session: Session, tournament: Tournament) -> Dict[Tuple[str, int], int]:
    """(bracket key, seed within bracket) -> team id, from cumulative standings."""
    format_def, stage = require_stage(tournament, _playoff_key(tournament), STAGE_PLAYOFFS)

    earlier = session.exec(
        select(Match).where(Match.tournament_id == tournament.id, Match.phase != PHASE_PLAYOFFS)
    ).all()
    standings = compute_standings(session, tournament, SCOPE_CUMULATIVE)
    if not standings.overall_override_applied:
        if not earlier:
            raise ValidationError("Pool play has not been generated")
        unfinished = [m.id for m in earlier if m.status != MATCH_STATUS_FINAL]
        if unfinished:
            raise ValidationError(f"{len(unfinished)} pool matches are not final yet")

    ranked = [entry.team_id for entry in standings.overall]
    seeds: Dict[Tuple[str, int], int] = {}
    for bracket in stage.brackets:
        for position, overall_rank in enumerate(bracket.seeds_from_overall, start=1):
            if overall_rank > len(ranked):
                raise ValidationError(f"{bracket.name} needs overall rank {overall_rank}, only {len(ranked)} teams ranked")
            seeds[(bracket.key, position)] = ranked[overall_rank - 1]
    return seeds


def _playoff_key(tournament: Tournament) -> str:
    format_def = get_format(tournament.format_id)
    if format_def is None:
        raise ValidationError("Tournament has no format selected")
    stage = playoff_stage(format_def)
    if stage is None:
        raise ValidationError(f"Format {format_def.id} has no playoff stage")
    return stage.key


def _playoff_match(
    tournament: Tournament,
    stage_key: str,
    template: BracketMatchTemplate,
    round_block: int,
    court: str,
    seeds: Dict[Tuple[str, int], int],
) -> Match:
    if template.ref_rules:
        ref_source = REF_SOURCE_RULE
        ref_team_ids: List[int] = []
    else:
        ref_source = REF_SOURCE_TEMPLATE
        ref_team_ids = [seeds[template.ref_seed]] if template.ref_seed in seeds else []
    return Match(
        tournament_id=tournament.id,
        stage_key=stage_key,
        phase=PHASE_PLAYOFFS,
        label=template.label,
        bracket=template.bracket,
        bracket_round=template.bracket_round,
        bracket_match_key=template.key,
        seed_a=template.seed_a,
        seed_b=template.seed_b,
        round_block=round_block,
        court=court,
        facility=facility_for_court(tournament.facilities, court),
        team_a_id=seeds.get((template.bracket, template.seed_a)) if template.seed_a else None,
        team_b_id=seeds.get((template.bracket, template.seed_b)) if template.seed_b else None,
        team_a_from_slot=template.team_a_from.slot if template.team_a_from else None,
        team_b_from_slot=template.team_b_from.slot if template.team_b_from else None,
        ref_team_ids=ref_team_ids,
        ref_source=ref_source,
        ref_rules=rules_to_json(template.ref_rules) or None,
    )


def generate_playoffs(
    session: Session,
    tournament: Tournament,
    force: bool = False,
    publisher: Optional[EventPublisher] = None,
) -> GenerationOutcome:
    """Every playoff bracket of the format, seeded from cumulative standings."""
    stage_key = _playoff_key(tournament)
    format_def, stage = require_stage(tournament, stage_key, STAGE_PLAYOFFS)
    courts = _venue_courts(tournament)
    seeds = playoff_seeds(session, tournament)
    templates = build_stage_templates(stage)
    templates_by_key = {t.key: t for t in templates}

    deleted_matches, deleted_boards = _clear_existing(session, tournament, stage_key, force)

    start = resolve_stage_start_round_block(
        format_def, stage_key, round_blocks_by_stage(session, tournament.id), len(courts)
    )
    plans = [
        PlayoffSlotPlan(key=t.key, bracket_round=t.bracket_round, item=t, pinned=t.pinned) for t in templates
    ]
    slots = schedule_playoff_matches(plans, courts, start)
    planned = [_playoff_match(tournament, stage_key, slot.item, slot.round_block, slot.court, seeds) for slot in slots]

    def link_sources(created: List[Match]) -> None:
        id_by_key = {m.bracket_match_key: m.id for m in created}
        for match in created:
            template = templates_by_key[match.bracket_match_key]
            if template.team_a_from is not None:
                match.team_a_from_match_id = id_by_key[template.team_a_from.match_key]
            if template.team_b_from is not None:
                match.team_b_from_match_id = id_by_key[template.team_b_from.match_key]
            session.add(match)
        session.commit()

    created = _persist_matches(
        session, tournament, stage_key, planned, _team_names(session, tournament.id), after_create=link_sources
    )
    recompute = recompute_bracket_progression(session, tournament.id)
    _advance_status(session, tournament, TOURNAMENT_STATUS_PLAYOFFS)
    for match in created:
        session.refresh(match)
    logger.info(
        "Generated %d playoff matches in %d brackets for tournament %s",
        len(created),
        len(stage.brackets),
        tournament.id,
    )

    outcome = GenerationOutcome(
        stage_key=stage_key, matches=created, deleted_matches=deleted_matches, deleted_scoreboards=deleted_boards
    )
    _publish_generated(publisher, tournament, outcome)
    if publisher is not None:
        publisher.publish(
            tournament.id,
            TournamentEventType.PLAYOFFS_BRACKET_UPDATED,
            {"bracket": None, "brackets": recompute.brackets, "affected_match_ids": [m.id for m in created]},
        )
    return outcome


def generate_stage(
    session: Session,
    tournament: Tournament,
    stage_key: str,
    force: bool = False,
    publisher: Optional[EventPublisher] = None,
) -> GenerationOutcome:
    """Dispatch to the generator for the stage's kind."""
    _, stage = require_stage(tournament, stage_key)
    if stage.kind == STAGE_POOL_PLAY:
        return generate_pool_stage(session, tournament, stage_key, force=force, publisher=publisher)
    if stage.kind == STAGE_CROSSOVER:
        return generate_crossover_stage(session, tournament, stage_key, force=force, publisher=publisher)
    return generate_playoffs(session, tournament, force=force, publisher=publisher)
