"""
Score submission flow shared by every caller (bot handlers, scripts, tests).

report_match_score
    throttle → validate → versioned write → recompute standings
    (qualification) or advance the bracket (finals)

submit_time_entry
    throttle → validate → versioned merge of course times → recompute the
    stage's time attack ranks
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kartcup.errors import (
    RateLimitExceeded,
    RecordNotFound,
    ScoreValidationError,
    VersionConflict,
)
from kartcup.models.models import BracketSection, EventFormat, Match, Stage, TimeAttackEntry
from kartcup.services.bracket_service import (
    advance_bracket,
    create_bracket_reset,
    needs_bracket_reset,
)
from kartcup.services.format_rules import (
    Progress,
    get_rule,
    match_progress,
    validate_finals_score,
)
from kartcup.services.optimistic_lock import (
    RetryPolicy,
    VersionedUpdate,
    update_match_score,
    update_versioned,
)
from kartcup.services.rate_limiter import LimitClass, RateLimiter, RateLimitResult
from kartcup.services.scoring_service import PlayerAggregate, recalculate_standings
from kartcup.services.time_attack import calculate_entry_total, recalculate_ranks
from kartcup.validators import (
    SCORE_MODELS,
    TimeEntryData,
    grand_prix_points,
    parse_rounds,
    parse_score,
)

logger = logging.getLogger(__name__)

# Recompute passes are idempotent; a conflict means another recompute
# committed between our read and write, so re-reading is enough.
RECOMPUTE_ATTEMPTS = 3


@dataclass
class ScoreReport:
    """Outcome of one accepted submission."""
    record_id:  int
    version:    int
    completed:  bool
    rate_limit: RateLimitResult
    update:     VersionedUpdate
    standings:  Dict[int, PlayerAggregate] = field(default_factory=dict)
    advanced:   List[VersionedUpdate] = field(default_factory=list)
    reset_match_id: Optional[int] = None


def _admit(limiter: RateLimiter, identifier: str) -> RateLimitResult:
    result = limiter.check_limit(identifier, LimitClass.SCORE_INPUT)
    if not result.allowed:
        logger.warning("Score submission throttled for %s", identifier)
        raise RateLimitExceeded(identifier, result.retry_after)
    return result


async def _recompute_standings(
    session_factory: async_sessionmaker[AsyncSession],
    tournament_id: int,
    event_format: str,
) -> Dict[int, PlayerAggregate]:
    for attempt in range(1, RECOMPUTE_ATTEMPTS + 1):
        try:
            async with session_factory() as session:
                async with session.begin():
                    return await recalculate_standings(session, tournament_id, event_format)
        except VersionConflict:
            if attempt == RECOMPUTE_ATTEMPTS:
                raise
            logger.info(
                "Standings recompute for tournament %s (%s) raced another writer, re-reading",
                tournament_id, event_format,
            )
    return {}


def _normalize_payload(
    event_format: str,
    score1: int,
    score2: int,
    rounds: Optional[List[Dict[str, Any]]],
    full_result: bool,
) -> Tuple[int, int, Optional[List[Dict[str, Any]]]]:
    """
    Run the payload through the format's pydantic models. Grand prix scores
    are always derived from finishing positions when races are given.

    full_result : a completed qualification match, validated as a whole;
                  anything else only has its round breakdown checked
    """
    if full_result:
        model = SCORE_MODELS[event_format]
        if event_format == EventFormat.GRAND_PRIX:
            if rounds is None:
                return score1, score2, None
            cup = parse_score(model, {"races": rounds})
            return cup.points1, cup.points2, cup.rounds()
        data = parse_score(model, {"score1": score1, "score2": score2, "rounds": rounds})
        if data.rounds is None:
            return score1, score2, None
        return score1, score2, [r.model_dump() for r in data.rounds]

    checked = parse_rounds(event_format, rounds)
    if checked is not None and event_format == EventFormat.GRAND_PRIX:
        score1, score2 = grand_prix_points(checked)
    return score1, score2, checked


async def report_match_score(
    session_factory: async_sessionmaker[AsyncSession],
    limiter: RateLimiter,
    identifier: str,
    match_id: int,
    expected_version: int,
    score1: int,
    score2: int,
    completed: Optional[bool] = None,
    rounds: Optional[List[Dict[str, Any]]] = None,
    policy: Optional[RetryPolicy] = None,
) -> ScoreReport:
    """
    Submit a score for a battle, match race or grand prix match.

    Parameters
    ----------
    identifier       : caller fingerprint for the rate limiter
    expected_version : the match version the caller last read
    completed        : qualification matches default to completed; finals
                       matches complete once a side reaches the format's
                       target unless the flag is given explicitly
    """
    rate = _admit(limiter, identifier)

    async with session_factory() as session:
        match = await session.get(Match, match_id)
        if match is None:
            raise RecordNotFound("Match", match_id)

    rule = get_rule(match.event_format)
    if match.stage == Stage.FINALS:
        if match.is_bye or match.player1_id is None or match.player2_id is None:
            raise ScoreValidationError(
                f"Match {match_id} is not ready for scoring; both players must be seeded"
            )
        score1, score2, rounds = _normalize_payload(
            match.event_format, score1, score2, rounds, full_result=False
        )
        if completed is None:
            completed = match_progress(score1, score2, rule) == Progress.COMPLETE
        validate_finals_score(score1, score2, rule, completed)
    else:
        if completed is None:
            completed = True
        score1, score2, rounds = _normalize_payload(
            match.event_format, score1, score2, rounds, full_result=completed
        )
        rule.validate(score1, score2, completed)

    update = await update_match_score(
        session_factory, match_id, expected_version, score1, score2,
        completed=completed, rounds=rounds, policy=policy,
    )
    report = ScoreReport(
        record_id=match_id,
        version=update.new_version,
        completed=completed,
        rate_limit=rate,
        update=update,
    )

    if match.stage == Stage.QUALIFICATION:
        report.standings = await _recompute_standings(
            session_factory, match.tournament_id, match.event_format
        )
    elif completed:
        report.advanced = await advance_bracket(session_factory, match_id)
        if match.bracket == BracketSection.GRAND_FINAL and match.round == "grand_final":
            async with session_factory() as session:
                async with session.begin():
                    finished = await session.get(Match, match_id, populate_existing=True)
                    if needs_bracket_reset(finished):
                        reset = await create_bracket_reset(
                            session, match.tournament_id, match.event_format
                        )
                        report.reset_match_id = reset.id if reset else None

    logger.info(
        "Match %s scored %d-%d (version %d, %s)",
        match_id, score1, score2, report.version,
        "completed" if completed else "in progress",
    )
    return report


async def submit_time_entry(
    session_factory: async_sessionmaker[AsyncSession],
    limiter: RateLimiter,
    identifier: str,
    entry_id: int,
    expected_version: int,
    times: Mapping[str, str],
    policy: Optional[RetryPolicy] = None,
) -> ScoreReport:
    """Merge submitted course times into an entry and re-rank its stage."""
    rate = _admit(limiter, identifier)
    data = parse_score(TimeEntryData, {"times": dict(times)})

    def mutation(entry: TimeAttackEntry) -> Dict[str, Any]:
        merged = {**(entry.times or {}), **data.times}
        merged = {course: value for course, value in merged.items() if value}
        return {"times": merged, "total_time": calculate_entry_total(merged)}

    update = await update_versioned(
        session_factory, TimeAttackEntry, entry_id, expected_version, mutation, policy
    )

    async with session_factory() as session:
        entry = await session.get(TimeAttackEntry, entry_id)
        tournament_id, stage = entry.tournament_id, entry.stage

    # rank writes leave versions alone, so this pass never conflicts with editors
    async with session_factory() as session:
        async with session.begin():
            await recalculate_ranks(session, tournament_id, stage)

    return ScoreReport(
        record_id=entry_id,
        version=update.new_version,
        completed=update.changes.get("total_time") is not None,
        rate_limit=rate,
        update=update,
    )
