"""
Standings engine for the head-to-head formats (battle, match race, grand prix).

Algorithm (per player, per format)
----------------------------------
1. Keep only completed matches the player took part in.
2. Classify each from the player's side with the format's ``FormatRule``:
   win / loss / tie. Rounds won and lost are the player's own and the
   opponent's tallies.
3. score  = 2 × wins + ties
   points = rounds won − rounds lost   (battle, match race)
          = accumulated driver points  (grand prix)

The result is a pure function of the match set, so recomputing it any
number of times yields the same row.

Ordering
--------
Group ASC, score DESC, points DESC.

Finals points
-------------
Fixed placement table used as input to the overall tournament ranking.
Time attack has its own table; the bracket formats share one with tied
tiers for players eliminated in the same round.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from kartcup.models.models import EventFormat, Match, Qualification, Stage
from kartcup.services.format_rules import FormatRule, Outcome, PointsMode, get_rule
from kartcup.services.repository import VersionedRepository

logger = logging.getLogger(__name__)


@dataclass
class PlayerStats:
    mp:          int = 0
    wins:        int = 0
    ties:        int = 0
    losses:      int = 0
    win_rounds:  int = 0
    loss_rounds: int = 0


@dataclass
class PlayerAggregate:
    """Derived standings values for one player."""
    player_id: int
    stats:     PlayerStats = field(default_factory=PlayerStats)
    score:     int = 0
    points:    int = 0

    def as_patch(self) -> Dict[str, int]:
        return {
            "mp":          self.stats.mp,
            "wins":        self.stats.wins,
            "ties":        self.stats.ties,
            "losses":      self.stats.losses,
            "win_rounds":  self.stats.win_rounds,
            "loss_rounds": self.stats.loss_rounds,
            "score":       self.score,
            "points":      self.points,
        }


# ─────────────────────────── Pure aggregation ────────────────────────────────

def aggregate_player_stats(
    player_id: int,
    matches: Iterable[Match],
    rule: FormatRule,
) -> PlayerAggregate:
    """
    Fold a player's completed matches into standings values.

    Parameters
    ----------
    player_id : whose perspective to score from
    matches   : any iterable of match-like objects; unrelated and unfinished
                matches are skipped
    rule      : the format's scoring rule

    Raises ScoreValidationError if a stored battle result has no winner.
    """
    stats = PlayerStats()
    for m in matches:
        if not m.completed or not m.involves(player_id):
            continue
        if m.player1_id == player_id:
            own, opponent = m.score1, m.score2
        else:
            own, opponent = m.score2, m.score1

        stats.mp += 1
        outcome = rule.classify(own, opponent)
        if outcome == Outcome.WIN:
            stats.wins += 1
        elif outcome == Outcome.LOSS:
            stats.losses += 1
        else:
            stats.ties += 1
        stats.win_rounds  += own
        stats.loss_rounds += opponent

    if rule.points_mode == PointsMode.TOTAL:
        points = stats.win_rounds
    else:
        points = stats.win_rounds - stats.loss_rounds

    return PlayerAggregate(
        player_id=player_id,
        stats=stats,
        score=rule.standings_score(stats.wins, stats.ties),
        points=points,
    )


def rank_standings(rows: Sequence[Qualification]) -> List[Qualification]:
    """Order standings rows by group, then score DESC, then points DESC."""
    return sorted(rows, key=lambda q: (q.group or "", -q.score, -q.points))


# ─────────────────────────── Persistence boundary ────────────────────────────

async def recalculate_standings(
    session: AsyncSession,
    tournament_id: int,
    event_format: str,
) -> Dict[int, PlayerAggregate]:
    """
    Recompute every qualification row of one format from a fresh read of the
    completed qualification matches.

    Each row is written through ``update_if_version`` inside the caller's
    transaction; a concurrent recompute that got there first surfaces as
    VersionConflict and rolls the whole batch back.
    """
    rule = get_rule(event_format)

    match_repo = VersionedRepository(session, Match)
    matches = await match_repo.find_many(
        Match.tournament_id == tournament_id,
        Match.event_format == event_format,
        Match.stage == Stage.QUALIFICATION,
        Match.completed.is_(True),
    )

    result = await session.execute(
        select(Qualification)
        .where(
            Qualification.tournament_id == tournament_id,
            Qualification.event_format == event_format,
        )
        .execution_options(populate_existing=True)
    )
    rows = list(result.scalars().all())

    qual_repo = VersionedRepository(session, Qualification)
    aggregates: Dict[int, PlayerAggregate] = {}
    for q in rows:
        agg = aggregate_player_stats(q.player_id, matches, rule)
        await qual_repo.update_if_version(q.id, q.version, agg.as_patch())
        aggregates[q.player_id] = agg

    logger.info(
        "Standings recalculated for tournament %s (%s): %d players from %d matches",
        tournament_id, EventFormat.LABELS.get(event_format, event_format),
        len(rows), len(matches),
    )
    return aggregates


async def get_standings(
    session: AsyncSession,
    tournament_id: int,
    event_format: str,
) -> List[Qualification]:
    result = await session.execute(
        select(Qualification)
        .where(
            Qualification.tournament_id == tournament_id,
            Qualification.event_format == event_format,
        )
        .options(selectinload(Qualification.player))
        .execution_options(populate_existing=True)
    )
    return rank_standings(list(result.scalars().all()))


# ─────────────────────────── Finals points ───────────────────────────────────

TA_FINALS_POINTS: tuple[int, ...] = (
    2000, 1600, 1300, 1000, 800, 700, 600, 500,
    420, 400, 380, 360, 340, 320, 300, 280,
    160, 150, 140, 130, 120, 110, 100, 90,
)

# Tiers are tied: 5–6 lost in the losers semis, 7–8 in the losers quarters …
FINALS_POINTS: tuple[int, ...] = (
    2000, 1600, 1300, 1000,
    750, 750, 550, 550,
    400, 400, 400, 400,
    300, 300, 300, 300,
    150, 150, 150, 150,
    100, 100, 100, 100,
)


def finals_points_for(place: int, event_format: Optional[str] = None) -> int:
    """Finals points for a 1-based finishing place; 0 outside the table."""
    table = TA_FINALS_POINTS if event_format == EventFormat.TIME_ATTACK else FINALS_POINTS
    if place < 1 or place > len(table):
        return 0
    return table[place - 1]
