"""
Qualification scheduler — random balanced groups + round-robin pairings.

assign_groups
    Fisher–Yates shuffle of a copy, then group label by shuffled position
    modulo group count. Group sizes differ by at most one and the input
    list is never mutated.

generate_round_robin
    For every group, every unordered pair of distinct players plays once.
    Match numbers come from one counter shared across groups.

setup_qualification
    Persistence boundary: replaces a format's qualification rows and matches
    for a tournament with a freshly generated set in one flush.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from kartcup.config import settings
from kartcup.models.models import EventFormat, Match, Qualification, Stage
from kartcup.services.format_rules import get_rule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupedPlayer:
    player_id: int
    group:     Optional[str] = None
    seeding:   Optional[int] = None


@dataclass(frozen=True)
class ScheduledMatch:
    match_number: int
    player1_id:   int
    player2_id:   int
    group:        Optional[str]
    stage:        str = Stage.QUALIFICATION


# ─────────────────────────── Pure scheduling ──────────────────────────────────

def assign_groups(
    players: Sequence[GroupedPlayer],
    groups: Optional[Sequence[str]] = None,
    rng: Optional[random.Random] = None,
) -> List[GroupedPlayer]:
    """Shuffle players and deal them round-robin into ``groups``."""
    labels = tuple(groups) if groups else settings.group_labels
    rng = rng or random.Random()

    shuffled = list(players)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]

    return [replace(p, group=labels[idx % len(labels)]) for idx, p in enumerate(shuffled)]


def generate_round_robin(players: Sequence[GroupedPlayer]) -> List[ScheduledMatch]:
    """
    Emit one match per unordered pair inside each group.

    Groups are processed in order of first appearance; a group of n players
    yields n·(n−1)/2 matches. Duplicate player ids inside a group are
    collapsed so nobody is paired with themselves.
    """
    by_group: Dict[Optional[str], List[int]] = {}
    for p in players:
        members = by_group.setdefault(p.group, [])
        if p.player_id not in members:
            members.append(p.player_id)

    matches: List[ScheduledMatch] = []
    match_number = 1
    for group, members in by_group.items():
        for i in range(len(members)):
            for j in range(i + 1, len(members)):
                matches.append(ScheduledMatch(
                    match_number=match_number,
                    player1_id=members[i],
                    player2_id=members[j],
                    group=group,
                ))
                match_number += 1
    return matches


def group_sizes(players: Sequence[GroupedPlayer]) -> Dict[Optional[str], int]:
    sizes: Dict[Optional[str], int] = {}
    for p in players:
        sizes[p.group] = sizes.get(p.group, 0) + 1
    return sizes


# ─────────────────────────── Persistence boundary ────────────────────────────

async def setup_qualification(
    session: AsyncSession,
    tournament_id: int,
    event_format: str,
    players: Sequence[GroupedPlayer],
    randomize: bool = True,
    rng: Optional[random.Random] = None,
) -> Tuple[List[Qualification], List[Match]]:
    """
    Replace the qualification stage of one match format.

    When ``randomize`` is set the players are dealt into groups first;
    otherwise their given group labels are kept.
    """
    get_rule(event_format)   # reject time attack / unknown formats early

    if randomize:
        players = assign_groups(players, rng=rng)

    await session.execute(
        delete(Match).where(
            Match.tournament_id == tournament_id,
            Match.event_format == event_format,
            Match.stage == Stage.QUALIFICATION,
        )
    )
    await session.execute(
        delete(Qualification).where(
            Qualification.tournament_id == tournament_id,
            Qualification.event_format == event_format,
        )
    )

    qualifications = [
        Qualification(
            tournament_id=tournament_id,
            event_format=event_format,
            player_id=p.player_id,
            group=p.group,
            seeding=p.seeding,
        )
        for p in players
    ]
    matches = [
        Match(
            tournament_id=tournament_id,
            event_format=event_format,
            stage=Stage.QUALIFICATION,
            match_number=m.match_number,
            group=m.group,
            player1_id=m.player1_id,
            player2_id=m.player2_id,
        )
        for m in generate_round_robin(players)
    ]
    session.add_all(qualifications)
    session.add_all(matches)
    await session.flush()

    logger.info(
        "Qualification set up for tournament %s (%s): %d players, %d matches",
        tournament_id, EventFormat.LABELS.get(event_format, event_format),
        len(qualifications), len(matches),
    )
    return qualifications, matches
