"""
Time attack scoring.

Algorithm (per course, independently for all 20 courses)
--------------------------------------------------------
1. Collect entries with a parseable time for the course; sort fastest first.
2. Build a linear table of N values: 50 · (N − r) / (N − 1) for rank r,
   so rank 1 gets 50 and rank N gets 0 (N = 1 → [50]).
3. Entries with exactly equal times share the average of the table values
   their rank range would have received.
4. Entries without a time score 0 on that course.

The qualification total is the sum of the 20 course scores, floored once.
Ranking: qualification points DESC, then total time ASC; entries without a
complete set of times sort last.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kartcup.models.models import COURSES, Stage, TimeAttackEntry
from kartcup.services.repository import VersionedRepository

logger = logging.getLogger(__name__)

MAX_COURSE_SCORE = 50.0

TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})\.(\d{1,3})$")


# ─────────────────────────── Time strings ────────────────────────────────────

def time_to_ms(value: Optional[str]) -> Optional[int]:
    """
    Parse 'M:SS.mmm' (or 'MM:SS.m', 'MM:SS.mm') into milliseconds.

    A short fraction is right-padded: '1:23.4' is 83 400 ms. Empty or
    malformed input returns None.
    """
    if not value:
        return None
    m = TIME_RE.match(value.strip())
    if not m:
        return None
    minutes, seconds, fraction = m.groups()
    return int(minutes) * 60_000 + int(seconds) * 1000 + int(fraction.ljust(3, "0"))


def ms_to_display(ms: Optional[int]) -> str:
    if ms is None:
        return "-"
    minutes, rest = divmod(ms, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{minutes}:{seconds:02d}.{millis:03d}"


def calculate_entry_total(times: Optional[Mapping[str, str]]) -> Optional[int]:
    """Total time in ms, or None unless every course has a valid time."""
    if not times:
        return None
    total = 0
    for course in COURSES:
        ms = time_to_ms(times.get(course))
        if ms is None:
            return None
        total += ms
    return total


# ─────────────────────────── Course scoring ──────────────────────────────────

def generate_score_table(n: int) -> List[float]:
    if n <= 0:
        return []
    if n == 1:
        return [MAX_COURSE_SCORE]
    return [MAX_COURSE_SCORE * (n - 1 - i) / (n - 1) for i in range(n)]


def calculate_course_scores(entries: Iterable[Any], course: str) -> Dict[int, float]:
    """
    Score one course for every entry, keyed by player id.

    ``entries`` are entry-like objects with ``player_id`` and ``times``.
    """
    scores: Dict[int, float] = {}
    timed: List[tuple[int, int]] = []
    for e in entries:
        scores[e.player_id] = 0.0
        ms = time_to_ms((e.times or {}).get(course))
        if ms is not None and ms > 0:
            timed.append((ms, e.player_id))

    timed.sort()
    table = generate_score_table(len(timed))

    i = 0
    while i < len(timed):
        j = i
        while j < len(timed) and timed[j][0] == timed[i][0]:
            j += 1
        shared = sum(table[i:j]) / (j - i)
        for _, player_id in timed[i:j]:
            scores[player_id] = shared
        i = j
    return scores


@dataclass
class EntryScore:
    player_id:            int
    course_scores:        Dict[str, float] = field(default_factory=dict)
    qualification_points: int = 0
    total_time:           Optional[int] = None
    rank:                 Optional[int] = None


def calculate_all_course_scores(entries: Sequence[Any]) -> Dict[int, EntryScore]:
    """Score all courses, sum per entry and floor the sum once."""
    results = {
        e.player_id: EntryScore(player_id=e.player_id, total_time=calculate_entry_total(e.times))
        for e in entries
    }
    for course in COURSES:
        for player_id, score in calculate_course_scores(entries, course).items():
            results[player_id].course_scores[course] = score

    for r in results.values():
        r.qualification_points = math.floor(sum(r.course_scores.values()))
    return results


# ─────────────────────────── Ranking ─────────────────────────────────────────

def _ranking_key(r: EntryScore) -> tuple:
    untimed = r.total_time is None
    return (-r.qualification_points, untimed, r.total_time or 0)


def sort_qualification(results: Iterable[EntryScore]) -> List[EntryScore]:
    return sorted(results, key=_ranking_key)


def assign_ranks(results: Iterable[EntryScore]) -> List[EntryScore]:
    """Competition ranking (1, 2, 2, 4): equal points and equal total share a rank."""
    ordered = sort_qualification(results)
    previous = None
    for position, r in enumerate(ordered, start=1):
        key = _ranking_key(r)
        if key != previous:
            r.rank = position
            previous = key
        else:
            r.rank = ordered[position - 2].rank
    return ordered


# ─────────────────────────── Persistence boundary ────────────────────────────

async def recalculate_ranks(
    session: AsyncSession,
    tournament_id: int,
    stage: str = Stage.QUALIFICATION,
) -> List[EntryScore]:
    """
    Recompute total time, course scores, qualification points and rank for
    every entry of a stage. These are derived fields, so the writes leave
    each entry's version untouched.
    """
    result = await session.execute(
        select(TimeAttackEntry)
        .where(
            TimeAttackEntry.tournament_id == tournament_id,
            TimeAttackEntry.stage == stage,
        )
        .execution_options(populate_existing=True)
    )
    entries = list(result.scalars().all())
    if not entries:
        return []

    ranked = assign_ranks(calculate_all_course_scores(entries).values())
    by_player = {e.player_id: e for e in entries}

    repo = VersionedRepository(session, TimeAttackEntry)
    for r in ranked:
        entry = by_player[r.player_id]
        await repo.write_derived(entry.id, {
            "total_time":           r.total_time,
            "rank":                 r.rank,
            "course_scores":        r.course_scores,
            "qualification_points": r.qualification_points,
        })

    logger.info(
        "Time attack ranks recalculated for tournament %s (%s): %d entries",
        tournament_id, stage, len(entries),
    )
    return ranked
