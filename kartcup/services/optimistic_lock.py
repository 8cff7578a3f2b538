"""
Optimistic concurrency control for every mutable record.

One primitive, ``update_versioned``, serves matches of every format and
time attack entries alike. Callers supply only the model and a field-level
mutation; the conflict / retry policy is identical for all of them.

Failure semantics
-----------------
RecordNotFound         — no row with that id; raised as-is.
VersionConflict        — a competing edit won; raised with the current
                         version, never retried (the caller must re-read).
TransientWriteFailure  — the database kept reporting lock / serialization
                         contention after ``max_retries`` backoff rounds.
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Type

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kartcup.config import settings
from kartcup.errors import RecordNotFound, TransientWriteFailure, VersionConflict
from kartcup.models.models import Match, TimeAttackEntry
from kartcup.services.repository import VersionedRepository

logger = logging.getLogger(__name__)

Mutation = Callable[[Any], Dict[str, Any]]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries:   int = 3
    base_delay_ms: int = 100
    max_delay_ms:  int = 1000

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.OCC_MAX_RETRIES,
            base_delay_ms=settings.OCC_BASE_DELAY_MS,
            max_delay_ms=settings.OCC_MAX_DELAY_MS,
        )

    def delay_ms(self, attempt: int) -> float:
        """Exponential backoff capped at max_delay_ms, plus jitter up to one base delay."""
        delay = min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)
        return delay + random.random() * self.base_delay_ms


@dataclass
class VersionedUpdate:
    """Structured outcome of a successful versioned write."""
    record_id:   int
    old_version: int
    new_version: int
    changes:     Dict[str, Any] = field(default_factory=dict)


async def update_versioned(
    session_factory: async_sessionmaker[AsyncSession],
    model: Type[Any],
    record_id: int,
    expected_version: int,
    mutation: Mutation,
    policy: Optional[RetryPolicy] = None,
) -> VersionedUpdate:
    """
    Read, check and conditionally write one record inside a single transaction.

    Parameters
    ----------
    session_factory  : produces a fresh AsyncSession per attempt
    model            : ORM class with ``id`` and ``version`` columns
    record_id        : primary key of the record to mutate
    expected_version : the version the caller last read
    mutation         : receives the current record, returns the field patch;
                       it must not touch ``version``
    policy           : retry bounds; defaults come from settings
    """
    policy = policy or RetryPolicy.from_settings()
    attempt = 0

    while True:
        try:
            async with session_factory() as session:
                async with session.begin():
                    repo = VersionedRepository(session, model)
                    current = await repo.find_by_id(record_id)
                    if current is None:
                        raise RecordNotFound(model.__name__, record_id)
                    if current.version != expected_version:
                        raise VersionConflict(record_id, expected_version, current.version)

                    patch = dict(mutation(current))
                    patch.pop("version", None)
                    new_version = await repo.update_if_version(record_id, expected_version, patch)

            outcome = VersionedUpdate(
                record_id=record_id,
                old_version=expected_version,
                new_version=new_version,
                changes=patch,
            )
            logger.info(
                "%s %s updated: version %d -> %d (%s)",
                model.__name__, record_id, expected_version, new_version, ", ".join(sorted(patch)),
            )
            return outcome

        except VersionConflict as exc:
            logger.info(
                "%s %s version conflict: expected %d, current %d",
                model.__name__, record_id, exc.expected_version, exc.current_version,
            )
            raise
        except OperationalError as exc:
            if attempt >= policy.max_retries:
                logger.error(
                    "%s %s write failed after %d attempts: %s",
                    model.__name__, record_id, attempt + 1, exc,
                )
                raise TransientWriteFailure(record_id, attempt + 1) from exc

            delay = policy.delay_ms(attempt)
            logger.warning(
                "%s %s transient write failure (attempt %d), retrying in %.0f ms",
                model.__name__, record_id, attempt + 1, delay,
            )
            attempt += 1
            await asyncio.sleep(delay / 1000.0)


# ── Entity wrappers ───────────────────────────────────────────────────────────

async def update_match_score(
    session_factory: async_sessionmaker[AsyncSession],
    match_id: int,
    expected_version: int,
    score1: int,
    score2: int,
    completed: bool = False,
    rounds: Optional[List[Dict[str, Any]]] = None,
    policy: Optional[RetryPolicy] = None,
) -> VersionedUpdate:
    """Score update shared by battle, match race and grand prix matches."""

    def mutation(match: Match) -> Dict[str, Any]:
        return {
            "score1":    score1,
            "score2":    score2,
            "completed": completed,
            "rounds":    rounds,
        }

    return await update_versioned(
        session_factory, Match, match_id, expected_version, mutation, policy
    )


async def update_time_attack_entry(
    session_factory: async_sessionmaker[AsyncSession],
    entry_id: int,
    expected_version: int,
    data: Dict[str, Any],
    policy: Optional[RetryPolicy] = None,
) -> VersionedUpdate:
    """Patch a time attack entry (times, total_time, rank …)."""
    allowed = {"times", "total_time", "rank", "course_scores", "qualification_points"}
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unsupported entry fields: {', '.join(sorted(unknown))}")

    return await update_versioned(
        session_factory, TimeAttackEntry, entry_id, expected_version, lambda _: data, policy
    )
