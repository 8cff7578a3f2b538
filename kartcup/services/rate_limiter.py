"""
Fixed-window request throttle for write-heavy and polling endpoints.

Algorithm
---------
1. Every call first purges records whose window has already ended, then
   evicts the soonest-to-expire records until a new caller fits under the
   cap.
2. A caller with no live record gets a fresh window: count=1,
   reset_at = now + window_ms.
3. Inside a live window the request is rejected once count >= limit,
   otherwise the counter is incremented.

Rollover is lazy; there is no background sweeper. The store is an
explicit object so tests and processes own independent instances.
"""
from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from kartcup.config import settings

logger = logging.getLogger(__name__)


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class RateLimitRecord:
    count:    int
    reset_at: float   # ms on the limiter's clock


@dataclass(frozen=True)
class RateLimitResult:
    allowed:     bool
    remaining:   int
    limit:       int
    reset_at:    float
    retry_after: Optional[int] = None   # whole seconds, only when rejected


@dataclass(frozen=True)
class LimitConfig:
    """A named limit class: same primitive, different numbers."""
    limit:     int
    window_ms: int


class LimitClass:
    SCORE_INPUT = "score_input"
    POLLING     = "polling"
    TOKEN_CHECK = "token_check"
    GENERAL     = "general"

    CONFIGS: dict[str, LimitConfig] = {
        SCORE_INPUT: LimitConfig(limit=20, window_ms=60_000),
        POLLING:     LimitConfig(limit=12, window_ms=60_000),   # one poll per 5 s
        TOKEN_CHECK: LimitConfig(limit=10, window_ms=60_000),
        GENERAL:     LimitConfig(limit=10, window_ms=60_000),
    }


class RateLimiter:
    """
    In-memory fixed-window counter store.

    Parameters
    ----------
    max_store_size : cap on tracked identifiers; beyond it the soonest-to-expire
                     records are evicted
    clock          : millisecond clock, injectable for tests
    """

    def __init__(
        self,
        max_store_size: Optional[int] = None,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        self._max_store_size = max_store_size or settings.RATE_LIMIT_STORE_SIZE
        self._clock          = clock
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock           = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def check(self, identifier: str, limit: int, window_ms: int) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            expired = self._purge_expired(now)
            # a new identifier needs one free slot under the cap
            evicted = self._enforce_size_limit(reserve=0 if identifier in self._records else 1)
            if expired or evicted:
                logger.debug(
                    "Rate limit store cleanup: %d expired, %d evicted", expired, evicted
                )

            record = self._records.get(identifier)
            if record is None or record.reset_at <= now:
                record = RateLimitRecord(count=1, reset_at=now + window_ms)
                self._records[identifier] = record
                return RateLimitResult(
                    allowed=True,
                    remaining=limit - 1,
                    limit=limit,
                    reset_at=record.reset_at,
                )

            if record.count >= limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    limit=limit,
                    reset_at=record.reset_at,
                    retry_after=max(1, math.ceil((record.reset_at - now) / 1000.0)),
                )

            record.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=limit - record.count,
                limit=limit,
                reset_at=record.reset_at,
            )

    def check_limit(self, identifier: str, limit_class: str = LimitClass.GENERAL) -> RateLimitResult:
        """Apply one of the named limit classes; counters are kept per class."""
        config = LimitClass.CONFIGS.get(limit_class, LimitClass.CONFIGS[LimitClass.GENERAL])
        return self.check(f"{limit_class}:{identifier}", config.limit, config.window_ms)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    # ── internals (caller holds the lock) ─────────────────────────────────────

    def _purge_expired(self, now: float) -> int:
        stale = [key for key, rec in self._records.items() if rec.reset_at <= now]
        for key in stale:
            del self._records[key]
        return len(stale)

    def _enforce_size_limit(self, reserve: int = 0) -> int:
        overflow = len(self._records) + reserve - self._max_store_size
        if overflow <= 0:
            return 0
        by_expiry = sorted(self._records.items(), key=lambda item: item[1].reset_at)
        for key, _ in by_expiry[:overflow]:
            del self._records[key]
        return overflow
