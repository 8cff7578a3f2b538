"""
Typed failures raised by the kartcup core.

Only the optimistic-locking controller retries; everything else either
returns a result or raises one of these immediately.
"""
from __future__ import annotations

from typing import Optional


class KartcupError(Exception):
    """Base exception for competition core errors."""


class RecordNotFound(KartcupError):
    """The entity addressed by an operation does not exist."""

    def __init__(self, model_name: str, record_id: int) -> None:
        super().__init__(f"{model_name} {record_id} not found")
        self.model_name = model_name
        self.record_id  = record_id


class VersionConflict(KartcupError):
    """
    The stored version moved past the caller's expected version.

    Carries the authoritative ``current_version`` so the caller can re-read
    and resubmit. Never retried by the core.
    """

    def __init__(self, record_id: int, expected_version: int, current_version: int) -> None:
        super().__init__(
            f"Version mismatch on {record_id}: expected {expected_version}, got {current_version}"
        )
        self.record_id        = record_id
        self.expected_version = expected_version
        self.current_version  = current_version


class TransientWriteFailure(KartcupError):
    """Persistence-layer contention that outlived the retry budget."""

    def __init__(self, record_id: int, attempts: int) -> None:
        super().__init__(f"Write to {record_id} failed after {attempts} attempts")
        self.record_id = record_id
        self.attempts  = attempts


class ScoreValidationError(KartcupError):
    """Malformed scores or a format rule violation; raised before any write."""


class RateLimitExceeded(KartcupError):
    """The caller exhausted its request budget for the current window."""

    def __init__(self, identifier: str, retry_after: Optional[int]) -> None:
        super().__init__(f"Rate limit exceeded for {identifier}; retry after {retry_after}s")
        self.identifier  = identifier
        self.retry_after = retry_after
