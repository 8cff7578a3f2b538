"""
Shared pytest fixtures for kartcup tests.

Sets required environment variables BEFORE any kartcup module is imported so
that pydantic-settings and SQLAlchemy engine initialisation use safe test values.
"""
from __future__ import annotations

import os
from typing import AsyncGenerator, Optional

# ── Set env vars before any kartcup import ────────────────────────────────────
os.environ.setdefault("BOT_TOKEN", "test-token-for-pytest")
os.environ.setdefault("ADMIN_IDS", "123456789")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# ── Third-party ───────────────────────────────────────────────────────────────
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# ── kartcup imports (safe after env vars are set) ─────────────────────────────
from kartcup.models.base import Base
from kartcup.services.optimistic_lock import RetryPolicy


# ── DB fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
async def async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a fresh AsyncSession backed by an isolated in-memory SQLite database.
    Schema is created fresh for every test function; engine is always disposed
    on teardown, even if the test raises an exception.
    """
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory over a temp-file SQLite database.

    Versioned writes open one session per attempt, so the schema has to
    outlive a single connection; a file database gives every session the
    same data.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'kartcup.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    """Retry policy with no meaningful backoff."""
    return RetryPolicy(max_retries=3, base_delay_ms=1, max_delay_ms=2)


# ── Mock helpers ──────────────────────────────────────────────────────────────

class _MockMatch:
    """Minimal match object for standings tests (no DB required)."""

    def __init__(
        self,
        player1_id: int,
        player2_id: int,
        score1: int,
        score2: int,
        completed: bool = True,
    ) -> None:
        self.player1_id = player1_id
        self.player2_id = player2_id
        self.score1     = score1
        self.score2     = score2
        self.completed  = completed

    def involves(self, player_id: int) -> bool:
        return player_id in (self.player1_id, self.player2_id)


class _MockEntry:
    """Minimal time attack entry: player id + course → time string."""

    def __init__(self, player_id: int, times: Optional[dict[str, str]] = None) -> None:
        self.player_id = player_id
        self.times     = times or {}


@pytest.fixture
def make_match():
    """Factory fixture — returns a callable that builds a _MockMatch."""
    return _MockMatch


@pytest.fixture
def make_entry():
    return _MockEntry
