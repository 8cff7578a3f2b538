"""
Integration tests — ORM models and the versioned repository.

Each test function receives a fresh in-memory SQLite database through the
`async_session` fixture defined in conftest.py.

Coverage:
  - Model defaults and unique constraints
  - Tournament cascade delete
  - VersionedRepository: find_by_id / find_many / current_version
  - update_if_version: bump by one, conflict on stale, not-found on missing
  - write_derived leaves the version alone
  - constraint names from the metadata naming convention
"""
from __future__ import annotations

import pytest
from sqlalchemy import UniqueConstraint, select
from sqlalchemy.exc import IntegrityError

from kartcup.errors import RecordNotFound, VersionConflict
from kartcup.models.models import (
    EventFormat,
    Match,
    Player,
    Qualification,
    Stage,
    TimeAttackEntry,
    Tournament,
    TournamentStatus,
)
from kartcup.services.repository import VersionedRepository


# ─────────────────────────── Helpers ──────────────────────────────────────────

async def _make_tournament(session, name: str = "Test Cup") -> Tournament:
    t = Tournament(name=name)
    session.add(t)
    await session.flush()
    return t


async def _make_players(session, n: int) -> list[Player]:
    players = [Player(name=f"Driver {i}", nickname=f"d{i}") for i in range(n)]
    session.add_all(players)
    await session.flush()
    return players


async def _make_match(session, tid: int, p1: int, p2: int, number: int = 1) -> Match:
    m = Match(
        tournament_id=tid,
        event_format=EventFormat.BATTLE,
        stage=Stage.QUALIFICATION,
        match_number=number,
        player1_id=p1,
        player2_id=p2,
    )
    session.add(m)
    await session.flush()
    return m


# ─────────────────────────── Models ───────────────────────────────────────────

class TestModelDefaults:

    async def test_match_defaults(self, async_session) -> None:
        t = await _make_tournament(async_session)
        a, b = await _make_players(async_session, 2)
        m = await _make_match(async_session, t.id, a.id, b.id)
        await async_session.commit()

        assert (m.score1, m.score2, m.version) == (0, 0, 0)
        assert m.completed is False
        assert m.is_bye is False
        assert m.involves(a.id) and not m.involves(999)

    async def test_tournament_starts_in_draft(self, async_session) -> None:
        t = await _make_tournament(async_session)
        await async_session.commit()
        assert t.status == TournamentStatus.DRAFT

    async def test_time_attack_entry_defaults(self, async_session) -> None:
        t = await _make_tournament(async_session)
        (p,) = await _make_players(async_session, 1)
        e = TimeAttackEntry(tournament_id=t.id, player_id=p.id, times={"MC1": "1:00.000"})
        async_session.add(e)
        await async_session.commit()

        assert e.stage == Stage.QUALIFICATION
        assert e.qualification_points == 0
        assert e.total_time is None


class TestConstraints:

    async def test_duplicate_nickname_rejected(self, async_session) -> None:
        async_session.add_all([Player(name="A", nickname="same"), Player(name="B", nickname="same")])
        with pytest.raises(IntegrityError):
            await async_session.flush()

    async def test_one_standings_row_per_player_and_format(self, async_session) -> None:
        t = await _make_tournament(async_session)
        (p,) = await _make_players(async_session, 1)
        for fmt in (EventFormat.BATTLE, EventFormat.RACE):
            async_session.add(Qualification(tournament_id=t.id, event_format=fmt, player_id=p.id))
        await async_session.flush()

        async_session.add(Qualification(tournament_id=t.id, event_format=EventFormat.BATTLE, player_id=p.id))
        with pytest.raises(IntegrityError):
            await async_session.flush()

    async def test_match_number_unique_per_stage(self, async_session) -> None:
        t = await _make_tournament(async_session)
        a, b = await _make_players(async_session, 2)
        await _make_match(async_session, t.id, a.id, b.id, number=1)
        with pytest.raises(IntegrityError):
            await _make_match(async_session, t.id, b.id, a.id, number=1)

    def test_unique_constraints_named_by_convention(self) -> None:
        def names(model) -> set[str]:
            return {
                str(c.name) for c in model.__table__.constraints if isinstance(c, UniqueConstraint)
            }

        assert "uq_matches_tournament_id_event_format_stage_match_number" in names(Match)
        assert "uq_qualifications_tournament_id_event_format_player_id" in names(Qualification)
        assert "uq_time_attack_entries_tournament_id_player_id_stage" in names(TimeAttackEntry)

    async def test_deleting_tournament_cascades(self, async_session) -> None:
        t = await _make_tournament(async_session)
        a, b = await _make_players(async_session, 2)
        await _make_match(async_session, t.id, a.id, b.id)
        async_session.add(Qualification(tournament_id=t.id, event_format=EventFormat.BATTLE, player_id=a.id))
        await async_session.commit()

        loaded = await async_session.get(Tournament, t.id)
        await async_session.refresh(loaded, ["matches", "qualifications", "time_attack_entries"])
        await async_session.delete(loaded)
        await async_session.commit()

        assert (await async_session.execute(select(Match))).scalars().all() == []
        assert (await async_session.execute(select(Qualification))).scalars().all() == []


# ─────────────────────────── VersionedRepository ──────────────────────────────

class TestVersionedRepository:

    async def test_find_by_id(self, async_session) -> None:
        t = await _make_tournament(async_session)
        a, b = await _make_players(async_session, 2)
        m = await _make_match(async_session, t.id, a.id, b.id)
        await async_session.commit()

        repo = VersionedRepository(async_session, Match)
        assert (await repo.find_by_id(m.id)).id == m.id
        assert await repo.find_by_id(9999) is None

    async def test_find_many_ordered(self, async_session) -> None:
        t = await _make_tournament(async_session)
        a, b = await _make_players(async_session, 2)
        for n in (3, 1, 2):
            await _make_match(async_session, t.id, a.id, b.id, number=n)
        await async_session.commit()

        repo = VersionedRepository(async_session, Match)
        found = await repo.find_many(Match.tournament_id == t.id, order_by=[Match.match_number])
        assert [m.match_number for m in found] == [1, 2, 3]

    async def test_update_bumps_version_by_one(self, async_session) -> None:
        t = await _make_tournament(async_session)
        a, b = await _make_players(async_session, 2)
        m = await _make_match(async_session, t.id, a.id, b.id)
        await async_session.commit()

        repo = VersionedRepository(async_session, Match)
        assert await repo.update_if_version(m.id, 0, {"score1": 3, "score2": 1}) == 1
        assert await repo.update_if_version(m.id, 1, {"completed": True}) == 2
        await async_session.commit()

        stored = await async_session.get(Match, m.id, populate_existing=True)
        assert (stored.score1, stored.score2, stored.completed, stored.version) == (3, 1, True, 2)
        assert await repo.current_version(m.id) == 2

    async def test_stale_version_leaves_row_untouched(self, async_session) -> None:
        t = await _make_tournament(async_session)
        a, b = await _make_players(async_session, 2)
        m = await _make_match(async_session, t.id, a.id, b.id)
        await async_session.commit()

        repo = VersionedRepository(async_session, Match)
        await repo.update_if_version(m.id, 0, {"score1": 2})
        with pytest.raises(VersionConflict) as exc_info:
            await repo.update_if_version(m.id, 0, {"score1": 5})

        assert exc_info.value.expected_version == 0
        assert exc_info.value.current_version == 1
        stored = await async_session.get(Match, m.id, populate_existing=True)
        assert stored.score1 == 2

    async def test_missing_record_not_found(self, async_session) -> None:
        repo = VersionedRepository(async_session, Match)
        with pytest.raises(RecordNotFound) as exc_info:
            await repo.update_if_version(4242, 0, {"score1": 1})
        assert (exc_info.value.model_name, exc_info.value.record_id) == ("Match", 4242)

    async def test_derived_write_keeps_version(self, async_session) -> None:
        t = await _make_tournament(async_session)
        (p,) = await _make_players(async_session, 1)
        entry = TimeAttackEntry(tournament_id=t.id, player_id=p.id, times={})
        async_session.add(entry)
        await async_session.commit()

        repo = VersionedRepository(async_session, TimeAttackEntry)
        await repo.write_derived(entry.id, {"rank": 4, "qualification_points": 120})
        await async_session.commit()

        stored = await async_session.get(TimeAttackEntry, entry.id, populate_existing=True)
        assert (stored.rank, stored.qualification_points, stored.version) == (4, 120, 0)
        # a scorer holding the old version can still write
        assert await repo.update_if_version(entry.id, 0, {"times": {"MC1": "1:00.000"}}) == 1
