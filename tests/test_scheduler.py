"""
Unit + integration tests — Qualification scheduler (scheduler.py).

Coverage:
  - assign_groups: permutation, balanced spread, input untouched, seeded rng
  - generate_round_robin: n·(n−1)/2 pairs per group, shared numbering
  - setup_qualification: rows + matches persisted, previous stage replaced
"""
from __future__ import annotations

import random
from itertools import combinations

import pytest
from sqlalchemy import select

from kartcup.errors import ScoreValidationError
from kartcup.models.models import EventFormat, Match, Player, Qualification, Stage, Tournament
from kartcup.services.scheduler import (
    GroupedPlayer,
    assign_groups,
    generate_round_robin,
    group_sizes,
    setup_qualification,
)


def _players(n: int) -> list[GroupedPlayer]:
    return [GroupedPlayer(player_id=i) for i in range(1, n + 1)]


# ─────────────────────────── assign_groups ────────────────────────────────────

class TestAssignGroups:

    @pytest.mark.parametrize("n", [0, 1, 2, 3, 7, 12, 25])
    def test_output_is_a_permutation(self, n: int) -> None:
        players = _players(n)
        grouped = assign_groups(players, rng=random.Random(42))
        assert sorted(p.player_id for p in grouped) == [p.player_id for p in players]

    @pytest.mark.parametrize("n", [3, 4, 5, 10, 11, 24])
    def test_group_sizes_differ_by_at_most_one(self, n: int) -> None:
        sizes = group_sizes(assign_groups(_players(n), rng=random.Random(n)))
        assert max(sizes.values()) - min(sizes.values()) <= 1

    def test_default_groups_are_a_b_c(self) -> None:
        grouped = assign_groups(_players(9), rng=random.Random(1))
        assert set(p.group for p in grouped) == {"A", "B", "C"}

    def test_custom_group_labels(self) -> None:
        grouped = assign_groups(_players(4), groups=["X", "Y"], rng=random.Random(1))
        assert group_sizes(grouped) == {"X": 2, "Y": 2}

    def test_input_is_not_mutated(self) -> None:
        players = _players(6)
        snapshot = list(players)
        assign_groups(players, rng=random.Random(3))
        assert players == snapshot
        assert all(p.group is None for p in players)

    def test_same_seed_same_assignment(self) -> None:
        a = assign_groups(_players(10), rng=random.Random(7))
        b = assign_groups(_players(10), rng=random.Random(7))
        assert a == b

    def test_seeding_is_preserved(self) -> None:
        players = [GroupedPlayer(player_id=i, seeding=i * 10) for i in range(1, 5)]
        grouped = assign_groups(players, rng=random.Random(0))
        assert {p.player_id: p.seeding for p in grouped} == {1: 10, 2: 20, 3: 30, 4: 40}


# ─────────────────────────── generate_round_robin ─────────────────────────────

class TestRoundRobin:

    @pytest.mark.parametrize("n", [0, 1, 2, 3, 4, 6, 9])
    def test_pair_count(self, n: int) -> None:
        players = [GroupedPlayer(player_id=i, group="A") for i in range(n)]
        assert len(generate_round_robin(players)) == n * (n - 1) // 2

    def test_every_pair_exactly_once_never_self(self) -> None:
        players = [GroupedPlayer(player_id=i, group="A") for i in range(1, 6)]
        matches = generate_round_robin(players)
        pairs = [frozenset((m.player1_id, m.player2_id)) for m in matches]
        assert all(len(p) == 2 for p in pairs)
        assert set(pairs) == {frozenset(c) for c in combinations(range(1, 6), 2)}
        assert len(pairs) == len(set(pairs))

    def test_no_cross_group_pairs(self) -> None:
        players = [
            GroupedPlayer(1, "A"), GroupedPlayer(2, "B"),
            GroupedPlayer(3, "A"), GroupedPlayer(4, "B"),
            GroupedPlayer(5, "A"),
        ]
        group_of = {p.player_id: p.group for p in players}
        for m in generate_round_robin(players):
            assert group_of[m.player1_id] == group_of[m.player2_id] == m.group

    def test_match_numbers_shared_across_groups(self) -> None:
        players = [GroupedPlayer(i, "A") for i in range(3)] + [GroupedPlayer(i, "B") for i in range(3, 6)]
        matches = generate_round_robin(players)
        assert [m.match_number for m in matches] == list(range(1, 7))
        assert [m.group for m in matches] == ["A"] * 3 + ["B"] * 3

    def test_groups_in_first_appearance_order(self) -> None:
        players = [GroupedPlayer(1, "C"), GroupedPlayer(2, "A"), GroupedPlayer(3, "C"), GroupedPlayer(4, "A")]
        matches = generate_round_robin(players)
        assert [m.group for m in matches] == ["C", "A"]

    def test_duplicate_player_ids_collapsed(self) -> None:
        players = [GroupedPlayer(1, "A"), GroupedPlayer(1, "A"), GroupedPlayer(2, "A")]
        matches = generate_round_robin(players)
        assert len(matches) == 1

    def test_stage_is_qualification(self) -> None:
        matches = generate_round_robin([GroupedPlayer(1, "A"), GroupedPlayer(2, "A")])
        assert matches[0].stage == Stage.QUALIFICATION


# ─────────────────────────── setup_qualification ──────────────────────────────

async def _seed_players(session, n: int) -> tuple[int, list[GroupedPlayer]]:
    t = Tournament(name="Spring Cup")
    players = [Player(name=f"Driver {i}", nickname=f"drv{i}") for i in range(n)]
    session.add(t)
    session.add_all(players)
    await session.flush()
    return t.id, [GroupedPlayer(player_id=p.id) for p in players]


class TestSetupQualification:

    async def test_rows_and_matches_persisted(self, async_session) -> None:
        tid, players = await _seed_players(async_session, 6)

        quals, matches = await setup_qualification(
            async_session, tid, EventFormat.BATTLE, players, rng=random.Random(5)
        )
        await async_session.commit()

        assert len(quals) == 6
        assert len(matches) == 3   # three groups of two, one match each
        stored = (await async_session.execute(select(Match))).scalars().all()
        assert len(stored) == len(matches)
        assert all(m.stage == Stage.QUALIFICATION and m.version == 0 for m in stored)

    async def test_rerun_replaces_previous_stage(self, async_session) -> None:
        tid, players = await _seed_players(async_session, 4)
        await setup_qualification(async_session, tid, EventFormat.RACE, players, rng=random.Random(1))
        await setup_qualification(
            async_session, tid, EventFormat.RACE,
            [GroupedPlayer(p.player_id, "A") for p in players],
            randomize=False,
        )
        await async_session.commit()

        quals = (await async_session.execute(select(Qualification))).scalars().all()
        matches = (await async_session.execute(select(Match))).scalars().all()
        assert len(quals) == 4
        assert {q.group for q in quals} == {"A"}
        assert len(matches) == 6

    async def test_formats_are_independent(self, async_session) -> None:
        tid, players = await _seed_players(async_session, 3)
        await setup_qualification(async_session, tid, EventFormat.BATTLE, players, rng=random.Random(1))
        await setup_qualification(async_session, tid, EventFormat.GRAND_PRIX, players, rng=random.Random(2))
        await async_session.commit()

        quals = (await async_session.execute(select(Qualification))).scalars().all()
        assert len(quals) == 6

    async def test_time_attack_rejected(self, async_session) -> None:
        tid, players = await _seed_players(async_session, 2)
        with pytest.raises(ScoreValidationError):
            await setup_qualification(async_session, tid, EventFormat.TIME_ATTACK, players)
