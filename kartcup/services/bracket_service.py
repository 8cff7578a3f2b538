"""
Double-elimination bracket generator for the finals stage.

Layout for a bracket of size S = 2^k (k winners rounds)
--------------------------------------------------------
Winners   W1 … Wk            S/2, S/4, … 1 matches
Losers    L1 … L(2k−2)       L1 pairs the W1 losers; W_r losers (r ≥ 2) drop
                             into L(2r−2) against an L-bracket survivor; the
                             odd rounds in between consolidate survivors
Grand     GF                 W-bracket champion (slot 1) vs L-bracket champion

For 8 players that is 7 + 6 + 1 = 14 matches, numbered winners first, then
losers, then the grand final.

Seeding uses the recursive standard order (1, 8, 4, 5, 2, 7, 3, 6 for eight)
so seeds 1 and 2 can only meet in the winners final. Drop-in rounds reverse
the order of incoming losers on alternate rounds so players who already met
are kept apart until the bracket forces a rematch.

When the field is not a power of two the missing seeds are byes, which land
on the top seeds. A slot that can never be filled is *dead*; a match with a
dead slot is flagged ``is_bye`` and its single occupant walks over.

A bracket reset (second grand final) is never part of the generated graph;
``needs_bracket_reset`` signals it and ``create_bracket_reset`` adds it.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from kartcup.config import settings
from kartcup.errors import RecordNotFound, ScoreValidationError
from kartcup.models.models import BracketSection, Match, Qualification, Stage
from kartcup.services.format_rules import get_rule
from kartcup.services.optimistic_lock import VersionedUpdate, update_versioned

logger = logging.getLogger(__name__)


@dataclass
class BracketPlayer:
    """A qualified player entering the bracket."""
    player_id:       int
    qualifying_rank: int                # 1 = best
    name:            str = ""
    losses:          int = 0
    points:          int = 0


@dataclass
class BracketMatch:
    match_number:     int
    bracket:          str               # BracketSection.*
    round:            str               # e.g. "winners_qf", "losers_r1", "grand_final"
    bracket_position: str               # e.g. "wb-r1-m1"
    player1_id:       Optional[int] = None
    player2_id:       Optional[int] = None
    player1_seed:     Optional[int] = None
    player2_seed:     Optional[int] = None
    winner_goes_to:   Optional[int] = None
    winner_slot:      Optional[int] = None
    loser_goes_to:    Optional[int] = None
    loser_slot:       Optional[int] = None
    is_bye:           bool = False
    completed:        bool = False

    def place(self, slot: int, player_id: Optional[int], seed: Optional[int] = None) -> None:
        if slot == 1:
            self.player1_id, self.player1_seed = player_id, seed
        else:
            self.player2_id, self.player2_seed = player_id, seed


@dataclass
class DoubleEliminationBracket:
    winners:     List[BracketMatch] = field(default_factory=list)
    losers:      List[BracketMatch] = field(default_factory=list)
    grand_final: Optional[BracketMatch] = None
    size:        int = 0

    @property
    def is_empty(self) -> bool:
        return self.grand_final is None

    def all_matches(self) -> List[BracketMatch]:
        tail = [self.grand_final] if self.grand_final else []
        return [*self.winners, *self.losers, *tail]

    def get(self, match_number: int) -> Optional[BracketMatch]:
        for m in self.all_matches():
            if m.match_number == match_number:
                return m
        return None


# ─────────────────────────── Seeding helpers ─────────────────────────────────

def bracket_size(player_count: int) -> int:
    """Smallest power of two that holds ``player_count`` players."""
    size = 1
    while size < player_count:
        size *= 2
    return size


def seed_order(size: int) -> List[int]:
    """
    Standard seed positions for a power-of-two bracket.

    Each doubling pairs seed s with (2n + 1 − s), keeping the top seeds in
    opposite halves: 8 → [1, 8, 4, 5, 2, 7, 3, 6].
    """
    order = [1]
    while len(order) < size:
        n = len(order) * 2
        order = [x for s in order for x in (s, n + 1 - s)]
    return order


def _winners_round_name(round_no: int, size: int) -> str:
    players_left = size >> (round_no - 1)
    return {2: "winners_final", 4: "winners_sf", 8: "winners_qf"}.get(
        players_left, f"winners_r{round_no}"
    )


def _losers_round_name(round_no: int, total_rounds: int) -> str:
    if round_no == total_rounds:
        return "losers_final"
    if round_no == total_rounds - 1:
        return "losers_sf"
    return f"losers_r{round_no}"


# ─────────────────────────── Generation ──────────────────────────────────────

def generate_double_elimination(
    players: Sequence[BracketPlayer],
    event_format: Optional[str] = None,
) -> DoubleEliminationBracket:
    """
    Build the full finals match graph from ranked players.

    ``event_format`` is accepted for symmetry with the other generators; the
    graph shape does not depend on it. Fewer than two players yields an
    empty bracket.
    """
    if event_format is not None:
        get_rule(event_format)

    if len(players) < 2:
        return DoubleEliminationBracket()

    ranked = sorted(players, key=lambda p: p.qualifying_rank)
    size   = bracket_size(len(ranked))
    k      = size.bit_length() - 1
    by_seed: Dict[int, BracketPlayer] = {seed: p for seed, p in enumerate(ranked, start=1)}

    counter = iter(range(1, 4 * size))

    # ── winners bracket ──────────────────────────────────────────────────────
    wb: Dict[int, List[BracketMatch]] = {}
    for r in range(1, k + 1):
        wb[r] = [
            BracketMatch(
                match_number=next(counter),
                bracket=BracketSection.WINNERS,
                round=_winners_round_name(r, size),
                bracket_position=f"wb-r{r}-m{i + 1}",
            )
            for i in range(size >> r)
        ]

    order = seed_order(size)
    for i, match in enumerate(wb[1]):
        for slot, seed in ((1, order[2 * i]), (2, order[2 * i + 1])):
            player = by_seed.get(seed)
            if player is not None:
                match.place(slot, player.player_id, seed)

    # ── losers bracket ───────────────────────────────────────────────────────
    total_lb = 2 * (k - 1)
    lb: Dict[int, List[BracketMatch]] = {}
    for j in range(1, total_lb + 1):
        # drop-in rounds (even) hold as many matches as the winners round feeding
        # them; L1 and consolidation rounds (odd) hold half of that
        count = size >> (j // 2 + 2) if j % 2 else size >> (j // 2 + 1)
        lb[j] = [
            BracketMatch(
                match_number=next(counter),
                bracket=BracketSection.LOSERS,
                round=_losers_round_name(j, total_lb),
                bracket_position=f"lb-r{j}-m{i + 1}",
            )
            for i in range(count)
        ]

    grand_final = BracketMatch(
        match_number=next(counter),
        bracket=BracketSection.GRAND_FINAL,
        round="grand_final",
        bracket_position="gf",
    )

    # ── wiring: winners side ─────────────────────────────────────────────────
    for r in range(1, k + 1):
        for i, match in enumerate(wb[r]):
            if r < k:
                match.winner_goes_to = wb[r + 1][i // 2].match_number
                match.winner_slot    = i % 2 + 1
            else:
                match.winner_goes_to = grand_final.match_number
                match.winner_slot    = 1

            if k == 1:
                # two-player field: the only loser goes straight to the grand final
                match.loser_goes_to, match.loser_slot = grand_final.match_number, 2
            elif r == 1:
                match.loser_goes_to = lb[1][i // 2].match_number
                match.loser_slot    = i % 2 + 1
            else:
                drop_round = lb[2 * r - 2]
                idx = len(drop_round) - 1 - i if r % 2 == 0 else i
                match.loser_goes_to = drop_round[idx].match_number
                match.loser_slot    = 2

    # ── wiring: losers side ──────────────────────────────────────────────────
    for j in range(1, total_lb + 1):
        for i, match in enumerate(lb[j]):
            if j == total_lb:
                match.winner_goes_to, match.winner_slot = grand_final.match_number, 2
            elif j % 2 == 1:
                # L1 and consolidation rounds feed the next drop-in round 1:1
                match.winner_goes_to, match.winner_slot = lb[j + 1][i].match_number, 1
            else:
                match.winner_goes_to = lb[j + 1][i // 2].match_number
                match.winner_slot    = i % 2 + 1

    bracket = DoubleEliminationBracket(
        winners=[m for r in range(1, k + 1) for m in wb[r]],
        losers=[m for j in range(1, total_lb + 1) for m in lb[j]],
        grand_final=grand_final,
        size=size,
    )
    _resolve_byes(bracket)
    return bracket


def _resolve_byes(bracket: DoubleEliminationBracket) -> None:
    """
    Flag matches that can never be fully occupied and walk first-round bye
    winners into their next match.

    A winner-feed is alive if its source match has any live slot; a
    loser-feed needs both source slots alive, since a walkover produces no
    loser. Feeders always carry a lower match number than their targets.
    """
    matches = bracket.all_matches()
    alive: Dict[Tuple[int, int], bool] = {}

    for m in bracket.winners[: bracket.size // 2]:
        alive[(m.match_number, 1)] = m.player1_id is not None
        alive[(m.match_number, 2)] = m.player2_id is not None

    for m in matches:
        live = [alive.get((m.match_number, 1), False), alive.get((m.match_number, 2), False)]
        m.is_bye = not all(live)
        if m.winner_goes_to is not None:
            key = (m.winner_goes_to, m.winner_slot)
            alive[key] = alive.get(key, False) or any(live)
        if m.loser_goes_to is not None:
            key = (m.loser_goes_to, m.loser_slot)
            alive[key] = alive.get(key, False) or all(live)

    for m in bracket.winners[: bracket.size // 2]:
        if not m.is_bye:
            continue
        occupant = m.player1_id if m.player1_id is not None else m.player2_id
        seed     = m.player1_seed if m.player1_id is not None else m.player2_seed
        if occupant is None:
            continue
        target = bracket.get(m.winner_goes_to)
        target.place(m.winner_slot, occupant, seed)
        m.completed = True


# ─────────────────────────── Routing ─────────────────────────────────────────

def next_slot(match: "Match | BracketMatch", is_winner: bool) -> Optional[Tuple[int, int]]:
    """Where the winner (or loser) of ``match`` plays next, as (match_number, slot)."""
    if is_winner and match.winner_goes_to is not None:
        return match.winner_goes_to, match.winner_slot or 1
    if not is_winner and match.loser_goes_to is not None:
        return match.loser_goes_to, match.loser_slot or 1
    return None


def needs_bracket_reset(grand_final: "Match | BracketMatch") -> bool:
    """
    The losers-bracket champion sits in slot 2; if they win the first grand
    final both finalists carry one loss and a reset match is due.
    """
    if not getattr(grand_final, "completed", False):
        return False
    return getattr(grand_final, "score2", 0) > getattr(grand_final, "score1", 0)


# ─────────────────────────── Persistence boundary ────────────────────────────

async def load_bracket_players(
    session: AsyncSession,
    tournament_id: int,
    event_format: str,
    qualifiers: Optional[int] = None,
) -> List[BracketPlayer]:
    """Rank standings by score then points and project the top qualifiers."""
    result = await session.execute(
        select(Qualification)
        .where(
            Qualification.tournament_id == tournament_id,
            Qualification.event_format == event_format,
        )
        .options(selectinload(Qualification.player))
        .order_by(Qualification.score.desc(), Qualification.points.desc(), Qualification.id)
    )
    rows = list(result.scalars().all())
    limit = qualifiers if qualifiers is not None else settings.FINALS_QUALIFIERS
    return [
        BracketPlayer(
            player_id=q.player_id,
            qualifying_rank=rank,
            name=q.player.nickname if q.player else "",
            points=q.points,
        )
        for rank, q in enumerate(rows[:limit], start=1)
    ]


async def create_finals_bracket(
    session: AsyncSession,
    tournament_id: int,
    event_format: str,
    qualifiers: Optional[int] = None,
) -> DoubleEliminationBracket:
    """Regenerate the finals graph for one format from current standings."""
    players = await load_bracket_players(session, tournament_id, event_format, qualifiers)
    bracket = generate_double_elimination(players, event_format)

    await session.execute(
        delete(Match).where(
            Match.tournament_id == tournament_id,
            Match.event_format == event_format,
            Match.stage == Stage.FINALS,
        )
    )
    if bracket.is_empty:
        logger.warning(
            "Tournament %s (%s): %d qualified players, finals bracket left empty",
            tournament_id, event_format, len(players),
        )
        await session.flush()
        return bracket

    session.add_all([
        Match(
            tournament_id=tournament_id,
            event_format=event_format,
            stage=Stage.FINALS,
            match_number=m.match_number,
            player1_id=m.player1_id,
            player2_id=m.player2_id,
            player1_seed=m.player1_seed,
            player2_seed=m.player2_seed,
            bracket=m.bracket,
            round=m.round,
            bracket_position=m.bracket_position,
            winner_goes_to=m.winner_goes_to,
            winner_slot=m.winner_slot,
            loser_goes_to=m.loser_goes_to,
            loser_slot=m.loser_slot,
            is_bye=m.is_bye,
            completed=m.completed,
        )
        for m in bracket.all_matches()
    ])
    await session.flush()
    logger.info(
        "Tournament %s (%s): finals bracket of %d generated, %d matches",
        tournament_id, event_format, bracket.size, len(bracket.all_matches()),
    )
    return bracket


async def _get_finals_match(
    session: AsyncSession,
    tournament_id: int,
    event_format: str,
    match_number: int,
) -> Optional[Match]:
    result = await session.execute(
        select(Match).where(
            Match.tournament_id == tournament_id,
            Match.event_format == event_format,
            Match.stage == Stage.FINALS,
            Match.match_number == match_number,
        )
    )
    return result.scalar_one_or_none()


async def advance_bracket(
    session_factory: async_sessionmaker[AsyncSession],
    match_id: int,
) -> List[VersionedUpdate]:
    """
    Route the winner and loser of a completed finals match into their next
    matches. Every slot write goes through the versioned update; a player
    landing in a bye match walks straight through it.
    """
    async with session_factory() as session:
        match = await session.get(Match, match_id)
        if match is None:
            raise RecordNotFound("Match", match_id)
    if match.stage != Stage.FINALS or not match.completed:
        raise ScoreValidationError("Only completed finals matches can be advanced")
    if match.score1 == match.score2:
        raise ScoreValidationError("A finals match needs a winner before advancing")

    if match.score1 > match.score2:
        winner_id, loser_id = match.player1_id, match.player2_id
    else:
        winner_id, loser_id = match.player2_id, match.player1_id

    updates: List[VersionedUpdate] = []
    for is_winner, player_id in ((True, winner_id), (False, loser_id)):
        route = next_slot(match, is_winner)
        if route is None or player_id is None:
            continue
        updates.extend(
            await _place_player(session_factory, match.tournament_id, match.event_format, route, player_id)
        )
    return updates


async def _place_player(
    session_factory: async_sessionmaker[AsyncSession],
    tournament_id: int,
    event_format: str,
    route: Tuple[int, int],
    player_id: int,
) -> List[VersionedUpdate]:
    target_number, slot = route
    async with session_factory() as session:
        target = await _get_finals_match(session, tournament_id, event_format, target_number)
    if target is None:
        raise RecordNotFound("Match", target_number)

    field_name = "player1_id" if slot == 1 else "player2_id"
    patch = {field_name: player_id}
    if target.is_bye:
        patch["completed"] = True

    updates = [
        await update_versioned(session_factory, Match, target.id, target.version, lambda _: patch)
    ]
    if target.is_bye:
        forward = next_slot(target, True)
        if forward is not None:
            updates.extend(
                await _place_player(session_factory, tournament_id, event_format, forward, player_id)
            )
    return updates


async def create_bracket_reset(
    session: AsyncSession,
    tournament_id: int,
    event_format: str,
) -> Optional[Match]:
    """
    Add the second grand final on demand. Returns the existing reset match
    if one was already created, or None when no reset is due.
    """
    result = await session.execute(
        select(Match).where(
            Match.tournament_id == tournament_id,
            Match.event_format == event_format,
            Match.stage == Stage.FINALS,
            Match.bracket == BracketSection.GRAND_FINAL,
        ).order_by(Match.match_number)
    )
    finals = list(result.scalars().all())
    if not finals:
        raise RecordNotFound("Match", 0)

    first = finals[0]
    existing = next((m for m in finals if m.round == "grand_final_reset"), None)
    if existing is not None:
        return existing
    if not needs_bracket_reset(first):
        return None

    max_number = await session.scalar(
        select(func.max(Match.match_number)).where(
            Match.tournament_id == tournament_id,
            Match.event_format == event_format,
            Match.stage == Stage.FINALS,
        )
    )
    reset = Match(
        tournament_id=tournament_id,
        event_format=event_format,
        stage=Stage.FINALS,
        match_number=(max_number or 0) + 1,
        player1_id=first.player1_id,
        player2_id=first.player2_id,
        bracket=BracketSection.GRAND_FINAL,
        round="grand_final_reset",
        bracket_position="gf-reset",
    )
    session.add(reset)
    await session.flush()
    logger.info("Tournament %s (%s): bracket reset created", tournament_id, event_format)
    return reset
