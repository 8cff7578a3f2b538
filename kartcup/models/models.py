"""
ORM models for the kartcup competition core.

Domain overview
---------------
Tournament — a competition event hosting up to four event formats
  ├─ Qualification   — per-player standings row for one match format
  ├─ Match           — a head-to-head pairing (qualification or finals)
  └─ TimeAttackEntry — per-player course times for the time attack format

Every mutable record carries a ``version`` column. Writes go through
``VersionedRepository.update_if_version`` which bumps it by exactly one.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from kartcup.models.base import Base

# ─────────────────────────── Constants ────────────────────────────────────────

class EventFormat:
    TIME_ATTACK = "time_attack"
    BATTLE      = "battle"
    RACE        = "race"         # head-to-head match race
    GRAND_PRIX  = "grand_prix"   # points-based circuit

    MATCH_FORMATS = (BATTLE, RACE, GRAND_PRIX)

    LABELS = {
        TIME_ATTACK: "Time Attack",
        BATTLE:      "Battle Mode",
        RACE:        "Match Race",
        GRAND_PRIX:  "Grand Prix",
    }


class Stage:
    QUALIFICATION = "qualification"
    FINALS        = "finals"


class BracketSection:
    WINNERS     = "winners"
    LOSERS      = "losers"
    GRAND_FINAL = "grand_final"


class TournamentStatus:
    DRAFT         = "draft"
    QUALIFICATION = "qualification"
    FINALS        = "finals"
    FINISHED      = "finished"


# Course codes in official order; time attack scores every one independently.
COURSES: tuple[str, ...] = (
    "MC1", "DP1", "GV1", "BC1",
    "MC2", "DP2", "GV2", "BC2",
    "MC3", "DP3", "GV3", "BC3",
    "CI1", "CI2", "RR",  "VL1",
    "VL2", "KD",  "MC4", "KB1",
)


# ─────────────────────────── Models ───────────────────────────────────────────

class Tournament(Base):
    __tablename__ = "tournaments"

    id:         Mapped[int]      = mapped_column(Integer, primary_key=True, autoincrement=True)
    name:       Mapped[str]      = mapped_column(String(255))
    status:     Mapped[str]      = mapped_column(String(30), default=TournamentStatus.DRAFT)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    matches: Mapped[List["Match"]] = relationship(
        back_populates="tournament", cascade="all, delete-orphan"
    )
    qualifications: Mapped[List["Qualification"]] = relationship(
        back_populates="tournament", cascade="all, delete-orphan"
    )
    time_attack_entries: Mapped[List["TimeAttackEntry"]] = relationship(
        back_populates="tournament", cascade="all, delete-orphan"
    )


class Player(Base):
    __tablename__ = "players"

    id:       Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name:     Mapped[str] = mapped_column(String(255))
    nickname: Mapped[str] = mapped_column(String(100), unique=True, index=True)


class Match(Base):
    """
    A single head-to-head pairing.

    Qualification matches always have both players. Finals matches are
    generated ahead of time with empty slots that ``advance_bracket`` fills
    as results come in.
    """
    __tablename__ = "matches"

    id:            Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int]           = mapped_column(ForeignKey("tournaments.id"), index=True)
    event_format:  Mapped[str]           = mapped_column(String(20))   # EventFormat.*
    stage:         Mapped[str]           = mapped_column(String(20))   # Stage.*
    match_number:  Mapped[int]           = mapped_column(Integer)
    group:         Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    player1_id:    Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    player2_id:    Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    score1:        Mapped[int]           = mapped_column(Integer, default=0)
    score2:        Mapped[int]           = mapped_column(Integer, default=0)
    completed:     Mapped[bool]          = mapped_column(Boolean, default=False)
    version:       Mapped[int]           = mapped_column(Integer, default=0)
    rounds:        Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)

    # ── Finals routing ────────────────────────────────────────────────────────
    bracket:          Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    round:            Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    bracket_position: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    winner_goes_to:   Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    winner_slot:      Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    loser_goes_to:    Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    loser_slot:       Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player1_seed:     Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player2_seed:     Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    is_bye:           Mapped[bool]          = mapped_column(Boolean, default=False)

    tournament: Mapped["Tournament"]       = relationship(back_populates="matches")
    player1:    Mapped[Optional["Player"]] = relationship(foreign_keys=[player1_id])
    player2:    Mapped[Optional["Player"]] = relationship(foreign_keys=[player2_id])

    __table_args__ = (
        UniqueConstraint("tournament_id", "event_format", "stage", "match_number"),
    )

    def involves(self, player_id: int) -> bool:
        return player_id in (self.player1_id, self.player2_id)


class Qualification(Base):
    """
    Standings row for one player in one match format.
    ``points`` and ``score`` are always derived from completed matches.
    """
    __tablename__ = "qualifications"

    id:            Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[int]           = mapped_column(ForeignKey("tournaments.id"), index=True)
    event_format:  Mapped[str]           = mapped_column(String(20))
    player_id:     Mapped[int]           = mapped_column(ForeignKey("players.id"))
    group:         Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    seeding:       Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    mp:            Mapped[int]           = mapped_column(Integer, default=0)
    wins:          Mapped[int]           = mapped_column(Integer, default=0)
    ties:          Mapped[int]           = mapped_column(Integer, default=0)
    losses:        Mapped[int]           = mapped_column(Integer, default=0)
    win_rounds:    Mapped[int]           = mapped_column(Integer, default=0)
    loss_rounds:   Mapped[int]           = mapped_column(Integer, default=0)
    points:        Mapped[int]           = mapped_column(Integer, default=0)
    score:         Mapped[int]           = mapped_column(Integer, default=0)
    version:       Mapped[int]           = mapped_column(Integer, default=0)

    tournament: Mapped["Tournament"] = relationship(back_populates="qualifications")
    player:     Mapped["Player"]     = relationship()

    __table_args__ = (
        UniqueConstraint("tournament_id", "event_format", "player_id"),
    )


class TimeAttackEntry(Base):
    """Course times for one player; ``times`` maps course code → 'M:SS.mmm'."""
    __tablename__ = "time_attack_entries"

    id:                   Mapped[int]                      = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id:        Mapped[int]                      = mapped_column(ForeignKey("tournaments.id"), index=True)
    player_id:            Mapped[int]                      = mapped_column(ForeignKey("players.id"))
    stage:                Mapped[str]                      = mapped_column(String(20), default=Stage.QUALIFICATION)
    times:                Mapped[Optional[Dict[str, str]]] = mapped_column(JSON, nullable=True)
    total_time:           Mapped[Optional[int]]            = mapped_column(Integer, nullable=True)  # ms
    rank:                 Mapped[Optional[int]]            = mapped_column(Integer, nullable=True)
    course_scores:        Mapped[Optional[Dict[str, float]]] = mapped_column(JSON, nullable=True)
    qualification_points: Mapped[int]                      = mapped_column(Integer, default=0)
    version:              Mapped[int]                      = mapped_column(Integer, default=0)

    tournament: Mapped["Tournament"] = relationship(back_populates="time_attack_entries")
    player:     Mapped["Player"]     = relationship()

    __table_args__ = (
        UniqueConstraint("tournament_id", "player_id", "stage"),
    )
