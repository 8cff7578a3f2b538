from kartcup.models.base import Base, engine, AsyncSessionFactory
from kartcup.models.models import (
    Tournament,
    Player,
    Match,
    Qualification,
    TimeAttackEntry,
    EventFormat,
    Stage,
    BracketSection,
    TournamentStatus,
    COURSES,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionFactory",
    "Tournament",
    "Player",
    "Match",
    "Qualification",
    "TimeAttackEntry",
    "EventFormat",
    "Stage",
    "BracketSection",
    "TournamentStatus",
    "COURSES",
]
