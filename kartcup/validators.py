"""
Input validation for score submissions (Pydantic v2 models).

Raw payloads are validated here before any write reaches the database.
``parse_score`` translates pydantic's ValidationError into the core's
ScoreValidationError so callers only ever handle one failure type.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError, field_validator, model_validator

from kartcup.errors import ScoreValidationError
from kartcup.models.models import COURSES, EventFormat
from kartcup.services.format_rules import RACE_WINS_NEEDED, RACES_PER_CUP, driver_points
from kartcup.services.time_attack import TIME_RE

ModelT = TypeVar("ModelT", bound=BaseModel)


class BattleRound(BaseModel):
    arena:  str
    winner: int

    @field_validator("winner")
    @classmethod
    def validate_winner(cls, v: int) -> int:
        if v not in (1, 2):
            raise ValueError("Round winner must be 1 or 2")
        return v


class BattleScoreData(BaseModel):
    """
    Battle result.

    Attributes
    ----------
    score1, score2 : balloon rounds won (0–5), must differ
    rounds         : optional per-arena breakdown
    """

    score1: int
    score2: int
    rounds: Optional[List[BattleRound]] = None

    @field_validator("score1", "score2")
    @classmethod
    def validate_range(cls, v: int) -> int:
        if v < 0 or v > 5:
            raise ValueError("Score must be between 0 and 5")
        return v

    @model_validator(mode="after")
    def validate_winner(self) -> "BattleScoreData":
        if self.score1 == self.score2:
            raise ValueError("Scores must be different")
        return self


class RaceRound(BaseModel):
    course: str
    winner: int

    @field_validator("course")
    @classmethod
    def validate_course(cls, v: str) -> str:
        if v not in COURSES:
            raise ValueError(f"Unknown course: {v}")
        return v


class RaceScoreData(BaseModel):
    score1: int
    score2: int
    rounds: Optional[List[RaceRound]] = None

    @field_validator("score1", "score2")
    @classmethod
    def validate_range(cls, v: int) -> int:
        if v < 0 or v > 5:
            raise ValueError("Score must be between 0 and 5")
        return v

    @model_validator(mode="after")
    def validate_total(self) -> "RaceScoreData":
        if self.score1 + self.score2 > 5:
            raise ValueError("At most 5 races are played per match")
        if self.score1 >= RACE_WINS_NEEDED and self.score2 >= RACE_WINS_NEEDED:
            raise ValueError("Only one player can reach three race wins")
        return self


class GrandPrixRaceData(BaseModel):
    course:    str
    position1: int
    position2: int

    @field_validator("position1", "position2")
    @classmethod
    def validate_position(cls, v: int) -> int:
        if v < 1 or v > 8:
            raise ValueError("Finishing position must be between 1 and 8")
        return v

    @model_validator(mode="after")
    def validate_distinct(self) -> "GrandPrixRaceData":
        if self.position1 == self.position2:
            raise ValueError("Both drivers cannot finish in the same position")
        return self


class GrandPrixScoreData(BaseModel):
    """A four-race cup; driver points are derived from finishing positions."""

    races: List[GrandPrixRaceData]

    @field_validator("races")
    @classmethod
    def validate_race_count(cls, v: List[GrandPrixRaceData]) -> List[GrandPrixRaceData]:
        if len(v) != RACES_PER_CUP:
            raise ValueError(f"A cup has exactly {RACES_PER_CUP} races")
        return v

    @property
    def points1(self) -> int:
        return sum(driver_points(r.position1) for r in self.races)

    @property
    def points2(self) -> int:
        return sum(driver_points(r.position2) for r in self.races)

    def rounds(self) -> List[Dict[str, Any]]:
        return [r.model_dump() for r in self.races]


class TimeEntryData(BaseModel):
    """Course → 'M:SS.mmm' map; an empty string clears a course."""

    times: Dict[str, str]

    @field_validator("times")
    @classmethod
    def validate_times(cls, v: Dict[str, str]) -> Dict[str, str]:
        cleaned: Dict[str, str] = {}
        for course, value in v.items():
            if course not in COURSES:
                raise ValueError(f"Unknown course: {course}")
            value = value.strip()
            if value and not TIME_RE.match(value):
                raise ValueError(f"Invalid time for {course}: expected M:SS.mmm")
            cleaned[course] = value
        return cleaned


SCORE_MODELS: Dict[str, Type[BaseModel]] = {
    EventFormat.BATTLE:     BattleScoreData,
    EventFormat.RACE:       RaceScoreData,
    EventFormat.GRAND_PRIX: GrandPrixScoreData,
}

ROUND_MODELS: Dict[str, Type[BaseModel]] = {
    EventFormat.BATTLE:     BattleRound,
    EventFormat.RACE:       RaceRound,
    EventFormat.GRAND_PRIX: GrandPrixRaceData,
}


def parse_score(model: Type[ModelT], payload: Dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise ScoreValidationError(messages) from exc


def parse_rounds(
    event_format: str,
    rounds: Optional[List[Dict[str, Any]]],
) -> Optional[List[Dict[str, Any]]]:
    """Validate a per-round breakdown of any length and return it normalised."""
    if rounds is None:
        return None
    model = ROUND_MODELS.get(event_format)
    if model is None:
        raise ScoreValidationError(f"Unknown match format: {event_format}")
    return [parse_score(model, r).model_dump() for r in rounds]


def grand_prix_points(races: List[Dict[str, Any]]) -> Tuple[int, int]:
    """Driver points for both players over the races run so far."""
    return (
        sum(driver_points(r["position1"]) for r in races),
        sum(driver_points(r["position2"]) for r in races),
    )
