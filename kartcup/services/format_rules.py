"""
Per-format scoring rules for the head-to-head event formats.

Every generic algorithm (score validation, standings aggregation, finals
progression) takes a ``FormatRule`` instead of branching on the format name.

Battle     — balloon round tallies of 0 to 5; the higher tally wins. Every
             battle must produce a winner, so equal non-zero tallies are a
             data error. Finals are first to 5.
Match race — best of five races, first to 3 wins; 0-0 means not started
             and counts as a tie. Finals are first to 7.
Grand prix — four-race cups scored by driver points (1st 9, 2nd 6, else 0);
             higher total wins, equal totals tie. ``points`` in standings is
             the accumulated driver points rather than a differential.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from kartcup.errors import ScoreValidationError
from kartcup.models.models import EventFormat


class Outcome:
    WIN  = "win"
    LOSS = "loss"
    TIE  = "tie"


class PointsMode:
    DIFFERENTIAL = "differential"   # rounds won − rounds lost
    TOTAL        = "total"          # accumulated own tally


class Progress:
    ONGOING  = "ongoing"
    COMPLETE = "complete"


@dataclass(frozen=True)
class FormatRule:
    """
    Attributes
    ----------
    event_format : EventFormat.* value
    classify     : (own, opponent) → Outcome.* from one player's perspective
    validate     : (score1, score2, completed) → raises ScoreValidationError
                   for an impossible result
    points_mode  : how standings ``points`` are accumulated
    finals_target: tally that completes a finals match (None = explicit flag)
    win_points   : standings score per win
    tie_points   : standings score per tie
    """
    event_format:  str
    classify:      Callable[[int, int], str]
    validate:      Callable[[int, int, bool], None]
    points_mode:   str = PointsMode.DIFFERENTIAL
    finals_target: Optional[int] = None
    win_points:    int = 2
    tie_points:    int = 1

    def standings_score(self, wins: int, ties: int) -> int:
        return wins * self.win_points + ties * self.tie_points


# ─────────────────────────── Battle ──────────────────────────────────────────

MIN_BATTLE_SCORE = 0
MAX_BATTLE_SCORE = 5


def _battle_classify(own: int, opponent: int) -> str:
    if own == opponent:
        if own == 0:
            return Outcome.TIE
        raise ScoreValidationError(
            f"Battle ended {own}-{opponent}; every battle must produce a winner"
        )
    return Outcome.WIN if own > opponent else Outcome.LOSS


def _battle_validate(score1: int, score2: int, completed: bool = True) -> None:
    for s in (score1, score2):
        if s < MIN_BATTLE_SCORE or s > MAX_BATTLE_SCORE:
            raise ScoreValidationError(
                f"Score must be between {MIN_BATTLE_SCORE} and {MAX_BATTLE_SCORE}"
            )
    if completed and score1 == score2:
        raise ScoreValidationError("Scores must be different")


# ─────────────────────────── Match race ──────────────────────────────────────

RACE_WINS_NEEDED = 3
MAX_RACES        = 5


def _race_classify(own: int, opponent: int) -> str:
    if own + opponent == 0:
        return Outcome.TIE
    if own >= RACE_WINS_NEEDED:
        return Outcome.WIN
    if opponent >= RACE_WINS_NEEDED:
        return Outcome.LOSS
    return Outcome.TIE


def _race_validate(score1: int, score2: int, completed: bool = True) -> None:
    if score1 < 0 or score2 < 0:
        raise ScoreValidationError("Race wins cannot be negative")
    if score1 + score2 > MAX_RACES:
        raise ScoreValidationError(f"At most {MAX_RACES} races are played per match")
    if score1 >= RACE_WINS_NEEDED and score2 >= RACE_WINS_NEEDED:
        raise ScoreValidationError("Only one player can reach three race wins")


# ─────────────────────────── Grand prix ──────────────────────────────────────

DRIVER_POINTS: Dict[int, int] = {1: 9, 2: 6}
RACES_PER_CUP = 4


def driver_points(position: int) -> int:
    return DRIVER_POINTS.get(position, 0)


def _gp_classify(own: int, opponent: int) -> str:
    if own > opponent:
        return Outcome.WIN
    if opponent > own:
        return Outcome.LOSS
    return Outcome.TIE


def _gp_validate(points1: int, points2: int, completed: bool = True) -> None:
    ceiling = max(DRIVER_POINTS.values()) * RACES_PER_CUP
    for p in (points1, points2):
        if p < 0 or p > ceiling:
            raise ScoreValidationError(f"Driver points must be between 0 and {ceiling}")


# ─────────────────────────── Registry ────────────────────────────────────────

BATTLE = FormatRule(
    event_format=EventFormat.BATTLE,
    classify=_battle_classify,
    validate=_battle_validate,
    finals_target=5,
)

RACE = FormatRule(
    event_format=EventFormat.RACE,
    classify=_race_classify,
    validate=_race_validate,
    finals_target=7,
)

GRAND_PRIX = FormatRule(
    event_format=EventFormat.GRAND_PRIX,
    classify=_gp_classify,
    validate=_gp_validate,
    points_mode=PointsMode.TOTAL,
)

RULES: Dict[str, FormatRule] = {
    EventFormat.BATTLE:     BATTLE,
    EventFormat.RACE:       RACE,
    EventFormat.GRAND_PRIX: GRAND_PRIX,
}


def get_rule(event_format: str) -> FormatRule:
    try:
        return RULES[event_format]
    except KeyError:
        raise ScoreValidationError(f"Unknown match format: {event_format}") from None


def match_progress(score1: int, score2: int, rule: FormatRule, completed: bool = False) -> str:
    """Finals progression: complete once either side reaches the format's target."""
    if completed:
        return Progress.COMPLETE
    if rule.finals_target is not None and max(score1, score2) >= rule.finals_target:
        return Progress.COMPLETE
    return Progress.ONGOING


def validate_finals_score(score1: int, score2: int, rule: FormatRule, completed: bool) -> None:
    """
    Finals tallies run to the format's target instead of the qualification
    cap; a completed finals match must have exactly one winner.
    """
    target = rule.finals_target
    for s in (score1, score2):
        if s < 0 or (target is not None and s > target):
            raise ScoreValidationError(
                f"Finals score must be between 0 and {target}" if target else "Finals score cannot be negative"
            )
    if target is not None and score1 == target and score2 == target:
        raise ScoreValidationError("Only one player can reach the finals target")
    if completed:
        if score1 == score2:
            raise ScoreValidationError("A completed finals match needs a winner")
        if target is not None and max(score1, score2) < target:
            raise ScoreValidationError(f"A finals match is won at {target}")
