"""
Unit tests — Chat-facing helpers in handlers/scoring.py.

Only the pure text helpers are covered; the command handlers themselves are
thin adapters over services/reporting.py which has its own tests.
"""
from __future__ import annotations

from kartcup.errors import RateLimitExceeded, RecordNotFound, ScoreValidationError, VersionConflict
from kartcup.handlers.scoring import _parse_ints, describe_error, format_standings
from kartcup.models.models import EventFormat, Player, Qualification


class TestParseInts:

    def test_parses_leading_values(self) -> None:
        assert _parse_ints("12 3 5 2 done", 4) == [12, 3, 5, 2]

    def test_too_few_values(self) -> None:
        assert _parse_ints("12 3", 4) is None
        assert _parse_ints(None, 1) is None

    def test_non_numeric(self) -> None:
        assert _parse_ints("12 x 5 2", 4) is None


class TestDescribeError:

    def test_conflict_mentions_current_version(self) -> None:
        text = describe_error(VersionConflict(7, 1, 3))
        assert "`3`" in text

    def test_rate_limit_mentions_retry(self) -> None:
        assert "42 s" in describe_error(RateLimitExceeded("u1", 42))

    def test_not_found(self) -> None:
        assert describe_error(RecordNotFound("Match", 9)).startswith("❓")

    def test_validation(self) -> None:
        assert describe_error(ScoreValidationError("Scores must be different")) == "❌ Scores must be different"


class TestFormatStandings:

    def test_empty(self) -> None:
        assert "No standings yet" in format_standings([], EventFormat.BATTLE)

    def test_groups_restart_numbering(self) -> None:
        rows = [
            Qualification(player_id=1, group="A", score=4, points=3, wins=2, ties=0, losses=0),
            Qualification(player_id=2, group="A", score=0, points=-3, wins=0, ties=0, losses=2),
            Qualification(player_id=3, group="B", score=2, points=1, wins=1, ties=0, losses=0),
        ]
        rows[0].player = Player(name="Alice", nickname="ali")
        text = format_standings(rows, EventFormat.RACE)

        assert text.startswith("📊 *Match Race*")
        assert "*Group A*" in text and "*Group B*" in text
        assert "1. ali" in text
        assert "2. #2" in text
        assert "1. #3" in text
        assert "(0W 0T 2L, -3)" in text
