from kartcup.services.rate_limiter import (
    RateLimiter, RateLimitRecord, RateLimitResult, LimitClass, LimitConfig,
)
from kartcup.services.repository import VersionedRepository
from kartcup.services.optimistic_lock import (
    RetryPolicy, VersionedUpdate,
    update_versioned, update_match_score, update_time_attack_entry,
)
from kartcup.services.format_rules import (
    FormatRule, Outcome, PointsMode, Progress, BATTLE, RACE, GRAND_PRIX,
    get_rule, match_progress, validate_finals_score, driver_points,
)
from kartcup.services.scheduler import (
    GroupedPlayer, ScheduledMatch,
    assign_groups, generate_round_robin, group_sizes, setup_qualification,
)
from kartcup.services.bracket_service import (
    BracketPlayer, BracketMatch, DoubleEliminationBracket,
    generate_double_elimination, seed_order, next_slot,
    needs_bracket_reset, create_bracket_reset, advance_bracket, create_finals_bracket,
)
from kartcup.services.scoring_service import (
    PlayerStats, PlayerAggregate,
    aggregate_player_stats, rank_standings, recalculate_standings, get_standings,
    FINALS_POINTS, TA_FINALS_POINTS, finals_points_for,
)
from kartcup.services.time_attack import (
    EntryScore, time_to_ms, ms_to_display, calculate_entry_total,
    generate_score_table, calculate_course_scores, calculate_all_course_scores,
    sort_qualification, assign_ranks, recalculate_ranks,
)

# reporting depends on kartcup.validators, which itself imports from this
# package; import it as kartcup.services.reporting

__all__ = [
    "RateLimiter", "RateLimitRecord", "RateLimitResult", "LimitClass", "LimitConfig",
    "VersionedRepository",
    "RetryPolicy", "VersionedUpdate",
    "update_versioned", "update_match_score", "update_time_attack_entry",
    "FormatRule", "Outcome", "PointsMode", "Progress", "BATTLE", "RACE", "GRAND_PRIX",
    "get_rule", "match_progress", "validate_finals_score", "driver_points",
    "GroupedPlayer", "ScheduledMatch",
    "assign_groups", "generate_round_robin", "group_sizes", "setup_qualification",
    "BracketPlayer", "BracketMatch", "DoubleEliminationBracket",
    "generate_double_elimination", "seed_order", "next_slot",
    "needs_bracket_reset", "create_bracket_reset", "advance_bracket", "create_finals_bracket",
    "PlayerStats", "PlayerAggregate",
    "aggregate_player_stats", "rank_standings", "recalculate_standings", "get_standings",
    "FINALS_POINTS", "TA_FINALS_POINTS", "finals_points_for",
    "EntryScore", "time_to_ms", "ms_to_display", "calculate_entry_total",
    "generate_score_table", "calculate_course_scores", "calculate_all_course_scores",
    "sort_qualification", "assign_ranks", "recalculate_ranks",
]
