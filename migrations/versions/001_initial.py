"""Initial competition schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

Changes:
  - Create tournaments and players
  - Create matches (qualification + finals routing columns, version)
  - Create qualifications standings rows (version)
  - Create time_attack_entries (version)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "tournaments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="draft"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        "players",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("nickname", sa.String(100), nullable=False),
    )
    op.create_index("ix_players_nickname", "players", ["nickname"], unique=True)

    # ── matches ───────────────────────────────────────────────────────────────
    op.create_table(
        "matches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tournament_id", sa.Integer(), sa.ForeignKey("tournaments.id"), nullable=False),
        sa.Column("event_format", sa.String(20), nullable=False),
        sa.Column("stage", sa.String(20), nullable=False),
        sa.Column("match_number", sa.Integer(), nullable=False),
        sa.Column("group", sa.String(10), nullable=True),
        sa.Column("player1_id", sa.Integer(), sa.ForeignKey("players.id"), nullable=True),
        sa.Column("player2_id", sa.Integer(), sa.ForeignKey("players.id"), nullable=True),
        sa.Column("score1", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("score2", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rounds", sa.JSON(), nullable=True),
        sa.Column("bracket", sa.String(20), nullable=True),
        sa.Column("round", sa.String(30), nullable=True),
        sa.Column("bracket_position", sa.String(30), nullable=True),
        sa.Column("winner_goes_to", sa.Integer(), nullable=True),
        sa.Column("winner_slot", sa.Integer(), nullable=True),
        sa.Column("loser_goes_to", sa.Integer(), nullable=True),
        sa.Column("loser_slot", sa.Integer(), nullable=True),
        sa.Column("player1_seed", sa.Integer(), nullable=True),
        sa.Column("player2_seed", sa.Integer(), nullable=True),
        sa.Column("is_bye", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("tournament_id", "event_format", "stage", "match_number",
                            name="uq_matches_tournament_id_event_format_stage_match_number"),
    )
    op.create_index("ix_matches_tournament_id", "matches", ["tournament_id"])

    # ── qualifications ────────────────────────────────────────────────────────
    op.create_table(
        "qualifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tournament_id", sa.Integer(), sa.ForeignKey("tournaments.id"), nullable=False),
        sa.Column("event_format", sa.String(20), nullable=False),
        sa.Column("player_id", sa.Integer(), sa.ForeignKey("players.id"), nullable=False),
        sa.Column("group", sa.String(10), nullable=True),
        sa.Column("seeding", sa.Integer(), nullable=True),
        *[
            sa.Column(name, sa.Integer(), nullable=False, server_default="0")
            for name in (
                "mp", "wins", "ties", "losses", "win_rounds", "loss_rounds",
                "points", "score", "version",
            )
        ],
        sa.UniqueConstraint("tournament_id", "event_format", "player_id",
                            name="uq_qualifications_tournament_id_event_format_player_id"),
    )
    op.create_index("ix_qualifications_tournament_id", "qualifications", ["tournament_id"])

    # ── time attack ───────────────────────────────────────────────────────────
    op.create_table(
        "time_attack_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tournament_id", sa.Integer(), sa.ForeignKey("tournaments.id"), nullable=False),
        sa.Column("player_id", sa.Integer(), sa.ForeignKey("players.id"), nullable=False),
        sa.Column("stage", sa.String(20), nullable=False, server_default="qualification"),
        sa.Column("times", sa.JSON(), nullable=True),
        sa.Column("total_time", sa.Integer(), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("course_scores", sa.JSON(), nullable=True),
        sa.Column("qualification_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("tournament_id", "player_id", "stage",
                            name="uq_time_attack_entries_tournament_id_player_id_stage"),
    )
    op.create_index("ix_time_attack_entries_tournament_id", "time_attack_entries", ["tournament_id"])


def downgrade() -> None:
    op.drop_index("ix_time_attack_entries_tournament_id", table_name="time_attack_entries")
    op.drop_table("time_attack_entries")
    op.drop_index("ix_qualifications_tournament_id", table_name="qualifications")
    op.drop_table("qualifications")
    op.drop_index("ix_matches_tournament_id", table_name="matches")
    op.drop_table("matches")
    op.drop_index("ix_players_nickname", table_name="players")
    op.drop_table("players")
    op.drop_table("tournaments")
