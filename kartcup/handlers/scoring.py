"""
Score desk commands — thin adapters over the competition core.

  /report <match_id> <version> <score1> <score2> [done]
  /time <entry_id> <version> <course> <M:SS.mmm>
  /standings <tournament_id> <format>
  /bracket <tournament_id> <format>

Every failure the core raises is answered in the chat; nothing here
touches versions or standings directly.
"""
import logging
from typing import List, Optional

from aiogram import Router
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandObject
from aiogram.types import Message
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kartcup.errors import (
    KartcupError,
    RateLimitExceeded,
    RecordNotFound,
    VersionConflict,
)
from kartcup.middlewares import IsAdmin
from kartcup.models.models import EventFormat, Qualification
from kartcup.services import RateLimiter, create_finals_bracket, get_standings
from kartcup.services.reporting import report_match_score, submit_time_entry

logger = logging.getLogger(__name__)
router = Router(name="scoring")
router.message.filter(IsAdmin())


def _parse_ints(args: Optional[str], count: int) -> Optional[List[int]]:
    parts = (args or "").split()
    if len(parts) < count:
        return None
    try:
        return [int(x) for x in parts[:count]]
    except ValueError:
        return None


def describe_error(exc: KartcupError) -> str:
    if isinstance(exc, VersionConflict):
        return (
            f"⚠️ Someone else updated this record first.\n"
            f"Current version: `{exc.current_version}`. Re-check and resubmit."
        )
    if isinstance(exc, RateLimitExceeded):
        return f"⏳ Too many submissions. Try again in {exc.retry_after} s."
    if isinstance(exc, RecordNotFound):
        return f"❓ {exc}"
    return f"❌ {exc}"


def format_standings(rows: List[Qualification], event_format: str) -> str:
    title = EventFormat.LABELS.get(event_format, event_format)
    if not rows:
        return f"📊 *{title}*\n\n_No standings yet._"

    lines = [f"📊 *{title}*", "━━━━━━━━━━━━━━━━━━"]
    group = object()
    place = 0
    for q in rows:
        if q.group != group:
            group = q.group
            place = 0
            if group:
                lines.append(f"\n*Group {group}*")
        place += 1
        name = q.player.nickname if q.player else f"#{q.player_id}"
        lines.append(
            f"{place}. {name} — `{q.score}` pts "
            f"({q.wins}W {q.ties}T {q.losses}L, {q.points:+d})"
        )
    return "\n".join(lines)


# ── /report ───────────────────────────────────────────────────────────────────

@router.message(Command("report"))
async def cmd_report(
    message: Message,
    command: CommandObject,
    session_factory: async_sessionmaker[AsyncSession],
    limiter: RateLimiter,
) -> None:
    values = _parse_ints(command.args, 4)
    if values is None:
        await message.answer("Usage: `/report <match_id> <version> <score1> <score2> [done]`",
                             parse_mode=ParseMode.MARKDOWN)
        return
    match_id, version, score1, score2 = values
    completed = True if (command.args or "").split()[4:5] == ["done"] else None

    try:
        report = await report_match_score(
            session_factory, limiter, str(message.from_user.id),
            match_id, version, score1, score2, completed=completed,
        )
    except KartcupError as exc:
        await message.answer(describe_error(exc), parse_mode=ParseMode.MARKDOWN)
        return

    status = "✅ final" if report.completed else "🕒 in progress"
    text = f"Match `{match_id}` → {score1}-{score2} ({status}), version `{report.version}`"
    if report.reset_match_id:
        text += "\n🔁 Bracket reset scheduled."
    await message.answer(text, parse_mode=ParseMode.MARKDOWN)


# ── /time ─────────────────────────────────────────────────────────────────────

@router.message(Command("time"))
async def cmd_time(
    message: Message,
    command: CommandObject,
    session_factory: async_sessionmaker[AsyncSession],
    limiter: RateLimiter,
) -> None:
    parts = (command.args or "").split()
    ids = _parse_ints(command.args, 2)
    if ids is None or len(parts) < 4:
        await message.answer("Usage: `/time <entry_id> <version> <course> <M:SS.mmm>`",
                             parse_mode=ParseMode.MARKDOWN)
        return
    entry_id, version = ids
    course, value = parts[2].upper(), parts[3]

    try:
        report = await submit_time_entry(
            session_factory, limiter, str(message.from_user.id),
            entry_id, version, {course: value},
        )
    except KartcupError as exc:
        await message.answer(describe_error(exc), parse_mode=ParseMode.MARKDOWN)
        return

    await message.answer(
        f"⏱ Entry `{entry_id}`: {course} = {value}, version `{report.version}`",
        parse_mode=ParseMode.MARKDOWN,
    )


# ── /standings ────────────────────────────────────────────────────────────────

@router.message(Command("standings"))
async def cmd_standings(
    message: Message,
    command: CommandObject,
    session: AsyncSession,
) -> None:
    parts = (command.args or "").split()
    if len(parts) < 2 or not parts[0].isdigit() or parts[1] not in EventFormat.MATCH_FORMATS:
        await message.answer(
            f"Usage: `/standings <tournament_id> <{'|'.join(EventFormat.MATCH_FORMATS)}>`",
            parse_mode=ParseMode.MARKDOWN,
        )
        return

    rows = await get_standings(session, int(parts[0]), parts[1])
    await message.answer(format_standings(rows, parts[1]), parse_mode=ParseMode.MARKDOWN)


# ── /bracket ──────────────────────────────────────────────────────────────────

@router.message(Command("bracket"))
async def cmd_bracket(
    message: Message,
    command: CommandObject,
    session: AsyncSession,
) -> None:
    parts = (command.args or "").split()
    if len(parts) < 2 or not parts[0].isdigit() or parts[1] not in EventFormat.MATCH_FORMATS:
        await message.answer("Usage: `/bracket <tournament_id> <format>`",
                             parse_mode=ParseMode.MARKDOWN)
        return

    bracket = await create_finals_bracket(session, int(parts[0]), parts[1])
    if bracket.is_empty:
        await message.answer("Not enough qualified players for a finals bracket.")
        return
    await message.answer(
        f"🏁 Finals bracket of {bracket.size} generated: "
        f"{len(bracket.all_matches())} matches."
    )
