"""
kartcup score desk — Telegram runner for the competition core.

Wires one shared RateLimiter and the session factory into the dispatcher,
then polls until SIGINT / SIGTERM.
"""
import asyncio
import logging
import signal
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import ErrorEvent
from sqlalchemy.exc import SQLAlchemyError

from kartcup.config import settings
from kartcup.handlers.scoring import router as scoring_router
from kartcup.middlewares import AdminMiddleware, DatabaseMiddleware, RateLimitMiddleware
from kartcup.models.base import Base, engine
from kartcup.services.rate_limiter import LimitClass, RateLimiter

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )
    # aiogram logs every polled update at INFO
    logging.getLogger("aiogram.event").setLevel(logging.WARNING)


async def create_tables() -> None:
    """Bootstrap an empty database; alembic owns every later schema change."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except SQLAlchemyError as exc:
        logger.critical(
            "Database %s unreachable: %s",
            settings.DATABASE_URL.split("@")[-1],   # no credentials in logs
            exc,
        )
        sys.exit(1)
    logger.info("Schema ready.")


async def on_error(event: ErrorEvent) -> bool:
    logger.exception("Update %s failed: %s", event.update.update_id, event.exception)
    message = event.update.message
    if message is not None:
        try:
            await message.answer("⚠️ The score desk hit an error; nothing was saved.")
        except TelegramAPIError as exc:
            logger.debug("Error notice not delivered: %s", exc)
    return True


def build_dispatcher(limiter: RateLimiter) -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage())
    dp["limiter"] = limiter
    dp.errors.register(on_error)

    dp.update.middleware(DatabaseMiddleware())
    dp.update.middleware(AdminMiddleware())
    # chat traffic is throttled as polling; submissions are throttled again
    # inside the core under their own limit class
    dp.message.middleware(RateLimitMiddleware(limiter, LimitClass.POLLING))

    dp.include_router(scoring_router)
    return dp


async def run_polling(bot: Bot, dp: Dispatcher) -> None:
    loop = asyncio.get_running_loop()

    def _stop() -> None:
        logger.info("Shutdown signal received.")
        loop.create_task(dp.stop_polling())

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _stop)
        except NotImplementedError:
            # not available on Windows event loops
            pass

    await dp.start_polling(
        bot,
        allowed_updates=dp.resolve_used_update_types(),
        handle_signals=False,
    )


async def main() -> None:
    setup_logging()
    if not settings.BOT_TOKEN:
        logger.critical("BOT_TOKEN is not set; the score desk cannot start.")
        sys.exit(1)

    await create_tables()
    bot = Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN),
    )
    dp = build_dispatcher(RateLimiter())

    logger.info("Score desk polling.")
    try:
        await run_polling(bot, dp)
    finally:
        await bot.session.close()
        await engine.dispose()
        logger.info("Score desk stopped.")


if __name__ == "__main__":
    asyncio.run(main())
