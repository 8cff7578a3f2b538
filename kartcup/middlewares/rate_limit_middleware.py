"""
Throttle middleware backed by the core RateLimiter.

Each Telegram user id is one identifier; the limit class decides the
numbers (score submissions by default). Rejected updates get a single
reply with the retry-after and never reach the handler.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from aiogram import BaseMiddleware
from aiogram.exceptions import TelegramAPIError
from aiogram.types import TelegramObject

from kartcup.services.rate_limiter import LimitClass, RateLimiter

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseMiddleware):
    """
    Parameters
    ----------
    limiter     : shared store; a private one is created when omitted
    limit_class : one of LimitClass.*
    """

    def __init__(
        self,
        limiter: Optional[RateLimiter] = None,
        limit_class: str = LimitClass.SCORE_INPUT,
    ) -> None:
        self.limiter     = limiter or RateLimiter()
        self.limit_class = limit_class

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = data.get("event_from_user")
        if user is None:
            return await handler(event, data)

        result = self.limiter.check_limit(str(user.id), self.limit_class)
        if not result.allowed:
            await self._throttle_response(data, result.retry_after)
            return None

        data["rate_limit"] = result
        return await handler(event, data)

    async def _throttle_response(self, data: Dict[str, Any], retry_after: Optional[int]) -> None:
        msg = f"⏳ Too many requests. Try again in {retry_after} s."
        update = data.get("event_update")
        if update is None:
            return
        try:
            if update.callback_query:
                await update.callback_query.answer(msg, show_alert=True)
            elif update.message:
                await update.message.answer(msg)
        except TelegramAPIError as exc:
            logger.debug("Throttle notice not delivered: %s", exc)
