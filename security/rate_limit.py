from typing import Callable, Dict, Any, Awaitable
from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, User

from database.redis import redis_client
from config.constants import REDIS_RATE_LIMIT_PREFIX
from utils.logger import app_logger


class RateLimitMiddleware(BaseMiddleware):
    """
    Drops updates from users who send more than 'limit' updates per 'period' seconds.

    Purchases reserve wallet funds, so hammering the buy button must not turn
    into a burst of saga runs.
    """

    def __init__(self, limit: int = 3, period: int = 1, client=None):
        self.limit = limit
        self.period = period
        self._redis = client or redis_client
        super().__init__()

    async def __call__(
            self,
            handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
            event: TelegramObject,
            data: Dict[str, Any]
    ) -> Any:
        user: User | None = data.get("event_from_user")
        if not user:
            return await handler(event, data)

        key = f"{REDIS_RATE_LIMIT_PREFIX}:{user.id}"

        # INCR and EXPIRE run as one transaction.
        async with self._redis.pipeline() as pipe:
            pipe.incr(key)
            pipe.expire(key, self.period)
            requests_count, _ = await pipe.execute()

        if int(requests_count) > self.limit:
            app_logger.warning(
                f"Rate limit exceeded for user {user.id} (@{user.username}). "
                f"Count: {requests_count} in {self.period}s."
            )
            # Returning without calling the handler drops the update.
            return None

        return await handler(event, data)
