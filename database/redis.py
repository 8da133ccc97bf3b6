import redis.asyncio as redis

from config.settings import settings

# decode_responses=True ensures that values retrieved from Redis are
# decoded from bytes to UTF-8 strings.
redis_pool = redis.ConnectionPool(
    host=settings.REDIS_HOST,
    port=settings.REDIS_PORT,
    db=0,
    decode_responses=True
)

# Shared client used by the bot's rate limiter.
redis_client = redis.Redis(connection_pool=redis_pool)


async def close_redis():
    """Releases the pooled connections on shutdown."""
    await redis_client.aclose()
    await redis_pool.disconnect()
