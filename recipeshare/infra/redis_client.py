from redis.asyncio import Redis as AsyncRedis

from ..settings import settings

_redis_async: AsyncRedis | None = None


async def get_redis() -> AsyncRedis:
    """Shared async client, created on first use."""
    global _redis_async
    if _redis_async is None:
        _redis_async = AsyncRedis.from_url(settings.redis_url, decode_responses=True)
    return _redis_async
