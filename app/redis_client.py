from typing import Optional
from redis import asyncio as aioredis
from .config import get_settings

_settings = get_settings()
redis: Optional[aioredis.Redis] = (
    aioredis.from_url(_settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    if _settings.REDIS_URL
    else None
)


async def redis_health() -> Optional[bool]:
    # None = not configured (memory OTP backend)
    if redis is None:
        return None
    try:
        pong = await redis.ping()
        return bool(pong)
    except Exception:
        return False
