"""
Shared Redis connection: collaborator queues (see orderflow.queue) and payment event de-duplication.
"""
import redis.asyncio as redis

from orderflow.config import settings

SEEN_EVENT_TTL_SECONDS = 86400

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def _seen_key(event_id: str) -> str:
    return f"payment_event:{event_id}"


async def claim_payment_event(event_id: str, ttl_seconds: int = SEEN_EVENT_TTL_SECONDS) -> bool:
    """
    True if this call is the first to see event_id, False for a redelivery.
    SET NX EX: only the first caller sets the key.
    """
    r = await get_redis()
    was_set = await r.set(_seen_key(event_id), "1", nx=True, ex=ttl_seconds)
    return bool(was_set)


async def release_payment_event(event_id: str) -> None:
    """Forget event_id so a redelivery is accepted again (queueing it failed)."""
    r = await get_redis()
    await r.delete(_seen_key(event_id))
