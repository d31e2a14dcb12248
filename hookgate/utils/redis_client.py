"""
Shared async Redis connection.
Redis only carries operational side data here (alert cooldowns, worker
heartbeats, counters); dedup and audit state live in the database.
"""
import logging

logger = logging.getLogger(__name__)

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from hookgate.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except Exception as e:
            logger.debug("Redis close failed: %s", str(e))
    _redis_client = None


async def write_heartbeat(worker_name: str, ttl_seconds: int = 300) -> None:
    """Store a worker heartbeat timestamp in Redis."""
    try:
        from datetime import datetime, timezone
        redis = await get_redis()
        await redis.set(
            f"hookgate:worker_health:{worker_name}",
            datetime.now(timezone.utc).isoformat(),
            ex=ttl_seconds,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed for %s: %s", worker_name, str(e))
