"""
Metrics utilities — latency timer and named counters.

Counters live in Redis (INCR) so every gateway instance contributes to the
same totals. When Redis is unavailable they fall back to an in-process tally.
"""
import logging
import time
from collections import Counter
from typing import Optional

logger = logging.getLogger(__name__)

COUNTER_PREFIX = "hookgate:metrics:"


class MetricName:
    """Counter name constants."""
    RECEIVED = "webhooks.received"
    VALIDATION_FAILED = "webhooks.validation_failed"
    MALFORMED = "webhooks.malformed"
    DUPLICATE = "webhooks.duplicate"
    UNHANDLED = "webhooks.unhandled"
    PROCESSED = "webhooks.processed"
    RETRYING = "webhooks.retrying"
    DEAD_LETTERED = "webhooks.dead_lettered"
    AUDIT_FALLBACK = "audit.fallback_writes"

    ALL = (
        RECEIVED, VALIDATION_FAILED, MALFORMED, DUPLICATE, UNHANDLED,
        PROCESSED, RETRYING, DEAD_LETTERED, AUDIT_FALLBACK,
    )


# In-memory fallback when Redis is down
_local_counters: Counter = Counter()


class Timer:
    """Simple timer for measuring operation latency."""

    def __init__(self):
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def start(self) -> "Timer":
        self._start = time.monotonic()
        return self

    def stop(self) -> int:
        """Stop timer and return elapsed milliseconds."""
        self._end = time.monotonic()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> int:
        """Return elapsed time in milliseconds."""
        if self._start is None:
            return 0
        end = self._end or time.monotonic()
        return int((end - self._start) * 1000)


async def increment_counter(name: str, amount: int = 1) -> None:
    """Increment a named counter. Never raises."""
    try:
        from hookgate.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.incrby(COUNTER_PREFIX + name, amount)
    except Exception as e:
        logger.debug("Counter %s Redis increment failed, counting locally: %s", name, str(e))
        _local_counters[name] += amount


async def get_counters() -> dict[str, int]:
    """Read all known counters (Redis values plus any local fallback tally)."""
    values = {name: _local_counters.get(name, 0) for name in MetricName.ALL}
    try:
        from hookgate.utils.redis_client import get_redis
        redis = await get_redis()
        for name in MetricName.ALL:
            raw = await redis.get(COUNTER_PREFIX + name)
            if raw is not None:
                values[name] += int(raw)
    except Exception as e:
        logger.debug("Counter read from Redis failed: %s", str(e))
    return values
