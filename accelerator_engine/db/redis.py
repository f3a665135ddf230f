"""Redis client backing the session store and the ownership leases.

The first ping is retried with backoff so the engine can start alongside a
Redis that is still booting; afterwards ping_redis() serves the readiness check.
"""

import redis.asyncio as redis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from accelerator_engine.core.config import get_settings

logger = structlog.get_logger(__name__)

_redis: redis.Redis | None = None


@retry(
    retry=retry_if_exception_type(RedisConnectionError),
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
    reraise=True,
    before_sleep=lambda rs: logger.warning(
        "redis_connect_retrying",
        attempt=rs.attempt_number,
        sleep_seconds=rs.next_action.sleep,
    ),
)
async def _wait_until_reachable(client: redis.Redis) -> None:
    await client.ping()


async def init_redis(url: str | None = None) -> None:
    """Create the shared client and wait until Redis answers.

    Raises:
        redis.exceptions.ConnectionError: If Redis is still unreachable after the retries
    """
    global _redis

    if _redis is not None:
        return

    client = redis.from_url(url or get_settings().redis_url, encoding="utf-8", decode_responses=True)
    try:
        await _wait_until_reachable(client)
    except RedisConnectionError:
        await client.aclose()
        raise
    _redis = client


async def close_redis() -> None:
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> redis.Redis:
    """Return the shared Redis client.

    Raises RuntimeError if init_redis() has not been called.
    """
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


async def ping_redis() -> bool:
    """Readiness check: True when the shared client answers PING."""
    try:
        return bool(await get_redis().ping())
    except Exception as e:
        logger.error("redis_health_check_failed", error=str(e), error_type=type(e).__name__)
        return False
