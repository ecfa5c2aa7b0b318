"""
Redis client for SportsFest

Provides cross-instance webhook event de-duplication via Redis SETEX.
Redis is optional: every helper degrades to "not processed" / "not marked"
when REDIS_URL is unset or the server is unreachable, and the payment
intent guard in the confirmation service remains authoritative.
"""
import logging
from typing import Optional
import redis.asyncio as redis
from sportsfest.core.config import settings

logger = logging.getLogger(__name__)

# Global Redis client (initialized lazily)
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get Redis client, initializing if needed.

    Returns None if REDIS_URL not configured (graceful degradation).
    """
    global _redis_client

    if not settings.REDIS_URL:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True
            )
            await _redis_client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Falling back to in-memory.")
            _redis_client = None

    return _redis_client


async def close_redis():
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


# ----- Webhook Idempotency -----

WEBHOOK_KEY_PREFIX = "webhook:event:"
WEBHOOK_TTL_HOURS = 24


async def is_webhook_processed(event_id: str) -> bool:
    """Check if webhook event was already processed.

    Falls back to False if Redis unavailable (allows processing).
    """
    client = await get_redis()
    if not client:
        return False

    try:
        return await client.exists(f"{WEBHOOK_KEY_PREFIX}{event_id}") > 0
    except Exception as e:
        logger.warning(f"Redis check failed for webhook {event_id}: {e}")
        return False


async def mark_webhook_processed(event_id: str, ttl_hours: int = WEBHOOK_TTL_HOURS) -> bool:
    """Mark webhook event as processed with TTL.

    Returns True if successfully marked, False if Redis unavailable.
    """
    client = await get_redis()
    if not client:
        return False

    try:
        await client.setex(
            f"{WEBHOOK_KEY_PREFIX}{event_id}",
            ttl_hours * 3600,
            "1"
        )
        return True
    except Exception as e:
        logger.warning(f"Redis mark failed for webhook {event_id}: {e}")
        return False
