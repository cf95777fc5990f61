"""Redis client for the webhook dedup cache"""
import logging

import redis

from payhook.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None

PROCESSED_EVENT_PREFIX = "webhook:processed:"


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def set_redis_client(client) -> None:
    """Replace the shared client (used by tests and alternative deployments)"""
    global _client
    _client = client


def mark_event_cached(event_id: str, ttl: int = None) -> bool:
    """Remember a processed event ID for the dedup fast path

    Returns False if Redis is unavailable; callers fall back to the database.
    """
    ttl = ttl or settings.IDEMPOTENCY_CACHE_TTL_SECONDS
    try:
        get_redis_client().setex(f"{PROCESSED_EVENT_PREFIX}{event_id}", ttl, "1")
        return True
    except redis.RedisError as e:
        logger.warning(f"Could not cache processed event {event_id}: {e}")
        return False


def is_event_cached(event_id: str) -> bool:
    """Check the dedup fast path. Fails open (False) when Redis is down."""
    try:
        return bool(get_redis_client().exists(f"{PROCESSED_EVENT_PREFIX}{event_id}"))
    except redis.RedisError as e:
        logger.warning(f"Redis dedup lookup failed for {event_id}, falling back to database: {e}")
        return False


def ping() -> bool:
    """Check Redis connectivity"""
    try:
        return bool(get_redis_client().ping())
    except redis.RedisError as e:
        logger.warning(f"Redis ping failed: {e}")
        return False
