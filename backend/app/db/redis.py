"""Redis client for session lookup and rate limiting

Sessions are written by the auth service; this backend only resolves them.
"""
import redis
import logging
from typing import Optional
from app.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def get_session(session_id: str) -> Optional[int]:
    """Get user_id from session"""
    key = f"session:{session_id}"
    user_id = get_redis_client().get(key)
    return int(user_id) if user_id else None


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment rate limit counter and return current count (fixed window).

    The TTL is only set when the key is new so the window does not slide.
    """
    key = f"ratelimit:{identifier}"
    client = get_redis_client()
    count = client.incr(key)
    if count == 1:
        client.expire(key, window)
    return int(count)


def check_rate_limit(identifier: str, max_requests: int, window: int) -> bool:
    """Check if request is within rate limit using Redis. Returns True if allowed, False if rate limited."""
    current_count = increment_rate_limit(identifier, window)
    return current_count <= max_requests

