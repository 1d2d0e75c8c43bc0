"""
Redis client for fetch guards shared across server processes.
Only used when FETCH_GUARD_BACKEND=redis.
"""

import os
from typing import Optional

import redis

# ─── Config ────────────────────────────────────────────────────────────────────

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    return _redis_client


# ─── Key helpers ───────────────────────────────────────────────────────────────

def rate_limit_key(client_id: str) -> str:
    return f"fetch_rate:{client_id}"


def in_flight_key(key: str) -> str:
    return f"fetch_in_flight:{key}"
