"""
Rate limiting and in-flight guards for AI fetch endpoints.

RateLimiter
    Fixed window per client id: the first request opens a window, every
    request inside it increments the count (rejected ones included), and a
    request after the window closes starts a new one at 1.

ConcurrencyGuard
    Set of in-flight ingestion keys. A second request for a key that is
    already held is rejected; the key is released when the holder finishes,
    whatever the outcome.

Both default to process memory. FETCH_GUARD_BACKEND=redis swaps in the Redis
versions so several server processes share one limiter and one guard.
"""

import logging
import os
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from fastapi import HTTPException, Request, status

from database.redis_client import get_redis, in_flight_key, rate_limit_key

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

FETCH_RATE_LIMIT_MAX = int(os.getenv("FETCH_RATE_LIMIT_MAX", "10"))
FETCH_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("FETCH_RATE_LIMIT_WINDOW_SECONDS", str(15 * 60)))
GLOBAL_RATE_LIMIT_MAX = int(os.getenv("GLOBAL_RATE_LIMIT_MAX", "100"))
FETCH_GUARD_BACKEND = os.getenv("FETCH_GUARD_BACKEND", "memory").lower()
# Redis keys expire so a crashed holder cannot block a target forever
FETCH_GUARD_TTL_SECONDS = int(os.getenv("FETCH_GUARD_TTL_SECONDS", "300"))


class FetchInProgress(Exception):
    """Another request is already ingesting the same target."""

    def __init__(self, key: str):
        super().__init__(f"Fetch already in progress for {key}")
        self.key = key


# ─── In-memory ────────────────────────────────────────────────────────────────

@dataclass
class RateRecord:
    count: int
    reset_time: float


class RateLimiter:
    def __init__(
        self,
        max_requests: int = FETCH_RATE_LIMIT_MAX,
        window_seconds: float = FETCH_RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._records: Dict[str, RateRecord] = {}

    def check(self, client_id: str) -> bool:
        """Count one request for client_id. Returns False once over the limit."""
        now = self._clock()
        record = self._records.get(client_id)
        if record is None:
            self._records[client_id] = RateRecord(count=1, reset_time=now + self.window_seconds)
            return True
        if now > record.reset_time:
            record.count = 1
            record.reset_time = now + self.window_seconds
            return True
        record.count += 1
        return record.count <= self.max_requests

    def get(self, client_id: str) -> Optional[RateRecord]:
        return self._records.get(client_id)

    def reset(self) -> None:
        self._records.clear()


class _GuardBase:
    def try_acquire(self, key: str) -> bool:
        raise NotImplementedError

    def release(self, key: str) -> None:
        raise NotImplementedError

    def _acquire(self, key: str) -> Optional[str]:
        return key if self.try_acquire(key) else None

    def _release(self, key: str, token: str) -> None:
        self.release(key)

    @contextmanager
    def hold(self, key: str) -> Iterator[str]:
        """Hold key for the duration of the block. Raises FetchInProgress if taken."""
        token = self._acquire(key)
        if token is None:
            raise FetchInProgress(key)
        try:
            yield key
        finally:
            self._release(key, token)


class ConcurrencyGuard(_GuardBase):
    def __init__(self):
        self._in_flight = set()

    def try_acquire(self, key: str) -> bool:
        if key in self._in_flight:
            return False
        self._in_flight.add(key)
        return True

    def release(self, key: str) -> None:
        self._in_flight.discard(key)

    def is_held(self, key: str) -> bool:
        return key in self._in_flight

    def reset(self) -> None:
        self._in_flight.clear()


# ─── Redis ────────────────────────────────────────────────────────────────────

class RedisRateLimiter:
    def __init__(
        self,
        client,
        max_requests: int = FETCH_RATE_LIMIT_MAX,
        window_seconds: int = FETCH_RATE_LIMIT_WINDOW_SECONDS,
    ):
        self.client = client
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def check(self, client_id: str) -> bool:
        key = rate_limit_key(client_id)
        count = self.client.incr(key)
        if count == 1:
            self.client.expire(key, self.window_seconds)
        return count <= self.max_requests


# Delete the key only while it still holds this acquirer's token
_RELEASE_IF_OWNER = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisConcurrencyGuard(_GuardBase):
    """
    Shared in-flight guard. Each acquire stores a fresh token; hold() releases
    with a compare-and-delete on that token.
    """

    def __init__(self, client, ttl_seconds: int = FETCH_GUARD_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def _acquire(self, key: str) -> Optional[str]:
        token = uuid.uuid4().hex
        if self.client.set(in_flight_key(key), token, nx=True, ex=self.ttl_seconds):
            return token
        return None

    def _release(self, key: str, token: str) -> None:
        released = self.client.eval(_RELEASE_IF_OWNER, 1, in_flight_key(key), token)
        if not released:
            log.warning("In-flight key %s expired before release", key)

    def try_acquire(self, key: str) -> bool:
        return self._acquire(key) is not None

    def release(self, key: str) -> None:
        """Unconditional release, for operators clearing a stuck key."""
        self.client.delete(in_flight_key(key))


# ─── Instances ────────────────────────────────────────────────────────────────

if FETCH_GUARD_BACKEND == "redis":
    fetch_limiter = RedisRateLimiter(get_redis())
    fetch_guard = RedisConcurrencyGuard(get_redis())
else:
    fetch_limiter = RateLimiter()
    fetch_guard = ConcurrencyGuard()

# App-wide limit, always per process
global_limiter = RateLimiter(max_requests=GLOBAL_RATE_LIMIT_MAX)


# ─── Keys & dependencies ──────────────────────────────────────────────────────

def boards_key(state_id: int) -> str:
    return f"boards_{state_id}"


def subjects_key(board_id: int, class_id: int, stream_id: Optional[int]) -> str:
    return f"subjects_{board_id}_{class_id}_{stream_id if stream_id is not None else 'all'}"


def chapters_key(subject_id: int) -> str:
    return f"chapters_{subject_id}"


def client_identifier(request: Request) -> str:
    """
    Socket peer address, else 'unknown'.

    X-Forwarded-For is never read here: behind a trusted proxy the peer address
    is already rewritten by ProxyHeadersMiddleware (see FORWARDED_ALLOW_IPS).
    """
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def fetch_rate_limit(request: Request) -> None:
    """FastAPI dependency for the public fetch-out endpoints."""
    client_id = client_identifier(request)
    if not fetch_limiter.check(client_id):
        log.warning("Fetch rate limit exceeded for %s", client_id)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many fetch requests from this IP. Please wait 15 minutes.",
        )
