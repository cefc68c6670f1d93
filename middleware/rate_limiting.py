"""
FastAPI Rate Limiting Middleware using Token Bucket Algorithm

This module provides a dual-tier rate limiting middleware: a strict tier for
authentication routes (a brute-force deterrent) and a lenient tier for all
other traffic. Buckets are keyed by source address and stored in a map
sharded by key hash, with one lock per shard, so unrelated clients never
contend on a single global lock.
"""

import math
import time
import logging
from typing import Callable, Dict, Iterable, Optional
from threading import Lock
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from utils.exceptions import RateLimited


logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Token Bucket state for a single client.

    Tokens are added at a constant rate up to `capacity`, and each request
    consumes one token. Not synchronised itself: the owning shard's lock
    guards every access.
    """

    __slots__ = ("capacity", "refill_rate", "tokens", "last_refill", "last_seen")

    def __init__(self, capacity: int, refill_rate: float, now: float):
        """
        Initialize a full token bucket.

        Args:
            capacity: Maximum number of tokens the bucket can hold
            refill_rate: Number of tokens added per second
            now: Current clock reading
        """
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.tokens = float(capacity)
        self.last_refill = now
        self.last_seen = now

    def _refill(self, now: float) -> None:
        """Add tokens proportional to the time elapsed since the last refill, capped at capacity."""
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, now: float, tokens: int = 1) -> bool:
        """
        Attempt to consume tokens from the bucket.

        Args:
            now: Current clock reading
            tokens: Number of tokens to consume (default: 1)

        Returns:
            True if tokens were successfully consumed, False otherwise
        """
        self._refill(now)
        self.last_seen = now

        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def seconds_until_available(self, tokens: int = 1) -> float:
        missing = tokens - self.tokens
        return max(0.0, missing / self.refill_rate)


class _Shard:
    __slots__ = ("lock", "buckets")

    def __init__(self):
        self.lock = Lock()
        self.buckets: Dict[str, TokenBucket] = {}


class RateLimiter:
    """
    Token buckets for one tier, sharded by client key.

    Buckets are created lazily and evicted once idle for `idle_seconds`.
    The idle window is never shorter than the time an empty bucket needs to
    refill completely, so an evicted bucket is always indistinguishable from
    a fresh one.
    """

    def __init__(
        self,
        rate_per_second: float,
        burst: int,
        shards: int = 16,
        idle_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate_per_second <= 0 or burst <= 0 or shards <= 0:
            raise ValueError("rate, burst and shard count must be positive")

        self.rate_per_second = rate_per_second
        self.burst = burst
        self.idle_seconds = max(idle_seconds, burst / rate_per_second)
        self.clock = clock
        self._shards = [_Shard() for _ in range(shards)]

    def _shard_for(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def hit(self, key: str) -> tuple[bool, int, float]:
        """
        Consume one token for `key`.

        Returns:
            (allowed, remaining tokens, seconds until the next token is available)
        """
        now = self.clock()
        shard = self._shard_for(key)

        with shard.lock:
            bucket = shard.buckets.get(key)
            if bucket is None:
                bucket = TokenBucket(self.burst, self.rate_per_second, now)
                shard.buckets[key] = bucket
                logger.debug("Created new token bucket for client: %s", key)

            allowed = bucket.consume(now)
            return allowed, int(bucket.tokens), bucket.seconds_until_available()

    def sweep(self) -> int:
        """
        Remove buckets that haven't been used within the idle window.

        Shards are swept one at a time, so a sweep never blocks the whole map.

        Returns:
            Number of evicted buckets
        """
        evicted = 0
        for shard in self._shards:
            now = self.clock()
            with shard.lock:
                stale = [
                    key
                    for key, bucket in shard.buckets.items()
                    if now - bucket.last_seen > self.idle_seconds
                ]
                for key in stale:
                    del shard.buckets[key]
            evicted += len(stale)
        return evicted

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.buckets)
        return total


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware enforcing per-address rate limits.

    Requests whose path starts with one of `auth_prefixes` hit the strict
    `auth_limiter`; everything else hits `general_limiter`.
    """

    def __init__(
        self,
        app: FastAPI,
        general_limiter: RateLimiter,
        auth_limiter: RateLimiter,
        auth_prefixes: Iterable[str] = ("/auth",),
        exclude_paths: Optional[Iterable[str]] = None,
        sweep_interval: float = 60.0,
    ):
        """
        Initialize the rate limiting middleware.

        Args:
            app: FastAPI application instance
            general_limiter: Limiter for general traffic
            auth_limiter: Limiter for authentication routes
            auth_prefixes: Path prefixes classified as authentication routes
            exclude_paths: Paths to exclude from rate limiting (default: None)
            sweep_interval: Seconds between idle-bucket sweeps
        """
        super().__init__(app)

        self.general_limiter = general_limiter
        self.auth_limiter = auth_limiter
        self.auth_prefixes = tuple(auth_prefixes)
        self.exclude_paths = set(exclude_paths) if exclude_paths else set()
        self.sweep_interval = sweep_interval
        self.last_sweep = general_limiter.clock()

        logger.info(
            "Rate limiter initialized: general %.2f req/s (burst %d), auth %.2f req/s (burst %d)",
            general_limiter.rate_per_second,
            general_limiter.burst,
            auth_limiter.rate_per_second,
            auth_limiter.burst,
        )

    def _get_client_identifier(self, request: Request) -> str:
        """
        Extract client identifier from the request.

        Forwarded headers are only trusted after ProxyHeadersMiddleware has
        rewritten `request.client` for a trusted proxy.
        """
        return request.client.host if request.client else "unknown"

    def _limiter_for(self, path: str) -> RateLimiter:
        if any(path == prefix or path.startswith(prefix + "/") for prefix in self.auth_prefixes):
            return self.auth_limiter
        return self.general_limiter

    def _sweep_if_due(self) -> None:
        now = self.general_limiter.clock()
        if now - self.last_sweep < self.sweep_interval:
            return
        self.last_sweep = now

        evicted = self.general_limiter.sweep() + self.auth_limiter.sweep()
        if evicted:
            logger.info("Cleaned up %d inactive token buckets", evicted)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process incoming requests and enforce rate limiting.

        Returns:
            The downstream response, or a 429 response when the bucket is empty
        """
        path = request.url.path
        if path in self.exclude_paths:
            return await call_next(request)

        self._sweep_if_due()

        client_id = self._get_client_identifier(request)
        limiter = self._limiter_for(path)
        allowed, remaining, wait_seconds = limiter.hit(client_id)

        if not allowed:
            logger.warning("Rate limit exceeded for %s on %s", client_id, path)
            retry_after = max(1, math.ceil(wait_seconds))
            return RateLimited(retry_after=retry_after, limit=limiter.burst).to_response()

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limiter.burst)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
