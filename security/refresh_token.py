"""
Refresh token revocation list with replay protection.
This implementation uses Redis to track used refresh tokens and enforce one-time use.

Every method blocks on Redis and must be called through the storage bridge.
"""

from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from utils.exceptions import StorageError, StorageUnavailable


class RefreshTokenRevocationList:
    """Records which refresh tokens have already been spent."""

    def __init__(self, redis_client: Redis, key_prefix: str = "used_refresh_token:"):
        self.redis = redis_client
        self.used_tokens_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str) -> "RefreshTokenRevocationList":
        return cls(Redis.from_url(url, decode_responses=True))

    def claim(self, token_jti: str, ttl_seconds: int) -> bool:
        """Atomically mark a refresh token as used.

        Args:
            token_jti (str): Unique identifier of the refresh token.
            ttl_seconds (int): How long to remember it; the token's remaining lifetime.

        Returns:
            bool: True if this call spent the token, False if it was already spent.
        """
        key = f"{self.used_tokens_prefix}{token_jti}"
        try:
            # SET NX makes check-and-mark a single step, so concurrent rotations
            # of the same token cannot both succeed
            return bool(self.redis.set(key, "used", ex=max(1, int(ttl_seconds)), nx=True))
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StorageUnavailable() from e
        except RedisError as e:
            raise StorageError() from e

    def ping(self) -> None:
        try:
            self.redis.ping()
        except RedisError as e:
            raise StorageUnavailable() from e
