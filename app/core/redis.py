import logging
from typing import Optional, Tuple

import redis
from redis.connection import ConnectionPool

from app.core.config import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Shared connection for the OTP store and the rate limiter"""

    _client: Optional[redis.Redis] = None
    _pool: Optional[ConnectionPool] = None
    _is_available: bool = False

    @classmethod
    def get_client(cls) -> redis.Redis:
        """Return the pooled client, connecting on first use"""
        if cls._client is not None:
            return cls._client

        if not settings.REDIS_HOST:
            raise RuntimeError("Redis is not configured (REDIS_HOST is empty)")

        pool = ConnectionPool(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            password=settings.REDIS_PASSWORD or None,
            db=settings.REDIS_DB,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            max_connections=20,
            health_check_interval=15,
        )
        client = redis.Redis(connection_pool=pool)
        try:
            client.ping()
        except redis.RedisError as e:
            pool.disconnect()
            cls._is_available = False
            logger.error("Redis connection to %s:%s failed: %s", settings.REDIS_HOST, settings.REDIS_PORT, e)
            raise

        cls._pool, cls._client, cls._is_available = pool, client, True
        logger.info("Redis connected (%s:%s db=%s)", settings.REDIS_HOST, settings.REDIS_PORT, settings.REDIS_DB)
        return client

    @classmethod
    def set_client(cls, client: Optional[redis.Redis]):
        """Install an already-built client (tests, scripts)"""
        cls._client = client
        cls._pool = None
        cls._is_available = client is not None

    @classmethod
    def is_available(cls) -> bool:
        return cls._is_available

    @classmethod
    def close(cls):
        if cls._client is not None:
            cls._client.close()
        if cls._pool is not None:
            cls._pool.disconnect()
        cls._client, cls._pool, cls._is_available = None, None, False
        logger.info("Redis connection closed")


def get_redis() -> Optional[redis.Redis]:
    """Client if Redis is configured and reachable, else None"""
    try:
        return RedisClient.get_client()
    except (RuntimeError, redis.RedisError):
        return None


class CacheKeys:
    """Key layout shared by every relay instance"""

    @staticmethod
    def otp(email: str) -> str:
        return f"otp:{email}"

    @staticmethod
    def rate_limit(identifier: str, action: str) -> str:
        return f"rate_limit:{action}:{identifier}"


class RateLimiter:
    """Fixed-window counters. Without Redis every request is allowed."""

    @staticmethod
    def check_rate_limit(
        identifier: str,
        action: str,
        max_requests: int,
        window_seconds: int
    ) -> Tuple[bool, int]:
        """
        Count one request against the window.

        Returns:
            (is_allowed, remaining_requests)
        """
        client = get_redis() if RedisClient.is_available() else None
        if client is None:
            return True, max_requests

        key = CacheKeys.rate_limit(identifier, action)
        try:
            # INCR + EXPIRE in one round-trip
            pipe = client.pipeline()
            pipe.incr(key)
            pipe.expire(key, window_seconds)
            current = pipe.execute()[0]
        except redis.RedisError as e:
            logger.warning("Rate limit check for %s/%s skipped: %s", action, identifier, e)
            return True, max_requests

        return current <= max_requests, max(0, max_requests - current)

    @staticmethod
    def get_remaining_time(identifier: str, action: str) -> int:
        """Seconds until the window resets"""
        client = get_redis() if RedisClient.is_available() else None
        if client is None:
            return 0
        try:
            return max(0, client.ttl(CacheKeys.rate_limit(identifier, action)))
        except redis.RedisError as e:
            logger.warning("Rate limit TTL for %s/%s unavailable: %s", action, identifier, e)
            return 0

    @staticmethod
    def reset(identifier: str, action: str) -> int:
        """Clear a window (e.g. after a successful login)"""
        client = get_redis() if RedisClient.is_available() else None
        if client is None:
            return 0
        try:
            return client.delete(CacheKeys.rate_limit(identifier, action))
        except redis.RedisError as e:
            logger.warning("Rate limit reset for %s/%s skipped: %s", action, identifier, e)
            return 0
