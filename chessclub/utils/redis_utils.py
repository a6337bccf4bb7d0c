"""
Redis connection helpers for the shared cache backend.

``REDIS_URL`` is optional. When it is unset, rejected, or the server does
not answer a ping, ``create_redis_client`` returns None and the cache runs
in-process instead.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from chessclub.config import Config

logger = logging.getLogger(__name__)

LOCAL_PREFIXES = ('redis://localhost', 'redis://127.0.0.1')


class RedisUtils:
    """Validation and construction of the cache's Redis client."""

    @staticmethod
    def url_problem(redis_url: str, debug: bool) -> Optional[str]:
        """Describe why ``redis_url`` is unacceptable, or return None if it is fine."""
        if redis_url.startswith('rediss://'):
            if not debug and '@' not in redis_url:
                return "credentials are required outside debug mode"
            return None
        if debug:
            if not redis_url.startswith(LOCAL_PREFIXES):
                logger.warning(f"Unencrypted non-local Redis URL allowed in debug mode: {redis_url}")
            return None
        return "TLS (rediss://) is required outside debug mode"

    @staticmethod
    def get_secure_redis_url() -> Optional[str]:
        redis_url = Config.REDIS_URL
        if not redis_url:
            logger.info("REDIS_URL not set, cache will run in-process")
            return None
        problem = RedisUtils.url_problem(redis_url, Config.DEBUG)
        if problem:
            logger.error(f"Ignoring REDIS_URL: {problem}")
            return None
        return redis_url

    @staticmethod
    async def create_redis_client() -> Optional[redis.Redis]:
        """Connect and ping. Any failure leaves the engine on the in-process cache."""
        redis_url = RedisUtils.get_secure_redis_url()
        if redis_url is None:
            return None

        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=Config.BACKING_STORE_TIMEOUT_SECONDS,
        )
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            logger.error(f"Redis unreachable at startup, using in-process cache: {e}")
            await client.aclose()
            return None
        logger.info("Connected to Redis cache backend")
        return client
