# redis_client.py - async key-value store used for token mirrors

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

from redis.asyncio import ConnectionPool as AsyncConnectionPool
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# =====================================
# CONFIGURATION
# =====================================

@dataclass
class RedisConfig:
    """Redis configuration"""
    host: str
    port: int
    db: int = 0
    password: Optional[str] = None
    decode_responses: bool = True
    max_connections: int = 50
    socket_timeout: int = 5
    socket_connect_timeout: int = 5

    @classmethod
    def from_env(cls) -> "RedisConfig":
        """Create configuration from environment variables"""
        return cls(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            db=int(os.getenv("REDIS_DB", "0")),
            password=os.getenv("REDIS_PASSWORD") or None,
            max_connections=int(os.getenv("REDIS_MAX_CONNECTIONS", "50")),
            socket_timeout=int(os.getenv("REDIS_SOCKET_TIMEOUT", "5")),
        )

    def validate(self) -> None:
        """Validate configuration"""
        if not self.host:
            raise ValueError("Redis host cannot be empty")
        if not 1 <= self.port <= 65535:
            raise ValueError(f"Invalid Redis port: {self.port}")
        if self.max_connections < 1:
            raise ValueError("max_connections must be at least 1")


# =====================================
# ASYNC CLIENT
# =====================================

class AsyncRedisClient:
    """
    Thin async wrapper around redis.asyncio.

    Write and delete failures are reported through the return value
    (False / 0) so callers decide whether a refused write is fatal.
    """

    def __init__(self, config: RedisConfig):
        config.validate()
        self.config = config
        self.pool = AsyncConnectionPool(
            host=config.host,
            port=config.port,
            db=config.db,
            password=config.password,
            decode_responses=config.decode_responses,
            max_connections=config.max_connections,
            socket_timeout=config.socket_timeout,
            socket_connect_timeout=config.socket_connect_timeout,
        )
        self._client: Optional[AsyncRedis] = None

    @property
    def client(self) -> AsyncRedis:
        if self._client is None:
            self._client = AsyncRedis(connection_pool=self.pool)
        return self._client

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        if not isinstance(value, (str, bytes, int, float)):
            value = json.dumps(value, default=str)
        try:
            return bool(await self.client.set(key, value, ex=ex))
        except RedisError as e:
            logger.error(f"Redis SET failed for key '{key}': {e}")
            return False

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self.client.get(key)
        except RedisError as e:
            logger.error(f"Redis GET failed for key '{key}': {e}")
            return None
        if value is None:
            return None
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value

    async def delete(self, *keys: str) -> int:
        """Number of keys actually removed."""
        try:
            return int(await self.client.delete(*keys))
        except RedisError as e:
            logger.error(f"Redis DELETE failed: {e}")
            return 0

    async def close(self) -> None:
        try:
            if self._client is not None:
                await self._client.aclose()
            await self.pool.disconnect()
            logger.info("Redis connection closed")
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")


def create_redis_key(namespace: str, *parts: str) -> str:
    """
    Create namespaced Redis key

    Example:
        >>> create_redis_key("refresh_token", "abc")
        'refresh_token:abc'
    """
    all_parts = [namespace] + list(parts)
    return ":".join(str(part) for part in all_parts)
