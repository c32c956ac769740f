"""
Redis Service

Holds the one `redis.asyncio` client of the process. The event stream
consumer is its only user. `initialize()` does a PING before publishing
the client, so a service that started has a reachable Redis.

Settings: Config.REDIS_URL, Config.REDIS_SOCKET_TIMEOUT and
`core.redis.max_connections` (default 20).
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

from redis.asyncio.client import Redis as AsyncRedis
from redis.exceptions import RedisError

from presence.core.config.config import Config
from presence.core.config.config_manager import ConfigManager
from presence.core.logging.logger import get_logger

logger = get_logger(__name__)


class RedisService:
    _client: Optional[AsyncRedis] = None
    _init_lock: Optional[asyncio.Lock] = None

    @classmethod
    def _lock(cls) -> asyncio.Lock:
        if cls._init_lock is None:
            cls._init_lock = asyncio.Lock()
        return cls._init_lock

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Connect and PING. No-op when already connected.

        Raises:
            RuntimeError: Redis did not answer the PING
        """
        async with cls._lock():
            if cls._client is not None:
                return

            url = url or Config.REDIS_URL
            scheme = url.split("://", 1)[0] if "://" in url else "unknown"
            max_connections = ConfigManager.get_int("core.redis.max_connections", 20)
            started = time.monotonic()

            client = AsyncRedis.from_url(
                url,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                decode_responses=True,
                max_connections=max_connections,
                health_check_interval=30,
            )
            try:
                await client.ping()
            except (RedisError, OSError) as exc:
                await client.aclose()
                logger.critical(
                    "Redis is unreachable",
                    extra={"error": str(exc), "error_type": type(exc).__name__, "scheme": scheme},
                    exc_info=True,
                )
                raise RuntimeError(f"Redis is unreachable: {exc}") from exc

            cls._client = client
            logger.info(
                "Redis client ready",
                extra={
                    "scheme": scheme,
                    "max_connections": max_connections,
                    "connect_ms": round((time.monotonic() - started) * 1000, 2),
                },
            )

    @classmethod
    async def shutdown(cls) -> None:
        client, cls._client = cls._client, None
        if client is None:
            return

        try:
            await client.aclose()
        except (RedisError, OSError) as exc:
            logger.error(
                "Redis client did not close cleanly",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return
        logger.info("Redis client closed")

    @classmethod
    def get_client(cls) -> AsyncRedis:
        if cls._client is None:
            raise RuntimeError("RedisService.initialize() must run before the client is used")
        return cls._client
