# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Redis Connection Factory — The single async pool every partition shares.

TenantRouter hands this one client to each PartitionHandle; partitions are
key namespaces, not connections. Pool size and socket deadlines come from
VaultSettings. Transient connection errors are retried with backoff before
they reach the store.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as aioredis
from redis.backoff import ExponentialBackoff
from redis.exceptions import BusyLoadingError, ConnectionError, RedisError, TimeoutError
from redis.retry import Retry

from consent_vault.core.config import settings

logger = logging.getLogger("vault.redis")

_pool: Optional[aioredis.Redis] = None

_RETRY_ERRORS = [ConnectionError, TimeoutError, BusyLoadingError, OSError]


def redacted_url(url: str) -> str:
    """The URL with any password masked, for logs."""
    parts = urlsplit(url)
    if not parts.password:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    user = parts.username or ""
    return urlunsplit(parts._replace(netloc=f"{user}:***@{host}"))


def client_options() -> dict:
    return {
        "decode_responses": True,
        "max_connections": settings.REDIS_MAX_CONNECTIONS,
        "health_check_interval": 15,
        "retry_on_timeout": True,
        "retry_on_error": _RETRY_ERRORS,
        "retry": Retry(ExponentialBackoff(cap=2, base=0.1), retries=settings.REDIS_RETRIES),
        "socket_connect_timeout": settings.REDIS_CONNECT_TIMEOUT,
        "socket_timeout": settings.REDIS_SOCKET_TIMEOUT,
    }


async def get_redis_pool() -> aioredis.Redis:
    """Return the shared client, creating it from settings on first use."""
    global _pool
    if _pool is None:
        _pool = aioredis.from_url(settings.REDIS_URL, **client_options())
        logger.info(
            "Redis pool created for %s (max %d connections)",
            redacted_url(settings.REDIS_URL), settings.REDIS_MAX_CONNECTIONS,
        )
    return _pool


async def redis_status(redis: aioredis.Redis) -> str:
    """"connected" when PING answers, otherwise "unavailable"."""
    try:
        await redis.ping()
    except (RedisError, OSError) as e:
        logger.warning("Redis unavailable: %s", e)
        return "unavailable"
    return "connected"


async def close_redis_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.aclose()
        _pool = None
        logger.info("Redis pool closed")


def use_redis_pool(redis_instance: aioredis.Redis) -> None:
    """Install an existing client as the shared pool (tests use FakeRedis)."""
    global _pool
    _pool = redis_instance
