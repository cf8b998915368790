"""
Shared Redis connection pool.

Backs the cross-worker merge sweep lock and the health check. Connection
and socket timeouts are short so an unreachable Redis degrades to "no lock"
instead of stalling a worker.
"""
import logging
import threading
from typing import Optional

from redis import ConnectionPool, Redis

from ..config import settings

logger = logging.getLogger(__name__)

_pool: Optional[ConnectionPool] = None
_pool_lock = threading.Lock()


def _build_pool() -> ConnectionPool:
    return ConnectionPool(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        max_connections=10,
        socket_connect_timeout=2,
        socket_timeout=2,
        decode_responses=True,  # Lock tokens are compared as str
    )


def get_redis_pool() -> Optional[ConnectionPool]:
    """
    Return the process-wide pool, creating and pinging it on first use.

    Returns None when Redis cannot be reached; the next call tries again.
    """
    global _pool

    with _pool_lock:
        if _pool is not None:
            return _pool

        pool = _build_pool()
        try:
            Redis(connection_pool=pool).ping()
        except Exception as e:
            logger.warning("Redis unavailable at %s:%s: %s", settings.redis_host, settings.redis_port, e)
            return None

        _pool = pool
        logger.info(
            "Redis connection pool ready: %s:%s/db%s",
            settings.redis_host,
            settings.redis_port,
            settings.redis_db,
        )
        return _pool


def get_redis_client() -> Optional[Redis]:
    """Redis client on the shared pool, or None when Redis is unreachable."""
    pool = get_redis_pool()
    if pool is None:
        return None
    return Redis(connection_pool=pool)


def reset_pool() -> None:
    """Disconnect and forget the pool (after fork, or in tests)."""
    global _pool

    with _pool_lock:
        if _pool is None:
            return
        try:
            _pool.disconnect()
        except Exception as e:
            logger.warning("Error disconnecting Redis pool: %s", e)
        finally:
            _pool = None
