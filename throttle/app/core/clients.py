"""Counter store clients.

A client is shared by every request its limiter handles; thread and task
safety of the handle is the client library's job.
"""

from typing import Any, Dict, Optional

from throttle.app.core.config import Settings, settings as default_settings
from throttle.app.core.logging import get_logger

logger = get_logger(__name__)


def _parse_memcached_server(server: str) -> tuple[str, int]:
    host_port = server.strip().replace("memcached://", "")
    host, _, port = host_port.partition(":")
    return host or "localhost", int(port) if port else 11211


def create_redis_client(settings: Optional[Settings] = None) -> Any:
    """Create a ``redis.asyncio`` client from settings."""
    import redis.asyncio as aioredis

    cfg = settings or default_settings
    return aioredis.from_url(cfg.redis_url)


def create_memcached_client(settings: Optional[Settings] = None) -> Any:
    """Create a ``pymemcache`` client from settings."""
    from pymemcache.client.base import Client

    cfg = settings or default_settings
    return Client(
        _parse_memcached_server(cfg.memcached_servers),
        connect_timeout=cfg.memcached_timeout,
        timeout=cfg.memcached_timeout,
        default_noreply=False,
    )


def counter_backend_options(settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Pick the counter backend for limiters built from settings.

    Call once per limiter. Redis wins over memcached; with neither enabled
    the limiter gets its own in-process counter.

    Returns:
        Keyword arguments for ``Ratelimit``: one of ``redis``, ``cache``
        or ``counter``
    """
    from throttle.app.middleware.rate_limit.backends import MemoryCounter

    cfg = settings or default_settings
    if cfg.redis_enabled:
        logger.info("Using Redis rate limit counters")
        return {"redis": create_redis_client(cfg)}
    if cfg.memcached_enabled:
        logger.info("Using memcached rate limit counters")
        return {"cache": create_memcached_client(cfg)}
    logger.debug("Using in-memory rate limit counters")
    return {"counter": MemoryCounter()}


async def close_counter_backend(options: Dict[str, Any]) -> None:
    """Close the store client created by ``counter_backend_options``."""
    if "redis" in options:
        await options["redis"].aclose()
    elif "cache" in options:
        options["cache"].close()
