"""Core utilities for the rate limiter."""

from throttle.app.core.clients import (
    close_counter_backend,
    counter_backend_options,
    create_memcached_client,
    create_redis_client,
)
from throttle.app.core.config import Settings, settings
from throttle.app.core.logging import get_logger, setup_logging

__all__ = [
    "close_counter_backend",
    "counter_backend_options",
    "create_memcached_client",
    "create_redis_client",
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]
