"""Middleware package for the rate limiter."""

from throttle.app.middleware.rate_limit import Ratelimit

__all__ = [
    "Ratelimit",
]
