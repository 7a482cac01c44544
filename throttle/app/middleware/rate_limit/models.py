"""Rate limiting data models.

This module contains the rate spec dataclass and the fixed-window
arithmetic shared by the middleware and the counter backends.
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from throttle.app.exceptions import ConfigurationError

RATELIMIT_HEADER = "X-Ratelimit"
RETRY_AFTER_HEADER = "Retry-After"


@dataclass(frozen=True)
class RateSpec:
    """Maximum number of requests allowed per period (in seconds)."""
    max: int
    period: int

    @classmethod
    def coerce(cls, value: Any) -> "RateSpec":
        """Build a RateSpec from a ``(max, period)`` pair.

        Raises:
            ConfigurationError: If the value is not a pair of positive
                integers.
        """
        if isinstance(value, RateSpec):
            return value
        try:
            max_requests, period = value
        except (TypeError, ValueError):
            raise ConfigurationError(
                "rate must be in the shape of: (max requests, period in seconds)"
            ) from None
        if max_requests is None or period is None:
            raise ConfigurationError(
                "rate must be in the shape of: (max requests, period in seconds)"
            )
        for field, number in (("max requests", max_requests), ("period", period)):
            # bool is an int subclass
            if not isinstance(number, int) or isinstance(number, bool) or number < 1:
                raise ConfigurationError(
                    f"rate {field} must be a positive integer, got {number!r}"
                )
        return cls(max=max_requests, period=period)


def ratelimit_epoch(timestamp: float, period: int) -> int:
    """Calculate the end of the rate-limiting window containing timestamp."""
    return period * math.ceil(timestamp / period)


def seconds_until_epoch(epoch: int, now: float) -> int:
    """Whole seconds until the window ends.

    Clamped to zero in case we're already in a new rate-limiting window.
    """
    return max(0, math.ceil(epoch - now))


def format_epoch(epoch: int) -> str:
    """Format an epoch timestamp as a UTC ISO-8601 string."""
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def ratelimit_json(name: str, rate: RateSpec, remaining: int, epoch: int) -> str:
    """Render one ``X-Ratelimit`` header line."""
    return json.dumps(
        {
            "name": name,
            "period": rate.period,
            "limit": rate.max,
            "remaining": max(0, remaining),
            "until": format_epoch(epoch),
        },
        separators=(",", ":"),
    )


def ratelimit_lines(headers: Any) -> str | None:
    """Join every ``X-Ratelimit`` field of a header collection.

    Stacked limiters each add their own field; this gives the
    newline-separated view, innermost limiter first. Returns None when no
    limiter annotated the response.
    """
    # httpx spells it get_list, starlette getlist
    if hasattr(headers, "get_list"):
        values = headers.get_list(RATELIMIT_HEADER)
    else:
        values = headers.getlist(RATELIMIT_HEADER)
    if not values:
        return None
    return "\n".join(values)
