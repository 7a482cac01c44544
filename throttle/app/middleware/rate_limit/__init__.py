"""Rate limiting middleware.

* Run multiple rate limiters in a single app
* Scope each rate limit to certain requests: API, files, GET vs POST, etc.
* Apply each rate limit by request characteristics: IP, subdomain, token, etc.
* Flexible time window to limit burst traffic vs hourly or daily traffic:
  100 requests per 10 sec, 500 req/minute, 10000 req/hour, etc.
* Fast, low-overhead implementation using counters per time window:
  ``epoch = period * ceil(now / period)`` then ``store.incr(epoch)``

Example, rate-limit bursts of writes by IP address and return 503::

    app.add_middleware(
        Ratelimit,
        name="POST",
        exceptions=[lambda request: request.method == "GET"],
        rate=(50, 10),
        status=503,
        cache=pymemcache_client,
        logger=get_logger("throttle.access"),
        classifier=lambda request: request.client.host,
    )
"""

import inspect
import time
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, Union

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from throttle.app.core.logging import get_log_context, get_logger
from throttle.app.exceptions import ConfigurationError

# Re-export models
from throttle.app.middleware.rate_limit.models import (
    RATELIMIT_HEADER,
    RETRY_AFTER_HEADER,
    RateSpec,
    format_epoch,
    ratelimit_epoch,
    ratelimit_json,
    ratelimit_lines,
    seconds_until_epoch,
)

# Re-export backends
from throttle.app.middleware.rate_limit.backends import (
    Counter,
    MemcachedCounter,
    MemoryCounter,
    RedisCounter,
    counter_key,
)

logger = get_logger(__name__)

__all__ = [
    # Models
    "RateSpec",
    "RATELIMIT_HEADER",
    "RETRY_AFTER_HEADER",
    "ratelimit_epoch",
    "ratelimit_json",
    "ratelimit_lines",
    "format_epoch",
    "seconds_until_epoch",
    # Backends
    "Counter",
    "MemcachedCounter",
    "MemoryCounter",
    "RedisCounter",
    "counter_key",
    # Main classes
    "Ratelimit",
    "TIMESTAMP_SCOPE_KEY",
]

# Upstream components may record the start-of-request time in the ASGI scope.
TIMESTAMP_SCOPE_KEY = "ratelimit.timestamp"

Predicate = Callable[[Request], Union[Any, Awaitable[Any]]]
Classifier = Callable[[Request], Union[Optional[str], Awaitable[Optional[str]]]]
RateInput = Union[Tuple[int, int], RateSpec, Callable[[Request], Any]]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _as_list(value: Any) -> List[Predicate]:
    if value is None:
        return []
    if callable(value):
        return [value]
    return list(value)


def _classify_all(request: Request) -> str:
    return "request"


class Ratelimit(BaseHTTPMiddleware):
    """Fixed-window rate limiter for one class of requests.

    The classifier groups requests for rate limiting. Given a request, it
    returns a string such as IP address, API token, etc. If it returns
    None, the request isn't rate-limited. Without a classifier all
    requests share the same limit.

    Limiters stack: a ``Ratelimit`` is itself an ASGI app, so one limiter
    can wrap another. Each adds its own ``X-Ratelimit`` header line to the
    responses it lets through.
    """

    def __init__(
        self,
        app: ASGIApp,
        rate: Optional[RateInput] = None,
        name: str = "HTTP",
        status: int = 429,
        counter: Any = None,
        cache: Any = None,
        redis: Any = None,
        conditions: Union[Predicate, Iterable[Predicate], None] = None,
        exceptions: Union[Predicate, Iterable[Predicate], None] = None,
        logger: Any = None,
        error_message: Optional[str] = None,
        classifier: Optional[Classifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize rate limiter.

        Args:
            app: Inner ASGI app, possibly another limiter
            rate: ``(max requests, period in seconds)`` or a callable taking
                the request and returning such a pair
            name: Limiter name used in messages and headers
            status: HTTP status of rejection responses
            counter: Custom counter with ``increment(classification, epoch)``
            cache: Memcached client (``incr``/``add``)
            redis: ``redis.asyncio`` client
            conditions: Predicates that must all be true to rate-limit
            exceptions: Predicates any of which exclude the request
            logger: Object with ``info(message)``; logs the first request
                that exceeds the limit in each window
            error_message: Body of rejection responses. The seconds until
                the window ends are interpolated into an optional ``%d``.
            classifier: Callable taking the request and returning a
                classification string or None
            clock: Time source returning UNIX time in seconds

        Raises:
            ConfigurationError: If rate or every counter backend is missing
        """
        super().__init__(app)
        if rate is None:
            raise ConfigurationError("rate is required: (max requests, period in seconds)")
        if counter is None and cache is None and redis is None:
            raise ConfigurationError("cache, redis, or counter is required")

        self.name = name
        self.status = status
        self._rate_input = rate
        self._rate: Optional[RateSpec] = None if callable(rate) else RateSpec.coerce(rate)

        self._custom_counter = counter
        self._cache = cache
        self._redis = redis

        self._logger = logger
        self.error_message = error_message or (
            f"{name} rate limit exceeded. Please wait %d seconds then retry your request."
        )
        self._classifier = classifier or _classify_all
        self._clock = clock

        self._conditions = _as_list(conditions)
        self._exceptions = _as_list(exceptions)

    def condition(self, predicate: Predicate) -> Predicate:
        """Add a condition that must be met before applying the rate limit.

        Returns the predicate so this can be used as a decorator.
        """
        self._conditions.append(predicate)
        return predicate

    def exception(self, predicate: Predicate) -> Predicate:
        """Add an exception that excludes requests from the rate limit.

        Returns the predicate so this can be used as a decorator.
        """
        self._exceptions.append(predicate)
        return predicate

    async def apply_rate_limit(self, request: Request) -> bool:
        """Apply the rate limiter if none of the exceptions apply and all
        the conditions are met."""
        for exception in self._exceptions:
            if await _resolve(exception(request)):
                return False
        for condition in self._conditions:
            if not await _resolve(condition(request)):
                return False
        return True

    def classify(self, request: Request) -> Union[Optional[str], Awaitable[Optional[str]]]:
        """Give subclasses an opportunity to specialize classification."""
        return self._classifier(request)

    async def _resolve_rate(self, request: Request) -> RateSpec:
        if self._rate is not None:
            return self._rate
        return RateSpec.coerce(await _resolve(self._rate_input(request)))

    def _select_counter(self, rate: RateSpec) -> Any:
        if self._custom_counter is not None:
            if not callable(getattr(self._custom_counter, "increment", None)):
                raise ConfigurationError("counter must have an increment method")
            return self._custom_counter
        if self._cache is not None:
            return MemcachedCounter(self._cache, self.name, rate.period)
        return RedisCounter(self._redis, self.name, rate.period)

    def _format_error_message(self, retry_after: int) -> str:
        try:
            return self.error_message % retry_after
        except (TypeError, ValueError):
            # No %d slot in the message.
            return self.error_message

    def _reject(self, rate: RateSpec, remaining: int, epoch: int) -> Response:
        retry_after = seconds_until_epoch(epoch, self._clock())
        return PlainTextResponse(
            self._format_error_message(retry_after),
            status_code=self.status,
            headers={
                RATELIMIT_HEADER: ratelimit_json(self.name, rate, remaining, epoch),
                RETRY_AFTER_HEADER: str(retry_after),
            },
        )

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting.

        * Check whether the rate limit applies to the request.
        * Classify the request by IP, API token, etc.
        * Calculate the end of the current time window.
        * Increment the counter for this classification and time window.
        * If count exceeds limit, return a rejection response.
        * If it's the first request that exceeds the limit, log it.
        * If the count doesn't exceed the limit, pass through the request.
        """
        timestamp = request.scope.get(TIMESTAMP_SCOPE_KEY)
        now = float(timestamp) if timestamp is not None else self._clock()

        rate = await self._resolve_rate(request)
        counter = self._select_counter(rate)

        if not await self.apply_rate_limit(request):
            return await call_next(request)

        classification = await _resolve(self.classify(request))
        if classification is None:
            return await call_next(request)

        epoch = ratelimit_epoch(now, rate.period)
        try:
            count = int(await _resolve(counter.increment(classification, epoch)))
        except Exception as e:
            # Fail open: an unhealthy counter store must not take the app down.
            logger.warning(
                f"Rate limiting fail-open triggered for {self.name}: {e}. "
                "Request allowed without rate limit check.",
                extra=get_log_context(
                    limiter=self.name,
                    classification=classification,
                    path=request.url.path,
                    method=request.method,
                    error_type=type(e).__name__,
                ),
            )
            return await call_next(request)

        remaining = rate.max - count

        if remaining < 0:
            # Only log the first hit that exceeds the limit.
            if self._logger is not None and remaining == -1:
                self._logger.info(
                    f"{self.name}: {classification} exceeded {rate.max} "
                    f"request limit for {format_epoch(epoch)}"
                )
            return self._reject(rate, remaining, epoch)

        # Otherwise, pass through then add some informational headers.
        response = await call_next(request)
        response.headers.append(RATELIMIT_HEADER, ratelimit_json(self.name, rate, remaining, epoch))
        return response
