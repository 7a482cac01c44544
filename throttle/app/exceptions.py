"""Custom exceptions for the rate limiting middleware."""


class RatelimitError(Exception):
    """Base class for rate limiter exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(RatelimitError):
    """Raised when a limiter is missing or given an unusable setting.

    Covers a missing counter backend, a missing or incomplete rate, and a
    custom counter without an ``increment`` method. These are never
    defaulted: the limiter refuses to run instead.
    """
    status_code = 500

    def __init__(self, detail: str = "Invalid rate limiter configuration"):
        self.detail = detail
        super().__init__(detail)
