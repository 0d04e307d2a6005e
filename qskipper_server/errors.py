"""Error taxonomy for QSkipper backend calls."""

from typing import Optional


class QSkipperError(Exception):
    """Base class for every error raised by the client core."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InvalidInputError(QSkipperError):
    """Rejected before any network call (unresolved restaurant, bad URL, ...)."""


class NetworkFailure(QSkipperError):
    """Transport-level failure: connection refused, DNS, reset, ..."""


class RequestTimeout(NetworkFailure):
    """The request did not complete within its timeout."""


class UnauthorizedError(QSkipperError):
    """Backend answered 401."""

    def __init__(self, message: str = "Unauthorized access", status_code: int = 401) -> None:
        super().__init__(message, status_code)


class NotFoundError(QSkipperError):
    """Backend answered 404, or a fetched resource was not what we asked for."""

    def __init__(
        self, message: str = "Resource not found", status_code: int = 404, body: bytes = b""
    ) -> None:
        super().__init__(message, status_code)
        self.body = body


class ServerError(QSkipperError):
    """Any other non-2xx status, carrying the best message we could extract."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: bytes = b"") -> None:
        super().__init__(message, status_code)
        self.body = body


class DecodeFailure(QSkipperError):
    """No tolerant decode path produced a usable result."""


class FallbackExhausted(QSkipperError):
    """Every fallback strategy failed; ``last_error`` is the final failure."""

    def __init__(self, message: str, last_error: Exception, attempts: list) -> None:
        super().__init__(message, getattr(last_error, "status_code", None))
        self.last_error = last_error
        self.attempts = attempts
