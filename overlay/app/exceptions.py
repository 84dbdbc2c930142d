"""Custom exceptions for the overlay application."""


class OverlayException(Exception):
    """Base class for overlay exceptions.

    All custom exceptions should inherit from this class so callers can
    catch overlay failures without swallowing unrelated errors.
    """

    def __init__(self, message: str = "Overlay error"):
        self.message = message
        super().__init__(message)


class InvalidHeaderFormat(OverlayException):
    """Raised when a rate-limit header cannot be parsed.

    The limiter rejects the whole header and keeps its previous rules and
    window states.
    """

    def __init__(self, header: str | None, reason: str):
        self.header = header
        self.reason = reason
        super().__init__(f"Invalid rate limit header {header!r}: {reason}")


class PersistenceError(OverlayException):
    """Raised by a persistence store when a snapshot cannot be written or read."""

    def __init__(self, detail: str = "Rate limit persistence failed"):
        self.detail = detail
        super().__init__(detail)


class RateLimitedError(OverlayException):
    """Raised when the limiter denies a request.

    Maps to HTTP 429 Too Many Requests.
    """

    status_code = 429

    def __init__(
        self,
        retry_after: int | None = None,
        reason: str | None = None,
        next_slot: float | None = None,
    ):
        self.retry_after = retry_after
        self.reason = reason
        self.next_slot = next_slot
        message = f"Request blocked: {reason or 'rate limited'}."
        if retry_after is not None:
            message += f" Retry after {retry_after}s."
        super().__init__(message)
