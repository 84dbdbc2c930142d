"""Cooldown controllers for the trade API rate limiter.

Two independent cooldowns can block a request:
- ErrorBackoffController: exponential backoff after consecutive 4xx client
  errors (429 excluded, it has its own mechanism)
- RetryAfterController: the server's explicit Retry-After on a 429

Both only record deadlines; neither sleeps nor retries.
"""

from dataclasses import dataclass
from typing import Optional

from overlay.app.core.logging import get_log_context, get_logger
from overlay.app.ratelimit.models import ErrorBackoffState, RetryAfterState

logger = get_logger(__name__)

# Beyond this many errors the cap always wins; keeps the power bounded.
_MAX_EXPONENT = 32


@dataclass
class BackoffPolicy:
    """Configuration for error backoff.

    Attributes:
        exponential_base: Base for exponential calculation (default: 2)
        max_backoff_seconds: Maximum backoff in seconds (default: 300)

    Example:
        >>> policy = BackoffPolicy()
        >>> policy.calculate_backoff(3)  # Returns 8
    """

    exponential_base: int = 2
    max_backoff_seconds: int = 300

    def calculate_backoff(self, consecutive_errors: int) -> int:
        """Backoff in seconds: min(exponential_base ^ consecutive_errors, max)."""
        exponent = min(consecutive_errors, _MAX_EXPONENT)
        return min(self.exponential_base**exponent, self.max_backoff_seconds)


def is_backoff_status(status_code: int) -> bool:
    """True for client errors that escalate the backoff (4xx except 429)."""
    return 400 <= status_code < 500 and status_code != 429


class ErrorBackoffController:
    """Tracks consecutive client errors and the resulting backoff deadline."""

    def __init__(self, policy: Optional[BackoffPolicy] = None):
        self.policy = policy or BackoffPolicy()
        self.state = ErrorBackoffState()

    def record_error(self, status_code: int, now: float) -> Optional[int]:
        """Escalate the backoff for a qualifying status code.

        Args:
            status_code: HTTP status of the failed response
            now: Current epoch time in milliseconds

        Returns:
            The armed backoff in seconds, or None if the status was ignored
        """
        if not is_backoff_status(status_code):
            return None

        self.state.consecutive_errors += 1
        backoff = self.policy.calculate_backoff(self.state.consecutive_errors)
        self.state.last_error_time = now
        self.state.backoff_until = now + backoff * 1000
        logger.warning(
            f"Trade API error {status_code}, backing off {backoff}s "
            f"({self.state.consecutive_errors} consecutive errors)",
            extra=get_log_context(status_code=status_code, retry_after=backoff),
        )
        return backoff

    def record_success(self) -> None:
        """Clear the error streak after a successful request."""
        self.state.consecutive_errors = 0
        self.state.backoff_until = None

    def active_until(self, now: float) -> Optional[float]:
        """Return the backoff deadline if it is still in the future."""
        until = self.state.backoff_until
        if until is not None and now < until:
            return until
        return None

    def reset(self) -> None:
        self.state = ErrorBackoffState()


class RetryAfterController:
    """Holds the cooldown requested by the server on HTTP 429."""

    def __init__(self) -> None:
        self.state = RetryAfterState()

    def arm(self, seconds: float, now: float) -> None:
        seconds = max(0, seconds)
        self.state.retry_after_seconds = int(seconds)
        self.state.retry_after_until = now + seconds * 1000
        logger.warning(
            f"Trade API rate limited by server, retry after {seconds}s",
            extra=get_log_context(status_code=429, retry_after=int(seconds)),
        )

    def active_until(self, now: float) -> Optional[float]:
        """Return the retry-after deadline if it is still in the future."""
        until = self.state.retry_after_until
        if until is not None and now < until:
            return until
        return None

    def reset(self) -> None:
        self.state = RetryAfterState()
