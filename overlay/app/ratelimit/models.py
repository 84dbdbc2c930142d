"""Rate limiting data models.

This module contains dataclasses for rate limit rules, live window state,
cooldown state and the verdict returned by a budget check.
"""

from dataclasses import dataclass
from typing import Optional

from overlay.app.exceptions import RateLimitedError


@dataclass(frozen=True)
class RateLimitRule:
    """A server-advertised request ceiling for one window."""
    max_requests: int
    window_seconds: int
    penalty_seconds: int


@dataclass
class WindowState:
    """Live budget of one rule (index-aligned with the rule list)."""
    remaining: int
    window_seconds: int
    reset_seconds: int = 0


@dataclass
class ErrorBackoffState:
    """Exponential backoff state for consecutive non-429 4xx responses."""
    consecutive_errors: int = 0
    last_error_time: Optional[float] = None
    backoff_until: Optional[float] = None


@dataclass
class RetryAfterState:
    """Server-issued cooldown following a 429 response."""
    retry_after_seconds: Optional[int] = None
    retry_after_until: Optional[float] = None


@dataclass
class StoredSnapshot:
    """Encoded rules/state plus the epoch-ms time they were saved."""
    rules: str
    state: str
    saved_at: float


@dataclass
class RateLimitBudget:
    """Result of a budget check.

    ``retry_after`` is in seconds, ``next_slot`` is an epoch-ms timestamp.
    """
    can_request: bool
    reason: Optional[str] = None
    retry_after: Optional[int] = None
    next_slot: Optional[float] = None

    def __bool__(self) -> bool:
        return self.can_request

    def raise_for_denied(self) -> None:
        """Raise RateLimitedError if this budget denies the request."""
        if not self.can_request:
            raise RateLimitedError(
                retry_after=self.retry_after,
                reason=self.reason,
                next_slot=self.next_slot,
            )
