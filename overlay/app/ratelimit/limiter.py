"""RateLimiter: client-side budget keeper for the trade API.

Respects the server-advertised rate limit rules across every window at once:
- Rules and live window state come from the response headers
- Error backoff after consecutive 4xx client errors
- Server Retry-After cooldown after a 429
- State pushed to a persistence store after every server update, and
  rebuilt from elapsed wall-clock time on restart

The limiter never sleeps, retries or performs I/O beyond the store; callers
ask ``can_request()`` before sending and report the outcome afterwards.

Example:
    >>> limiter = RateLimiter(store=JsonFileStore("ratelimit.json"))
    >>> limiter.restore()
    >>> budget = limiter.can_request()
    >>> if budget:
    ...     response = client.get(url)
    ...     limiter.observe_response(response.status_code, response.headers)
"""

import math
import threading
from dataclasses import replace
from typing import Callable, Dict, Optional

from overlay.app.core.config import Settings, settings as default_settings
from overlay.app.core.logging import get_log_context, get_logger
from overlay.app.core.utils import format_window_label, now_ms
from overlay.app.exceptions import InvalidHeaderFormat, PersistenceError
from overlay.app.ratelimit.backoff import (
    BackoffPolicy,
    ErrorBackoffController,
    RetryAfterController,
    is_backoff_status,
)
from overlay.app.ratelimit.headers import (
    RULES_HEADER,
    STATE_HEADER,
    HeaderInput,
    encode_rules,
    encode_state,
    extract_rate_limit_headers,
    get_retry_after,
    parse_rules_header,
    parse_state_header,
    remaining_from_used,
)
from overlay.app.ratelimit.history import RequestHistoryTracker
from overlay.app.ratelimit.models import RateLimitBudget, RateLimitRule, WindowState
from overlay.app.ratelimit.persistence import JsonFileStore, PersistenceStore

logger = get_logger(__name__)

REASON_BACKOFF = "too many errors"
REASON_RETRY_AFTER = "rate limited by server"
REASON_EXHAUSTED = "all buckets exhausted"


def _full_states(rules: list[RateLimitRule]) -> list[WindowState]:
    return [WindowState(remaining=r.max_requests, window_seconds=r.window_seconds) for r in rules]


class RateLimiter:
    """Thread-safe rate limit budget for one trade API client.

    Construct one limiter per API client and pass it to every caller that
    issues requests through that client.

    Attributes:
        _rules: Server-advertised rules, index-aligned with ``_states``
        _states: Live window state per rule
        _store: Optional persistence store receiving every state update
    """

    def __init__(
        self,
        store: Optional[PersistenceStore] = None,
        rules_header: Optional[str] = None,
        backoff_policy: Optional[BackoffPolicy] = None,
        exhausted_fallback_seconds: Optional[int] = None,
        default_retry_after_seconds: Optional[int] = None,
        safety_margin: Optional[float] = None,
        clock: Callable[[], float] = now_ms,
    ):
        """Initialize RateLimiter.

        Args:
            store: Persistence store for rules/state snapshots
            rules_header: Initial rules, defaults to the configured
                conservative trade API budget
            backoff_policy: Error backoff configuration
            exhausted_fallback_seconds: Wait reported when every bucket is
                exhausted and none reports a reset
            default_retry_after_seconds: Cooldown for a 429 without a usable
                Retry-After header
            safety_margin: Share of each window reported as safe by get_status()
            clock: Returns the current epoch time in milliseconds
        """
        self._store = store
        self._clock = clock
        self._lock = threading.Lock()

        self._exhausted_fallback_seconds = (
            exhausted_fallback_seconds
            if exhausted_fallback_seconds is not None
            else default_settings.rate_limit_exhausted_fallback_seconds
        )
        self._default_retry_after_seconds = (
            default_retry_after_seconds
            if default_retry_after_seconds is not None
            else default_settings.rate_limit_default_retry_after_seconds
        )
        self._safety_margin = (
            safety_margin if safety_margin is not None else default_settings.rate_limit_safety_margin
        )

        self._backoff = ErrorBackoffController(
            backoff_policy
            or BackoffPolicy(max_backoff_seconds=default_settings.rate_limit_max_backoff_seconds)
        )
        self._retry_after = RetryAfterController()
        self._history = RequestHistoryTracker()

        self._rules: list[RateLimitRule] = []
        self._states: list[WindowState] = []
        self.set_rules_from_header(rules_header or default_settings.rate_limit_default_rules)

    @classmethod
    def from_settings(
        cls,
        config: Optional[Settings] = None,
        clock: Callable[[], float] = now_ms,
    ) -> "RateLimiter":
        """Build a limiter from settings and restore any saved state.

        A JsonFileStore is attached when ``rate_limit_state_file`` is set.
        """
        config = config or default_settings
        store = (
            JsonFileStore(config.rate_limit_state_file, clock=clock)
            if config.rate_limit_state_file
            else None
        )
        limiter = cls(
            store=store,
            rules_header=config.rate_limit_default_rules,
            backoff_policy=BackoffPolicy(max_backoff_seconds=config.rate_limit_max_backoff_seconds),
            exhausted_fallback_seconds=config.rate_limit_exhausted_fallback_seconds,
            default_retry_after_seconds=config.rate_limit_default_retry_after_seconds,
            safety_margin=config.rate_limit_safety_margin,
            clock=clock,
        )
        if store is not None:
            limiter.restore()
        return limiter

    # ------------------------------------------------------------------
    # Introspection helpers
    # ------------------------------------------------------------------

    @property
    def rules(self) -> list[RateLimitRule]:
        with self._lock:
            return list(self._rules)

    @property
    def states(self) -> list[WindowState]:
        with self._lock:
            return [replace(s) for s in self._states]

    @property
    def consecutive_errors(self) -> int:
        return self._backoff.state.consecutive_errors

    @property
    def backoff_until(self) -> Optional[float]:
        return self._backoff.state.backoff_until

    @property
    def retry_after_until(self) -> Optional[float]:
        return self._retry_after.state.retry_after_until

    @property
    def history_size(self) -> int:
        return len(self._history)

    # ------------------------------------------------------------------
    # Server headers
    # ------------------------------------------------------------------

    def set_rules_from_header(self, header: str) -> None:
        """Replace the rules with a ``max:window:penalty,...`` header.

        States are created at full budget on the first parse, or when the
        number of rules changes. Otherwise each bucket keeps its remaining
        budget, capped at the new maximum, and takes the new window length.

        Raises:
            InvalidHeaderFormat: If the header is malformed. The previous
                rules and states are kept.
        """
        rules = parse_rules_header(header)
        with self._lock:
            if len(self._states) != len(rules):
                self._states = _full_states(rules)
            else:
                for rule, state in zip(rules, self._states):
                    state.remaining = min(state.remaining, rule.max_requests)
                    state.window_seconds = rule.window_seconds
            self._rules = rules
        logger.debug(f"Rate limit rules set: {header}")

    def update_state_from_header(self, header: str) -> None:
        """Apply a ``used:window:reset,...`` header and persist the result.

        Raises:
            InvalidHeaderFormat: If the header is malformed or not aligned
                with the current rules. The previous states are kept.
        """
        with self._lock:
            triplets = parse_state_header(header, expected=len(self._rules))
            self._states = [
                WindowState(
                    remaining=remaining_from_used(rule.max_requests, used),
                    window_seconds=window,
                    reset_seconds=reset,
                )
                for rule, (used, window, reset) in zip(self._rules, triplets)
            ]
            # Saved under the lock so snapshots reach the store in update order.
            self._save(encode_rules(self._rules), encode_state(self._rules, self._states))
        logger.debug(f"Rate limit state updated: {header}")

    def observe_response(self, status_code: int, headers: HeaderInput) -> None:
        """Feed a trade API response into the limiter.

        Applies the rate-limit headers (account headers first, per-IP
        headers as fallback), then records the outcome: a 429 arms the
        server cooldown, other 4xx responses escalate the error backoff and
        2xx responses record a successful request.

        Malformed rate-limit headers are logged and skipped; the status code
        is still recorded.
        """
        rules_header, state_header = extract_rate_limit_headers(headers)
        try:
            if rules_header:
                self.set_rules_from_header(rules_header)
            if state_header:
                self.update_state_from_header(state_header)
        except InvalidHeaderFormat as e:
            logger.warning(
                f"Ignoring malformed rate limit headers: {e.reason}",
                extra=get_log_context(status_code=status_code, header=e.header),
            )

        if status_code == 429:
            retry_after = get_retry_after(headers)
            self.set_retry_after(
                retry_after if retry_after is not None else self._default_retry_after_seconds
            )
        elif is_backoff_status(status_code):
            self.record_error(status_code)
        elif 200 <= status_code < 300:
            self.record_request()

    # ------------------------------------------------------------------
    # Budget decision
    # ------------------------------------------------------------------

    def can_request(self) -> RateLimitBudget:
        """Check whether a request may be sent now.

        Error backoff is checked first, then the server's retry-after, then
        the window budgets. A single bucket with remaining budget is enough
        to allow the request. Never mutates state.
        """
        with self._lock:
            now = self._clock()

            until = self._backoff.active_until(now)
            if until is not None:
                return RateLimitBudget(
                    can_request=False,
                    reason=REASON_BACKOFF,
                    retry_after=math.ceil((until - now) / 1000),
                    next_slot=until,
                )

            until = self._retry_after.active_until(now)
            if until is not None:
                return RateLimitBudget(
                    can_request=False,
                    reason=REASON_RETRY_AFTER,
                    retry_after=math.ceil((until - now) / 1000),
                    next_slot=until,
                )

            if not self._states or any(s.remaining > 0 for s in self._states):
                return RateLimitBudget(can_request=True)

            resets = [s.reset_seconds for s in self._states if s.reset_seconds > 0]
            wait = min(resets) if resets else self._exhausted_fallback_seconds
            return RateLimitBudget(
                can_request=False,
                reason=REASON_EXHAUSTED,
                retry_after=wait,
                next_slot=now + wait * 1000,
            )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def record_request(self) -> None:
        """Record a successful request and clear the error backoff."""
        with self._lock:
            now = self._clock()
            self._history.record(now)
            self._backoff.record_success()
            if self._rules:
                longest = max(r.window_seconds for r in self._rules)
                self._history.prune(now, longest)

    def record_error(self, status_code: int) -> Optional[int]:
        """Escalate the error backoff for a 4xx response other than 429.

        Returns:
            The armed backoff in seconds, or None if the status was ignored
        """
        with self._lock:
            return self._backoff.record_error(status_code, self._clock())

    def set_retry_after(self, seconds: float) -> None:
        """Arm the server cooldown from a 429 Retry-After value."""
        with self._lock:
            self._retry_after.arm(seconds, self._clock())

    def reset(self) -> None:
        """Clear request history and both cooldowns. Rules and states stay."""
        with self._lock:
            self._history.clear()
            self._retry_after.reset()
            self._backoff.reset()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save(self, rules_encoded: str, state_encoded: str) -> None:
        if self._store is None:
            return
        try:
            self._store.save(rules_encoded, state_encoded)
        except Exception as e:
            logger.warning(f"Failed to persist rate limit state: {e}", exc_info=True)

    def load_from_storage(self, rules: str, state: str, saved_at: float) -> None:
        """Rebuild rules and states from a snapshot taken at ``saved_at``.

        Windows whose reset countdown elapsed since the snapshot are fully
        restored; the others keep the snapshot's remaining budget.

        Args:
            rules: Encoded rules header
            state: Encoded state header
            saved_at: Epoch milliseconds when the snapshot was saved

        Raises:
            InvalidHeaderFormat: If the snapshot is malformed. Current
                rules and states are kept.
        """
        parsed_rules = parse_rules_header(rules)
        triplets = parse_state_header(state, expected=len(parsed_rules))

        with self._lock:
            # A snapshot stamped in the future (clock change) counts as just saved.
            elapsed = max(0, math.floor((self._clock() - saved_at) / 1000))
            states = []
            for rule, (used, window, reset) in zip(parsed_rules, triplets):
                new_reset = max(0, reset - elapsed)
                if new_reset == 0:
                    remaining = rule.max_requests
                else:
                    remaining = remaining_from_used(rule.max_requests, used)
                states.append(
                    WindowState(remaining=remaining, window_seconds=window, reset_seconds=new_reset)
                )
            self._rules = parsed_rules
            self._states = states

        logger.info(f"Restored rate limit state saved {elapsed}s ago")

    def restore(self, store: Optional[PersistenceStore] = None) -> bool:
        """Load the last snapshot from a store, if there is a usable one.

        Args:
            store: Store to read, defaults to the limiter's own store

        Returns:
            True if a snapshot was applied
        """
        store = store or self._store
        if store is None:
            return False
        try:
            snapshot = store.load()
        except PersistenceError as e:
            logger.warning(f"Could not read saved rate limit state: {e}")
            return False
        if snapshot is None:
            return False
        try:
            self.load_from_storage(snapshot.rules, snapshot.state, snapshot.saved_at)
        except InvalidHeaderFormat as e:
            logger.warning(f"Discarding saved rate limit state: {e.reason}")
            return False
        return True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_current_headers(self) -> Optional[Dict[str, str]]:
        """Rebuild the rate-limit headers from the current rules and states."""
        with self._lock:
            if not self._rules:
                return None
            return {
                RULES_HEADER: encode_rules(self._rules),
                STATE_HEADER: encode_state(self._rules, self._states),
            }

    def get_status(self) -> str:
        """Human-readable multi-line status, for display only."""
        with self._lock:
            now = self._clock()
            lines = ["Rate Limit Status:"]

            for i, rule in enumerate(self._rules):
                state = self._states[i] if i < len(self._states) else None
                local_count = self._history.count_since(now - rule.window_seconds * 1000)
                safe_limit = math.floor(rule.max_requests * self._safety_margin)
                server_remaining = state.remaining if state is not None else "?"
                lines.append(
                    f"  {format_window_label(rule.window_seconds)}: "
                    f"{local_count}/{safe_limit} used "
                    f"(server: {server_remaining}/{rule.max_requests})"
                )

            until = self._backoff.active_until(now)
            if until is not None:
                wait = math.ceil((until - now) / 1000)
                lines.append(
                    f"  ⚠ Error backoff - retry in {wait}s "
                    f"({self._backoff.state.consecutive_errors} consecutive errors)"
                )

            until = self._retry_after.active_until(now)
            if until is not None:
                wait = math.ceil((until - now) / 1000)
                lines.append(f"  ⚠ Rate limited - retry in {wait}s")

        return "\n".join(lines)
