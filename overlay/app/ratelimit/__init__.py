"""Client-side rate limiting for the trade API.

Tracks the server-advertised rules across all windows, the live window
state reported with every response, error backoff and server Retry-After
cooldowns, and persists the window state so a restart does not lose the
budget.
"""

from overlay.app.ratelimit.backoff import (
    BackoffPolicy,
    ErrorBackoffController,
    RetryAfterController,
    is_backoff_status,
)
from overlay.app.ratelimit.headers import (
    IP_RULES_HEADER,
    IP_STATE_HEADER,
    RETRY_AFTER_HEADER,
    RULES_HEADER,
    STATE_HEADER,
    encode_rules,
    encode_state,
    parse_retry_after,
    parse_rules_header,
    parse_state_header,
)
from overlay.app.ratelimit.history import RequestHistoryTracker
from overlay.app.ratelimit.limiter import RateLimiter
from overlay.app.ratelimit.models import (
    ErrorBackoffState,
    RateLimitBudget,
    RateLimitRule,
    RetryAfterState,
    StoredSnapshot,
    WindowState,
)
from overlay.app.ratelimit.persistence import (
    InMemoryStore,
    JsonFileStore,
    PersistenceStore,
)

__all__ = [
    # Models
    "RateLimitRule",
    "WindowState",
    "RateLimitBudget",
    "ErrorBackoffState",
    "RetryAfterState",
    "StoredSnapshot",
    # Headers
    "RULES_HEADER",
    "STATE_HEADER",
    "IP_RULES_HEADER",
    "IP_STATE_HEADER",
    "RETRY_AFTER_HEADER",
    "parse_rules_header",
    "parse_state_header",
    "parse_retry_after",
    "encode_rules",
    "encode_state",
    # Cooldowns
    "BackoffPolicy",
    "ErrorBackoffController",
    "RetryAfterController",
    "is_backoff_status",
    # History
    "RequestHistoryTracker",
    # Persistence
    "PersistenceStore",
    "InMemoryStore",
    "JsonFileStore",
    # Limiter
    "RateLimiter",
]
