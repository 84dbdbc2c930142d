"""Wire codec for the trade API rate-limit headers.

Headers format:
- x-rate-limit-account: "5:60:60,10:600:120,15:10800:3600"
  (max requests : window seconds : penalty seconds)
- x-rate-limit-account-state: "4:60:55,9:600:115,12:10800:3595"
  (used requests : window seconds : seconds until reset)
- retry-after: "30" (seconds, on 429)

The server reports *used* counts while the limiter tracks *remaining*;
``remaining_from_used`` and ``used_from_remaining`` are the only places that
convert between the two.
"""

import re
from typing import Mapping, Optional, Sequence, Tuple, Union

import httpx

from overlay.app.exceptions import InvalidHeaderFormat
from overlay.app.ratelimit.models import RateLimitRule, WindowState

RULES_HEADER = "x-rate-limit-account"
STATE_HEADER = "x-rate-limit-account-state"
IP_RULES_HEADER = "x-rate-limit-ip"
IP_STATE_HEADER = "x-rate-limit-ip-state"
RETRY_AFTER_HEADER = "retry-after"

_INT_RE = re.compile(r"\d+", re.ASCII)
_MAX_FIELD_DIGITS = 9
_SECONDS_RE = re.compile(r"(\d{1,9})(\.\d+)?", re.ASCII)

Triplet = Tuple[int, int, int]
HeaderInput = Union[httpx.Headers, Mapping[str, str], Sequence[Tuple[str, str]]]


def _parse_triplets(header: Optional[str]) -> list[Triplet]:
    if header is None or not header.strip():
        raise InvalidHeaderFormat(header, "header is empty")

    triplets: list[Triplet] = []
    for index, segment in enumerate(header.split(",")):
        fields = [f.strip() for f in segment.strip().split(":")]
        if len(fields) != 3:
            raise InvalidHeaderFormat(
                header, f"segment {index} has {len(fields)} fields, expected 3"
            )
        for field in fields:
            if not _INT_RE.fullmatch(field):
                raise InvalidHeaderFormat(
                    header, f"segment {index} field {field!r} is not a non-negative integer"
                )
            if len(field) > _MAX_FIELD_DIGITS:
                raise InvalidHeaderFormat(
                    header, f"segment {index} field has more than {_MAX_FIELD_DIGITS} digits"
                )
        a, b, c = (int(f) for f in fields)
        triplets.append((a, b, c))
    return triplets


def parse_rules_header(header: Optional[str]) -> list[RateLimitRule]:
    """Parse ``max:window:penalty,...`` into an ordered rule list.

    Raises:
        InvalidHeaderFormat: If any segment is malformed, or a rule allows no
            requests or has an empty window.
    """
    rules = []
    for index, (max_requests, window, penalty) in enumerate(_parse_triplets(header)):
        if max_requests < 1:
            raise InvalidHeaderFormat(header, f"segment {index} allows no requests")
        if window < 1:
            raise InvalidHeaderFormat(header, f"segment {index} has an empty window")
        rules.append(RateLimitRule(max_requests, window, penalty))
    return rules


def parse_state_header(header: Optional[str], expected: Optional[int] = None) -> list[Triplet]:
    """Parse ``used:window:reset,...`` into raw triplets.

    Args:
        header: State header value
        expected: Number of rules the state must be index-aligned with

    Raises:
        InvalidHeaderFormat: If the header is malformed or its segment count
            differs from ``expected``.
    """
    triplets = _parse_triplets(header)
    if expected is not None and len(triplets) != expected:
        raise InvalidHeaderFormat(
            header, f"has {len(triplets)} segments but {expected} rules are configured"
        )
    return triplets


def remaining_from_used(max_requests: int, used: int) -> int:
    """Convert a server-reported used count into remaining budget."""
    return max(0, max_requests - used)


def used_from_remaining(max_requests: int, remaining: int) -> int:
    """Convert remaining budget back into the server's used count."""
    return max(0, max_requests - remaining)


def encode_rules(rules: Sequence[RateLimitRule]) -> str:
    """Encode rules in the ``x-rate-limit-account`` wire format."""
    return ",".join(
        f"{r.max_requests}:{r.window_seconds}:{r.penalty_seconds}" for r in rules
    )


def encode_state(rules: Sequence[RateLimitRule], states: Sequence[WindowState]) -> str:
    """Encode states in the ``x-rate-limit-account-state`` wire format."""
    return ",".join(
        f"{used_from_remaining(rule.max_requests, state.remaining)}"
        f":{state.window_seconds}:{state.reset_seconds}"
        for rule, state in zip(rules, states)
    )


def extract_rate_limit_headers(headers: HeaderInput) -> Tuple[Optional[str], Optional[str]]:
    """Return the (rules, state) header values from a response.

    Header names are matched case-insensitively. The account headers win;
    the per-IP pair is used only when neither account header is present.
    """
    h = headers if isinstance(headers, httpx.Headers) else httpx.Headers(headers)
    if RULES_HEADER in h or STATE_HEADER in h:
        return h.get(RULES_HEADER), h.get(STATE_HEADER)
    return h.get(IP_RULES_HEADER), h.get(IP_STATE_HEADER)


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Parse a Retry-After value in seconds.

    Only the first comma-separated value is considered; fractional seconds
    round up. Returns None when the value is missing, not numeric, or has
    more than nine whole-second digits.
    """
    if not value:
        return None
    match = _SECONDS_RE.fullmatch(value.split(",")[0].strip())
    if match is None:
        return None
    whole, fraction = match.groups()
    return int(whole) + (1 if fraction and fraction.strip(".0") else 0)


def get_retry_after(headers: HeaderInput) -> Optional[int]:
    """Read and parse the Retry-After header from a response."""
    h = headers if isinstance(headers, httpx.Headers) else httpx.Headers(headers)
    return parse_retry_after(h.get(RETRY_AFTER_HEADER))
