"""Utility functions for the overlay application."""

import time


def now_ms() -> float:
    """Current wall-clock time as epoch milliseconds."""
    return time.time() * 1000


def format_window_label(window_seconds: int) -> str:
    """Render a rate-limit window length for display.

    Examples:
        >>> format_window_label(60)
        '1min'
        >>> format_window_label(10800)
        '3hr'
    """
    if window_seconds < 3600:
        return f"{window_seconds / 60:g}min"
    return f"{window_seconds / 3600:g}hr"
