"""Core utilities for the overlay application."""

from overlay.app.core.config import DEFAULT_RATE_LIMIT_RULES, Settings, settings
from overlay.app.core.logging import get_log_context, get_logger, setup_logging

__all__ = [
    "DEFAULT_RATE_LIMIT_RULES",
    "Settings",
    "settings",
    "get_log_context",
    "get_logger",
    "setup_logging",
]
