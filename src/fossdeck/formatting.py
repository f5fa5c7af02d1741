"""Formatting utilities for CLI output."""

import time
from datetime import datetime


def format_time_ago(timestamp: int | None, now: float | None = None) -> str:
    """Format a unix timestamp as relative time (e.g., '2 hours ago').

    Args:
        timestamp: Unix time in seconds, or None/0 if never.
        now: Reference time (defaults to the current time).

    Returns:
        Human-readable relative time string like "2 hours ago" or "Never".

    Examples:
        >>> format_time_ago(None)
        'Never'
    """
    if not timestamp:
        return "Never"

    seconds = (time.time() if now is None else now) - timestamp

    if seconds < 60:
        return "Just now"
    elif seconds < 3600:
        minutes = int(seconds / 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    elif seconds < 86400:
        hours = int(seconds / 3600)
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    else:
        days = int(seconds / 86400)
        return f"{days} day{'s' if days != 1 else ''} ago"


def format_date(timestamp: int) -> str:
    """Format a unix timestamp as a local YYYY-MM-DD date."""
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d")
