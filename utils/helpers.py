"""
============================================================================
PINGMASTER - HELPERS UTILITY
============================================================================
Time, string and process helpers shared by the engine and the channels.

All timestamps handled by the engine are timezone-aware UTC. SQLite
hands back naive datetimes, so anything read from storage passes
through ``TimeHelper.ensure_aware`` before it is compared or
converted.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import os
from datetime import datetime, timezone
from typing import Optional

import psutil


# ============================================================================
# TIME UTILITIES
# ============================================================================

class TimeHelper:
    """
    Time and date manipulation utilities.
    """

    @staticmethod
    def utc_now() -> datetime:
        """Get current timezone-aware UTC datetime."""
        return datetime.now(timezone.utc)

    @staticmethod
    def ensure_aware(dt: Optional[datetime]) -> Optional[datetime]:
        """
        Attach UTC to a naive datetime; convert aware ones to UTC.

        Args:
            dt: Datetime or None

        Returns:
            Aware UTC datetime, or None when given None
        """
        if dt is None:
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    @staticmethod
    def to_iso(dt: Optional[datetime]) -> Optional[str]:
        """ISO-8601 with a ``Z`` suffix, as sent in webhook payloads."""
        dt = TimeHelper.ensure_aware(dt)
        if dt is None:
            return None
        return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    @staticmethod
    def seconds_to_human_readable(seconds: float) -> str:
        """
        Convert seconds to human-readable format.

        Args:
            seconds: Number of seconds

        Returns:
            Human-readable string (e.g., "2h 30m 15s")
        """
        seconds = int(seconds)
        if seconds < 0:
            return "0s"

        days, remainder = divmod(seconds, 86400)
        hours, remainder = divmod(remainder, 3600)
        minutes, secs = divmod(remainder, 60)

        parts = []
        if days > 0:
            parts.append(f"{days}d")
        if hours > 0:
            parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
        if secs > 0 or not parts:
            parts.append(f"{secs}s")

        return " ".join(parts)


# ============================================================================
# STRING UTILITIES
# ============================================================================

class StringHelper:
    """
    String manipulation utilities.
    """

    @staticmethod
    def truncate(text: Optional[str], max_length: int = 100, suffix: str = "...") -> Optional[str]:
        """
        Truncate string to maximum length.

        Args:
            text: Text to truncate
            max_length: Maximum length including the suffix
            suffix: Suffix to add if truncated

        Returns:
            Truncated string
        """
        if text is None or len(text) <= max_length:
            return text

        return text[:max_length - len(suffix)] + suffix


# ============================================================================
# PROCESS UTILITIES
# ============================================================================

class ProcessHelper:
    """
    Resource usage of the running engine, reported on ``/health``.
    """

    @staticmethod
    def get_memory_usage() -> float:
        """Resident memory of this process in MB."""
        process = psutil.Process(os.getpid())
        return round(process.memory_info().rss / 1024 / 1024, 1)

