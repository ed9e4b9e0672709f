"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def from_unix_timestamp(value: Any) -> datetime | None:
    """Parse a provider unix timestamp (seconds, int or numeric string).

    Meta sends "1704067200"; Telegram sends 1704067200.

    Returns:
        Timezone-aware UTC datetime, or None if value is missing or invalid.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
