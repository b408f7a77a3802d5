"""
Datetime utilities for lidmap services.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Returns None if input was None.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_message_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a WhatsApp message timestamp.

    The bridge reports unix seconds (int or digit string) or ISO-8601 strings.

    Examples:
        >>> parse_message_timestamp(1700000000).year
        2023
        >>> parse_message_timestamp("2024-05-01T10:00:00Z").tzinfo is not None
        True
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)) or str(value).isdigit():
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        return make_aware(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (ValueError, OverflowError, OSError):
        logger.debug(f"Could not parse message timestamp: {value!r}")
        return None
