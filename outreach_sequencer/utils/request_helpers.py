from datetime import datetime
from typing import Any, Optional

import pytz


def parse_iso_timestamp(value: Any, field: str = 'timestamp') -> Optional[datetime]:
    """Parse an ISO-8601 request value into naive UTC. Raises ValueError on bad input."""
    if value in (None, ''):
        return None
    if not isinstance(value, str):
        raise ValueError(f"{field} must be an ISO-8601 string")

    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValueError(f"{field} must be an ISO-8601 string, got '{value}'")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(pytz.UTC).replace(tzinfo=None)
    return parsed


def parse_bool_arg(value: Optional[str]) -> Optional[bool]:
    """Parse a query-string boolean; None when absent."""
    if value is None:
        return None
    return value.lower() in ('1', 'true', 'yes')
