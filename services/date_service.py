import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)

# Analytics time-range keywords and their window length in days
TIME_RANGE_DAYS = {
    '7d': 7,
    '30d': 30,
    '90d': 90,
    '1y': 365,
}
DEFAULT_TIME_RANGE_DAYS = 30

DATE_RANGE_PRESETS = (
    'today',
    'yesterday',
    'week',
    'month',
    'quarter',
    'year',
    'last_7_days',
    'last_30_days',
    'last_90_days',
)

def parse_datetime(value: Any) -> datetime:
    """
    Parse a datetime, date or ISO-8601 string into an aware UTC datetime.

    Naive values are taken to be UTC. Date-only values become midnight.

    Raises:
        ValueError: if the value cannot be interpreted as a point in time
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty date string")
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"Cannot interpret {value!r} as a date")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)

def to_utc(value: Any) -> Optional[datetime]:
    """Lenient variant of parse_datetime: malformed or missing values give None"""
    if value is None or value == '':
        return None
    try:
        return parse_datetime(value)
    except (TypeError, ValueError):
        return None

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)

def end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999999)

def resolve_date_range(
    range_type: Optional[str],
    now: Optional[datetime] = None
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Resolve a named date-range preset into (start, end) bounds.

    Unknown names, 'all' and 'custom' resolve to (None, None); custom ranges
    carry their own bounds.
    """
    now = to_utc(now) or utc_now()
    today = start_of_day(now)

    if range_type == 'today':
        return today, end_of_day(today)
    if range_type == 'yesterday':
        yesterday = today - timedelta(days=1)
        return yesterday, end_of_day(yesterday)
    if range_type == 'week':
        # Weeks start on Sunday
        days_since_sunday = (today.weekday() + 1) % 7
        return today - timedelta(days=days_since_sunday), now
    if range_type == 'month':
        return today.replace(day=1), now
    if range_type == 'quarter':
        quarter_month = ((today.month - 1) // 3) * 3 + 1
        return today.replace(month=quarter_month, day=1), now
    if range_type == 'year':
        return today.replace(month=1, day=1), now
    if range_type == 'last_7_days':
        return now - timedelta(days=7), now
    if range_type == 'last_30_days':
        return now - timedelta(days=30), now
    if range_type == 'last_90_days':
        return now - timedelta(days=90), now

    return None, None

def time_range_days(time_range: Optional[str]) -> int:
    """Window length for an analytics time-range keyword ('all' uses the default window)"""
    days = TIME_RANGE_DAYS.get(time_range or '')
    if days is None:
        if time_range not in (None, 'all'):
            logger.warning(f"Unknown time range {time_range!r}, using {DEFAULT_TIME_RANGE_DAYS} days")
        return DEFAULT_TIME_RANGE_DAYS
    return days
