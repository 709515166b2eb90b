import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from models.form import ANONYMOUS_SUBMITTER, DEFAULT_SUBMISSION_STATUS
from schemas.filters import FilterCriteria
from schemas.submission import Submission
from services.date_service import end_of_day, resolve_date_range, to_utc
from services.field_registry import SEQUENCE_TYPES

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
SORT_ORDERS = ('asc', 'desc')

# Sort keys for missing timestamps: before everything else
_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)

def status_of(submission: Submission) -> str:
    return submission.status or DEFAULT_SUBMISSION_STATUS

def submitter_of(submission: Submission) -> str:
    return submission.submitted_by or ANONYMOUS_SUBMITTER

def submitted_at_of(submission: Submission) -> Optional[datetime]:
    return to_utc(submission.submitted_at)

def stringify_value(value: Any) -> str:
    """Render a stored answer the way it is searched and compared"""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)

def _value_contains(value: Any, needle: str) -> bool:
    """Case-insensitive substring match; for sequences any element may match"""
    if isinstance(value, SEQUENCE_TYPES):
        return any(needle in stringify_value(item).lower() for item in value)
    return needle in stringify_value(value).lower()

def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ''
    if isinstance(value, SEQUENCE_TYPES):
        return len(value) == 0
    return False

def search_submissions(submissions: Iterable[Submission], search_term: Optional[str]) -> List[Submission]:
    """Keep submissions where any answer contains the search term (case-insensitive)"""
    if not search_term or not search_term.strip():
        return list(submissions)

    needle = search_term.strip().lower()
    return [
        submission for submission in submissions
        if any(_value_contains(value, needle) for value in (submission.data or {}).values())
    ]

def _normalize_statuses(status: Union[str, Sequence[str], None]) -> List[str]:
    if status is None:
        return []
    if isinstance(status, str):
        return [] if status in ('', 'all') else [status]
    statuses = [s for s in status if s]
    return [] if 'all' in statuses else statuses

def _matches_field_filters(submission: Submission, field_filters: Dict[str, Any]) -> bool:
    data = submission.data or {}
    for field_id, filter_value in field_filters.items():
        if is_empty_value(filter_value):
            continue

        answer = data.get(field_id)
        if is_empty_value(answer):
            return False

        if not _value_contains(answer, stringify_value(filter_value).lower()):
            return False
    return True

def filter_submissions(
    submissions: Iterable[Submission],
    criteria: Optional[FilterCriteria] = None,
    now: Optional[datetime] = None
) -> List[Submission]:
    """
    Apply search, date range, status and per-field filters to a submission list.

    The result is a new list holding the matching submissions in their
    original order; no submission is modified.

    Args:
        submissions: Submissions to filter
        criteria: Filter criteria; None keeps everything
        now: Reference time for named date-range presets

    Returns:
        List of submissions satisfying every criterion
    """
    if criteria is None:
        return list(submissions)

    filtered = search_submissions(submissions, criteria.search_term)

    start = end = None
    if criteria.date_range is not None:
        start = to_utc(criteria.date_range.start)
        end = to_utc(criteria.date_range.end)
        if start is None and end is None:
            start, end = resolve_date_range(criteria.date_range.type, now)
        if end is not None:
            end = end_of_day(end)

    statuses = _normalize_statuses(criteria.status)
    field_filters = criteria.field_filters or {}

    result = []
    for submission in filtered:
        if start is not None or end is not None:
            submitted_at = submitted_at_of(submission)
            if submitted_at is None:
                continue
            if start is not None and submitted_at < start:
                continue
            if end is not None and submitted_at > end:
                continue

        if statuses and status_of(submission) not in statuses:
            continue

        if field_filters and not _matches_field_filters(submission, field_filters):
            continue

        result.append(submission)

    return result

def _sort_key(field: str):
    if field in ('submitted_at', 'submittedAt'):
        return lambda s: submitted_at_of(s) or _EARLIEST
    if field == 'status':
        return status_of
    return lambda s: stringify_value((s.data or {}).get(field))

def sort_submissions(
    submissions: Iterable[Submission],
    field: str = 'submitted_at',
    order: str = 'desc'
) -> List[Submission]:
    """
    Return a new list ordered by the given key.

    The sort is stable in both directions: submissions with equal keys keep
    their input order.
    """
    if order not in SORT_ORDERS:
        raise ValueError(f"Sort order must be one of {SORT_ORDERS}, got {order!r}")

    return sorted(submissions, key=_sort_key(field), reverse=(order == 'desc'))

def paginate_submissions(
    submissions: Sequence[Submission],
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE
) -> Dict[str, Any]:
    """
    Slice a list into a page with boundary metadata.

    A page past the end is not clamped: it yields no items but keeps the
    real totals so callers can navigate back.
    """
    if page < 1:
        raise ValueError(f"Page must be at least 1, got {page}")
    if page_size < 1:
        raise ValueError(f"Page size must be at least 1, got {page_size}")

    total = len(submissions)
    total_pages = math.ceil(total / page_size)
    start_index = (page - 1) * page_size
    end_index = min(start_index + page_size, total)

    return {
        'items': list(submissions[start_index:start_index + page_size]),
        'pagination': {
            'current_page': page,
            'page_size': page_size,
            'total': total,
            'total_pages': total_pages,
            'has_next_page': page < total_pages,
            'has_prev_page': page > 1,
            'start_index': start_index + 1 if start_index < total else 0,
            'end_index': end_index if start_index < total else 0
        }
    }

def get_page_numbers(current_page: int, total_pages: int, max_visible: int = 7) -> List[Union[int, str]]:
    """Page numbers for a pager, with '...' standing in for skipped runs"""
    if total_pages <= max_visible:
        return list(range(1, total_pages + 1))

    half = max_visible // 2
    start = max(current_page - half, 1)
    end = start + max_visible - 1

    if end > total_pages:
        end = total_pages
        start = max(end - max_visible + 1, 1)

    pages: List[Union[int, str]] = []
    if start > 1:
        pages.append(1)
        if start > 2:
            pages.append('...')

    pages.extend(range(start, end + 1))

    if end < total_pages:
        if end < total_pages - 1:
            pages.append('...')
        pages.append(total_pages)

    return pages
