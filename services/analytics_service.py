import logging
import math
import statistics
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_DOWN, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Sequence

from models.form import FieldType
from schemas.form import FieldDefinition
from schemas.submission import Submission
from services.date_service import time_range_days, to_utc, utc_now
from services.field_registry import SEQUENCE_TYPES, get_field_behavior, register_aggregator
from services.submission_service import status_of, submitted_at_of, submitter_of
from services.validation_service import is_present, parse_number

logger = logging.getLogger(__name__)

PEAK_HOURS_LIMIT = 3
DAILY_TREND_DAYS = 30
SUCCESSFUL_STATUSES = ('submitted', 'completed')

def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves toward positive infinity (2.5 -> 3, -87.5 -> -87)"""
    quantum = Decimal(1).scaleb(-digits)
    rounding = ROUND_HALF_UP if value >= 0 else ROUND_HALF_DOWN
    rounded = Decimal(str(value)).quantize(quantum, rounding=rounding)
    return int(rounded) if digits == 0 else float(rounded)

def percentage(part: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(part / total * 100)

def calculate_growth_rate(current: int, previous: int) -> int:
    """Calculate growth rate percentage"""
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up((current - previous) / previous * 100)

def _answer(submission: Submission, field: FieldDefinition) -> Any:
    return (submission.data or {}).get(field.id)

def _is_complete(submission: Submission, fields: Sequence[FieldDefinition]) -> bool:
    return all(is_present(_answer(submission, field), field.type) for field in fields)

def _most_frequent(counts: Dict[Any, int]) -> Optional[Any]:
    # max() keeps the first of equal counts, i.e. the first inserted key
    if not counts:
        return None
    return max(counts, key=counts.get)

# Field-type aggregators

@register_aggregator(FieldType.TEXT, FieldType.EMAIL, FieldType.TEXTAREA)
def _aggregate_text(values: List[Any], field: FieldDefinition) -> Dict[str, Any]:
    lengths = [len(str(value)) for value in values]
    words = [len(str(value).split()) for value in values]
    return {
        'average_length': round_half_up(sum(lengths) / len(lengths)),
        'min_length': min(lengths),
        'max_length': max(lengths),
        'average_word_count': round_half_up(sum(words) / len(words))
    }

def _numeric_summary(numbers: List[float]) -> Dict[str, Any]:
    if not numbers:
        return {}
    return {
        'average': round_half_up(sum(numbers) / len(numbers), 2),
        'min': min(numbers),
        'max': max(numbers),
        'median': statistics.median(numbers),
        'count': len(numbers)
    }

@register_aggregator(FieldType.NUMBER)
def _aggregate_number(values: List[Any], field: FieldDefinition) -> Dict[str, Any]:
    numbers = [n for n in (parse_number(value) for value in values) if n is not None]
    return _numeric_summary(numbers)

@register_aggregator(FieldType.RATING)
def _aggregate_rating(values: List[Any], field: FieldDefinition) -> Dict[str, Any]:
    ratings = [n for n in (parse_number(value) for value in values) if n is not None]
    summary = _numeric_summary(ratings)
    if summary:
        distribution: Dict[float, int] = {}
        for rating in sorted(ratings):
            distribution[rating] = distribution.get(rating, 0) + 1
        summary['distribution'] = distribution
    return summary

@register_aggregator(FieldType.SELECT, FieldType.RADIO)
def _aggregate_choice(values: List[Any], field: FieldDefinition) -> Dict[str, Any]:
    distribution: Dict[str, int] = {}
    for value in values:
        key = str(value)
        distribution[key] = distribution.get(key, 0) + 1
    return {
        'distribution': distribution,
        'most_common': _most_frequent(distribution)
    }

@register_aggregator(FieldType.CHECKBOX)
def _aggregate_checkbox(values: List[Any], field: FieldDefinition) -> Dict[str, Any]:
    selections: Dict[str, int] = {}
    total_selected = 0
    for value in values:
        items = list(value) if isinstance(value, SEQUENCE_TYPES) else [value]
        total_selected += len(items)
        for item in items:
            key = str(item)
            selections[key] = selections.get(key, 0) + 1
    return {
        'selection_distribution': selections,
        'average_selections': round_half_up(total_selected / len(values), 2),
        'most_selected': _most_frequent(selections)
    }

@register_aggregator(FieldType.DATE)
def _aggregate_date(values: List[Any], field: FieldDefinition) -> Dict[str, Any]:
    dates = sorted(d for d in (to_utc(value) for value in values) if d is not None)
    if not dates:
        return {}
    return {
        'earliest': dates[0].date().isoformat(),
        'latest': dates[-1].date().isoformat(),
        'range_days': (dates[-1] - dates[0]).days
    }

@register_aggregator(FieldType.FILE)
def _aggregate_file(values: List[Any], field: FieldDefinition) -> Dict[str, Any]:
    total_files = sum(len(value) if isinstance(value, SEQUENCE_TYPES) else 1 for value in values)
    return {
        'total_files': total_files,
        'average_files_per_submission': round_half_up(total_files / len(values), 2)
    }

# Snapshot sections

def calculate_completion_rate(submissions: Sequence[Submission], fields: Sequence[FieldDefinition]) -> int:
    """Share of submissions with every required field present, in percent"""
    required = [field for field in fields if field.required]
    if not required:
        return 100
    if not submissions:
        return 0
    complete = sum(1 for submission in submissions if _is_complete(submission, required))
    return percentage(complete, len(submissions))

def calculate_status_breakdown(submissions: Iterable[Submission]) -> Dict[str, int]:
    breakdown: Dict[str, int] = {}
    for submission in submissions:
        status = status_of(submission)
        breakdown[status] = breakdown.get(status, 0) + 1
    return breakdown

def calculate_field_analytics(
    submissions: Sequence[Submission],
    fields: Sequence[FieldDefinition]
) -> Dict[str, Dict[str, Any]]:
    """Response counts plus type-specific statistics for each field"""
    analytics = {}
    total = len(submissions)

    for field in fields:
        values = [
            _answer(submission, field) for submission in submissions
            if is_present(_answer(submission, field), field.type)
        ]
        behavior = get_field_behavior(field.type)
        field_stats = behavior.aggregator(values, field) if values and behavior else {}

        analytics[field.id] = {
            'field_label': field.label,
            'field_type': field.type.value,
            'response_count': len(values),
            'response_rate': percentage(len(values), total),
            'analytics': field_stats
        }

    return analytics

def group_submissions_by_day(submissions: Iterable[Submission]) -> Dict[str, int]:
    by_day: Dict[str, int] = {}
    for submission in submissions:
        submitted_at = submitted_at_of(submission)
        if submitted_at is None:
            continue
        day = submitted_at.date().isoformat()
        by_day[day] = by_day.get(day, 0) + 1
    return dict(sorted(by_day.items()))

def calculate_submission_trends(
    submissions: Sequence[Submission],
    time_range: str = '30d',
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Compare the current period with the one before it.

    The current period is the last N days before `now`, the previous period
    the N days before that. Submissions without a timestamp are ignored.
    """
    now = to_utc(now) or utc_now()
    period = timedelta(days=time_range_days(time_range))
    current_start = now - period
    previous_start = now - 2 * period

    current = previous = 0
    for submission in submissions:
        submitted_at = submitted_at_of(submission)
        if submitted_at is None:
            continue
        if submitted_at >= current_start:
            current += 1
        elif submitted_at >= previous_start:
            previous += 1

    daily = group_submissions_by_day(submissions)
    return {
        'current': current,
        'previous': previous,
        'growth': calculate_growth_rate(current, previous),
        'daily': [
            {'date': day, 'submissions': count}
            for day, count in list(daily.items())[-DAILY_TREND_DAYS:]
        ]
    }

def calculate_dropoff(
    submissions: Sequence[Submission],
    fields: Sequence[FieldDefinition]
) -> Dict[str, Dict[str, Any]]:
    """
    For each field position, how many submissions filled in every field up
    to and including it. Counts never increase along the schema order.
    """
    dropoff = {}
    remaining = list(submissions)
    total = len(submissions)

    for position, field in enumerate(fields, start=1):
        remaining = [s for s in remaining if is_present(_answer(s, field), field.type)]
        dropoff[field.id] = {
            'field_label': field.label,
            'position': position,
            'completed_count': len(remaining),
            'completion_rate': percentage(len(remaining), total)
        }

    return dropoff

def classify_device(user_agent: Optional[str]) -> str:
    """Classify a user-agent string as mobile, tablet, desktop or unknown"""
    user_agent = user_agent or ''
    if 'Mobile' in user_agent:
        return 'mobile'
    if 'Tablet' in user_agent:
        return 'tablet'
    if 'Mozilla' in user_agent:
        return 'desktop'
    return 'unknown'

def calculate_device_breakdown(submissions: Iterable[Submission]) -> Dict[str, int]:
    devices = {'mobile': 0, 'desktop': 0, 'tablet': 0, 'unknown': 0}
    for submission in submissions:
        devices[classify_device(submission.user_agent)] += 1
    return devices

def calculate_peak_submission_times(
    submissions: Iterable[Submission],
    limit: int = PEAK_HOURS_LIMIT
) -> List[Dict[str, Any]]:
    hour_counts: Dict[int, int] = {}
    for submission in submissions:
        submitted_at = submitted_at_of(submission)
        if submitted_at is None:
            continue
        hour_counts[submitted_at.hour] = hour_counts.get(submitted_at.hour, 0) + 1

    # Stable sort keeps first-seen order among equal counts
    top_hours = sorted(hour_counts.items(), key=lambda item: item[1], reverse=True)[:limit]
    return [
        {
            'hour': hour,
            'count': count,
            'time_range': f"{hour}:00 - {hour}:59"
        }
        for hour, count in top_hours
    ]

def calculate_submission_frequency(submissions: Iterable[Submission]) -> float:
    """Submissions per day between the first and last submission (at least one day)"""
    timestamps = [t for t in (submitted_at_of(s) for s in submissions) if t is not None]
    if not timestamps:
        return 0
    span_days = (max(timestamps) - min(timestamps)).total_seconds() / 86400
    days = max(1, math.ceil(span_days))
    return round_half_up(len(timestamps) / days, 2)

def calculate_engagement(submissions: Sequence[Submission]) -> Dict[str, Any]:
    submitter_counts: Dict[str, int] = {}
    for submission in submissions:
        submitter = submitter_of(submission)
        submitter_counts[submitter] = submitter_counts.get(submitter, 0) + 1

    return {
        'unique_submitters': len(submitter_counts),
        'repeat_submitters': sum(1 for count in submitter_counts.values() if count > 1),
        'submission_frequency': calculate_submission_frequency(submissions),
        'peak_submission_times': calculate_peak_submission_times(submissions)
    }

def calculate_performance(
    submissions: Sequence[Submission],
    fields: Sequence[FieldDefinition]
) -> Dict[str, Any]:
    total = len(submissions)
    required = [field for field in fields if field.required]

    if fields and total:
        complete = sum(1 for s in submissions if _is_complete(s, required))
        abandonment_rate = percentage(total - complete, total)
    else:
        abandonment_rate = 0

    field_completion_rates = []
    for field in fields:
        answered = sum(1 for s in submissions if is_present(_answer(s, field), field.type))
        field_completion_rates.append({
            'field_id': field.id,
            'label': field.label,
            'completion_rate': percentage(answered, total)
        })

    successful = sum(1 for s in submissions if status_of(s) in SUCCESSFUL_STATUSES)

    return {
        'abandonment_rate': abandonment_rate,
        'field_completion_rates': field_completion_rates,
        'average_form_length': len(fields),
        'submission_success_rate': percentage(successful, total) if total else 100
    }

def analyze(
    submissions: Iterable[Submission],
    fields: Sequence[FieldDefinition],
    time_range: str = '30d',
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Compute the analytics snapshot for a form's submissions.

    Pure function of its inputs: the same submissions, fields, time range
    and `now` always give the same snapshot. Empty or sparse input yields
    zero counts rather than errors.

    Args:
        submissions: Submissions to aggregate
        fields: Form field definitions in schema order
        time_range: Trend window keyword ('7d', '30d', '90d', '1y', 'all')
        now: Reference time for trend windows; defaults to the current time

    Returns:
        Dict with overview, status, field, trend, performance, dropoff,
        device and engagement sections
    """
    submissions = list(submissions)
    now = to_utc(now) or utc_now()

    engagement = calculate_engagement(submissions)

    return {
        'time_range': time_range,
        'generated_at': now.isoformat(),
        'overview': {
            'total_submissions': len(submissions),
            'total_fields': len(fields),
            'completion_rate': calculate_completion_rate(submissions, fields),
            'unique_users': engagement['unique_submitters']
        },
        'status_breakdown': calculate_status_breakdown(submissions),
        'field_analytics': calculate_field_analytics(submissions, fields),
        'trends': calculate_submission_trends(submissions, time_range, now),
        'performance': calculate_performance(submissions, fields),
        'dropoff': calculate_dropoff(submissions, fields),
        'devices': calculate_device_breakdown(submissions),
        'engagement': engagement
    }

def generate_insights(snapshot: Dict[str, Any]) -> List[Dict[str, str]]:
    """Plain-language notes about a snapshot for dashboard display"""
    insights = []
    overview = snapshot['overview']

    if overview['total_submissions'] == 0:
        insights.append({
            'type': 'warning',
            'title': 'No Submissions Yet',
            'message': "This form hasn't received any submissions yet."
        })
        return insights

    completion_rate = overview['completion_rate']
    if completion_rate < 50:
        insights.append({
            'type': 'warning',
            'title': 'Low Completion Rate',
            'message': f"Only {completion_rate}% of submissions answer every required field."
        })
    elif completion_rate > 90:
        insights.append({
            'type': 'success',
            'title': 'Excellent Completion Rate',
            'message': f"{completion_rate}% of submissions answer every required field."
        })

    low_response = [
        stats['field_label'] for stats in snapshot['field_analytics'].values()
        if stats['response_rate'] < 70
    ]
    if low_response:
        insights.append({
            'type': 'warning',
            'title': 'Low Response Fields',
            'message': f"{len(low_response)} field(s) have low response rates: {', '.join(low_response)}"
        })

    peak_times = snapshot['engagement']['peak_submission_times']
    if peak_times:
        insights.append({
            'type': 'info',
            'title': 'Peak Submission Time',
            'message': f"Most submissions come in between {peak_times[0]['time_range']} (UTC)."
        })

    return insights
