import asyncio
import json
import logging
import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError
from redis.exceptions import RedisError

from models.form import FieldType, SubmissionStatus
from schemas.filters import DateRange, FilterCriteria, SortSpec
from schemas.form import FieldDefinition, get_field
from schemas.submission import Submission
from services.analytics_service import analyze
from services.date_service import DATE_RANGE_PRESETS, resolve_date_range, utc_now
from services.filter_store import FILTER_PRESETS_KEY, SUBMISSION_FILTERS_KEY, KeyValueStore
from services.submission_service import (
    filter_submissions,
    is_empty_value,
    paginate_submissions,
    sort_submissions,
    status_of,
    submitted_at_of,
)

logger = logging.getLogger(__name__)

FILTER_DEBOUNCE_MS = int(os.getenv("FILTER_DEBOUNCE_MS", "300"))
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
MAX_FIELD_FILTER_OPTIONS = 20
CHOICE_FIELD_TYPES = (FieldType.SELECT, FieldType.RADIO, FieldType.CHECKBOX)
QUICK_FILTERS = ('today', 'week', 'month', 'pending', 'reviewed', 'recent')

class Debouncer:
    """
    Delay a callback until its input stops changing.

    Holds at most one pending timer: every trigger cancels the previous one,
    so only the last value is ever delivered. Outside a running event loop
    the callback fires immediately.
    """

    def __init__(self, delay_ms: int, callback: Callable[[Any], None]):
        self.delay_ms = delay_ms
        self.callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending_value: Any = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self, value: Any) -> None:
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.callback(value)
            return

        if self.delay_ms <= 0:
            self.callback(value)
            return

        self._pending_value = value
        self._handle = loop.call_later(self.delay_ms / 1000, self._fire)

    def flush(self) -> None:
        """Deliver the pending value now, if there is one"""
        if self._handle is None:
            return
        self._handle.cancel()
        self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._pending_value = None

    def _fire(self) -> None:
        value = self._pending_value
        self._handle = None
        self._pending_value = None
        self.callback(value)

class SubmissionFilterController:
    """
    Filter, sort and page state for one submission list.

    Derived views (filtered list, current page, analytics) are recomputed
    from the current state on every access. Any change to filters or
    sorting sends the view back to page 1.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        fields: Optional[Sequence[FieldDefinition]] = None,
        submissions: Optional[Sequence[Submission]] = None,
        page_size: Optional[int] = None,
        debounce_ms: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.fields: List[FieldDefinition] = list(fields or [])
        self.submissions: List[Submission] = list(submissions or [])
        self.criteria = FilterCriteria()
        self.sort = SortSpec()
        self.search_input = ""
        self.current_page = 1
        self.page_size = page_size or DEFAULT_PAGE_SIZE
        self.clock = clock
        self._debouncer = Debouncer(
            FILTER_DEBOUNCE_MS if debounce_ms is None else debounce_ms,
            self._commit_search
        )
        self._save_task: Optional[asyncio.Task] = None

    # Persistence

    async def restore(self) -> FilterCriteria:
        """Load saved filters; unreadable or corrupt state leaves the defaults in place"""
        if self.store is None:
            return self.criteria

        try:
            raw = await self.store.get(SUBMISSION_FILTERS_KEY)
            if raw:
                self.criteria = FilterCriteria.model_validate(json.loads(raw))
                self.search_input = self.criteria.search_term
                self.current_page = 1
        except (RedisError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring saved submission filters: {str(e)}")
            self.criteria = FilterCriteria()
            self.search_input = ""

        return self.criteria

    async def save(self) -> None:
        if self.store is None:
            return
        try:
            await self.store.set(SUBMISSION_FILTERS_KEY, self.criteria.model_dump_json())
        except RedisError as e:
            logger.error(f"Failed to save submission filters: {str(e)}")

    async def _load_presets(self) -> Dict[str, Any]:
        if self.store is None:
            return {}
        try:
            raw = await self.store.get(FILTER_PRESETS_KEY)
            presets = json.loads(raw) if raw else {}
        except (RedisError, ValueError) as e:
            logger.warning(f"Ignoring saved filter presets: {str(e)}")
            return {}
        return presets if isinstance(presets, dict) else {}

    async def save_preset(self, name: str) -> None:
        if self.store is None:
            return
        presets = await self._load_presets()
        presets[name] = self.criteria.model_dump(mode="json")
        await self.store.set(FILTER_PRESETS_KEY, json.dumps(presets))
        logger.info(f"Saved filter preset '{name}'")

    async def load_preset(self, name: str) -> bool:
        presets = await self._load_presets()
        if name not in presets:
            return False
        try:
            criteria = FilterCriteria.model_validate(presets[name])
        except ValidationError as e:
            logger.warning(f"Filter preset '{name}' is invalid: {str(e)}")
            return False

        self._debouncer.cancel()
        self.search_input = criteria.search_term
        await self._apply(criteria)
        return True

    async def list_presets(self) -> Dict[str, Any]:
        return await self._load_presets()

    async def delete_preset(self, name: str) -> bool:
        presets = await self._load_presets()
        if name not in presets:
            return False
        del presets[name]
        await self.store.set(FILTER_PRESETS_KEY, json.dumps(presets))
        return True

    # State changes

    async def _apply(self, criteria: FilterCriteria) -> None:
        self.criteria = criteria
        self.current_page = 1
        await self.save()

    def _commit_search(self, term: str) -> None:
        self.criteria = self.criteria.model_copy(update={"search_term": term})
        self.current_page = 1
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        # The newest save writes the current criteria, so an older one is redundant
        if self._save_task is not None and not self._save_task.done():
            self._save_task.cancel()
        self._save_task = loop.create_task(self.save())
        self._save_task.add_done_callback(self._log_save_failure)

    @staticmethod
    def _log_save_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Failed to save submission filters: {str(error)}")

    async def set_search_input(self, text: str) -> None:
        """Update the search box immediately; the applied term follows after the debounce delay"""
        self.search_input = text
        self._debouncer.trigger(text)

    async def flush_search(self) -> None:
        self._debouncer.flush()
        if self._save_task is not None:
            await self._save_task
            self._save_task = None

    async def clear_search(self) -> None:
        self._debouncer.cancel()
        self.search_input = ""
        await self._apply(self.criteria.model_copy(update={"search_term": ""}))

    async def set_status_filter(self, status: Union[str, List[str]]) -> None:
        await self._apply(self.criteria.model_copy(update={"status": status or "all"}))

    async def set_date_range(
        self,
        range_type: Optional[str],
        start: Optional[Any] = None,
        end: Optional[Any] = None
    ) -> None:
        """Set a named date range ('today', 'last_7_days', ...) or a custom start/end"""
        if range_type in (None, "", "all", "clear"):
            date_range = None
        elif range_type == "custom":
            date_range = DateRange(type="custom", start=start, end=end)
        elif range_type in DATE_RANGE_PRESETS:
            date_range = DateRange(type=range_type)
        else:
            logger.warning(f"Unknown date range '{range_type}', clearing date filter")
            date_range = None

        await self._apply(self.criteria.model_copy(update={"date_range": date_range}))

    async def clear_date_filter(self) -> None:
        await self.set_date_range(None)

    async def set_field_filter(self, field_id: str, value: Any) -> None:
        field_filters = dict(self.criteria.field_filters)
        if is_empty_value(value):
            field_filters.pop(field_id, None)
        else:
            field_filters[field_id] = value
        await self._apply(self.criteria.model_copy(update={"field_filters": field_filters}))

    async def clear_field_filter(self, field_id: str) -> None:
        await self.set_field_filter(field_id, None)

    async def clear_all_filters(self) -> None:
        self._debouncer.cancel()
        self.search_input = ""
        await self._apply(FilterCriteria())

    async def set_sort(self, field: str, order: Optional[str] = None) -> None:
        """Sort by a field; without an explicit order, re-selecting the current field flips it"""
        if order is None:
            if field == self.sort.field:
                order = "asc" if self.sort.order == "desc" else "desc"
            else:
                order = "desc"
        self.sort = SortSpec(field=field, order=order)
        self.current_page = 1

    async def apply_quick_filter(self, name: str) -> bool:
        if name not in QUICK_FILTERS:
            logger.warning(f"Unknown quick filter preset: {name}")
            return False

        if name in ("today", "week", "month"):
            await self.set_date_range(name)
        elif name == "pending":
            await self.set_status_filter(SubmissionStatus.SUBMITTED.value)
        elif name == "reviewed":
            await self.set_status_filter(SubmissionStatus.REVIEWED.value)
        elif name == "recent":
            await self.set_sort("submitted_at", "desc")
            await self.set_date_range("week")
        return True

    def set_submissions(self, submissions: Sequence[Submission]) -> None:
        """Replace the submission list, e.g. on a subscription delivery"""
        self.submissions = list(submissions)
        self.current_page = 1

    def set_fields(self, fields: Sequence[FieldDefinition]) -> None:
        self.fields = list(fields)

    def go_to_page(self, page: int) -> None:
        if page < 1:
            raise ValueError(f"Page must be at least 1, got {page}")
        self.current_page = page

    def next_page(self) -> None:
        if self.page_result["pagination"]["has_next_page"]:
            self.current_page += 1

    def prev_page(self) -> None:
        if self.current_page > 1:
            self.current_page -= 1

    def set_page_size(self, page_size: int) -> None:
        if page_size < 1:
            raise ValueError(f"Page size must be at least 1, got {page_size}")
        self.page_size = page_size
        self.current_page = 1

    # Derived views

    @property
    def filtered_submissions(self) -> List[Submission]:
        filtered = filter_submissions(self.submissions, self.criteria, now=self.clock())
        return sort_submissions(filtered, self.sort.field, self.sort.order)

    @property
    def page_result(self) -> Dict[str, Any]:
        return paginate_submissions(self.filtered_submissions, self.current_page, self.page_size)

    @property
    def is_filtered(self) -> bool:
        return len(self.filtered_submissions) != len(self.submissions)

    def analytics(self, time_range: str = "30d") -> Dict[str, Any]:
        return analyze(self.filtered_submissions, self.fields, time_range, now=self.clock())

    @property
    def active_filter_count(self) -> int:
        count = 0
        if self.criteria.search_term.strip():
            count += 1
        if self.criteria.status not in ("all", "", []):
            count += 1
        if self.criteria.date_range is not None:
            count += 1
        count += sum(1 for value in self.criteria.field_filters.values() if not is_empty_value(value))
        return count

    @property
    def has_active_filters(self) -> bool:
        return self.active_filter_count > 0

    def filter_summary(self) -> List[str]:
        summary = []
        criteria = self.criteria

        if criteria.search_term.strip():
            summary.append(f'Search: "{criteria.search_term}"')

        if criteria.status not in ("all", "", []):
            status = criteria.status if isinstance(criteria.status, str) else ", ".join(criteria.status)
            summary.append(f"Status: {status}")

        date_range = criteria.date_range
        if date_range is not None:
            if date_range.type == "custom":
                parts = []
                if date_range.start:
                    parts.append(f"from {date_range.start.date().isoformat()}")
                if date_range.end:
                    parts.append(f"to {date_range.end.date().isoformat()}")
                summary.append(f"Date: {' '.join(parts)}")
            else:
                summary.append(f"Date: {date_range.type.replace('_', ' ')}")

        for field_id, value in criteria.field_filters.items():
            field = get_field(self.fields, field_id)
            summary.append(f"{field.label if field else field_id}: {value}")

        return summary

    def quick_filters(self) -> List[Dict[str, Any]]:
        now = self.clock()

        def count_since(range_type: str) -> int:
            start, _ = resolve_date_range(range_type, now)
            return sum(
                1 for s in self.submissions
                if submitted_at_of(s) is not None and submitted_at_of(s) >= start
            )

        today_count = count_since("today")
        week_count = count_since("week")
        pending_count = sum(
            1 for s in self.submissions if status_of(s) == SubmissionStatus.SUBMITTED.value
        )

        return [
            {"key": "today", "label": f"Today ({today_count})", "count": today_count},
            {"key": "week", "label": f"This Week ({week_count})", "count": week_count},
            {"key": "pending", "label": f"Pending Review ({pending_count})", "count": pending_count},
            {"key": "recent", "label": "Recent Activity", "count": week_count}
        ]

    def field_filter_options(self, field_id: str) -> List[Dict[str, Any]]:
        """Choices for a field filter: declared options, else values seen in submissions"""
        field = get_field(self.fields, field_id)
        if field is None:
            return []

        if field.type in CHOICE_FIELD_TYPES and field.options:
            return [{"label": option, "value": option} for option in field.options]

        seen: List[Any] = []
        for submission in self.submissions:
            value = (submission.data or {}).get(field_id)
            if is_empty_value(value):
                continue
            values = value if isinstance(value, (list, tuple, set)) else [value]
            for item in values:
                if item not in seen:
                    seen.append(item)

        options = sorted(seen[:MAX_FIELD_FILTER_OPTIONS], key=str)
        return [{"label": str(value), "value": value} for value in options]

    def export_filtered_results(self) -> Dict[str, Any]:
        submissions = self.filtered_submissions
        return {
            "submissions": [s.model_dump(mode="json") for s in submissions],
            "filters": self.criteria.model_dump(mode="json"),
            "sorting": self.sort.model_dump(),
            "total_count": len(submissions),
            "applied_at": self.clock().isoformat()
        }
