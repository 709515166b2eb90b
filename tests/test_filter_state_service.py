import asyncio
import json
from datetime import datetime, timezone

import pytest

from schemas.form import FieldDefinition
from services.filter_state_service import Debouncer, SubmissionFilterController
from services.filter_store import FILTER_PRESETS_KEY, SUBMISSION_FILTERS_KEY, MemoryKeyValueStore

NOW = datetime(2024, 3, 13, 12, 0, tzinfo=timezone.utc)  # a Wednesday

def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)

@pytest.fixture
def submissions(make_submission):
    return [
        make_submission("a", {"name": "Alice", "plan": "pro"}, submitted_at=utc(2024, 3, 13, 9)),
        make_submission("b", {"name": "Bob", "plan": "basic"}, submitted_at=utc(2024, 3, 11, 9),
                        status="reviewed"),
        make_submission("c", {"name": "Carol", "city": "Oslo"}, submitted_at=utc(2024, 2, 20, 9)),
    ]

@pytest.fixture
def store():
    return MemoryKeyValueStore()

@pytest.fixture
def controller(store, contact_fields, submissions):
    return SubmissionFilterController(
        store=store,
        fields=contact_fields,
        submissions=submissions,
        page_size=2,
        debounce_ms=0,
        clock=lambda: NOW
    )

def ids(items):
    return [item.id for item in items]

class TestDebouncer:
    def test_fires_immediately_without_event_loop(self):
        received = []
        Debouncer(300, received.append).trigger("x")
        assert received == ["x"]

    @pytest.mark.asyncio
    async def test_last_write_wins(self):
        received = []
        debouncer = Debouncer(20, received.append)
        for value in ("a", "ab", "abc"):
            debouncer.trigger(value)
        assert received == []
        assert debouncer.pending is True

        await asyncio.sleep(0.05)
        assert received == ["abc"]
        assert debouncer.pending is False

    @pytest.mark.asyncio
    async def test_flush_and_cancel(self):
        received = []
        debouncer = Debouncer(1000, received.append)
        debouncer.trigger("now")
        debouncer.flush()
        assert received == ["now"]

        debouncer.trigger("never")
        debouncer.cancel()
        await asyncio.sleep(0)
        assert received == ["now"]

class TestSearchInput:
    @pytest.mark.asyncio
    async def test_applied_term_follows_debounce(self, store, contact_fields, submissions):
        controller = SubmissionFilterController(
            store=store, fields=contact_fields, submissions=submissions, debounce_ms=1000, clock=lambda: NOW
        )
        await controller.set_search_input("car")

        assert controller.search_input == "car"
        assert controller.criteria.search_term == ""
        assert len(controller.filtered_submissions) == 3

        await controller.flush_search()
        assert controller.criteria.search_term == "car"
        assert ids(controller.filtered_submissions) == ["c"]
        assert json.loads(store.data[SUBMISSION_FILTERS_KEY])["search_term"] == "car"

    @pytest.mark.asyncio
    async def test_superseded_save_is_dropped_and_failures_logged(self, contact_fields, submissions, caplog):
        class BrokenStore(MemoryKeyValueStore):
            def __init__(self):
                super().__init__()
                self.attempts = []

            async def set(self, key, value):
                self.attempts.append(json.loads(value)["search_term"])
                raise RuntimeError("store offline")

        store = BrokenStore()
        controller = SubmissionFilterController(
            store=store, fields=contact_fields, submissions=submissions, debounce_ms=0, clock=lambda: NOW
        )
        await controller.set_search_input("a")
        await controller.set_search_input("ab")
        await asyncio.sleep(0.01)

        assert store.attempts == ["ab"]
        assert "Failed to save submission filters: store offline" in caplog.text

class TestStateChanges:
    @pytest.mark.asyncio
    async def test_filter_change_resets_page(self, controller):
        controller.go_to_page(2)
        await controller.set_status_filter("reviewed")
        assert controller.current_page == 1
        assert ids(controller.filtered_submissions) == ["b"]

    @pytest.mark.asyncio
    async def test_sort_toggles_and_resets_page(self, controller):
        controller.go_to_page(2)
        await controller.set_sort("submitted_at")
        assert controller.sort.order == "asc"
        assert controller.current_page == 1
        assert ids(controller.filtered_submissions) == ["c", "b", "a"]

    @pytest.mark.asyncio
    async def test_field_filter_set_and_cleared(self, controller):
        await controller.set_field_filter("plan", "pro")
        assert ids(controller.filtered_submissions) == ["a"]
        await controller.set_field_filter("plan", "")
        assert "plan" not in controller.criteria.field_filters

    @pytest.mark.asyncio
    async def test_named_date_range(self, controller):
        await controller.set_date_range("week")
        assert ids(controller.filtered_submissions) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_custom_date_range(self, controller):
        await controller.set_date_range("custom", start="2024-02-01", end="2024-02-29")
        assert ids(controller.filtered_submissions) == ["c"]

    @pytest.mark.asyncio
    async def test_clear_all(self, controller):
        await controller.set_status_filter("reviewed")
        await controller.set_field_filter("plan", "basic")
        await controller.clear_all_filters()
        assert controller.active_filter_count == 0
        assert len(controller.filtered_submissions) == 3

    def test_new_submissions_reset_page(self, controller, make_submission):
        controller.go_to_page(2)
        controller.set_submissions([make_submission("z")])
        assert controller.current_page == 1
        assert controller.page_result["pagination"]["total"] == 1

    def test_paging(self, controller):
        assert ids(controller.page_result["items"]) == ["a", "b"]
        controller.next_page()
        assert ids(controller.page_result["items"]) == ["c"]
        controller.next_page()
        assert controller.current_page == 2
        controller.prev_page()
        assert controller.current_page == 1

class TestPersistence:
    @pytest.mark.asyncio
    async def test_restore_saved_filters(self, store, contact_fields):
        store.data[SUBMISSION_FILTERS_KEY] = json.dumps({"search_term": "bob", "status": "reviewed"})
        controller = SubmissionFilterController(store=store, fields=contact_fields)
        criteria = await controller.restore()
        assert criteria.search_term == "bob"
        assert controller.search_input == "bob"
        assert controller.criteria.status == "reviewed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"date_range": {"start": "tomorrow"}}'])
    async def test_corrupt_state_falls_back_to_defaults(self, store, raw):
        store.data[SUBMISSION_FILTERS_KEY] = raw
        controller = SubmissionFilterController(store=store)
        criteria = await controller.restore()
        assert criteria.search_term == ""
        assert criteria.status == "all"
        assert criteria.date_range is None

    @pytest.mark.asyncio
    async def test_presets(self, controller, store):
        await controller.set_status_filter("reviewed")
        await controller.save_preset("to-review")
        await controller.clear_all_filters()

        assert list(await controller.list_presets()) == ["to-review"]
        assert await controller.load_preset("to-review") is True
        assert ids(controller.filtered_submissions) == ["b"]

        assert await controller.delete_preset("to-review") is True
        assert json.loads(store.data[FILTER_PRESETS_KEY]) == {}
        assert await controller.load_preset("to-review") is False

class TestHelpers:
    @pytest.mark.asyncio
    async def test_active_filters_and_summary(self, controller):
        await controller.set_search_input("o")
        await controller.set_status_filter("reviewed")
        await controller.set_date_range("last_7_days")
        await controller.set_field_filter("plan", "basic")

        assert controller.active_filter_count == 4
        assert controller.has_active_filters is True
        assert controller.filter_summary() == [
            'Search: "o"',
            "Status: reviewed",
            "Date: last 7 days",
            "Plan: basic",
        ]

    @pytest.mark.asyncio
    async def test_quick_filters(self, controller):
        counts = {item["key"]: item["count"] for item in controller.quick_filters()}
        assert counts == {"today": 1, "week": 2, "pending": 2, "recent": 2}

        assert await controller.apply_quick_filter("pending") is True
        assert ids(controller.filtered_submissions) == ["a", "c"]
        assert await controller.apply_quick_filter("nonsense") is False

    def test_field_filter_options(self, controller):
        assert controller.field_filter_options("plan") == [
            {"label": "basic", "value": "basic"},
            {"label": "pro", "value": "pro"},
        ]
        assert controller.field_filter_options("name") == [
            {"label": "Alice", "value": "Alice"},
            {"label": "Bob", "value": "Bob"},
            {"label": "Carol", "value": "Carol"},
        ]
        assert controller.field_filter_options("missing") == []

    def test_analytics_cover_filtered_view(self, controller):
        snapshot = controller.analytics("7d")
        assert snapshot["overview"]["total_submissions"] == 3
        assert snapshot["trends"]["current"] == 2

    def test_export_filtered_results(self, controller):
        exported = controller.export_filtered_results()
        assert exported["total_count"] == 3
        assert [s["id"] for s in exported["submissions"]] == ["a", "b", "c"]
        assert exported["applied_at"] == NOW.isoformat()
