from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from services.submission_repository import PersistenceError, SubmissionBroadcaster, SubmissionRepository

class FakeSession:
    def __init__(self, fail_on_commit=False):
        self.added = []
        self.fail_on_commit = fail_on_commit

    def add(self, row):
        self.added.append(row)

    async def commit(self):
        if self.fail_on_commit:
            raise OperationalError("INSERT", {}, Exception("connection lost"))

    async def refresh(self, row):
        row.id = f"sub-{len(self.added)}"
        row.submitted_at = datetime(2024, 3, 15, 9, tzinfo=timezone.utc)

class TestBroadcaster:
    def test_publish_reaches_form_listeners_only(self, make_submission):
        broadcaster = SubmissionBroadcaster()
        received = []
        broadcaster.subscribe("form-1", received.append)
        broadcaster.subscribe("form-2", lambda s: received.append("wrong form"))

        broadcaster.publish(make_submission("a"))
        assert [s.id for s in received] == ["a"]

    def test_unsubscribe(self, make_submission):
        broadcaster = SubmissionBroadcaster()
        received = []
        unsubscribe = broadcaster.subscribe("form-1", received.append)
        assert broadcaster.listener_count("form-1") == 1

        unsubscribe()
        unsubscribe()
        broadcaster.publish(make_submission("a"))
        assert received == []
        assert broadcaster.listener_count("form-1") == 0

    def test_failing_listener_does_not_block_others(self, make_submission):
        broadcaster = SubmissionBroadcaster()
        received = []

        def broken(submission):
            raise RuntimeError("boom")

        broadcaster.subscribe("form-1", broken)
        broadcaster.subscribe("form-1", received.append)
        broadcaster.publish(make_submission("a"))
        assert len(received) == 1

class TestSaveSubmission:
    @pytest.mark.asyncio
    async def test_saved_submission_is_published(self):
        broadcaster = SubmissionBroadcaster()
        received = []
        broadcaster.subscribe("form-1", received.append)
        repository = SubmissionRepository(FakeSession(), broadcaster)

        saved = await repository.save_submission("form-1", {"name": "Jane"}, submitted_by="u-1")

        assert saved.id == "sub-1"
        assert saved.status == "submitted"
        assert saved.data == {"name": "Jane"}
        assert received == [saved]

    @pytest.mark.asyncio
    async def test_database_errors_become_persistence_errors(self):
        broadcaster = SubmissionBroadcaster()
        received = []
        broadcaster.subscribe("form-1", received.append)
        repository = SubmissionRepository(FakeSession(fail_on_commit=True), broadcaster)

        with pytest.raises(PersistenceError):
            await repository.save_submission("form-1", {"name": "Jane"})
        assert received == []
