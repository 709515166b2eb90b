import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from database import get_db
from main import app
from models.form import FormStatus
from routes.submissions import get_repository
from schemas.submission import Submission
from services.access_service import filter_by_role
from services.auth_service import auth_service

class FakeRepository:
    def __init__(self, submissions):
        self.submissions = list(submissions)
        self.saved = []

    async def get_submissions(self, form_id, role=None, user_id=None, options=None):
        rows = [s for s in self.submissions if s.form_id == form_id]
        return filter_by_role(rows, role, user_id)

    async def save_submission(self, form_id, data, submitted_by=None, user_agent=None, ip_address=None):
        submission = Submission(
            id=f"new-{len(self.saved) + 1}",
            form_id=form_id,
            data=data,
            status="submitted",
            submitted_by=submitted_by,
            user_agent=user_agent,
            submitted_at=datetime.now(timezone.utc)
        )
        self.saved.append(submission)
        return submission

class FakeDB:
    def __init__(self, forms):
        self.forms = forms

    async def get(self, model, form_id):
        return self.forms.get(form_id)

def auth_header(role, user_id="u-1"):
    token = auth_service.create_access_token(user_id, role)
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def repository(make_submission):
    recent = datetime.now(timezone.utc) - timedelta(hours=1)
    return FakeRepository([
        make_submission("a", {"name": "Alice", "email": "alice@acme.org", "plan": "pro"},
                        submitted_at=recent, submitted_by="u-1"),
        make_submission("b", {"name": "Bob", "email": "bob@acme.org", "plan": "basic"},
                        submitted_at=recent - timedelta(days=1), submitted_by="u-2", status="reviewed"),
        make_submission("c", {"name": "Carol"}, submitted_at=recent - timedelta(days=2), submitted_by="u-2"),
    ])

@pytest.fixture
def forms(contact_fields):
    def make_form(form_id, form_status):
        return SimpleNamespace(
            id=form_id,
            title="Contact Form",
            fields=[field.model_dump(mode="json") for field in contact_fields],
            status=form_status
        )
    return {
        "form-1": make_form("form-1", FormStatus.PUBLISHED),
        "draft": make_form("draft", FormStatus.DRAFT),
    }

@pytest.fixture
def client(repository, forms):
    db = FakeDB(forms)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_repository] = lambda: repository
    yield TestClient(app)
    app.dependency_overrides.clear()

class TestListSubmissions:
    def test_requires_token(self, client):
        response = client.get("/api/submissions/form-1")
        assert response.status_code in (401, 403)

    def test_rejects_invalid_token(self, client):
        response = client.get("/api/submissions/form-1", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_admin_search_and_paginate(self, client):
        response = client.get(
            "/api/submissions/form-1",
            params={"search": "l", "page": 1, "page_size": 1},
            headers=auth_header("admin")
        )
        assert response.status_code == 200
        body = response.json()
        assert [item["id"] for item in body["items"]] == ["a"]
        assert body["pagination"]["total"] == 2
        assert body["pagination"]["has_next_page"] is True
        assert body["total_unfiltered"] == 3

    def test_status_and_field_filters(self, client):
        response = client.get(
            "/api/submissions/form-1",
            params={"status": "submitted", "field_filters": json.dumps({"plan": "pro"})},
            headers=auth_header("admin")
        )
        assert [item["id"] for item in response.json()["items"]] == ["a"]

    def test_users_only_see_their_own(self, client):
        response = client.get("/api/submissions/form-1", headers=auth_header("user", "u-2"))
        assert [item["id"] for item in response.json()["items"]] == ["b", "c"]

    def test_malformed_filter_is_rejected(self, client):
        response = client.get(
            "/api/submissions/form-1",
            params={"field_filters": "{broken"},
            headers=auth_header("admin")
        )
        assert response.status_code == 400

    def test_inverted_date_range_is_rejected(self, client):
        response = client.get(
            "/api/submissions/form-1",
            params={"start_date": "2024-02-01", "end_date": "2024-01-01"},
            headers=auth_header("admin")
        )
        assert response.status_code == 400

class TestSubmitForm:
    def test_valid_submission_is_saved(self, client, repository):
        response = client.post(
            "/api/submissions/form-1",
            json={"data": {"name": "Dana", "email": "dana@acme.org", "nickname": "D"}}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["submission_id"] == "new-1"
        assert body["warnings"] == ["Unknown fields in submission: nickname"]
        assert repository.saved[0].submitted_by is None

    def test_invalid_submission(self, client, repository):
        response = client.post("/api/submissions/form-1", json={"data": {"email": "nope"}})
        assert response.status_code == 422
        assert response.json()["detail"]["errors"] == [
            "Missing required fields: Name",
            "Please enter a valid email address",
        ]
        assert repository.saved == []

    def test_draft_form_rejects_submissions(self, client):
        response = client.post("/api/submissions/draft", json={"data": {"name": "Dana"}})
        assert response.status_code == 400

    def test_unknown_form(self, client):
        response = client.post("/api/submissions/missing", json={"data": {"name": "Dana"}})
        assert response.status_code == 404

class TestExport:
    def test_csv_download(self, client):
        response = client.get(
            "/api/submissions/form-1/export",
            params={"status": "reviewed"},
            headers=auth_header("admin")
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "contact-form-submissions-" in response.headers["content-disposition"]
        lines = response.text.splitlines()
        assert len(lines) == 2
        assert lines[1].startswith("b,")

    def test_json_download(self, client):
        response = client.get(
            "/api/submissions/form-1/export",
            params={"format": "json"},
            headers=auth_header("admin")
        )
        assert response.json()["total"] == 3

    def test_export_matches_filtered_list(self, client):
        params = {"search": "a", "field_filters": json.dumps({"plan": "pro"})}
        listed = client.get("/api/submissions/form-1", params=params, headers=auth_header("admin"))
        exported = client.get(
            "/api/submissions/form-1/export",
            params={**params, "format": "json"},
            headers=auth_header("admin")
        )

        assert exported.status_code == 200
        assert [s["id"] for s in exported.json()["submissions"]] == ["a"]
        assert [s["id"] for s in exported.json()["submissions"]] == [
            item["id"] for item in listed.json()["items"]
        ]

    def test_export_rejects_malformed_field_filters(self, client):
        response = client.get(
            "/api/submissions/form-1/export",
            params={"field_filters": "{broken"},
            headers=auth_header("admin")
        )
        assert response.status_code == 400

    def test_requires_export_permission(self, client):
        response = client.get("/api/submissions/form-1/export", headers=auth_header("manager"))
        assert response.status_code == 403

class TestAnalytics:
    def test_snapshot_and_insights(self, client):
        response = client.get(
            "/api/analytics/forms/form-1",
            params={"time_range": "7d"},
            headers=auth_header("manager")
        )
        assert response.status_code == 200
        body = response.json()
        assert body["form_title"] == "Contact Form"
        assert body["analytics"]["overview"]["total_submissions"] == 3
        assert body["analytics"]["trends"]["current"] == 3
        assert "all" in body["available_time_ranges"]
        assert body["insights"]

    def test_rejects_unknown_time_range(self, client):
        response = client.get(
            "/api/analytics/forms/form-1",
            params={"time_range": "2w"},
            headers=auth_header("admin")
        )
        assert response.status_code == 422

    def test_plain_users_are_forbidden(self, client):
        response = client.get("/api/analytics/forms/form-1", headers=auth_header("user"))
        assert response.status_code == 403
