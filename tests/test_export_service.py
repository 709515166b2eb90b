import json
from datetime import datetime, timezone

import pytest

from schemas.filters import FilterCriteria
from schemas.form import FieldDefinition
from services.export_service import (
    ExportError,
    export_filename,
    export_submissions_csv,
    export_submissions_json,
    format_field_value,
    load_submissions_json,
    submissions_to_dataframe,
)
from services.submission_service import filter_submissions

@pytest.fixture
def fields():
    return [
        FieldDefinition(id="name", type="text", label="Name", required=True),
        FieldDefinition(id="toppings", type="checkbox", label="Toppings"),
    ]

@pytest.fixture
def submissions(make_submission):
    return [
        make_submission(
            "a", {"name": "Jane", "toppings": ["ham", "cheese"]},
            submitted_at=datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        ),
        make_submission("b", {"name": "Omar"}, status="reviewed", submitted_by="u-7"),
    ]

@pytest.mark.parametrize("value,field_type,expected", [
    (None, "text", "Not provided"),
    (["ham", "cheese"], "checkbox", "ham, cheese"),
    ([], "checkbox", "None selected"),
    ([{"name": "cv.pdf"}, {"name": "photo.png"}], "file", "cv.pdf, photo.png"),
    ("2024-03-01T10:00:00Z", "date", "2024-03-01"),
    (4, "rating", "4 stars"),
    ("n/a", "rating", "No rating"),
    (1234567, "number", "1,234,567"),
    ("JANE@ACME.ORG", "email", "jane@acme.org"),
    ("hello", "mystery", "hello"),
])
def test_format_field_value(value, field_type, expected):
    assert format_field_value(value, field_type) == expected

def test_dataframe_columns(submissions, fields):
    df = submissions_to_dataframe(submissions, fields)
    assert list(df.columns) == [
        "Submission ID", "Submitted At", "Status", "Submitted By", "Name *", "Toppings (checkbox)"
    ]
    assert df.loc[1, "Toppings (checkbox)"] == "Not provided"
    assert df.loc[1, "Submitted By"] == "u-7"

def test_csv_export(submissions, fields):
    csv = export_submissions_csv(submissions, fields)
    lines = csv.splitlines()
    assert lines[0] == "Submission ID,Submitted At,Status,Submitted By,Name *,Toppings (checkbox)"
    assert lines[1] == 'a,2024-03-01T10:00:00+00:00,submitted,anonymous,Jane,"ham, cheese"'
    assert lines[2] == "b,,reviewed,u-7,Omar,Not provided"

def test_csv_export_of_nothing(fields):
    assert export_submissions_csv([], fields) == ""

def test_json_round_trip_reproduces_filtered_set(submissions):
    content = export_submissions_json(submissions, form_title="Pizza order")
    payload = json.loads(content)
    assert payload["total"] == 2
    assert payload["form_title"] == "Pizza order"

    loaded = load_submissions_json(content)
    assert loaded == submissions

    criteria = FilterCriteria(search_term="ham")
    assert filter_submissions(loaded, criteria) == filter_submissions(submissions, criteria)

def test_load_accepts_bare_list(submissions):
    content = json.dumps([s.model_dump(mode="json") for s in submissions])
    assert [s.id for s in load_submissions_json(content)] == ["a", "b"]

@pytest.mark.parametrize("content", ["not json", '{"submissions": 3}', '[{"data": {}}]'])
def test_load_rejects_invalid_exports(content):
    with pytest.raises(ExportError):
        load_submissions_json(content)

def test_export_filename():
    now = datetime(2024, 3, 15, tzinfo=timezone.utc)
    assert export_filename("Contact Form!", "csv", now) == "contact-form-submissions-2024-03-15.csv"
    assert export_filename(None, "json", now) == "form-submissions-2024-03-15.json"
