import os
from datetime import datetime, timezone

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from schemas.form import FieldDefinition
from schemas.submission import Submission

@pytest.fixture
def now():
    return datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

@pytest.fixture
def make_submission():
    def factory(id, data=None, submitted_at=None, status=None, submitted_by=None,
                user_agent=None, form_id="form-1"):
        return Submission(
            id=id,
            form_id=form_id,
            data=data or {},
            submitted_at=submitted_at,
            status=status,
            submitted_by=submitted_by,
            user_agent=user_agent
        )
    return factory

@pytest.fixture
def contact_fields():
    return [
        FieldDefinition(id="name", type="text", label="Name", required=True),
        FieldDefinition(id="email", type="email", label="Email", required=True),
        FieldDefinition(id="age", type="number", label="Age", min=18, max=99),
        FieldDefinition(id="plan", type="select", label="Plan", options=["basic", "pro"]),
        FieldDefinition(
            id="toppings", type="checkbox", label="Toppings",
            options=["cheese", "ham", "olives"], min_selections=1, max_selections=2
        ),
        FieldDefinition(id="score", type="rating", label="Score", max_rating=5),
    ]
