from sqlalchemy import Column, String, Text, JSON, DateTime, Enum as SQLEnum
from sqlalchemy.sql import func
from enum import Enum
from .base import BaseModel

class FieldType(str, Enum):
    TEXT = "text"
    EMAIL = "email"
    TEXTAREA = "textarea"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    NUMBER = "number"
    DATE = "date"
    FILE = "file"
    RATING = "rating"

class FormStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"

class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"

DEFAULT_SUBMISSION_STATUS = SubmissionStatus.SUBMITTED.value
ANONYMOUS_SUBMITTER = "anonymous"

class Form(BaseModel):
    __tablename__ = "forms"

    title = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    # Ordered list of field definitions, stored as plain dicts
    fields = Column(JSON, nullable=False, default=list)
    status = Column(SQLEnum(FormStatus), default=FormStatus.DRAFT, nullable=False)
    created_by = Column(String(255), nullable=True, index=True)

class FormSubmission(BaseModel):
    __tablename__ = "form_submissions"

    # Weak reference: submissions outlive their form
    form_id = Column(String, nullable=False, index=True)
    data = Column(JSON, nullable=False)
    status = Column(String(50), default=DEFAULT_SUBMISSION_STATUS, nullable=False, index=True)
    flags = Column(JSON, nullable=False, default=list)
    submitted_by = Column(String(255), nullable=True, index=True)
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 compatible
    submitted_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True
    )
