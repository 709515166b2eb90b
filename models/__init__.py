from .base import Base
from .form import Form, FormSubmission, FieldType, FormStatus, SubmissionStatus

__all__ = [
    "Base",
    "Form",
    "FormSubmission",
    "FieldType",
    "FormStatus",
    "SubmissionStatus",
]
