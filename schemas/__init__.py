from .form import FieldDefinition, FormCreate, FormUpdate, FormResponse
from .submission import Submission, SubmissionCreate, SubmissionStatusUpdate
from .filters import DateRange, FilterCriteria, SortSpec, PageRequest

__all__ = [
    "FieldDefinition",
    "FormCreate",
    "FormUpdate",
    "FormResponse",
    "Submission",
    "SubmissionCreate",
    "SubmissionStatusUpdate",
    "DateRange",
    "FilterCriteria",
    "SortSpec",
    "PageRequest",
]
