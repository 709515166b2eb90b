from typing import Optional, Dict, Any, List
from datetime import datetime
from pydantic import BaseModel
from models.form import SubmissionStatus

class Submission(BaseModel):
    """One response to a form. The data layer only ever reads these."""
    id: str
    form_id: str
    data: Dict[str, Any] = {}
    submitted_at: Optional[datetime] = None
    status: Optional[str] = None
    flags: List[str] = []
    submitted_by: Optional[str] = None
    user_agent: Optional[str] = None

    class Config:
        from_attributes = True
        frozen = True

class SubmissionCreate(BaseModel):
    data: Dict[str, Any]

class SubmissionStatusUpdate(BaseModel):
    status: SubmissionStatus
