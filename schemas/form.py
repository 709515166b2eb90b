from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel
from models.form import FieldType, FormStatus

# Field schemas
class FieldDefinition(BaseModel):
    """Read-only definition of a single form field"""
    id: str
    type: FieldType
    label: str
    required: bool = False
    options: List[str] = []
    # Number/date bounds
    min: Optional[float] = None
    max: Optional[float] = None
    # Text length bounds
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    # Checkbox selection bounds
    min_selections: Optional[int] = None
    max_selections: Optional[int] = None
    max_rating: int = 5

    class Config:
        frozen = True

# Form schemas
class FormBase(BaseModel):
    title: str
    description: Optional[str] = None
    fields: List[FieldDefinition] = []

class FormCreate(FormBase):
    status: FormStatus = FormStatus.DRAFT

class FormUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    fields: Optional[List[FieldDefinition]] = None
    status: Optional[FormStatus] = None

class FormResponse(FormBase):
    id: str
    status: FormStatus
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

def get_field(fields: List[FieldDefinition], field_id: str) -> Optional[FieldDefinition]:
    """Look up a field definition by id"""
    for field in fields:
        if field.id == field_id:
            return field
    return None
