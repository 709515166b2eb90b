from typing import Optional, Dict, Any, List, Union, Literal
from datetime import datetime
from pydantic import BaseModel, Field, field_validator, model_validator

from services.date_service import parse_datetime

class DateRange(BaseModel):
    type: str = "custom"
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _parse_bound(cls, value: Any) -> Optional[datetime]:
        if value is None or value == "":
            return None
        return parse_datetime(value)

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start and self.end and self.start > self.end:
            raise ValueError("Date range start must not be after its end")
        return self

class FilterCriteria(BaseModel):
    search_term: str = ""
    status: Union[str, List[str]] = "all"
    date_range: Optional[DateRange] = None
    field_filters: Dict[str, Any] = {}

class SortSpec(BaseModel):
    field: str = "submitted_at"
    order: Literal["asc", "desc"] = "desc"

class PageRequest(BaseModel):
    current_page: int = Field(1, ge=1)
    page_size: int = Field(10, ge=1)
