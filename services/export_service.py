import io
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd
from pydantic import ValidationError

from models.form import FieldType
from schemas.form import FieldDefinition
from schemas.submission import Submission
from services.date_service import to_utc, utc_now
from services.submission_service import status_of, submitted_at_of, submitter_of
from services.validation_service import parse_number

logger = logging.getLogger(__name__)

NOT_PROVIDED = "Not provided"
METADATA_COLUMNS = ['Submission ID', 'Submitted At', 'Status', 'Submitted By']

class ExportError(Exception):
    """Raised when submissions cannot be exported or loaded back"""
    pass

def _file_name(value: Any) -> str:
    if isinstance(value, dict):
        return value.get('name') or 'File'
    return str(value)

def format_field_value(value: Any, field_type: Union[FieldType, str, None] = None) -> str:
    """
    Render an answer as human-readable text for exports.

    Args:
        value: Raw answer as stored in the submission
        field_type: Type of the field the answer belongs to

    Returns:
        Display string; missing answers become 'Not provided'
    """
    if value is None:
        return NOT_PROVIDED

    try:
        field_type = FieldType(field_type) if field_type is not None else None
    except ValueError:
        field_type = None

    if field_type == FieldType.CHECKBOX:
        if isinstance(value, (list, tuple, set)):
            return ', '.join(str(item) for item in value) if value else 'None selected'
        return str(value)

    if field_type == FieldType.FILE:
        if isinstance(value, (list, tuple)):
            return ', '.join(_file_name(item) for item in value)
        return _file_name(value) if isinstance(value, dict) else 'File uploaded'

    if field_type == FieldType.DATE:
        parsed = to_utc(value)
        return parsed.date().isoformat() if parsed else str(value)

    if field_type == FieldType.RATING:
        rating = parse_number(value)
        if rating is None:
            return 'No rating'
        return f"{int(rating) if rating.is_integer() else rating} stars"

    if field_type == FieldType.NUMBER:
        number = parse_number(value)
        if number is None:
            return str(value)
        return f"{int(number):,}" if number.is_integer() else f"{number:,}"

    if field_type == FieldType.EMAIL:
        return str(value).lower() if value else NOT_PROVIDED

    return str(value)

def column_label(field: FieldDefinition) -> str:
    """Column header for a field: label, type hint for non-text fields, '*' when required"""
    label = field.label or field.id
    if field.type != FieldType.TEXT:
        label += f" ({field.type.value})"
    if field.required:
        label += " *"
    return label

def submissions_to_dataframe(
    submissions: Sequence[Submission],
    fields: Sequence[FieldDefinition],
    include_metadata: bool = True
) -> pd.DataFrame:
    """One row per submission, metadata columns first then one column per field"""
    rows = []
    for submission in submissions:
        row: Dict[str, Any] = {}
        if include_metadata:
            submitted_at = submitted_at_of(submission)
            row['Submission ID'] = submission.id or ''
            row['Submitted At'] = submitted_at.isoformat() if submitted_at else ''
            row['Status'] = status_of(submission)
            row['Submitted By'] = submitter_of(submission)

        data = submission.data or {}
        for field in fields:
            row[column_label(field)] = format_field_value(data.get(field.id), field.type)
        rows.append(row)

    columns = (METADATA_COLUMNS if include_metadata else []) + [column_label(f) for f in fields]
    return pd.DataFrame(rows, columns=columns)

def export_submissions_csv(
    submissions: Sequence[Submission],
    fields: Sequence[FieldDefinition],
    delimiter: str = ',',
    include_metadata: bool = True
) -> str:
    if not submissions:
        return ''

    df = submissions_to_dataframe(submissions, fields, include_metadata)
    buffer = io.StringIO()
    df.to_csv(buffer, index=False, sep=delimiter, lineterminator='\n')
    logger.info(f"Exported {len(df)} submissions to CSV")
    return buffer.getvalue()

def export_submissions_json(
    submissions: Sequence[Submission],
    form_title: Optional[str] = None,
    exported_at: Optional[datetime] = None
) -> str:
    payload = {
        'form_title': form_title,
        'exported_at': (exported_at or utc_now()).isoformat(),
        'total': len(submissions),
        'submissions': [submission.model_dump(mode='json') for submission in submissions]
    }
    return json.dumps(payload, indent=2)

def load_submissions_json(content: Union[str, bytes]) -> List[Submission]:
    """
    Read submissions back from a JSON export (or a bare list of submissions).

    Raises:
        ExportError: if the content is not a valid submission export
    """
    try:
        payload = json.loads(content)
    except ValueError as e:
        raise ExportError(f"Invalid JSON export: {str(e)}")

    records = payload.get('submissions') if isinstance(payload, dict) else payload
    if not isinstance(records, list):
        raise ExportError("JSON export does not contain a list of submissions")

    try:
        return [Submission.model_validate(record) for record in records]
    except ValidationError as e:
        raise ExportError(f"Invalid submission in export: {str(e)}")

def export_filename(form_title: Optional[str], extension: str, now: Optional[datetime] = None) -> str:
    """Safe download filename such as 'contact-form-submissions-2024-01-31.csv'"""
    slug = re.sub(r'[^a-z0-9]+', '-', (form_title or 'form').lower()).strip('-') or 'form'
    date = (now or utc_now()).date().isoformat()
    return f"{slug}-submissions-{date}.{extension}"
