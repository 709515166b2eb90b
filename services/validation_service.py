import logging
import math
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from email_validator import validate_email, EmailNotValidError

from models.form import FieldType
from schemas.form import FieldDefinition
from services.date_service import to_utc
from services.field_registry import (
    SEQUENCE_TYPES,
    get_field_behavior,
    register_validator,
)

logger = logging.getLogger(__name__)

def is_present(value: Any, field_type: Any) -> bool:
    """
    Decide whether a raw answer counts as filled in for its field type.

    Unknown field types fall back to the text rule.
    """
    behavior = get_field_behavior(field_type) or get_field_behavior(FieldType.TEXT)
    return behavior.presence(value)

def parse_number(value: Any) -> Optional[float]:
    """Parse a numeric answer; malformed, boolean and non-finite values give None"""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number

def _format_bound(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)

def _plural(count: int) -> str:
    return "" if count == 1 else "s"

@register_validator(FieldType.EMAIL)
def _validate_email(value: Any, field: FieldDefinition) -> List[str]:
    try:
        validate_email(str(value).strip(), check_deliverability=False)
    except EmailNotValidError:
        return ["Please enter a valid email address"]
    return []

@register_validator(FieldType.TEXT, FieldType.TEXTAREA)
def _validate_text(value: Any, field: FieldDefinition) -> List[str]:
    errors = []
    length = len(str(value))

    if field.min_length is not None and length < field.min_length:
        errors.append(f"{field.label} must be at least {field.min_length} characters")

    if field.max_length is not None and length > field.max_length:
        errors.append(f"{field.label} must not exceed {field.max_length} characters")

    return errors

@register_validator(FieldType.NUMBER)
def _validate_number(value: Any, field: FieldDefinition) -> List[str]:
    number = parse_number(value)
    if number is None:
        return [f"{field.label} must be a valid number"]

    errors = []
    if field.min is not None and number < field.min:
        errors.append(f"{field.label} must be at least {_format_bound(field.min)}")

    if field.max is not None and number > field.max:
        errors.append(f"{field.label} must not exceed {_format_bound(field.max)}")

    return errors

@register_validator(FieldType.SELECT, FieldType.RADIO)
def _validate_single_choice(value: Any, field: FieldDefinition) -> List[str]:
    if field.options and value not in field.options:
        return [f"Please select a valid option for {field.label}"]
    return []

@register_validator(FieldType.CHECKBOX)
def _validate_multiple_choice(value: Any, field: FieldDefinition) -> List[str]:
    if not isinstance(value, SEQUENCE_TYPES):
        return [f"{field.label} must be a list of selections"]

    errors = []
    count = len(value)

    if field.min_selections is not None and count < field.min_selections:
        errors.append(
            f"Please select at least {field.min_selections} "
            f"option{_plural(field.min_selections)} for {field.label}"
        )

    if field.max_selections is not None and count > field.max_selections:
        errors.append(
            f"Please select no more than {field.max_selections} "
            f"option{_plural(field.max_selections)} for {field.label}"
        )

    if field.options:
        invalid = [str(option) for option in value if option not in field.options]
        if invalid:
            errors.append(f"Invalid selections in {field.label}: {', '.join(invalid)}")

    return errors

@register_validator(FieldType.RATING)
def _validate_rating(value: Any, field: FieldDefinition) -> List[str]:
    rating = parse_number(value)
    if rating is None:
        return [f"{field.label} must be a valid rating"]

    if rating < 0 or rating > field.max_rating:
        return [f"{field.label} must be between 0 and {field.max_rating}"]

    return []

@register_validator(FieldType.DATE)
def _validate_date(value: Any, field: FieldDefinition) -> List[str]:
    if to_utc(value) is None:
        return [f"{field.label} must be a valid date"]
    return []

def validate_value(value: Any, field: FieldDefinition) -> Dict[str, Any]:
    """
    Validate a single answer against its field's type-specific rules.

    Absent values are valid here; requiredness is a submission-level check.

    Returns:
        Dict with 'valid' flag and list of 'errors'
    """
    if not is_present(value, field.type):
        return {'valid': True, 'errors': []}

    behavior = get_field_behavior(field.type)
    errors = behavior.validator(value, field) if behavior else []

    return {
        'valid': len(errors) == 0,
        'errors': errors
    }

def validate_submission(data: Optional[Mapping[str, Any]], fields: Sequence[FieldDefinition]) -> Dict[str, Any]:
    """
    Validate a whole submission against a form schema.

    Missing required fields produce one combined error. Keys that the schema
    does not know about only produce a warning.

    Args:
        data: Mapping of field id to raw answer
        fields: Form field definitions in schema order

    Returns:
        Dict with 'valid', 'errors' and 'warnings'
    """
    if data is None:
        return {
            'valid': False,
            'errors': ['Submission data is missing'],
            'warnings': []
        }

    errors = []
    warnings = []

    missing = [
        field.label for field in fields
        if field.required and not is_present(data.get(field.id), field.type)
    ]
    if missing:
        errors.append(f"Missing required fields: {', '.join(missing)}")

    for field in fields:
        result = validate_value(data.get(field.id), field)
        errors.extend(result['errors'])

    known_ids = {field.id for field in fields}
    unknown = [key for key in data.keys() if key not in known_ids]
    if unknown:
        warnings.append(f"Unknown fields in submission: {', '.join(unknown)}")
        logger.warning(f"Submission contains fields not in schema: {unknown}")

    return {
        'valid': len(errors) == 0,
        'errors': errors,
        'warnings': warnings
    }

def validate_form_data(data: Mapping[str, Any], fields: Sequence[FieldDefinition]) -> Dict[str, Any]:
    """Per-field validation map, including 'is required' messages, for form renderers"""
    errors: Dict[str, List[str]] = {}

    for field in fields:
        value = data.get(field.id)
        if field.required and not is_present(value, field.type):
            errors[field.id] = [f"{field.label} is required"]
            continue

        result = validate_value(value, field)
        if result['errors']:
            errors[field.id] = result['errors']

    return {
        'valid': len(errors) == 0,
        'errors': errors
    }
