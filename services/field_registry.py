from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from models.form import FieldType

# validator(value, field) -> list of error messages
Validator = Callable[[Any, Any], List[str]]
# aggregator(present_values, field) -> type-specific statistics
Aggregator = Callable[[List[Any], Any], Dict[str, Any]]

SEQUENCE_TYPES = (list, tuple, set)

def _sequence_present(value: Any) -> bool:
    return isinstance(value, SEQUENCE_TYPES) and len(value) > 0

def _file_present(value: Any) -> bool:
    if isinstance(value, SEQUENCE_TYPES):
        return len(value) > 0
    return bool(value)

def _numeric_present(value: Any) -> bool:
    # Zero is a real answer
    return value is not None and value != ''

def _text_present(value: Any) -> bool:
    return value is not None and str(value).strip() != ''

def _no_validation(value: Any, field: Any) -> List[str]:
    return []

def _no_aggregation(values: List[Any], field: Any) -> Dict[str, Any]:
    return {}

@dataclass
class FieldBehavior:
    """Per-type behavior: how presence is decided, values validated and answers aggregated"""
    field_type: FieldType
    presence: Callable[[Any], bool]
    validator: Validator = _no_validation
    aggregator: Aggregator = _no_aggregation

FIELD_BEHAVIORS: Dict[FieldType, FieldBehavior] = {
    FieldType.TEXT: FieldBehavior(FieldType.TEXT, _text_present),
    FieldType.EMAIL: FieldBehavior(FieldType.EMAIL, _text_present),
    FieldType.TEXTAREA: FieldBehavior(FieldType.TEXTAREA, _text_present),
    FieldType.SELECT: FieldBehavior(FieldType.SELECT, _text_present),
    FieldType.RADIO: FieldBehavior(FieldType.RADIO, _text_present),
    FieldType.CHECKBOX: FieldBehavior(FieldType.CHECKBOX, _sequence_present),
    FieldType.NUMBER: FieldBehavior(FieldType.NUMBER, _numeric_present),
    FieldType.DATE: FieldBehavior(FieldType.DATE, _text_present),
    FieldType.FILE: FieldBehavior(FieldType.FILE, _file_present),
    FieldType.RATING: FieldBehavior(FieldType.RATING, _numeric_present),
}

def get_field_behavior(field_type: Union[FieldType, str, None]) -> Optional[FieldBehavior]:
    """Look up the behavior record for a field type tag; unknown tags give None"""
    try:
        return FIELD_BEHAVIORS[FieldType(field_type)]
    except ValueError:
        return None

def register_validator(*field_types: FieldType) -> Callable[[Validator], Validator]:
    def decorator(func: Validator) -> Validator:
        for field_type in field_types:
            FIELD_BEHAVIORS[field_type].validator = func
        return func
    return decorator

def register_aggregator(*field_types: FieldType) -> Callable[[Aggregator], Aggregator]:
    def decorator(func: Aggregator) -> Aggregator:
        for field_type in field_types:
            FIELD_BEHAVIORS[field_type].aggregator = func
        return func
    return decorator
