"""
Utility functions for working with models and schemas.

Provides helper functions for:
- Column value validation against the column type and its validation rules
- Normalising values to their storage representation
- Percentage arithmetic used by completion statistics
"""

import json
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List, Optional, Union

from .database import Column, ColumnType


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[+]?[\d\s()-]{7,15}$")
URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)

TRUE_VALUES = {"true", "1"}
FALSE_VALUES = {"false", "0"}


@dataclass
class ColumnValidationError:
    """A validation failure for a single column value."""
    column_id: str
    message: str
    severity: str = "error"
    column_name: Optional[str] = None


def is_empty_value(value: Any) -> bool:
    """None, blank strings, NaN and empty lists count as empty."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, float):
        return value != value  # NaN
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _parse_multi(value: Any) -> List[str]:
    """Multiselect values arrive as a list, a JSON list or a comma separated string."""
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    text = str(value).strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
            if isinstance(parsed, list):
                return [str(v) for v in parsed]
        except json.JSONDecodeError:
            pass
    return [part.strip() for part in text.split(",") if part.strip()]


def _rule(rules: dict, *names: str) -> Optional[Any]:
    for name in names:
        if rules.get(name) is not None:
            return rules[name]
    return None


def validate_column_value(column: Column, value: Any) -> Optional[ColumnValidationError]:
    """
    Validate a value against its column definition.

    Args:
        column: Column the value belongs to
        value: Raw value as entered

    Returns:
        ColumnValidationError or None if the value is valid
    """
    def error(message: str) -> ColumnValidationError:
        return ColumnValidationError(
            column_id=str(column.id),
            message=message,
            column_name=column.name,
        )

    if is_empty_value(value):
        if column.is_required:
            return error("This field is required")
        return None

    rules = column.validation or {}
    column_type = column.type

    if column_type == ColumnType.NUMBER:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return error("Enter a valid number")
        if number != number:
            return error("Enter a valid number")

        if rules.get("integer") and not number.is_integer():
            return error("Enter a whole number")

        minimum = _rule(rules, "min", "minValue")
        if minimum is not None and number < float(minimum):
            return error(f"Minimum value is {minimum}")

        maximum = _rule(rules, "max", "maxValue")
        if maximum is not None and number > float(maximum):
            return error(f"Maximum value is {maximum}")

    elif column_type in (ColumnType.TEXT, ColumnType.TEXTAREA):
        text = str(value)

        min_length = _rule(rules, "minLength")
        if min_length is not None and len(text) < int(min_length):
            return error(f"Must be at least {min_length} characters")

        max_length = _rule(rules, "maxLength")
        if max_length is not None and len(text) > int(max_length):
            return error(f"Must be at most {max_length} characters")

        pattern = _rule(rules, "pattern", "regex")
        if pattern:
            try:
                if not re.search(pattern, text):
                    return error(rules.get("patternMessage") or rules.get("patternError") or "Invalid format")
            except re.error:
                # invalid pattern in the column definition, skip the check
                pass

    elif column_type == ColumnType.DATE:
        parsed = _parse_date(value)
        if parsed is None:
            return error("Invalid date format")

        min_date = _rule(rules, "minDate")
        if min_date and (_parse_date(min_date) or parsed) > parsed:
            return error(f"Date must be on or after {min_date}")

        max_date = _rule(rules, "maxDate")
        if max_date and (_parse_date(max_date) or parsed) < parsed:
            return error(f"Date must be on or before {max_date}")

    elif column_type == ColumnType.EMAIL:
        if not EMAIL_RE.match(str(value)):
            return error("Invalid email format")

    elif column_type == ColumnType.PHONE:
        if not PHONE_RE.match(str(value)):
            return error("Invalid phone number format")

    elif column_type == ColumnType.URL:
        if not URL_RE.match(str(value)):
            return error("Invalid URL format")

    elif column_type in (ColumnType.SELECT, ColumnType.RADIO):
        allowed = column.option_values
        if allowed and str(value) not in allowed:
            return error("Select one of the available options")

    elif column_type == ColumnType.MULTISELECT:
        allowed = column.option_values
        invalid = [v for v in _parse_multi(value) if allowed and v not in allowed]
        if invalid:
            return error(f"Invalid options: {', '.join(invalid)}")

    elif column_type == ColumnType.CHECKBOX:
        if isinstance(value, bool):
            return None
        if str(value).strip().lower() not in TRUE_VALUES | FALSE_VALUES:
            return error("Invalid checkbox value")

    return None


def format_value_by_type(column: Column, value: Any) -> str:
    """Convert a validated value to the string stored in data_entries.value."""
    if is_empty_value(value):
        return ""

    if column.type == ColumnType.NUMBER:
        number = float(value)
        return str(int(number)) if number.is_integer() else str(number)

    if column.type == ColumnType.CHECKBOX:
        if isinstance(value, bool):
            return "true" if value else "false"
        return "true" if str(value).strip().lower() in TRUE_VALUES else "false"

    if column.type == ColumnType.DATE:
        parsed = _parse_date(value)
        return parsed.isoformat() if parsed else ""

    if column.type == ColumnType.MULTISELECT:
        return json.dumps(_parse_multi(value))

    return str(value)


def calculate_percentage(part: Union[int, float], total: Union[int, float]) -> int:
    """Rounded integer percentage, 0 for an empty total and never above 100."""
    if not total:
        return 0
    return min(100, int(math.floor(part / total * 100 + 0.5)))
