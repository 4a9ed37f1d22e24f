"""
Input parsing shared by the services
"""

from typing import Any, Optional

from utils.errors import ValidationError

# largest value a 64-bit INTEGER column holds
MAX_ID = 2 ** 63 - 1


def numeric_id(value: Any) -> Optional[int]:
    """int for an ASCII digit string (or int) within the INTEGER range, else None"""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 <= value <= MAX_ID else None
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()):
        return None
    number = int(text)
    return number if number <= MAX_ID else None


def parse_id(value: Any, field_name: str = "id", required: bool = True) -> Optional[int]:
    """Turn a JSON/query id ("12", 12) into an int"""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field_name} is required")
        return None
    number = numeric_id(value)
    if number is None:
        raise ValidationError(f"Invalid {field_name}")
    return number


def parse_amount(value: Any) -> float:
    """Numeric amount; missing or malformed values count as 0"""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if amount != amount:  # NaN
        return 0.0
    return amount
