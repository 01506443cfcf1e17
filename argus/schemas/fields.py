"""Lenient field types for model-produced payloads.

Model output is validated field by field: a value of the wrong type is dropped
to ``None`` (or an empty list) instead of failing the whole payload, and
numbers are never coerced from strings.
"""

import math
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator


def finite_number_or_none(value: Any) -> Optional[float]:
    """Return ``value`` as a float when it is a finite real number, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def whole_number_or_none(value: Any) -> Optional[int]:
    number = finite_number_or_none(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def bool_or_none(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def text_or_none(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def text_list(value: Any) -> list[str]:
    """Keep the non-empty strings of a list; a lone string becomes a one-item list."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    items = []
    for item in value:
        text = text_or_none(item)
        if text is not None:
            items.append(text)
    return items


def object_list(value: Any) -> list[dict]:
    """Keep only the mapping items of a list."""
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, dict)]


def object_or_empty(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


FiniteFloat = Annotated[Optional[float], BeforeValidator(finite_number_or_none)]
WholeNumber = Annotated[Optional[int], BeforeValidator(whole_number_or_none)]
LenientBool = Annotated[Optional[bool], BeforeValidator(bool_or_none)]
LenientText = Annotated[Optional[str], BeforeValidator(text_or_none)]
TextList = Annotated[list[str], BeforeValidator(text_list)]
