"""Value normalization shared by the projection builders."""

import re
from datetime import date, datetime
from typing import Iterable, Optional, Tuple, Union

from argus.schemas.extraction_state import BloodPressure

BLOOD_PRESSURE_PATTERN = re.compile(r"(\d{2,3})\s*/\s*(\d{2,3})")

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y", "%m-%d-%Y", "%B %d, %Y", "%b %d, %Y")


def parse_blood_pressure(
    value: Union[BloodPressure, str, None],
) -> Tuple[Optional[int], Optional[int]]:
    """Return (systolic, diastolic) from a structured pair or a "120/80" string.

    Missing, unparseable or non-positive parts come back as None, never 0.
    """
    if isinstance(value, BloodPressure):
        return _positive(value.systolic), _positive(value.diastolic)

    if isinstance(value, str):
        match = BLOOD_PRESSURE_PATTERN.search(value)
        if match:
            return _positive(int(match.group(1))), _positive(int(match.group(2)))

    return None, None


def _positive(value: Optional[int]) -> Optional[int]:
    return value if value is not None and value > 0 else None


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse the date formats models commonly return; anything else is None."""
    if not value:
        return None
    text = value.strip()

    try:
        return datetime.fromisoformat(text[:10]).date()
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def lower_all(values: Iterable[str]) -> list[str]:
    return [value.strip().lower() for value in values if value and value.strip()]


def as_token(value: str) -> str:
    """"Anxiety Disorder" -> "anxiety_disorder"."""
    return re.sub(r"[\s\-]+", "_", value.strip().lower())


def tokens(values: Iterable[str]) -> set[str]:
    return {as_token(value) for value in values if value and value.strip()}


def any_contains(texts: Iterable[str], *needles: str) -> bool:
    """True if any text contains any needle (texts are expected lowercased)."""
    return any(needle in text for text in texts for needle in needles)


def normalize_smoking_status(value: Optional[str]) -> Optional[str]:
    """Map free-text smoking status onto current / former / never / unknown."""
    if not value:
        return None
    text = value.strip().lower()
    if "never" in text or "non-smoker" in text or "nonsmoker" in text:
        return "never"
    if "former" in text or "quit" in text or "ex-" in text or "past" in text:
        return "former"
    if "current" in text or "daily" in text or "every day" in text or "some days" in text or "active" in text:
        return "current"
    return "unknown"


def normalize_choice(value: Optional[str], aliases: dict[str, str], default: Optional[str] = None) -> Optional[str]:
    """Map free text onto a fixed vocabulary through a prefix alias table.

    Aliases only match at the start of a word, so "ct" tags "CT abdomen"
    but not "Lactate".
    """
    if not value:
        return None
    text = value.strip().lower()
    for needle, canonical in aliases.items():
        if re.search(r"\b" + re.escape(needle), text):
            return canonical
    return default
