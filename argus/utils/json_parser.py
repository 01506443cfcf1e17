import json
from typing import Any, Dict, Optional

from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block (```json ... ```) if present."""
    cleaned_text = text.strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text[7:]
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text[3:]

    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text[:-3]

    return cleaned_text.strip()


def parse_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a JSON object from model output, handling common formatting issues.

    Handles:
    - Markdown code blocks (```json ... ```)
    - Leading prose before the object
    - Trailing text after the first complete object

    Args:
        text: The raw model output

    Returns:
        The parsed object, or None when no JSON object can be recovered.
        A top-level array or scalar is treated as a failure.
    """
    if not text:
        return None

    cleaned_text = strip_code_fences(text)

    try:
        parsed = json.loads(cleaned_text)
    except json.JSONDecodeError as e:
        LOGGER.debug(f"Initial JSON parse failed: {e}, attempting recovery")
        parsed = _decode_first_object(cleaned_text)

    if not isinstance(parsed, dict):
        return None
    return parsed


def _decode_first_object(text: str) -> Optional[Any]:
    """Decode the first complete JSON object embedded in ``text``."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
            return obj
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
    return None


def truncate_for_log(text: Optional[str], limit: int = 500) -> str:
    """Truncate raw model output before it goes into a log line."""
    if not text:
        return ""
    return text if len(text) <= limit else f"{text[:limit]}..."
