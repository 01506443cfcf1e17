"""Concept ID generation for taxonomy keywords and subkeywords.

IDs are namespaced by their parent: ``<category>.<slug>`` for keywords and
``<keyword_id>.<slug>`` for subkeywords. Two labels that slugify to the same
ID name the same concept: the first one stored wins, later proposals resolve
to it as a match, and stored rows are never rewritten. A label with no
letters or digits has no ID and is rejected.
"""

import re
from typing import Optional

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(label: Optional[str]) -> str:
    """Lowercase and collapse punctuation: "Tachycardia (HR > 120)" -> "tachycardia_hr_120"."""
    if not label:
        return ""
    return _NON_ALNUM.sub("_", label.strip().lower()).strip("_")


def keyword_id(category_id: str, label: Optional[str]) -> Optional[str]:
    slug = slugify(label)
    return f"{category_id}.{slug}" if slug else None


def subkeyword_id(parent_keyword_id: str, label: Optional[str]) -> Optional[str]:
    slug = slugify(label)
    return f"{parent_keyword_id}.{slug}" if slug else None

