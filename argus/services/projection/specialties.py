"""Fixed referral specialty vocabulary."""

import re
from typing import Optional

# canonical specialty -> aliases matched as whole words, case-insensitively
SPECIALTY_VOCABULARY: dict[str, tuple[str, ...]] = {
    "smoking_cessation": ("smoking cessation", "tobacco cessation"),
    "pulmonology": ("pulmonology", "pulmonary", "pulmonologist", "lung clinic"),
    "cardiology": ("cardiology", "cardiologist", "cardiac clinic"),
    "gastroenterology": ("gastroenterology", "gastroenterologist", "gi clinic", "gi"),
    "dermatology": ("dermatology", "dermatologist"),
    "neurology": ("neurology", "neurologist"),
    "orthopedics": ("orthopedics", "orthopaedics", "orthopedic", "orthopaedic", "ortho"),
    "oncology": ("oncology", "oncologist"),
    "hematology": ("hematology", "hematologist"),
    "endocrinology": ("endocrinology", "endocrinologist"),
    "nephrology": ("nephrology", "nephrologist"),
    "urology": ("urology", "urologist"),
    "rheumatology": ("rheumatology", "rheumatologist"),
    "ophthalmology": ("ophthalmology", "ophthalmologist", "eye clinic"),
    "otolaryngology": ("otolaryngology", "ent"),
    "psychiatry": ("psychiatry", "psychiatrist"),
    "physical_therapy": ("physical therapy", "physiotherapy"),
    "behavioral_health": ("behavioral health", "behavioural health", "counseling", "therapist"),
    "podiatry": ("podiatry", "podiatrist"),
    "obstetrics_gynecology": ("obstetrics", "gynecology", "ob/gyn", "obgyn"),
    "allergy_immunology": ("allergy", "allergist", "immunology"),
    "infectious_disease": ("infectious disease",),
    "sleep_medicine": ("sleep medicine", "sleep study", "sleep clinic"),
}

_PATTERNS: list[tuple[str, re.Pattern]] = [
    (specialty, re.compile(r"(?<![a-z])" + re.escape(alias) + r"(?![a-z])", re.IGNORECASE))
    for specialty, aliases in SPECIALTY_VOCABULARY.items()
    for alias in aliases
]


def match_specialty(text: Optional[str]) -> Optional[str]:
    """Return the canonical specialty mentioned in ``text``, if any.

    The first vocabulary entry that matches wins, so the table order decides
    between specialties mentioned together.
    """
    if not text:
        return None
    for specialty, pattern in _PATTERNS:
        if pattern.search(text):
            return specialty
    return None
