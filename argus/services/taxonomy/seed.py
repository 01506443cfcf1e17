"""Seeded taxonomy: fixed categories plus the approved keywords rule tagging uses."""

from typing import NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession

from argus.core.constants import TAXONOMY_CATEGORIES
from argus.repositories.taxonomy_repository import STATUS_APPROVED, TaxonomyRepository
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)


class SeedKeyword(NamedTuple):
    category_id: str
    slug: str
    label: str
    synonyms: tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return f"{self.category_id}.{self.slug}"


RULE_KEYWORDS: tuple[SeedKeyword, ...] = (
    SeedKeyword("vitals", "any_mention", "Vitals documented"),
    SeedKeyword("vitals", "hypoxia", "Hypoxia", ("low oxygen saturation", "desaturation", "low spo2")),
    SeedKeyword("vitals", "hypotension", "Hypotension", ("low blood pressure",)),
    SeedKeyword("vitals", "tachycardia", "Tachycardia", ("rapid heart rate", "elevated heart rate")),
    SeedKeyword("vitals", "fever", "Fever", ("febrile", "pyrexia", "elevated temperature")),
    SeedKeyword("smoking", "any_mention", "Smoking history documented", ("tobacco use",)),
    SeedKeyword("smoking", "current_smoker", "Current smoker", ("active smoker", "smokes daily")),
    SeedKeyword("smoking", "former_smoker", "Former smoker", ("quit smoking", "ex-smoker")),
    SeedKeyword("smoking", "never_smoker", "Never smoker", ("non-smoker", "nonsmoker")),
    SeedKeyword("smoking", "cessation_counseling", "Cessation counseling", ("quit counseling", "smoking cessation")),
    SeedKeyword("mental_health", "any_mention", "Mental health content"),
    SeedKeyword("mental_health", "anxiety", "Anxiety", ("anxious", "generalized anxiety")),
    SeedKeyword("mental_health", "depression", "Depression", ("depressed mood", "major depressive disorder")),
    SeedKeyword("mental_health", "substance_use_disorder", "Substance use disorder", ("substance abuse",)),
    SeedKeyword("sexual_history", "any_mention", "Sexual history documented"),
    SeedKeyword("sexual_history", "risky_behavior", "Risky sexual behavior", ("high-risk sexual behavior",)),
    SeedKeyword("referrals", "any_mention", "Referral documented"),
    SeedKeyword("referrals", "patient_requested", "Patient-requested referral"),
    SeedKeyword("referrals", "denied", "Referral denied", ("referral denial",)),
    SeedKeyword("results", "any_mention", "Result documented"),
    SeedKeyword("results", "lab", "Laboratory result", ("lab result", "bloodwork")),
    SeedKeyword("results", "imaging", "Imaging result", ("radiology", "x-ray", "ct scan", "mri")),
    SeedKeyword("results", "abnormal", "Abnormal result", ("abnormal finding",)),
    SeedKeyword("appointments", "any_mention", "Appointment mentioned"),
    SeedKeyword("appointments", "referral_appointment", "Referral appointment"),
    SeedKeyword("appointments", "diagnostic_imaging_appointment", "Diagnostic imaging appointment"),
    SeedKeyword("appointments", "scheduling_request", "Scheduling request", ("reschedule", "book appointment")),
    SeedKeyword("communication", "any_mention", "Communication documented"),
    SeedKeyword("communication", "patient_initiated", "Patient-initiated communication"),
    SeedKeyword("communication", "provider_initiated", "Provider-initiated communication"),
)


async def seed_taxonomy(session: AsyncSession) -> None:
    """Insert the fixed categories and rule keywords; existing rows are left alone."""
    repository = TaxonomyRepository(session)
    await repository.seed_categories(TAXONOMY_CATEGORIES)
    created = 0
    for keyword in RULE_KEYWORDS:
        inserted = await repository.insert_keyword_if_absent(
            keyword_id=keyword.id,
            category_id=keyword.category_id,
            label=keyword.label,
            synonyms=keyword.synonyms,
            status=STATUS_APPROVED,
        )
        created += int(inserted)
    await session.commit()
    LOGGER.info(
        "Taxonomy seeded",
        extra={"categories": len(TAXONOMY_CATEGORIES), "keywords_created": created},
    )
