"""Rule-based taxonomy tagging.

``derive_rule_tags`` is a pure function of the projection rows. Thresholds
are fixed clinical cut-offs and deliberately not configurable.
``RuleTaxonomyProjector`` writes the tags for the categories it recomputes,
removing that category's earlier rule terms first.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from argus.core.constants import RULE_CATEGORIES
from argus.repositories.taxonomy_repository import TaxonomyRepository
from argus.services.projection.builders import effective_smoking_status, has_communication
from argus.services.projection.projection_engine import ProjectionSet
from argus.utils.logging import get_logger

LOGGER = get_logger(__name__)

SOURCE_RULE = "rule"

HYPOXIA_SPO2_BELOW = 90
HYPOTENSION_SYSTOLIC_BELOW = 90
HYPOTENSION_DIASTOLIC_BELOW = 60
TACHYCARDIA_HEART_RATE_AT_LEAST = 120
FEVER_TEMPERATURE_F_AT_LEAST = 100.4

SCHEDULING_REASON_CATEGORIES = {"appointment", "scheduling"}
OPEN_RESULT_STATUSES = {"ordered", "pending"}


@dataclass(frozen=True)
class RuleTag:
    category_id: str
    keyword_id: str
    evidence: str


def _num(value: float) -> str:
    return f"{value:g}"


def _vitals_tags(row: Dict[str, Any]) -> List[RuleTag]:
    tags: List[RuleTag] = []
    if not row.get("has_vitals"):
        return tags

    recorded = [
        f"{key}={_num(row[key])}"
        for key in ("spo2", "heart_rate", "respiratory_rate", "temperature_f", "systolic_bp", "diastolic_bp", "bmi")
        if row.get(key) is not None
    ]
    tags.append(RuleTag("vitals", "vitals.any_mention", "Vitals recorded: " + ", ".join(recorded)))

    spo2 = row.get("spo2")
    if spo2 is not None and spo2 < HYPOXIA_SPO2_BELOW:
        tags.append(RuleTag("vitals", "vitals.hypoxia", f"SpO2 {_num(spo2)} < {HYPOXIA_SPO2_BELOW}"))

    systolic, diastolic = row.get("systolic_bp"), row.get("diastolic_bp")
    reasons = []
    if systolic is not None and systolic < HYPOTENSION_SYSTOLIC_BELOW:
        reasons.append(f"systolic {systolic} < {HYPOTENSION_SYSTOLIC_BELOW}")
    if diastolic is not None and diastolic < HYPOTENSION_DIASTOLIC_BELOW:
        reasons.append(f"diastolic {diastolic} < {HYPOTENSION_DIASTOLIC_BELOW}")
    if reasons:
        tags.append(RuleTag("vitals", "vitals.hypotension", "Blood pressure " + " and ".join(reasons)))

    heart_rate = row.get("heart_rate")
    if heart_rate is not None and heart_rate >= TACHYCARDIA_HEART_RATE_AT_LEAST:
        tags.append(
            RuleTag("vitals", "vitals.tachycardia", f"Heart rate {_num(heart_rate)} >= {TACHYCARDIA_HEART_RATE_AT_LEAST}")
        )

    temperature = row.get("temperature_f")
    if temperature is not None and temperature >= FEVER_TEMPERATURE_F_AT_LEAST:
        tags.append(
            RuleTag("vitals", "vitals.fever", f"Temperature {_num(temperature)}F >= {FEVER_TEMPERATURE_F_AT_LEAST}F")
        )
    return tags


_STATUS_KEYWORDS = {
    "current": "smoking.current_smoker",
    "former": "smoking.former_smoker",
    "never": "smoking.never_smoker",
}

_COUNSELING_FLAGS = (
    "offered_nicotine_replacement",
    "offered_varenicline",
    "offered_bupropion",
    "offered_therapy_counseling",
    "offered_quitline",
    "offered_support_group",
    "referred_cessation_program",
    "referred_behavioral_health",
    "follow_up_plans_documented",
)


def _smoking_tags(row: Dict[str, Any]) -> List[RuleTag]:
    tags: List[RuleTag] = []
    status = effective_smoking_status(row)
    if row.get("has_smoking_history") or status:
        tags.append(RuleTag("smoking", "smoking.any_mention", f"Smoking history documented (status: {status or 'unknown'})"))
    if status in _STATUS_KEYWORDS:
        tags.append(RuleTag("smoking", _STATUS_KEYWORDS[status], f"Smoking status: {status}"))
    if row.get("has_cessation_counseling"):
        offered = [flag for flag in _COUNSELING_FLAGS if row.get(flag)]
        tags.append(
            RuleTag("smoking", "smoking.cessation_counseling", "Cessation counseling: " + ", ".join(offered))
        )
    return tags


def _mental_health_tags(row: Dict[str, Any]) -> List[RuleTag]:
    tags: List[RuleTag] = []
    if not row.get("has_mental_health_content"):
        return tags
    present = [
        key for key, value in row.items()
        if value is True and key != "dx_any" and key.startswith(("affect_", "behavior_", "symptom_", "dx_"))
    ]
    tags.append(RuleTag("mental_health", "mental_health.any_mention", "Mental health findings: " + ", ".join(present)))

    for keyword, flags in (
        ("mental_health.anxiety", ("symptom_anxiety", "dx_anxiety_disorder")),
        ("mental_health.depression", ("symptom_depression", "dx_depressive_disorder")),
        ("mental_health.substance_use_disorder", ("dx_substance_use_disorder",)),
    ):
        hits = [flag for flag in flags if row.get(flag)]
        if hits:
            tags.append(RuleTag("mental_health", keyword, "Flagged by " + ", ".join(hits)))
    return tags


_RISK_SIGNALS = (
    "partner_sti_positive",
    "new_partner",
    "multiple_partners",
    "unprotected_sex",
    "sti_history_qualifying",
    "transactional_sex",
)


def _sexual_history_tags(row: Dict[str, Any]) -> List[RuleTag]:
    tags: List[RuleTag] = []
    if row.get("has_sexual_history_content"):
        tags.append(RuleTag("sexual_history", "sexual_history.any_mention", "Sexual history documented"))
    if row.get("has_risky_sexual_behavior"):
        signals = [signal for signal in _RISK_SIGNALS if row.get(signal)]
        partner_count = row.get("partner_count")
        if partner_count is not None and partner_count > 1:
            signals.append(f"partner_count={partner_count}")
        tags.append(RuleTag("sexual_history", "sexual_history.risky_behavior", "Risk signals: " + ", ".join(signals)))
    return tags


def _is_denied(referral: Dict[str, Any]) -> bool:
    return bool(referral.get("denial_type") or referral.get("denial_reason_text"))


def _referral_label(referral: Dict[str, Any]) -> str:
    return referral.get("specialty") or referral.get("reason") or "unspecified"


def _referral_tags(rows: Sequence[Dict[str, Any]]) -> List[RuleTag]:
    tags: List[RuleTag] = []
    if not rows:
        return tags
    tags.append(RuleTag("referrals", "referrals.any_mention", "Referrals: " + ", ".join(_referral_label(r) for r in rows)))
    requested = [r for r in rows if r.get("patient_requested")]
    if requested:
        tags.append(RuleTag("referrals", "referrals.patient_requested", "Patient requested: " + _referral_label(requested[0])))
    denied = [r for r in rows if _is_denied(r)]
    if denied:
        first = denied[0]
        tags.append(
            RuleTag("referrals", "referrals.denied", f"Denied ({first.get('denial_type') or 'unspecified'}): {_referral_label(first)}")
        )
    return tags


def _result_tags(rows: Sequence[Dict[str, Any]]) -> List[RuleTag]:
    tags: List[RuleTag] = []
    if not rows:
        return tags
    names = [r.get("test_name") or r["result_type"] for r in rows]
    tags.append(RuleTag("results", "results.any_mention", "Results: " + ", ".join(names)))
    for result_type in ("lab", "imaging"):
        matching = [r for r in rows if r["result_type"] == result_type]
        if matching:
            tags.append(
                RuleTag("results", f"results.{result_type}", f"{result_type}: " + ", ".join(r.get("test_name") or result_type for r in matching))
            )
    abnormal = [r for r in rows if r.get("is_abnormal")]
    if abnormal:
        tags.append(
            RuleTag("results", "results.abnormal", "Abnormal: " + ", ".join(r.get("test_name") or r["result_type"] for r in abnormal))
        )
    return tags


def _appointment_tags(projection: ProjectionSet) -> List[RuleTag]:
    tags: List[RuleTag] = []
    referrals = [r for r in projection.referrals if not _is_denied(r) and (r.get("specialty") or r.get("reason"))]
    if referrals:
        tags.append(
            RuleTag("appointments", "appointments.referral_appointment", "Referral to " + _referral_label(referrals[0]))
        )
    imaging = [
        r for r in projection.results
        if r["result_type"] == "imaging" and r.get("status") in OPEN_RESULT_STATUSES
    ]
    if imaging:
        first = imaging[0]
        tags.append(
            RuleTag(
                "appointments",
                "appointments.diagnostic_imaging_appointment",
                f"Imaging {first['status']}: {first.get('test_name') or 'imaging study'}",
            )
        )
    reason_category = projection.communication.get("reason_category")
    if reason_category in SCHEDULING_REASON_CATEGORIES:
        tags.append(
            RuleTag("appointments", "appointments.scheduling_request", f"Communication reason category: {reason_category}")
        )
    if tags:
        tags.insert(0, RuleTag("appointments", "appointments.any_mention", "; ".join(tag.evidence for tag in tags)))
    return tags


def _communication_tags(row: Dict[str, Any]) -> List[RuleTag]:
    tags: List[RuleTag] = []
    if not has_communication(row):
        return tags
    initiated_by = row.get("initiated_by") or "unknown"
    tags.append(RuleTag("communication", "communication.any_mention", f"Communication initiated by {initiated_by}"))
    if row.get("is_patient_initiated"):
        tags.append(RuleTag("communication", "communication.patient_initiated", f"Initiated by {initiated_by}"))
    if row.get("is_provider_initiated"):
        tags.append(RuleTag("communication", "communication.provider_initiated", f"Initiated by {initiated_by}"))
    return tags


def derive_rule_tags(projection: ProjectionSet, categories: Iterable[str] = RULE_CATEGORIES) -> List[RuleTag]:
    """Evaluate every rule category in ``categories`` against ``projection``."""
    evaluators = {
        "vitals": lambda: _vitals_tags(projection.vitals),
        "smoking": lambda: _smoking_tags(projection.smoking),
        "mental_health": lambda: _mental_health_tags(projection.mental_health),
        "sexual_history": lambda: _sexual_history_tags(projection.sexual_history),
        "referrals": lambda: _referral_tags(projection.referrals),
        "results": lambda: _result_tags(projection.results),
        "appointments": lambda: _appointment_tags(projection),
        "communication": lambda: _communication_tags(projection.communication),
    }
    tags: List[RuleTag] = []
    for category in categories:
        tags.extend(evaluators[category]())
    return tags


class RuleTaxonomyProjector:
    async def apply(
        self,
        session: AsyncSession,
        document_id: UUID,
        projection: ProjectionSet,
        categories: Sequence[str] = RULE_CATEGORIES,
    ) -> List[RuleTag]:
        """Replace the document's rule terms for ``categories``. The caller commits."""
        repository = TaxonomyRepository(session)
        tags = derive_rule_tags(projection, categories)

        await repository.delete_terms(document_id, categories, SOURCE_RULE)
        for tag in tags:
            await repository.claim_term(document_id, tag.category_id, tag.keyword_id, None, SOURCE_RULE)
            await repository.add_evidence(document_id, tag.category_id, tag.keyword_id, None, SOURCE_RULE, tag.evidence)

        LOGGER.info(
            "Rule taxonomy applied",
            extra={
                "document_id": str(document_id),
                "stage": "rule_taxonomy",
                "categories": list(categories),
                "keywords": [tag.keyword_id for tag in tags],
            },
        )
        return tags
