"""Pure projection builders.

Each builder turns a :class:`DocumentExtractionState` into column values for
one projection table. The module payload wins when present; otherwise the
builder falls back to heuristics over the universal metadata. Builders never
touch the database, so the same state always yields the same rows.
"""

import re
from datetime import date
from typing import Any, Optional

from argus.core.constants import ModuleName
from argus.schemas.extraction_state import (
    CommunicationModulePayload,
    DocumentExtractionState,
    MentalHealthModulePayload,
    ReferralModulePayload,
    ResultsModulePayload,
    SexualHealthModulePayload,
    SmokingModulePayload,
    UniversalMetadata,
    VitalsModulePayload,
)
from argus.services.projection.normalizers import (
    any_contains,
    lower_all,
    normalize_choice,
    normalize_smoking_status,
    parse_blood_pressure,
    parse_date,
    tokens,
)
from argus.services.projection.specialties import match_specialty

SOURCE_MODULE = "module"
SOURCE_FALLBACK = "fallback"

SPO2_LOW_THRESHOLD = 90

SMOKING_FALLBACK_TERMS = ("smoking", "smoker", "tobacco", "cigarette", "cigar", "nicotine")

# Short abbreviations such as "sti" would match inside unrelated words, so
# the fallback matches whole words only.
SEXUAL_HISTORY_PATTERN = re.compile(
    r"\b(sexual\w*|stis?|stds?|hiv|chlamydia|gonorrh\w*|syphilis|herpes|hpv|condoms?|partners?|contracept\w*|trichomon\w*)\b",
    re.IGNORECASE,
)
SCREENING_PATTERN = re.compile(r"\b(screen\w*|prep)\b", re.IGNORECASE)

PATIENT_INITIATORS = {"patient", "caregiver", "family", "guardian", "parent"}
PROVIDER_INITIATORS = {"provider", "clinic", "nurse", "physician", "doctor", "staff", "office", "care team"}

RESULT_TYPE_ALIASES = {
    "lab": "lab",
    "blood": "lab",
    "urine": "lab",
    "patholog": "pathology",
    "biopsy": "pathology",
    "imag": "imaging",
    "radiolog": "imaging",
    "x-ray": "imaging",
    "xray": "imaging",
    "ct": "imaging",
    "mri": "imaging",
    "ultrasound": "imaging",
}
RESULT_STATUS_ALIASES = {
    "order": "ordered",
    "schedul": "ordered",
    "pending": "pending",
    "final": "final",
    "complete": "final",
    "result": "final",
}


def _flag(value: Optional[bool]) -> bool:
    return value is True


def _universal(state: DocumentExtractionState) -> UniversalMetadata:
    return state.universal or UniversalMetadata()


def _universal_texts(state: DocumentExtractionState, include_keywords: bool = True) -> list[str]:
    universal = _universal(state)
    texts = [
        *universal.conditions_discussed,
        *universal.entities_extracted.symptoms,
        *universal.entities_extracted.conditions,
    ]
    if include_keywords:
        texts.extend(universal.keywords)
    return lower_all(texts)


def _diagnosis_descriptions(state: DocumentExtractionState) -> list[str]:
    return lower_all(d.description for d in _universal(state).diagnoses if d.description)


# ---------------------------------------------------------------------------
# Vitals
# ---------------------------------------------------------------------------


def build_vitals(state: DocumentExtractionState, encounter_date: Optional[date]) -> dict[str, Any]:
    payload = state.module(ModuleName.VITALS.value)
    if isinstance(payload, VitalsModulePayload):
        vitals = payload.vitals
        source = SOURCE_MODULE
        values = {
            "spo2": vitals.spo2,
            "heart_rate": vitals.heart_rate,
            "respiratory_rate": vitals.respiratory_rate,
            "temperature_f": vitals.temperature_f,
            "weight_pounds": vitals.weight_pounds,
            "height_inches": vitals.height_inches,
            "bmi": vitals.bmi,
        }
        blood_pressure = vitals.blood_pressure
        oxygen_device = vitals.oxygen_device
    else:
        vitals = _universal(state).vitals
        source = SOURCE_FALLBACK
        values = {
            "spo2": vitals.spo2,
            "heart_rate": vitals.heart_rate,
            "respiratory_rate": vitals.respiratory_rate,
            "temperature_f": vitals.temperature_f,
            "weight_pounds": vitals.weight_pounds,
            "height_inches": None,
            "bmi": vitals.bmi,
        }
        blood_pressure = vitals.blood_pressure
        oxygen_device = None

    systolic, diastolic = parse_blood_pressure(blood_pressure)
    spo2 = values["spo2"]
    has_vitals = any(v is not None for v in values.values()) or systolic is not None or diastolic is not None

    return {
        "encounter_date": encounter_date,
        **values,
        "systolic_bp": systolic,
        "diastolic_bp": diastolic,
        "oxygen_device": oxygen_device,
        "spo2_is_low": spo2 is not None and spo2 < SPO2_LOW_THRESHOLD,
        "has_vitals": has_vitals,
        "source": source,
    }


# ---------------------------------------------------------------------------
# Smoking
# ---------------------------------------------------------------------------


def build_smoking(state: DocumentExtractionState, encounter_date: Optional[date]) -> dict[str, Any]:
    row: dict[str, Any] = {
        "encounter_date": encounter_date,
        "patient_status": None,
        "patient_years_smoked": None,
        "patient_pack_years": None,
        "provider_status": None,
        "provider_years_smoked": None,
        "provider_pack_years": None,
        "provider_documentation_present": False,
        "advised_to_quit": False,
        "offered_nicotine_replacement": False,
        "offered_varenicline": False,
        "offered_bupropion": False,
        "offered_therapy_counseling": False,
        "offered_quitline": False,
        "offered_support_group": False,
        "referred_cessation_program": False,
        "referred_behavioral_health": False,
        "follow_up_plans_documented": False,
        "counseling_time_minutes": None,
    }

    payload = state.module(ModuleName.SMOKING.value)
    if isinstance(payload, SmokingModulePayload):
        smoking = payload.smoking
        patient = smoking.patient_reported_history
        provider = smoking.provider_documented_history
        counseling = smoking.cessation_counseling
        row.update(
            patient_status=normalize_smoking_status(patient.status),
            patient_years_smoked=patient.years_smoked,
            patient_pack_years=patient.pack_years,
            provider_status=normalize_smoking_status(provider.status),
            provider_years_smoked=provider.years_smoked,
            provider_pack_years=provider.pack_years,
            provider_documentation_present=_flag(provider.documentation_present),
            advised_to_quit=_flag(counseling.advised_to_quit),
            offered_nicotine_replacement=_flag(counseling.pharmacologic_offers.nicotine_replacement),
            offered_varenicline=_flag(counseling.pharmacologic_offers.varenicline_chantix),
            offered_bupropion=_flag(counseling.pharmacologic_offers.bupropion),
            offered_therapy_counseling=_flag(counseling.behavioral_support.therapy_counseling_offered),
            offered_quitline=_flag(counseling.behavioral_support.quitline_offered),
            offered_support_group=_flag(counseling.behavioral_support.support_group_offered),
            referred_cessation_program=_flag(counseling.referrals.smoking_cessation_program),
            referred_behavioral_health=_flag(counseling.referrals.behavioral_health),
            follow_up_plans_documented=_flag(counseling.follow_up_plans_documented),
            counseling_time_minutes=counseling.counseling_time_minutes,
        )
        source = SOURCE_MODULE
        has_history = (
            row["patient_status"] not in (None, "unknown")
            or row["provider_status"] not in (None, "unknown")
            or any(
                row[key] is not None
                for key in ("patient_years_smoked", "patient_pack_years", "provider_years_smoked", "provider_pack_years")
            )
            or row["provider_documentation_present"]
        )
    else:
        source = SOURCE_FALLBACK
        matches = [
            text for text in _universal_texts(state)
            if any_contains([text], *SMOKING_FALLBACK_TERMS)
        ]
        has_history = bool(matches)
        for text in matches:
            status = normalize_smoking_status(text)
            if status != "unknown":
                row["provider_status"] = status
                break

    row["has_cessation_counseling"] = any(
        row[key]
        for key in (
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
    )
    row["has_smoking_history"] = has_history
    row["source"] = source
    return row


def effective_smoking_status(row: dict[str, Any]) -> Optional[str]:
    """Provider-documented status wins over the patient's own report."""
    for key in ("provider_status", "patient_status"):
        status = row.get(key)
        if status and status != "unknown":
            return status
    return None


# ---------------------------------------------------------------------------
# Mental health
# ---------------------------------------------------------------------------

_AFFECT_FLAGS = ("affect_anxious", "affect_depressed", "affect_tearful", "affect_labile", "affect_flat", "affect_pressured_speech")
_BEHAVIOR_FLAGS = ("behavior_emotionally_distressed", "behavior_non_compliant", "behavior_guarded_hostile")
_SYMPTOM_FLAGS = ("symptom_anxiety", "symptom_depression", "symptom_stress", "symptom_panic", "symptom_insomnia")
_DX_FLAGS = (
    "dx_anxiety_disorder",
    "dx_depressive_disorder",
    "dx_adjustment_disorder",
    "dx_ptsd",
    "dx_bipolar_disorder",
    "dx_substance_use_disorder",
)


def build_mental_health(state: DocumentExtractionState, encounter_date: Optional[date]) -> dict[str, Any]:
    payload = state.module(ModuleName.MENTAL_HEALTH.value)
    if isinstance(payload, MentalHealthModulePayload):
        mental_health = payload.mental_health
        affect = tokens(mental_health.provider_observed_state.affect)
        behavior = tokens(mental_health.provider_observed_state.behavior)
        symptoms = tokens(mental_health.patient_reported_state.symptoms)
        diagnoses = tokens(mental_health.diagnoses)
        flags = {
            "affect_anxious": "anxious" in affect,
            "affect_depressed": "depressed" in affect,
            "affect_tearful": "tearful" in affect,
            "affect_labile": "labile" in affect,
            "affect_flat": bool({"flat", "blunted"} & affect),
            "affect_pressured_speech": "pressured_speech" in affect,
            "behavior_emotionally_distressed": "emotionally_distressed" in behavior,
            "behavior_non_compliant": bool({"non_compliant", "noncompliant"} & behavior),
            "behavior_guarded_hostile": bool({"guarded", "hostile"} & behavior),
            "symptom_anxiety": "anxiety" in symptoms,
            "symptom_depression": "depression" in symptoms,
            "symptom_stress": "stress" in symptoms,
            "symptom_panic": "panic" in symptoms,
            "symptom_insomnia": "insomnia" in symptoms,
            "dx_anxiety_disorder": "anxiety_disorder" in diagnoses,
            "dx_depressive_disorder": "depressive_disorder" in diagnoses,
            "dx_adjustment_disorder": "adjustment_disorder" in diagnoses,
            "dx_ptsd": "ptsd" in diagnoses,
            "dx_bipolar_disorder": "bipolar_disorder" in diagnoses,
            "dx_substance_use_disorder": "substance_use_disorder" in diagnoses,
        }
        source = SOURCE_MODULE
    else:
        texts = _universal_texts(state, include_keywords=False)
        descriptions = _diagnosis_descriptions(state)
        anxious = any_contains(texts, "anxiety", "anxious")
        depressed = any_contains(texts, "depression", "depressed")
        flags = {
            "affect_anxious": anxious,
            "affect_depressed": depressed,
            "affect_tearful": any_contains(texts, "tearful"),
            "affect_labile": any_contains(texts, "labile"),
            "affect_flat": any_contains(texts, "flat affect", "blunted affect"),
            "affect_pressured_speech": any_contains(texts, "pressured speech"),
            "behavior_emotionally_distressed": any_contains(texts, "emotionally distressed"),
            "behavior_non_compliant": any_contains(texts, "noncompliant", "non-compliant"),
            "behavior_guarded_hostile": any_contains(texts, "guarded", "hostile"),
            "symptom_anxiety": anxious,
            "symptom_depression": depressed,
            "symptom_stress": any_contains(texts, "stress"),
            "symptom_panic": any_contains(texts, "panic"),
            "symptom_insomnia": any_contains(texts, "insomnia", "can't sleep"),
            "dx_anxiety_disorder": any_contains(descriptions, "anxiety"),
            "dx_depressive_disorder": any_contains(descriptions, "depressi"),
            "dx_adjustment_disorder": any_contains(descriptions, "adjustment disorder"),
            "dx_ptsd": any_contains(descriptions, "ptsd", "post-traumatic", "posttraumatic"),
            "dx_bipolar_disorder": any_contains(descriptions, "bipolar"),
            "dx_substance_use_disorder": any_contains(descriptions, "substance", "alcohol use disorder", "opioid use disorder"),
        }
        source = SOURCE_FALLBACK

    dx_any = any(flags[key] for key in _DX_FLAGS)
    has_content = dx_any or any(flags[key] for key in (*_AFFECT_FLAGS, *_BEHAVIOR_FLAGS, *_SYMPTOM_FLAGS))
    return {
        "encounter_date": encounter_date,
        **flags,
        "dx_any": dx_any,
        "has_mental_health_content": has_content,
        "source": source,
    }


# ---------------------------------------------------------------------------
# Sexual history
# ---------------------------------------------------------------------------


def build_sexual_history(state: DocumentExtractionState, encounter_date: Optional[date]) -> dict[str, Any]:
    payload = state.module(ModuleName.SEXUAL_HEALTH.value)
    if isinstance(payload, SexualHealthModulePayload):
        sexual_health = payload.sexual_health
        activity = sexual_health.reported_activity
        screening = sexual_health.preventive_screening
        row = {
            "sexually_active": activity.sexually_active,
            "partner_count": activity.partner_count if activity.partner_count is None or activity.partner_count >= 0 else None,
            "new_partner": _flag(activity.new_partner),
            "multiple_partners": _flag(activity.multiple_partners),
            "partner_sti_positive": _flag(sexual_health.partner_sti_positive),
            "unprotected_sex": _flag(activity.unprotected_sex),
            "transactional_sex": _flag(activity.transactional_sex),
            "sti_history_qualifying": any(_flag(item.qualifying) for item in sexual_health.sti_history),
            "preventive_screening_discussed": any(
                _flag(value)
                for value in (screening.sti_screening_offered, screening.hiv_screening_offered, screening.prep_discussed)
            ),
        }
        mentions_history = bool(sexual_health.sti_history)
        source = SOURCE_MODULE
    else:
        texts = _universal_texts(state) + _diagnosis_descriptions(state)
        mentions = [text for text in texts if SEXUAL_HISTORY_PATTERN.search(text)]
        # "STI screening" style mentions are preventive care, not history
        history_mentions = [text for text in mentions if not SCREENING_PATTERN.search(text)]
        row = {
            "sexually_active": True if any_contains(history_mentions, "sexually active") else None,
            "partner_count": None,
            "new_partner": any_contains(history_mentions, "new partner", "new sexual partner"),
            "multiple_partners": any_contains(history_mentions, "multiple partners", "multiple sexual partners"),
            "partner_sti_positive": any_contains(history_mentions, "partner positive", "partner tested positive", "partner with"),
            "unprotected_sex": any_contains(history_mentions, "unprotected", "condomless", "without condom"),
            "transactional_sex": any_contains(history_mentions, "transactional sex", "sex work", "exchange sex"),
            "sti_history_qualifying": False,
            "preventive_screening_discussed": len(mentions) > len(history_mentions),
        }
        mentions_history = bool(history_mentions)
        source = SOURCE_FALLBACK

    partner_count = row["partner_count"]
    reported_activity = (
        row["sexually_active"] is not None
        or partner_count is not None
        or row["new_partner"]
        or row["multiple_partners"]
        or row["partner_sti_positive"]
        or row["unprotected_sex"]
        or row["transactional_sex"]
        or row["sti_history_qualifying"]
        or mentions_history
    )
    risky = (
        row["partner_sti_positive"]
        or row["new_partner"]
        or row["multiple_partners"]
        or row["unprotected_sex"]
        or row["sti_history_qualifying"]
        or row["transactional_sex"]
        or (partner_count is not None and partner_count > 1)
    )
    return {
        "encounter_date": encounter_date,
        **row,
        "has_sexual_history_content": bool(reported_activity),
        "has_risky_sexual_behavior": bool(risky),
        "source": source,
    }


# ---------------------------------------------------------------------------
# Communication
# ---------------------------------------------------------------------------


def _initiator_flags(initiated_by: Optional[str]) -> tuple[bool, bool]:
    if not initiated_by:
        return False, False
    text = initiated_by.strip().lower()
    return text in PATIENT_INITIATORS, text in PROVIDER_INITIATORS


def build_communication(state: DocumentExtractionState, encounter_date: Optional[date]) -> dict[str, Any]:
    payload = state.module(ModuleName.COMMUNICATION.value)
    if isinstance(payload, CommunicationModulePayload):
        communication = payload.communication
        row = {
            "initiated_by": communication.initiated_by,
            "message_direction": communication.message_direction,
            "channel": communication.channel,
            "reason": communication.reason,
            "reason_category": communication.reason_category.lower() if communication.reason_category else None,
            "advice_given": communication.advice_given,
            "patient_response": communication.patient_response,
        }
        source = SOURCE_MODULE
    else:
        communication = _universal(state).communication
        row = {
            "initiated_by": communication.initiated_by if communication else None,
            "message_direction": communication.message_direction if communication else None,
            "channel": None,
            "reason": communication.reason if communication else None,
            "reason_category": None,
            "advice_given": communication.advice_given if communication else None,
            "patient_response": communication.patient_response if communication else None,
        }
        source = SOURCE_FALLBACK

    if row["initiated_by"]:
        row["initiated_by"] = row["initiated_by"].lower()
    is_patient, is_provider = _initiator_flags(row["initiated_by"])
    return {
        "encounter_date": encounter_date,
        **row,
        "is_patient_initiated": is_patient,
        "is_provider_initiated": is_provider,
        "source": source,
    }


def has_communication(row: dict[str, Any]) -> bool:
    return any(row.get(key) for key in ("initiated_by", "message_direction", "channel", "reason"))


# ---------------------------------------------------------------------------
# Referrals (multi-row)
# ---------------------------------------------------------------------------


def build_referrals(state: DocumentExtractionState, encounter_date: Optional[date]) -> list[dict[str, Any]]:
    """One row for the structured referral plus one per free-text referral.

    Rows repeating an already-seen specialty or reason text are dropped.
    """
    condition_text = " ".join(lower_all(_universal(state).conditions_discussed))
    candidates: list[dict[str, Any]] = []

    payload = state.module(ModuleName.REFERRAL.value)
    if isinstance(payload, ReferralModulePayload):
        request = payload.referral.referral_request
        denial = payload.referral.referral_denial
        if any((request.specialty, request.reason, request.patient_requested, request.provider_initiated, denial.denial_type)):
            specialty = match_specialty(request.specialty) or (
                request.specialty.strip().lower() if request.specialty else match_specialty(request.reason)
            )
            candidates.append({
                "specialty": specialty,
                "reason": request.reason,
                "patient_requested": _flag(request.patient_requested),
                "provider_initiated": _flag(request.provider_initiated),
                "denial_type": denial.denial_type.lower() if denial.denial_type else None,
                "denial_reason_text": denial.denial_reason_text,
                "source": SOURCE_MODULE,
            })

    for text in _universal(state).referrals:
        candidates.append({
            "specialty": match_specialty(text),
            "reason": text,
            "patient_requested": False,
            "provider_initiated": False,
            "denial_type": None,
            "denial_reason_text": None,
            "source": SOURCE_FALLBACK,
        })

    rows: list[dict[str, Any]] = []
    seen_specialties: set[str] = set()
    seen_reasons: set[str] = set()
    for candidate in candidates:
        specialty = candidate["specialty"]
        reason_key = candidate["reason"].strip().casefold() if candidate["reason"] else None
        if (specialty and specialty in seen_specialties) or (reason_key and reason_key in seen_reasons):
            continue
        if specialty:
            seen_specialties.add(specialty)
        if reason_key:
            seen_reasons.add(reason_key)

        mention_text = f"{(candidate['reason'] or '').lower()} {condition_text}"
        rows.append({
            "position": len(rows),
            "encounter_date": encounter_date,
            **candidate,
            "reason_mentions_copd": "copd" in mention_text or "chronic obstructive" in mention_text,
            "reason_mentions_emphysema": "emphysema" in mention_text,
        })
    return rows


# ---------------------------------------------------------------------------
# Results (multi-row)
# ---------------------------------------------------------------------------


def build_results(state: DocumentExtractionState, encounter_date: Optional[date]) -> list[dict[str, Any]]:
    payload = state.module(ModuleName.RESULTS.value)
    if not isinstance(payload, ResultsModulePayload):
        return []

    rows: list[dict[str, Any]] = []
    for item in payload.results.items:
        if not (item.test_name or item.value or item.summary):
            continue
        rows.append({
            "position": len(rows),
            "encounter_date": encounter_date,
            "result_type": normalize_choice(item.result_type or item.test_name, RESULT_TYPE_ALIASES, default="other") or "other",
            "test_name": item.test_name,
            "value_text": item.value,
            "status": normalize_choice(item.status, RESULT_STATUS_ALIASES),
            "result_date": parse_date(item.result_date),
            "is_abnormal": _flag(item.abnormal),
            "summary": item.summary,
        })
    return rows
