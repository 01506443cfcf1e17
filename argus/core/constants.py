"""Fixed vocabularies shared by the extraction pipeline."""

from enum import Enum


class HighLevelType(str, Enum):
    """Coarse document families returned by the high-level classifier."""
    CLINICAL_ENCOUNTER = "clinical_encounter"
    COMMUNICATION = "communication"
    RESULT = "result"
    REFERRAL = "referral"
    ADMINISTRATIVE = "administrative"
    EXTERNAL_RECORD = "external_record"


UNCLASSIFIED = "unclassified"

DOCUMENT_TYPES: dict[str, str] = {
    "office_visit": "In-person office visit note",
    "telehealth_visit": "Video telehealth visit note",
    "telephone_visit": "Scheduled telephone visit note",
    "telephone_encounter": "Ad hoc telephone encounter or call note",
    "medication_refill": "Medication refill request or authorization",
    "imaging_report": "Radiology or imaging report",
    "lab_result": "Laboratory result report",
    "procedure_note": "Procedure or operative note",
    "referral": "Referral order, request or response",
    "patient_message": "Portal or written message from the patient",
    "provider_message": "Message from a provider or clinic to the patient",
    "triage_note": "Nurse triage note",
    "emergency_room_note": "Emergency department note",
    "hospitalization_note": "Inpatient progress or admission note",
    "discharge_summary": "Hospital discharge summary",
    "care_plan": "Care plan or treatment plan",
    "external_specialist_note": "Note from an outside specialist",
    "legal_document": "Legal, insurance or administrative correspondence",
}


class ModuleName(str, Enum):
    """Structured-extraction modules the selector may choose from."""
    PROVIDER = "provider"
    PATIENT = "patient"
    REASON_FOR_ENCOUNTER = "reason_for_encounter"
    VITALS = "vitals"
    SMOKING = "smoking"
    SEXUAL_HEALTH = "sexual_health"
    MENTAL_HEALTH = "mental_health"
    REFERRAL = "referral"
    RESULTS = "results"
    COMMUNICATION = "communication"


MODULE_NAMES: tuple[str, ...] = tuple(module.value for module in ModuleName)

MODULE_LABELS: dict[str, str] = {
    ModuleName.PROVIDER.value: "Provider",
    ModuleName.PATIENT.value: "Patient",
    ModuleName.REASON_FOR_ENCOUNTER.value: "Reason for Encounter",
    ModuleName.VITALS.value: "Vitals",
    ModuleName.SMOKING.value: "Smoking / Tobacco",
    ModuleName.SEXUAL_HEALTH.value: "Sexual Health / STI Risk",
    ModuleName.MENTAL_HEALTH.value: "Mental Health",
    ModuleName.REFERRAL.value: "Referral",
    ModuleName.RESULTS.value: "Results",
    ModuleName.COMMUNICATION.value: "Communication",
}

# Taxonomy categories, seeded at startup. Order drives the model-driven
# extraction order for a document.
TAXONOMY_CATEGORIES: dict[str, str] = {
    "vitals": "Vitals",
    "smoking": "Smoking",
    "mental_health": "Mental Health",
    "sexual_history": "Sexual History",
    "referrals": "Referrals",
    "results": "Results",
    "appointments": "Appointments",
    "communication": "Communication",
}

# Categories whose rule tags come straight from singleton projections.
PROJECTION_CATEGORIES: tuple[str, ...] = ("vitals", "smoking", "mental_health", "sexual_history")

RULE_CATEGORIES: tuple[str, ...] = tuple(TAXONOMY_CATEGORIES)

ADMIN_BATCH_DEFAULT_LIMIT = 100
ADMIN_BATCH_MAX_LIMIT = 250
