"""Typed per-stage results and the document extraction state they compose.

Each stage writes its own record into :class:`DocumentExtractionState`, which
is what gets persisted as the document's metadata payload. Module payloads
form a discriminated union on ``module``; model responses validate straight
into them.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from argus.core.constants import DOCUMENT_TYPES, MODULE_NAMES, UNCLASSIFIED, HighLevelType
from argus.utils.logging import get_logger
from argus.schemas.fields import (
    FiniteFloat,
    LenientBool,
    LenientText,
    TextList,
    WholeNumber,
    object_list,
    object_or_empty,
)

LOGGER = get_logger(__name__)


class StateModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _confidence(value: Any) -> Any:
    """Accept a number or a numeric string; anything else fails validation."""
    if isinstance(value, bool):
        raise ValueError("confidence must be numeric")
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError as e:
            raise ValueError("confidence must be numeric") from e
    return value


Confidence = Annotated[float, BeforeValidator(_confidence), Field(ge=0.0, le=1.0, allow_inf_nan=False)]


def _nested(model: type[BaseModel]):
    """Field type for a nested object that tolerates a missing or non-object value."""
    return Annotated[model, BeforeValidator(object_or_empty)]


# ---------------------------------------------------------------------------
# Stage records
# ---------------------------------------------------------------------------


class HighLevelClassification(StateModel):
    stage: Literal["high_level_classification"] = "high_level_classification"
    type: HighLevelType
    confidence: Confidence


class DocumentClassification(StateModel):
    """Detailed document-type classification.

    ``accepted`` is set by the classifier once the confidence threshold has
    been applied; an unaccepted result leaves the document unclassified.
    """
    stage: Literal["classification"] = "classification"
    predicted_type: str = Field(validation_alias="document_type")
    confidence: Confidence
    raw_label: Optional[str] = None
    accepted: bool = False

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("predicted_type", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("document_type must be a string")
        label = value.strip().lower()
        return label if label in DOCUMENT_TYPES else UNCLASSIFIED


class ModuleSelection(StateModel):
    stage: Literal["module_selection"] = "module_selection"
    hint: str = "unknown"
    modules: list[str] = Field(default_factory=list)

    @field_validator("modules", mode="before")
    @classmethod
    def keep_known_modules(cls, value: Any) -> list[str]:
        if not isinstance(value, (list, tuple)):
            raise ValueError("modules must be a list")
        selected: list[str] = []
        for name in value:
            if not isinstance(name, str):
                continue
            normalized = name.strip().lower()
            if normalized in MODULE_NAMES and normalized not in selected:
                selected.append(normalized)
        return selected


class Diagnosis(StateModel):
    code: LenientText = None
    description: LenientText = None
    primary: LenientBool = None


class UniversalVitals(StateModel):
    spo2: FiniteFloat = None
    heart_rate: FiniteFloat = None
    respiratory_rate: FiniteFloat = Field(default=None, validation_alias="resp_rate")
    temperature_f: FiniteFloat = Field(default=None, validation_alias="temperature")
    weight_pounds: FiniteFloat = Field(default=None, validation_alias="weight")
    bmi: FiniteFloat = None
    blood_pressure: LenientText = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class UniversalCommunication(StateModel):
    initiated_by: LenientText = None
    message_direction: LenientText = None
    reason: LenientText = None
    advice_given: LenientText = None
    patient_response: LenientText = None


class ExtractedEntities(StateModel):
    symptoms: TextList = Field(default_factory=list)
    conditions: TextList = Field(default_factory=list)
    body_systems: TextList = Field(default_factory=list)
    procedures: TextList = Field(default_factory=list)
    medications: TextList = Field(default_factory=list)


class UniversalMetadata(StateModel):
    """Looser document-wide metadata that backs every projection fallback."""
    stage: Literal["universal_metadata"] = "universal_metadata"
    date: LenientText = None
    provider_name: LenientText = None
    provider_role: LenientText = None
    clinic_or_facility: LenientText = None
    patient_name: LenientText = None
    patient_dob: LenientText = None
    patient_mrn: LenientText = None
    summary: LenientText = None
    referrals: TextList = Field(default_factory=list)
    diagnoses: Annotated[list[Diagnosis], BeforeValidator(object_list)] = Field(default_factory=list)
    conditions_discussed: TextList = Field(default_factory=list)
    vitals: _nested(UniversalVitals) = Field(default_factory=UniversalVitals)
    communication: Optional[UniversalCommunication] = None
    entities_extracted: _nested(ExtractedEntities) = Field(default_factory=ExtractedEntities)
    keywords: TextList = Field(default_factory=list)
    tags: TextList = Field(default_factory=list)

    @field_validator("communication", mode="before")
    @classmethod
    def communication_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None


# ---------------------------------------------------------------------------
# Module payloads
# ---------------------------------------------------------------------------


class ProviderData(StateModel):
    name: LenientText = None
    role: LenientText = None
    credentials: LenientText = None
    facility: LenientText = None
    department: LenientText = None


class ProviderModulePayload(StateModel):
    module: Literal["provider"] = "provider"
    provider: ProviderData


class PatientData(StateModel):
    name: LenientText = None
    date_of_birth: LenientText = None
    sex: LenientText = None
    mrn: LenientText = None


class PatientModulePayload(StateModel):
    module: Literal["patient"] = "patient"
    patient: PatientData


class ReasonForEncounterData(StateModel):
    chief_complaint: LenientText = None
    visit_reason: LenientText = None
    history_of_present_illness: LenientText = None


class ReasonForEncounterModulePayload(StateModel):
    module: Literal["reason_for_encounter"] = "reason_for_encounter"
    reason_for_encounter: ReasonForEncounterData


class BloodPressure(StateModel):
    systolic: WholeNumber = None
    diastolic: WholeNumber = None


def _blood_pressure(value: Any) -> Any:
    if isinstance(value, (dict, str)):
        return value
    return None


class VitalsData(StateModel):
    spo2: FiniteFloat = None
    heart_rate: FiniteFloat = None
    respiratory_rate: FiniteFloat = None
    temperature_f: FiniteFloat = None
    weight_pounds: FiniteFloat = None
    height_inches: FiniteFloat = None
    bmi: FiniteFloat = None
    oxygen_device: LenientText = None
    blood_pressure: Annotated[Optional[Union[BloodPressure, str]], BeforeValidator(_blood_pressure)] = None


class VitalsModulePayload(StateModel):
    module: Literal["vitals"] = "vitals"
    vitals: VitalsData


class SmokingHistory(StateModel):
    status: LenientText = None
    years_smoked: FiniteFloat = None
    pack_years: FiniteFloat = None


class ProviderSmokingHistory(SmokingHistory):
    documentation_present: LenientBool = None


class PharmacologicOffers(StateModel):
    nicotine_replacement: LenientBool = None
    varenicline_chantix: LenientBool = None
    bupropion: LenientBool = None


class BehavioralSupport(StateModel):
    therapy_counseling_offered: LenientBool = None
    quitline_offered: LenientBool = None
    support_group_offered: LenientBool = None


class CessationReferrals(StateModel):
    smoking_cessation_program: LenientBool = None
    behavioral_health: LenientBool = None


class CessationCounseling(StateModel):
    advised_to_quit: LenientBool = None
    pharmacologic_offers: _nested(PharmacologicOffers) = Field(default_factory=PharmacologicOffers)
    behavioral_support: _nested(BehavioralSupport) = Field(default_factory=BehavioralSupport)
    referrals: _nested(CessationReferrals) = Field(default_factory=CessationReferrals)
    follow_up_plans_documented: LenientBool = None
    counseling_time_minutes: FiniteFloat = None


class SmokingData(StateModel):
    patient_reported_history: _nested(SmokingHistory) = Field(default_factory=SmokingHistory)
    provider_documented_history: _nested(ProviderSmokingHistory) = Field(default_factory=ProviderSmokingHistory)
    cessation_counseling: _nested(CessationCounseling) = Field(default_factory=CessationCounseling)


class SmokingModulePayload(StateModel):
    module: Literal["smoking"] = "smoking"
    smoking: SmokingData


class ReportedSexualActivity(StateModel):
    sexually_active: LenientBool = None
    partner_count: WholeNumber = None
    new_partner: LenientBool = None
    multiple_partners: LenientBool = None
    unprotected_sex: LenientBool = None
    transactional_sex: LenientBool = None


class StiHistoryItem(StateModel):
    infection: LenientText = None
    timeframe: LenientText = None
    qualifying: LenientBool = None


class PreventiveScreening(StateModel):
    sti_screening_offered: LenientBool = None
    hiv_screening_offered: LenientBool = None
    prep_discussed: LenientBool = None


class SexualHealthData(StateModel):
    reported_activity: _nested(ReportedSexualActivity) = Field(default_factory=ReportedSexualActivity)
    partner_sti_positive: LenientBool = None
    sti_history: Annotated[list[StiHistoryItem], BeforeValidator(object_list)] = Field(default_factory=list)
    preventive_screening: _nested(PreventiveScreening) = Field(default_factory=PreventiveScreening)


class SexualHealthModulePayload(StateModel):
    module: Literal["sexual_health"] = "sexual_health"
    sexual_health: SexualHealthData


class ProviderObservedState(StateModel):
    affect: TextList = Field(default_factory=list)
    behavior: TextList = Field(default_factory=list)


class PatientReportedState(StateModel):
    symptoms: TextList = Field(default_factory=list)


class MentalHealthData(StateModel):
    provider_observed_state: _nested(ProviderObservedState) = Field(default_factory=ProviderObservedState)
    patient_reported_state: _nested(PatientReportedState) = Field(default_factory=PatientReportedState)
    diagnoses: TextList = Field(default_factory=list)


class MentalHealthModulePayload(StateModel):
    module: Literal["mental_health"] = "mental_health"
    mental_health: MentalHealthData


class ReferralRequest(StateModel):
    specialty: LenientText = None
    reason: LenientText = None
    patient_requested: LenientBool = None
    provider_initiated: LenientBool = None


class ReferralDenial(StateModel):
    denial_type: LenientText = None
    denial_reason_text: LenientText = None


class ReferralData(StateModel):
    referral_request: _nested(ReferralRequest) = Field(default_factory=ReferralRequest)
    referral_denial: _nested(ReferralDenial) = Field(default_factory=ReferralDenial)


class ReferralModulePayload(StateModel):
    module: Literal["referral"] = "referral"
    referral: ReferralData


class ResultItem(StateModel):
    result_type: LenientText = None
    test_name: LenientText = None
    value: LenientText = None
    status: LenientText = None
    result_date: LenientText = None
    abnormal: LenientBool = None
    summary: LenientText = None


class ResultsData(StateModel):
    items: Annotated[list[ResultItem], BeforeValidator(object_list)] = Field(default_factory=list)


class ResultsModulePayload(StateModel):
    module: Literal["results"] = "results"
    results: ResultsData


class CommunicationData(StateModel):
    initiated_by: LenientText = None
    message_direction: LenientText = None
    channel: LenientText = None
    reason: LenientText = None
    reason_category: LenientText = None
    advice_given: LenientText = None
    patient_response: LenientText = None


class CommunicationModulePayload(StateModel):
    module: Literal["communication"] = "communication"
    communication: CommunicationData


ModulePayload = Annotated[
    Union[
        ProviderModulePayload,
        PatientModulePayload,
        ReasonForEncounterModulePayload,
        VitalsModulePayload,
        SmokingModulePayload,
        SexualHealthModulePayload,
        MentalHealthModulePayload,
        ReferralModulePayload,
        ResultsModulePayload,
        CommunicationModulePayload,
    ],
    Field(discriminator="module"),
]

MODULE_PAYLOAD_MODELS: dict[str, type[StateModel]] = {
    "provider": ProviderModulePayload,
    "patient": PatientModulePayload,
    "reason_for_encounter": ReasonForEncounterModulePayload,
    "vitals": VitalsModulePayload,
    "smoking": SmokingModulePayload,
    "sexual_health": SexualHealthModulePayload,
    "mental_health": MentalHealthModulePayload,
    "referral": ReferralModulePayload,
    "results": ResultsModulePayload,
    "communication": CommunicationModulePayload,
}


# ---------------------------------------------------------------------------
# Composed state
# ---------------------------------------------------------------------------


class DocumentExtractionState(StateModel):
    """Everything the pipeline knows about one document.

    Stages only ever add or replace their own record; module payloads are
    keyed by module name and replaced wholesale (last write wins).
    """
    classification: Optional[DocumentClassification] = None
    high_level_classification: Optional[HighLevelClassification] = None
    universal: Optional[UniversalMetadata] = None
    modules_selected: Optional[ModuleSelection] = None
    modules: dict[str, ModulePayload] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Optional[dict]) -> "DocumentExtractionState":
        """Load persisted metadata; unreadable payloads start from an empty state."""
        if not payload:
            return cls()
        try:
            return cls.model_validate(payload)
        except PydanticValidationError as e:
            LOGGER.warning(
                "Stored metadata payload is unreadable, starting from an empty state",
                extra={"error": str(e)[:500]},
            )
            return cls()

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=False)

    def module(self, name: str) -> Optional[StateModel]:
        return self.modules.get(name)

    def with_module(self, payload: StateModel) -> "DocumentExtractionState":
        modules = dict(self.modules)
        modules[payload.module] = payload
        return self.model_copy(update={"modules": modules})

    @property
    def has_completed_extraction(self) -> bool:
        """True once universal metadata exists and at least one module ran."""
        return self.universal is not None and bool(self.modules)
