"""SQLAlchemy models for all database tables."""

import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Date,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from argus.core.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Stored in place of a NULL subkeyword so the (document, keyword, subkeyword)
# unique constraint also holds for keyword-only terms.
NO_SUBKEYWORD = ""


class Document(Base):
    """One row per uploaded file."""

    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    external_ref: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    file_ref: Mapped[str | None] = mapped_column(String, nullable=True)
    file_name: Mapped[str | None] = mapped_column(String, nullable=True)
    document_type: Mapped[str] = mapped_column(String, nullable=False, default="unclassified")
    encounter_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    provider_name: Mapped[str | None] = mapped_column(String, nullable=True)
    clinic_or_facility: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    needs_metadata: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ---------------------------------------------------------------------------
# Singleton projections (primary key is the document id)
# ---------------------------------------------------------------------------


class DocumentVitals(Base):
    __tablename__ = "document_vitals"

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True
    )
    encounter_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    spo2: Mapped[float | None] = mapped_column(Float, nullable=True)
    spo2_is_low: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    heart_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    respiratory_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    temperature_f: Mapped[float | None] = mapped_column(Float, nullable=True)
    weight_pounds: Mapped[float | None] = mapped_column(Float, nullable=True)
    height_inches: Mapped[float | None] = mapped_column(Float, nullable=True)
    bmi: Mapped[float | None] = mapped_column(Float, nullable=True)
    systolic_bp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    diastolic_bp: Mapped[int | None] = mapped_column(Integer, nullable=True)
    oxygen_device: Mapped[str | None] = mapped_column(String, nullable=True)
    has_vitals: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String, nullable=False)  # module | fallback


class DocumentSmoking(Base):
    __tablename__ = "document_smoking"

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True
    )
    encounter_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    patient_status: Mapped[str | None] = mapped_column(String, nullable=True)
    patient_years_smoked: Mapped[float | None] = mapped_column(Float, nullable=True)
    patient_pack_years: Mapped[float | None] = mapped_column(Float, nullable=True)
    provider_status: Mapped[str | None] = mapped_column(String, nullable=True)
    provider_years_smoked: Mapped[float | None] = mapped_column(Float, nullable=True)
    provider_pack_years: Mapped[float | None] = mapped_column(Float, nullable=True)
    provider_documentation_present: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    advised_to_quit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offered_nicotine_replacement: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offered_varenicline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offered_bupropion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offered_therapy_counseling: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offered_quitline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    offered_support_group: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    referred_cessation_program: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    referred_behavioral_health: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    follow_up_plans_documented: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    counseling_time_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)
    has_cessation_counseling: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_smoking_history: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String, nullable=False)


class DocumentMentalHealth(Base):
    __tablename__ = "document_mental_health"

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True
    )
    encounter_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    affect_anxious: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    affect_depressed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    affect_tearful: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    affect_labile: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    affect_flat: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    affect_pressured_speech: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    behavior_emotionally_distressed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    behavior_non_compliant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    behavior_guarded_hostile: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    symptom_anxiety: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    symptom_depression: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    symptom_stress: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    symptom_panic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    symptom_insomnia: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dx_anxiety_disorder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dx_depressive_disorder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dx_adjustment_disorder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dx_ptsd: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dx_bipolar_disorder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dx_substance_use_disorder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dx_any: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_mental_health_content: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String, nullable=False)


class DocumentSexualHistory(Base):
    __tablename__ = "document_sexual_history"

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True
    )
    encounter_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sexually_active: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    partner_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_partner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    multiple_partners: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    partner_sti_positive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    unprotected_sex: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    transactional_sex: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sti_history_qualifying: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    preventive_screening_discussed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_sexual_history_content: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    has_risky_sexual_behavior: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String, nullable=False)


class DocumentCommunication(Base):
    __tablename__ = "document_communication"

    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True
    )
    encounter_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    initiated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    message_direction: Mapped[str | None] = mapped_column(String, nullable=True)
    channel: Mapped[str | None] = mapped_column(String, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason_category: Mapped[str | None] = mapped_column(String, nullable=True)
    advice_given: Mapped[str | None] = mapped_column(Text, nullable=True)
    patient_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_patient_initiated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_provider_initiated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String, nullable=False)


# ---------------------------------------------------------------------------
# Multi-row projections (replaced wholesale on every pass)
# ---------------------------------------------------------------------------


class DocumentReferral(Base):
    __tablename__ = "document_referrals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    encounter_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    specialty: Mapped[str | None] = mapped_column(String, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    patient_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    provider_initiated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    denial_type: Mapped[str | None] = mapped_column(String, nullable=True)
    denial_reason_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason_mentions_copd: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reason_mentions_emphysema: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String, nullable=False)


class DocumentResult(Base):
    __tablename__ = "document_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    encounter_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    result_type: Mapped[str] = mapped_column(String, nullable=False)  # lab | imaging | pathology | other
    test_name: Mapped[str | None] = mapped_column(String, nullable=True)
    value_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)  # ordered | pending | final
    result_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_abnormal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------


class TaxonomyCategory(Base):
    __tablename__ = "taxonomy_categories"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    label: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class TaxonomyKeyword(Base):
    __tablename__ = "taxonomy_keywords"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    category_id: Mapped[str] = mapped_column(
        String, ForeignKey("taxonomy_categories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label: Mapped[str] = mapped_column(String, nullable=False)
    synonyms_json: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="review")  # approved | review


class TaxonomySubkeyword(Base):
    __tablename__ = "taxonomy_subkeywords"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    keyword_id: Mapped[str] = mapped_column(
        String, ForeignKey("taxonomy_keywords.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label: Mapped[str] = mapped_column(String, nullable=False)
    synonyms_json: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="review")


class DocumentTerm(Base):
    """Link between a document and a taxonomy keyword (and optional subkeyword)."""

    __tablename__ = "document_terms"
    __table_args__ = (
        UniqueConstraint("document_id", "keyword_id", "subkeyword_id", name="uq_document_term"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    keyword_id: Mapped[str] = mapped_column(
        String, ForeignKey("taxonomy_keywords.id", ondelete="CASCADE"), nullable=False
    )
    subkeyword_id: Mapped[str] = mapped_column(String, nullable=False, default=NO_SUBKEYWORD)
    source: Mapped[str] = mapped_column(String, nullable=False)  # rule | model
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )

    @property
    def subkeyword(self) -> Optional[str]:
        return self.subkeyword_id or None


class DocumentTermEvidence(Base):
    __tablename__ = "document_term_evidence"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[str] = mapped_column(String, nullable=False)
    keyword_id: Mapped[str] = mapped_column(String, nullable=False)
    subkeyword_id: Mapped[str] = mapped_column(String, nullable=False, default=NO_SUBKEYWORD)
    source: Mapped[str] = mapped_column(String, nullable=False)
    evidence_text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now()
    )
