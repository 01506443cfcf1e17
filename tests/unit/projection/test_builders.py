"""Tests for projection row builders and their fallbacks."""

from datetime import date

from argus.schemas.extraction_state import (
    DocumentExtractionState,
    ReferralModulePayload,
    ResultsModulePayload,
    UniversalMetadata,
    VitalsModulePayload,
)
from argus.services.projection import builders
from argus.services.projection.normalizers import normalize_smoking_status, parse_blood_pressure, parse_date

ENCOUNTER = date(2024, 3, 5)


def state_with(universal=None, *payloads) -> DocumentExtractionState:
    state = DocumentExtractionState(universal=UniversalMetadata.model_validate(universal or {}))
    for payload in payloads:
        state = state.with_module(payload)
    return state


class TestNormalizers:
    def test_blood_pressure_string(self):
        assert parse_blood_pressure("BP 130 / 85 sitting") == (130, 85)

    def test_blood_pressure_unparseable(self):
        assert parse_blood_pressure("normal") == (None, None)

    def test_dates(self):
        assert parse_date("2024-03-05") == ENCOUNTER
        assert parse_date("03/05/2024") == ENCOUNTER
        assert parse_date("March 5, 2024") == ENCOUNTER
        assert parse_date("last Tuesday") is None

    def test_smoking_status(self):
        assert normalize_smoking_status("Never smoker") == "never"
        assert normalize_smoking_status("quit 2010") == "former"
        assert normalize_smoking_status("smokes every day") == "current"
        assert normalize_smoking_status("social") == "unknown"


class TestVitals:
    """Module values first, universal vitals as the fallback."""

    def test_fallback_parses_blood_pressure_string(self):
        state = state_with({"vitals": {"blood_pressure": "130/85", "heart_rate": 72}})

        row = builders.build_vitals(state, ENCOUNTER)

        assert row["systolic_bp"] == 130
        assert row["diastolic_bp"] == 85
        assert row["heart_rate"] == 72.0
        assert row["has_vitals"] is True
        assert row["source"] == builders.SOURCE_FALLBACK
        assert row["encounter_date"] == ENCOUNTER

    def test_spo2_low_boundary(self):
        low = VitalsModulePayload.model_validate({"vitals": {"spo2": 89}})
        normal = VitalsModulePayload.model_validate({"vitals": {"spo2": 90}})

        assert builders.build_vitals(state_with(None, low), None)["spo2_is_low"] is True
        assert builders.build_vitals(state_with(None, normal), None)["spo2_is_low"] is False

    def test_module_structured_blood_pressure(self):
        payload = VitalsModulePayload.model_validate(
            {"vitals": {"blood_pressure": {"systolic": 118, "diastolic": 0}, "oxygen_device": "room air"}}
        )

        row = builders.build_vitals(state_with(None, payload), None)

        assert row["systolic_bp"] == 118
        assert row["diastolic_bp"] is None
        assert row["oxygen_device"] == "room air"
        assert row["source"] == builders.SOURCE_MODULE

    def test_nothing_recorded(self):
        row = builders.build_vitals(state_with(), None)

        assert row["has_vitals"] is False
        assert row["spo2_is_low"] is False


class TestFallbackHeuristics:
    def test_smoking_fallback_from_keywords(self):
        row = builders.build_smoking(state_with({"keywords": ["Tobacco use"]}), None)

        assert row["has_smoking_history"] is True
        assert row["source"] == builders.SOURCE_FALLBACK

    def test_mental_health_fallback_from_diagnoses(self):
        state = state_with({"diagnoses": [{"code": "F41.1", "description": "Generalized anxiety disorder"}]})

        row = builders.build_mental_health(state, None)

        assert row["dx_anxiety_disorder"] is True
        assert row["dx_any"] is True
        assert row["has_mental_health_content"] is True

    def test_sexual_history_ignores_words_containing_abbreviations(self):
        state = state_with({"conditions_discussed": ["constipation", "hypertension"]})

        row = builders.build_sexual_history(state, None)

        assert row["has_sexual_history_content"] is False
        assert row["has_risky_sexual_behavior"] is False

    def test_sexual_history_fallback_flags_risk(self):
        state = state_with({"conditions_discussed": ["Reports new partner, unprotected intercourse"]})

        row = builders.build_sexual_history(state, None)

        assert row["new_partner"] is True
        assert row["unprotected_sex"] is True
        assert row["has_risky_sexual_behavior"] is True

    def test_screening_mentions_are_not_history(self):
        row = builders.build_sexual_history(state_with({"keywords": ["STI screening offered"]}), None)

        assert row["preventive_screening_discussed"] is True
        assert row["has_sexual_history_content"] is False

    def test_communication_fallback(self):
        state = state_with({"communication": {"initiated_by": "Patient", "reason": "medication question"}})

        row = builders.build_communication(state, None)

        assert row["initiated_by"] == "patient"
        assert row["is_patient_initiated"] is True
        assert builders.has_communication(row)


class TestMultiRow:
    def test_referrals_are_deduplicated(self):
        module = ReferralModulePayload.model_validate(
            {"referral": {"referral_request": {"specialty": "Pulmonary", "reason": "COPD follow-up", "patient_requested": True}}}
        )
        state = state_with(
            {"referrals": ["Pulmonology for spirometry", "copd follow-up", "Cardiology consult"]},
            module,
        )

        rows = builders.build_referrals(state, ENCOUNTER)

        assert [row["specialty"] for row in rows] == ["pulmonology", "cardiology"]
        assert [row["position"] for row in rows] == [0, 1]
        assert rows[0]["patient_requested"] is True
        assert rows[0]["reason_mentions_copd"] is True
        assert rows[0]["source"] == builders.SOURCE_MODULE

    def test_results_normalize_type_and_status(self):
        module = ResultsModulePayload.model_validate(
            {
                "results": {
                    "items": [
                        {"test_name": "Chest X-ray", "status": "Scheduled", "abnormal": False},
                        {"result_type": "Blood panel", "value": "Hgb 9.1", "status": "final", "abnormal": True},
                        {"status": "pending"},
                    ]
                }
            }
        )

        rows = builders.build_results(state_with(None, module), None)

        assert len(rows) == 2
        assert rows[0]["result_type"] == "imaging"
        assert rows[0]["status"] == "ordered"
        assert rows[1]["result_type"] == "lab"
        assert rows[1]["is_abnormal"] is True

    def test_result_type_aliases_match_at_word_start(self):
        module = ResultsModulePayload.model_validate(
            {
                "results": {
                    "items": [
                        {"test_name": "Lactate", "status": "pending"},
                        {"test_name": "Electrolyte panel", "status": "pending"},
                        {"test_name": "Direct bilirubin", "status": "final"},
                        {"test_name": "CT abdomen", "status": "ordered"},
                        {"test_name": "Labs drawn", "status": "completed"},
                    ]
                }
            }
        )

        rows = builders.build_results(state_with(None, module), None)

        assert [row["result_type"] for row in rows] == ["other", "other", "other", "imaging", "lab"]
        assert rows[4]["status"] == "final"

    def test_results_have_no_fallback(self):
        assert builders.build_results(state_with({"summary": "CBC normal"}), None) == []
