"""Tests for concept ID generation."""

from argus.services.taxonomy.ids import keyword_id, slugify, subkeyword_id


def test_slugify_collapses_punctuation():
    assert slugify("Tachycardia (HR > 120)") == "tachycardia_hr_120"
    assert slugify("  Low  SpO2 ") == "low_spo2"


def test_labels_without_letters_or_digits_have_no_id():
    assert keyword_id("vitals", "--- ") is None
    assert keyword_id("vitals", None) is None
    assert subkeyword_id("vitals.fever", "") is None


def test_ids_are_namespaced_by_parent():
    assert keyword_id("vitals", "Low blood pressure") == "vitals.low_blood_pressure"
    assert subkeyword_id("vitals.fever", "Low grade") == "vitals.fever.low_grade"


def test_equivalent_labels_share_an_id():
    assert keyword_id("smoking", "Ex-smoker") == keyword_id("smoking", "ex smoker")
