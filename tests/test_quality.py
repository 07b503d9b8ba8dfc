import dataclasses
from datetime import datetime, timezone

import pytest

from mdm_app.mdm.quality import (
    DIMENSION_COMPLETENESS,
    DIMENSION_CONSISTENCY,
    DIMENSION_VALIDITY,
    FieldFormatRule,
    NameLegalNameRule,
    QualityScorer,
)

FIXED_NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

COMPLETE_RECORD = {
    "name": "Acme Corporation",
    "legal_name": "Acme Corporation GmbH",
    "registration_number": "HRB 123456",
    "tax_id": "DE123456789",
    "email": "billing@acme.de",
    "phone": "+49 30 1234567",
    "address": "Hauptstrasse 1",
    "city": "Berlin",
    "country": "DE",
}


@pytest.fixture
def scorer():
    return QualityScorer(clock=lambda: FIXED_NOW)


def test_complete_valid_record_scores_100(scorer):
    quality = scorer.score(COMPLETE_RECORD)

    assert quality.score == 100
    assert quality.breakdown == {
        DIMENSION_COMPLETENESS: 100.0,
        DIMENSION_VALIDITY: 100.0,
        DIMENSION_CONSISTENCY: 100.0,
    }
    assert quality.issues == ()
    assert quality.computed_at == FIXED_NOW


def test_empty_record_scores_0(scorer):
    quality = scorer.score({})

    assert quality.score == 0
    assert quality.breakdown[DIMENSION_VALIDITY] == 0.0
    assert quality.breakdown[DIMENSION_CONSISTENCY] == 0.0
    assert "PARTY_MISSING_NAME" in quality.issues


def test_blank_strings_count_as_missing(scorer):
    quality = scorer.score({"name": "  ", "email": ""})
    assert quality.score == 0


def test_invalid_formats_lower_validity(scorer):
    record = dict(COMPLETE_RECORD, email="not-an-email", phone="12", country="XX")
    quality = scorer.score(record)

    assert quality.breakdown[DIMENSION_COMPLETENESS] == 100.0
    assert quality.breakdown[DIMENSION_VALIDITY] == pytest.approx(round(100 * 4 / 7, 2))
    assert {"PARTY_EMAIL_FORMAT", "PARTY_PHONE_E164", "PARTY_COUNTRY_ISO"} <= set(quality.issues)
    assert quality.score < 100


def test_consistency_checks_flag_mismatches(scorer):
    record = dict(COMPLETE_RECORD, phone="+33 1 23 45 67 89", tax_id="FR12345678901", legal_name="Globex SARL")
    quality = scorer.score(record)

    assert quality.breakdown[DIMENSION_CONSISTENCY] == 0.0
    assert {
        "PARTY_PHONE_COUNTRY_MISMATCH",
        "PARTY_TAX_ID_COUNTRY_MISMATCH",
        "PARTY_NAME_LEGAL_NAME_MISMATCH",
    } <= set(quality.issues)


def test_greek_vat_prefix_matches_country(scorer):
    record = dict(COMPLETE_RECORD, country="GR", tax_id="EL123456789", phone="+30 21 0123 4567")
    quality = scorer.score(record)
    assert quality.breakdown[DIMENSION_CONSISTENCY] == 100.0


def test_partial_record_weights_dimensions(scorer):
    record = {"name": "Acme", "email": "ap@acme.io"}
    quality = scorer.score(record)

    # completeness 2/9, validity 2/2, no applicable consistency checks
    expected = 0.40 * round(100 * 2 / 9, 2) + 0.35 * 100.0 + 0.25 * 0.0
    assert quality.score == round(expected)
    assert quality.breakdown[DIMENSION_CONSISTENCY] == 0.0


def test_score_accepts_party_like_objects(scorer):
    class _Record:
        def field_values(self):
            return dict(COMPLETE_RECORD)

    assert scorer.score(_Record()).score == 100


def test_to_dict_is_json_friendly(scorer):
    payload = scorer.score(COMPLETE_RECORD).to_dict()
    assert payload["score"] == 100
    assert payload["computed_at"] == FIXED_NOW.isoformat()
    assert payload["issues"] == []


def test_rules_are_declared_frozen_dataclasses():
    rule = FieldFormatRule(
        code="PARTY_CITY_FORMAT",
        field_name="city",
        description="City must be alphabetic.",
        predicate=str.isalpha,
    )

    assert rule.dimension == DIMENSION_VALIDITY
    assert rule.evaluate({"city": "Berlin"}) is True
    assert rule.evaluate({"city": "10115"}) is False
    assert rule.evaluate({"city": "  "}) is None
    with pytest.raises(dataclasses.FrozenInstanceError):
        rule.field_name = "country"

    strict = NameLegalNameRule(threshold=101)
    assert strict.dimension == DIMENSION_CONSISTENCY
    assert strict.evaluate({"name": "Acme", "legal_name": "Acme GmbH"}) is False


def test_custom_rules_replace_defaults():
    rule = FieldFormatRule(
        code="PARTY_CITY_FORMAT",
        field_name="city",
        description="City must be alphabetic.",
        predicate=str.isalpha,
    )
    result = QualityScorer([rule], clock=lambda: FIXED_NOW).score(dict(COMPLETE_RECORD, city="10115"))

    assert result.issues == ("PARTY_CITY_FORMAT",)
    assert result.breakdown[DIMENSION_VALIDITY] == 0.0
    assert result.breakdown[DIMENSION_CONSISTENCY] == 0.0
