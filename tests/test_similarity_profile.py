import json

import pytest

from config.similarity import (
    COMPARATOR_ADDRESS,
    COMPARATOR_EXACT,
    DEFAULT_PROFILE,
    SimilarityConfigError,
    load_profile,
)


def test_load_profile_defaults_without_override():
    assert load_profile({}) is DEFAULT_PROFILE
    assert load_profile() is DEFAULT_PROFILE


def test_default_profile_covers_scored_fields():
    names = {field.field_name for field in DEFAULT_PROFILE.fields}
    assert names == {"name", "legal_name", "registration_number", "tax_id", "email", "phone", "address"}
    assert DEFAULT_PROFILE.find_field("tax_id").comparator == COMPARATOR_EXACT
    assert DEFAULT_PROFILE.find_field("address").comparator == COMPARATOR_ADDRESS
    assert DEFAULT_PROFILE.find_field("missing") is None


def test_load_profile_from_json(tmp_path):
    path = tmp_path / "weights.json"
    path.write_text(
        json.dumps(
            {
                "key": "strict",
                "fields": [
                    {"field_name": "tax_id", "weight": 50},
                    {"field_name": "name", "weight": 10, "comparator": "fuzzy_name"},
                ],
            }
        ),
        encoding="utf-8",
    )

    profile = load_profile({"MDM_SIMILARITY_PROFILE_PATH": str(path)})

    assert profile.key == "strict"
    assert profile.label == DEFAULT_PROFILE.label
    assert profile.find_field("tax_id").weight == 50.0
    # comparator falls back to the default table
    assert profile.find_field("tax_id").comparator == COMPARATOR_EXACT
    assert profile.total_weight == 60.0


def test_load_profile_from_yaml(tmp_path):
    path = tmp_path / "weights.yaml"
    path.write_text(
        "label: Email heavy\n"
        "fields:\n"
        "  - field_name: email\n"
        "    weight: 40\n"
        "  - field_name: address\n"
        "    weight: 5\n",
        encoding="utf-8",
    )

    profile = load_profile({"MDM_SIMILARITY_PROFILE_PATH": str(path)})

    assert profile.label == "Email heavy"
    assert [field.field_name for field in profile.fields] == ["email", "address"]


def test_load_profile_missing_file(tmp_path):
    with pytest.raises(SimilarityConfigError):
        load_profile({"MDM_SIMILARITY_PROFILE_PATH": str(tmp_path / "nope.json")})


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"fields": [{"field_name": "tax_id", "weight": "heavy"}]}, "numeric weight"),
        ({"fields": [{"field_name": "tax_id", "weight": -1}]}, "negative"),
        ({"fields": [{"field_name": "nickname", "weight": 1}]}, "comparator"),
        ({"fields": [{"field_name": "tax_id", "weight": 1}, {"field_name": "tax_id", "weight": 2}]}, "more than once"),
        ({"fields": [{"field_name": "tax_id", "weight": 0}]}, "positive weight"),
        ({"fields": "tax_id"}, "sequence"),
        ({"fields": ["tax_id"]}, "object"),
    ],
)
def test_load_profile_rejects_invalid_overrides(tmp_path, payload, message):
    path = tmp_path / "weights.json"
    path.write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(SimilarityConfigError, match=message):
        load_profile({"MDM_SIMILARITY_PROFILE_PATH": str(path)})


def test_load_profile_rejects_non_object(tmp_path):
    path = tmp_path / "weights.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")

    with pytest.raises(SimilarityConfigError, match="object"):
        load_profile({"MDM_SIMILARITY_PROFILE_PATH": str(path)})
