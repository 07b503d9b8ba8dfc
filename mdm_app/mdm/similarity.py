from __future__ import annotations

from typing import Any, Callable, Mapping

from rapidfuzz import fuzz, utils
from rapidfuzz.distance import JaroWinkler

from config.similarity import (
    COMPARATOR_ADDRESS,
    COMPARATOR_EXACT,
    COMPARATOR_NAME,
    DEFAULT_PROFILE,
    FieldWeight,
    SimilarityProfile,
)
from mdm_app.mdm.normalize import (
    clean_text,
    normalize_email,
    normalize_identifier,
    normalize_name,
    normalize_phone,
)


def _clamp(value: float) -> float:
    return float(max(0.0, min(1.0, value)))


def compute_name_similarity(name1: object | None, name2: object | None) -> float:
    """Return Jaro-Winkler similarity between two party names (0..1), legal suffixes ignored."""

    normalized1 = normalize_name(name1)
    normalized2 = normalize_name(name2)
    if not normalized1 or not normalized2:
        return 0.0
    return _clamp(JaroWinkler.normalized_similarity(normalized1, normalized2))


def compute_address_similarity(address1: object | None, address2: object | None) -> float:
    """Return token-set similarity for free-text addresses (0..1)."""

    tokens1 = utils.default_process(clean_text(address1))
    tokens2 = utils.default_process(clean_text(address2))
    if not tokens1 or not tokens2:
        return 0.0
    return _clamp(fuzz.token_set_ratio(tokens1, tokens2) / 100.0)


def _phone_token(value: object | None) -> str | None:
    normalized = normalize_phone(value)
    if normalized:
        return normalized
    digits = "".join(c for c in clean_text(value) if c.isdigit())
    return digits or None


_EXACT_NORMALIZERS: dict[str, Callable[[object | None], str | None]] = {
    "email": normalize_email,
    "phone": _phone_token,
}


def compute_exact_match(field_name: str, value1: object | None, value2: object | None) -> float:
    """Return 1.0 when both normalized values are present and equal, else 0.0."""

    normalizer = _EXACT_NORMALIZERS.get(field_name, normalize_identifier)
    token1 = normalizer(value1)
    token2 = normalizer(value2)
    if not token1 or not token2:
        return 0.0
    return 1.0 if token1 == token2 else 0.0


def record_fields(record: Any) -> Mapping[str, Any]:
    """Field map of a ``Party``, ``RecordSnapshot`` or plain mapping."""

    if record is None:
        return {}
    if isinstance(record, Mapping):
        return record
    fields = getattr(record, "fields", None)
    if isinstance(fields, Mapping):
        return fields
    field_values = getattr(record, "field_values", None)
    if callable(field_values):
        return field_values()
    return {}


def _comparison_token(field: FieldWeight, value: object | None) -> str | None:
    if field.comparator == COMPARATOR_EXACT:
        return _EXACT_NORMALIZERS.get(field.field_name, normalize_identifier)(value)
    if field.comparator == COMPARATOR_NAME:
        return normalize_name(value)
    if field.comparator == COMPARATOR_ADDRESS:
        return utils.default_process(clean_text(value))
    return clean_text(value)


def _comparable(value1: object | None, value2: object | None) -> bool:
    return bool(clean_text(value1)) and bool(clean_text(value2))


class SimilarityScorer:
    """
    Weighted 0-100 match score between two party records.

    Only fields populated on both records take part: each contributes
    ``weight * similarity`` to the numerator and its weight to the
    normalizing total, so a pair that agrees on everything it shares scores
    100. Records accept ``Party`` instances, snapshots or plain mappings.
    """

    def __init__(self, profile: SimilarityProfile | None = None):
        self.profile = profile or DEFAULT_PROFILE

    def _compare(self, field: FieldWeight, value1: object | None, value2: object | None) -> float:
        token1 = _comparison_token(field, value1)
        token2 = _comparison_token(field, value2)
        if not token1 or not token2:
            # Values the comparator cannot normalize fall back to their cleaned text.
            return 1.0 if clean_text(value1).casefold() == clean_text(value2).casefold() else 0.0
        if field.comparator == COMPARATOR_EXACT:
            return compute_exact_match(field.field_name, value1, value2)
        if field.comparator == COMPARATOR_NAME:
            return compute_name_similarity(value1, value2)
        if field.comparator == COMPARATOR_ADDRESS:
            return compute_address_similarity(value1, value2)
        return 0.0

    def explain(self, record_a: Any, record_b: Any) -> dict[str, float]:
        """Per-field similarity (0..1) for every field populated on both records."""

        fields_a = record_fields(record_a)
        fields_b = record_fields(record_b)
        features: dict[str, float] = {}
        for field in self.profile.fields:
            value1 = fields_a.get(field.field_name)
            value2 = fields_b.get(field.field_name)
            if not _comparable(value1, value2):
                continue
            features[field.field_name] = self._compare(field, value1, value2)
        return features

    def weighted_score(self, features: Mapping[str, float]) -> float:
        numerator = 0.0
        denominator = 0.0
        for field in self.profile.fields:
            if field.field_name not in features:
                continue
            numerator += field.weight * _clamp(features[field.field_name])
            denominator += field.weight
        if denominator <= 0:
            return 0.0
        return round(max(0.0, min(100.0, 100.0 * numerator / denominator)), 2)

    def score(self, record_a: Any, record_b: Any) -> float:
        return self.weighted_score(self.explain(record_a, record_b))


def summarize_features(features: Mapping[str, float]) -> dict[str, float]:
    """Clamp feature scores to [0,1] and round to 3 decimal places for persistence."""

    return {key: round(_clamp(value), 3) for key, value in features.items()}


__all__ = [
    "SimilarityScorer",
    "compute_address_similarity",
    "compute_exact_match",
    "compute_name_similarity",
    "record_fields",
    "summarize_features",
]
