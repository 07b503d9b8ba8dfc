"""
Similarity weight configuration for party duplicate detection.

The duplicate finder loads this module to decide which party fields take part
in similarity scoring, how each field is compared, and how much each field
weighs in the final 0-100 score.

Weights are a fixed table by default. Operators can override them by pointing
the ``MDM_SIMILARITY_PROFILE_PATH`` environment variable at a JSON or YAML
file; the helpers here load and validate that override.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, MutableMapping, Sequence

import yaml

# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

COMPARATOR_EXACT = "exact"
COMPARATOR_NAME = "fuzzy_name"
COMPARATOR_ADDRESS = "fuzzy_address"

COMPARATORS: frozenset[str] = frozenset({COMPARATOR_EXACT, COMPARATOR_NAME, COMPARATOR_ADDRESS})


@dataclass(frozen=True)
class FieldWeight:
    """
    Scoring details for a single party field.

    Attributes:
        field_name: Party field compared between the two records.
        weight: Relative importance of the field. Only the weights of fields
            populated on both records count toward the normalizing total.
        comparator: ``exact`` for identifier-like fields (full weight on a
            normalized exact match, zero otherwise), ``fuzzy_name`` for
            Jaro-Winkler over names with legal suffixes removed, and
            ``fuzzy_address`` for token-set similarity over addresses.
    """

    field_name: str
    weight: float
    comparator: str


@dataclass(frozen=True)
class SimilarityProfile:
    """Container for the active field weights."""

    key: str
    label: str
    fields: Sequence[FieldWeight]

    def find_field(self, field_name: str) -> FieldWeight | None:
        for field in self.fields:
            if field.field_name == field_name:
                return field
        return None

    @property
    def total_weight(self) -> float:
        return float(sum(field.weight for field in self.fields))


# ---------------------------------------------------------------------------
# Default profile
# ---------------------------------------------------------------------------

DEFAULT_FIELDS: tuple[FieldWeight, ...] = (
    FieldWeight("tax_id", 30.0, COMPARATOR_EXACT),
    FieldWeight("registration_number", 25.0, COMPARATOR_EXACT),
    FieldWeight("email", 15.0, COMPARATOR_EXACT),
    FieldWeight("phone", 10.0, COMPARATOR_EXACT),
    FieldWeight("name", 25.0, COMPARATOR_NAME),
    FieldWeight("legal_name", 15.0, COMPARATOR_NAME),
    FieldWeight("address", 10.0, COMPARATOR_ADDRESS),
)

DEFAULT_PROFILE = SimilarityProfile(
    key="default",
    label="Default party similarity",
    fields=DEFAULT_FIELDS,
)


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


class SimilarityConfigError(RuntimeError):
    """Raised when a similarity profile override cannot be parsed."""


def _load_override(path: Path) -> MutableMapping[str, object]:
    if not path.exists():
        raise SimilarityConfigError(f"Similarity profile file {path} does not exist.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failure
        raise SimilarityConfigError(f"Unable to read similarity profile file {path}: {exc}") from exc

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise SimilarityConfigError(f"Similarity profile file {path} is not valid: {exc}") from exc

    if not isinstance(data, Mapping):
        raise SimilarityConfigError("Similarity profile must be a JSON/YAML object.")
    return dict(data)


def _coerce_field_weight(raw: Mapping[str, object]) -> FieldWeight:
    if not isinstance(raw, Mapping):
        raise SimilarityConfigError("Each field weight must be an object.")
    name = str(raw.get("field_name") or "").strip()
    if not name:
        raise SimilarityConfigError("Each field weight requires a non-empty field_name.")
    try:
        weight = float(raw.get("weight"))  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise SimilarityConfigError(f"Field {name} requires a numeric weight.") from exc
    if weight < 0:
        raise SimilarityConfigError(f"Field {name} weight must not be negative.")
    default = DEFAULT_PROFILE.find_field(name)
    comparator = str(raw.get("comparator") or (default.comparator if default else "")).strip()
    if comparator not in COMPARATORS:
        raise SimilarityConfigError(
            f"Field {name} comparator must be one of {sorted(COMPARATORS)}, got {comparator!r}."
        )
    return FieldWeight(field_name=name, weight=weight, comparator=comparator)


def _coerce_profile(raw: Mapping[str, object]) -> SimilarityProfile:
    key = str(raw.get("key") or DEFAULT_PROFILE.key).strip() or DEFAULT_PROFILE.key
    label = str(raw.get("label") or DEFAULT_PROFILE.label).strip() or DEFAULT_PROFILE.label
    raw_fields = raw.get("fields") or ()
    if isinstance(raw_fields, (str, bytes)) or not isinstance(raw_fields, Iterable):
        raise SimilarityConfigError("fields must be a sequence.")
    fields = tuple(_coerce_field_weight(item) for item in raw_fields)  # type: ignore[arg-type]
    if not fields:
        fields = DEFAULT_PROFILE.fields
    seen: set[str] = set()
    for field in fields:
        if field.field_name in seen:
            raise SimilarityConfigError(f"Field {field.field_name} is listed more than once.")
        seen.add(field.field_name)
    profile = SimilarityProfile(key=key, label=label, fields=fields)
    if profile.total_weight <= 0:
        raise SimilarityConfigError("At least one field must carry a positive weight.")
    return profile


def load_profile(env: Mapping[str, str] | None = None) -> SimilarityProfile:
    """
    Load the active similarity profile.

    If ``MDM_SIMILARITY_PROFILE_PATH`` is set, its JSON/YAML content replaces
    the default weights. Otherwise the built-in table is used.
    """

    env_map = env or {}
    override_path = env_map.get("MDM_SIMILARITY_PROFILE_PATH")
    if not override_path:
        return DEFAULT_PROFILE
    return _coerce_profile(_load_override(Path(override_path)))


__all__ = [
    "COMPARATOR_ADDRESS",
    "COMPARATOR_EXACT",
    "COMPARATOR_NAME",
    "DEFAULT_PROFILE",
    "FieldWeight",
    "SimilarityConfigError",
    "SimilarityProfile",
    "load_profile",
]
