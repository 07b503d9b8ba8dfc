"""
Data quality scoring for party records.

Three dimensions are scored from 0 to 100:

* completeness: share of the expected fields that are populated
* validity: share of populated, format-checked fields that pass their check
* consistency: share of applicable cross-field checks that pass

A dimension with nothing to check scores 0. The overall score weights them
0.40 / 0.35 / 0.25 and is rounded to an integer. Failed checks are reported
by code in ``issues``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Sequence

from email_validator import EmailNotValidError, validate_email
from rapidfuzz import fuzz

from mdm_app.mdm.normalize import clean_text, is_empty, normalize_identifier, normalize_name, normalize_phone
from mdm_app.mdm.similarity import record_fields
from mdm_app.models.base import utcnow

DIMENSION_COMPLETENESS = "completeness"
DIMENSION_VALIDITY = "validity"
DIMENSION_CONSISTENCY = "consistency"

DIMENSION_WEIGHTS: Mapping[str, float] = {
    DIMENSION_COMPLETENESS: 0.40,
    DIMENSION_VALIDITY: 0.35,
    DIMENSION_CONSISTENCY: 0.25,
}

EXPECTED_FIELDS: tuple[str, ...] = (
    "name",
    "legal_name",
    "registration_number",
    "tax_id",
    "email",
    "phone",
    "address",
    "city",
    "country",
)

NAME_OVERLAP_THRESHOLD = 60

_TAX_ID_REGEX = re.compile(r"^(?:[A-Z]{2})?[0-9][0-9A-Z]{4,17}$")
_REGISTRATION_REGEX = re.compile(r"^(?=.*[0-9])[0-9A-Z]{4,20}$")
_VAT_PREFIX_REGEX = re.compile(r"^([A-Z]{2})[0-9]")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")

ISO_COUNTRY_CODES: frozenset[str] = frozenset(
    """
    AD AE AF AG AI AL AM AO AQ AR AS AT AU AW AX AZ BA BB BD BE BF BG BH BI BJ BL
    BM BN BO BQ BR BS BT BV BW BY BZ CA CC CD CF CG CH CI CK CL CM CN CO CR CU CV
    CW CX CY CZ DE DJ DK DM DO DZ EC EE EG EH ER ES ET FI FJ FK FM FO FR GA GB GD
    GE GF GG GH GI GL GM GN GP GQ GR GS GT GU GW GY HK HM HN HR HT HU ID IE IL IM
    IN IO IQ IR IS IT JE JM JO JP KE KG KH KI KM KN KP KR KW KY KZ LA LB LC LI LK
    LR LS LT LU LV LY MA MC MD ME MF MG MH MK ML MM MN MO MP MQ MR MS MT MU MV MW
    MX MY MZ NA NC NE NF NG NI NL NO NP NR NU NZ OM PA PE PF PG PH PK PL PM PN PR
    PS PT PW PY QA RE RO RS RU RW SA SB SC SD SE SG SH SI SJ SK SL SM SN SO SR SS
    ST SV SX SY SZ TC TD TF TG TH TJ TK TL TM TN TO TR TT TV TW TZ UA UG UM US UY
    UZ VA VC VE VG VI VN VU WF WS YE YT ZA ZM ZW
    """.split()
)

# International dialling prefixes for the phone/country consistency check.
COUNTRY_DIAL_CODES: Mapping[str, str] = {
    "AE": "971",
    "AR": "54",
    "AT": "43",
    "AU": "61",
    "BE": "32",
    "BG": "359",
    "BR": "55",
    "CA": "1",
    "CH": "41",
    "CN": "86",
    "CY": "357",
    "CZ": "420",
    "DE": "49",
    "DK": "45",
    "EE": "372",
    "ES": "34",
    "FI": "358",
    "FR": "33",
    "GB": "44",
    "GR": "30",
    "HK": "852",
    "HR": "385",
    "HU": "36",
    "IE": "353",
    "IL": "972",
    "IN": "91",
    "IT": "39",
    "JP": "81",
    "KR": "82",
    "LT": "370",
    "LU": "352",
    "LV": "371",
    "MT": "356",
    "MX": "52",
    "NL": "31",
    "NO": "47",
    "NZ": "64",
    "PL": "48",
    "PT": "351",
    "RO": "40",
    "SA": "966",
    "SE": "46",
    "SG": "65",
    "SI": "386",
    "SK": "421",
    "TR": "90",
    "US": "1",
    "ZA": "27",
}

# VAT prefixes that differ from the ISO country code.
VAT_PREFIX_ALIASES: Mapping[str, str] = {"EL": "GR", "XI": "GB"}


@dataclass(frozen=True)
class QualityScore:
    score: int
    breakdown: Mapping[str, float]
    issues: Sequence[str]
    computed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "breakdown": dict(self.breakdown),
            "issues": list(self.issues),
            "computed_at": self.computed_at.isoformat(),
        }


@dataclass(frozen=True, kw_only=True)
class QualityRule:
    """
    A single validity or consistency check.

    ``evaluate`` returns True/False, or None when the check does not apply to
    the record (e.g. the field it validates is empty).
    """

    code: str
    dimension: str
    description: str

    def evaluate(self, fields: Mapping[str, Any]) -> bool | None:
        raise NotImplementedError


def _value(fields: Mapping[str, Any], name: str) -> str:
    return clean_text(fields.get(name))


def _country(fields: Mapping[str, Any]) -> str | None:
    country = _value(fields, "country").upper()
    if country in ISO_COUNTRY_CODES:
        return country
    return None


@dataclass(frozen=True, kw_only=True)
class FieldFormatRule(QualityRule):
    """Validity check applied when ``field_name`` is populated."""

    field_name: str
    predicate: Callable[[str], bool]
    dimension: str = DIMENSION_VALIDITY

    def evaluate(self, fields: Mapping[str, Any]) -> bool | None:
        value = _value(fields, self.field_name)
        if not value:
            return None
        return bool(self.predicate(value))


def _email_is_valid(value: str) -> bool:
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _phone_is_valid(value: str) -> bool:
    return normalize_phone(value) is not None


def _tax_id_is_valid(value: str) -> bool:
    token = normalize_identifier(value) or ""
    return bool(_TAX_ID_REGEX.match(token))


def _registration_is_valid(value: str) -> bool:
    token = normalize_identifier(value) or ""
    return bool(_REGISTRATION_REGEX.match(token))


def _country_is_valid(value: str) -> bool:
    return value.upper() in ISO_COUNTRY_CODES and len(value) == 2


def _name_is_valid(value: str) -> bool:
    if len(value) < 2 or len(value) > 255:
        return False
    if _CONTROL_CHARS.search(value):
        return False
    return any(ch.isalnum() for ch in value)


@dataclass(frozen=True, kw_only=True)
class PhoneCountryRule(QualityRule):
    code: str = "PARTY_PHONE_COUNTRY_MISMATCH"
    dimension: str = DIMENSION_CONSISTENCY
    description: str = "Phone dialling code should match the party's country."

    def evaluate(self, fields: Mapping[str, Any]) -> bool | None:
        country = _country(fields)
        phone = normalize_phone(fields.get("phone"))
        if not country or not phone or country not in COUNTRY_DIAL_CODES:
            return None
        return phone.startswith(f"+{COUNTRY_DIAL_CODES[country]}")


@dataclass(frozen=True, kw_only=True)
class TaxIdCountryRule(QualityRule):
    code: str = "PARTY_TAX_ID_COUNTRY_MISMATCH"
    dimension: str = DIMENSION_CONSISTENCY
    description: str = "VAT-style tax id prefix should match the party's country."

    def evaluate(self, fields: Mapping[str, Any]) -> bool | None:
        country = _country(fields)
        token = normalize_identifier(fields.get("tax_id")) or ""
        match = _VAT_PREFIX_REGEX.match(token)
        if not country or not match:
            return None
        prefix = VAT_PREFIX_ALIASES.get(match.group(1), match.group(1))
        if prefix not in ISO_COUNTRY_CODES:
            return None
        return prefix == country


@dataclass(frozen=True, kw_only=True)
class NameLegalNameRule(QualityRule):
    code: str = "PARTY_NAME_LEGAL_NAME_MISMATCH"
    dimension: str = DIMENSION_CONSISTENCY
    description: str = "Trading name and legal name should share their significant tokens."
    threshold: int = NAME_OVERLAP_THRESHOLD

    def evaluate(self, fields: Mapping[str, Any]) -> bool | None:
        name = normalize_name(fields.get("name"))
        legal_name = normalize_name(fields.get("legal_name"))
        if not name or not legal_name:
            return None
        return fuzz.token_set_ratio(name, legal_name) >= self.threshold


DEFAULT_RULES: Sequence[QualityRule] = (
    FieldFormatRule(
        code="PARTY_NAME_FORMAT",
        field_name="name",
        description="Name must contain letters or digits.",
        predicate=_name_is_valid,
    ),
    FieldFormatRule(
        code="PARTY_LEGAL_NAME_FORMAT",
        field_name="legal_name",
        description="Legal name must contain letters or digits.",
        predicate=_name_is_valid,
    ),
    FieldFormatRule(
        code="PARTY_EMAIL_FORMAT",
        field_name="email",
        description="Email must be a well-formed address.",
        predicate=_email_is_valid,
    ),
    FieldFormatRule(
        code="PARTY_PHONE_E164",
        field_name="phone",
        description="Phone must normalize to E.164.",
        predicate=_phone_is_valid,
    ),
    FieldFormatRule(
        code="PARTY_TAX_ID_FORMAT",
        field_name="tax_id",
        description="Tax id must look like a national or VAT number.",
        predicate=_tax_id_is_valid,
    ),
    FieldFormatRule(
        code="PARTY_REGISTRATION_FORMAT",
        field_name="registration_number",
        description="Registration number must be 4-20 alphanumerics with at least one digit.",
        predicate=_registration_is_valid,
    ),
    FieldFormatRule(
        code="PARTY_COUNTRY_ISO",
        field_name="country",
        description="Country must be an ISO 3166-1 alpha-2 code.",
        predicate=_country_is_valid,
    ),
    PhoneCountryRule(),
    TaxIdCountryRule(),
    NameLegalNameRule(),
)


def _ratio(passed: int, total: int) -> float:
    if total == 0:
        return 0.0
    return 100.0 * passed / total


class QualityScorer:
    """Computes a ``QualityScore`` for a single record."""

    def __init__(
        self,
        rules: Iterable[QualityRule] | None = None,
        *,
        expected_fields: Sequence[str] = EXPECTED_FIELDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.rules = tuple(rules) if rules is not None else tuple(DEFAULT_RULES)
        self.expected_fields = tuple(expected_fields)
        self.clock = clock

    def score(self, record: Any) -> QualityScore:
        fields = record_fields(record)
        issues: list[str] = []

        populated = [name for name in self.expected_fields if not is_empty(fields.get(name))]
        missing = [name for name in self.expected_fields if name not in populated]
        issues.extend(f"PARTY_MISSING_{name.upper()}" for name in missing)

        tallies: dict[str, list[int]] = {DIMENSION_VALIDITY: [0, 0], DIMENSION_CONSISTENCY: [0, 0]}
        for rule in self.rules:
            outcome = rule.evaluate(fields)
            if outcome is None:
                continue
            tally = tallies.setdefault(rule.dimension, [0, 0])
            tally[1] += 1
            if outcome:
                tally[0] += 1
            else:
                issues.append(rule.code)

        breakdown = {
            DIMENSION_COMPLETENESS: round(_ratio(len(populated), len(self.expected_fields)), 2),
            DIMENSION_VALIDITY: round(_ratio(*tallies[DIMENSION_VALIDITY]), 2),
            DIMENSION_CONSISTENCY: round(_ratio(*tallies[DIMENSION_CONSISTENCY]), 2),
        }
        overall = sum(DIMENSION_WEIGHTS[dimension] * breakdown[dimension] for dimension in DIMENSION_WEIGHTS)
        return QualityScore(
            score=int(round(overall)),
            breakdown=breakdown,
            issues=tuple(issues),
            computed_at=self.clock(),
        )


__all__ = [
    "COUNTRY_DIAL_CODES",
    "DEFAULT_RULES",
    "EXPECTED_FIELDS",
    "FieldFormatRule",
    "NameLegalNameRule",
    "PhoneCountryRule",
    "QualityRule",
    "QualityScore",
    "QualityScorer",
    "TaxIdCountryRule",
]
