"""
Value normalization shared by similarity scoring and quality checks.
"""

from __future__ import annotations

import re

_E164_REGEX = re.compile(r"^\+[1-9]\d{7,14}$")
_EXTENSION_REGEX = re.compile(r"\s*(x|ext|extension|#)\s*\d+.*$", re.IGNORECASE)
_IDENTIFIER_STRIP = re.compile(r"[^0-9A-Z]")
_NAME_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

# Trailing legal-form tokens ignored when comparing party names.
LEGAL_SUFFIXES: frozenset[str] = frozenset(
    {
        "ag",
        "bv",
        "co",
        "company",
        "corp",
        "corporation",
        "gmbh",
        "inc",
        "incorporated",
        "limited",
        "llc",
        "llp",
        "lp",
        "ltd",
        "nv",
        "oy",
        "plc",
        "pty",
        "sa",
        "sarl",
        "sas",
        "spa",
        "srl",
    }
)


def clean_text(value: object | None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value).strip()


def normalize_email(value: object | None) -> str | None:
    """
    Normalize email for exact matching.

    - Lower-case entire address
    - Trim whitespace
    - Drop plus-addressing suffix (everything after '+') in the local part
    """

    token = clean_text(value)
    if not token:
        return None
    token = token.lower()
    if "@" not in token:
        return token
    local_part, domain = token.split("@", 1)
    if "+" in local_part:
        local_part = local_part.split("+", 1)[0]
    return f"{local_part}@{domain}"


def normalize_phone(value: object | None) -> str | None:
    """
    Normalize phone numbers to strict E.164 (+<country><number>) format.

    Ten-digit numbers without a country code are treated as North American
    (+1). Extensions are dropped. Returns None when the value cannot be
    normalized.
    """

    token = clean_text(value)
    if not token:
        return None

    token = _EXTENSION_REGEX.sub("", token).strip()
    if not token:
        return None

    token = token.replace(" ", "").replace("-", "").replace("(", "").replace(")", "").replace(".", "")

    if token.startswith("00"):
        token = f"+{token[2:]}"

    digits_only = "".join(c for c in token if c.isdigit())

    if not token.startswith("+"):
        if len(digits_only) == 10:
            normalized = f"+1{digits_only}"
        elif len(digits_only) == 11 and digits_only.startswith("1"):
            normalized = f"+{digits_only}"
        else:
            return None
    else:
        if not token[1:].isdigit():
            return None
        normalized = f"+{digits_only}"

    if _E164_REGEX.match(normalized):
        return normalized
    return None


def normalize_identifier(value: object | None) -> str | None:
    """Upper-case and strip separators from tax/registration identifiers."""

    token = _IDENTIFIER_STRIP.sub("", clean_text(value).upper())
    return token or None


def normalize_name(value: object | None) -> str:
    """
    Lower-case a party name, drop punctuation and trailing legal-form suffixes.

    ``"Acme, Inc."`` and ``"ACME Incorporated"`` both become ``"acme"``. A name
    made only of suffix tokens is kept as-is so it still compares.
    """

    text = _NAME_PUNCTUATION.sub(" ", clean_text(value).lower())
    tokens = _WHITESPACE.split(text.strip()) if text.strip() else []
    trimmed = list(tokens)
    while len(trimmed) > 1 and trimmed[-1] in LEGAL_SUFFIXES:
        trimmed.pop()
    return " ".join(trimmed)


def is_empty(value: object | None) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


__all__ = [
    "LEGAL_SUFFIXES",
    "clean_text",
    "is_empty",
    "normalize_email",
    "normalize_identifier",
    "normalize_name",
    "normalize_phone",
]
