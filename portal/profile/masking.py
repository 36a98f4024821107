"""
masking.py — display masks and input formatting per sensitive field kind.

One dispatch table (FIELD_RULES) maps each FieldKind to its mask and format
functions. Masks are pure: they never mutate or retain the value they render.

Mask formats match what the upstream API builds from stored last-4 values:
  ssn               XXX-XX-1234   (placeholder XXX-XX-XXXX)
  license/passport  ••••5678      (placeholder ••••••••)
  generic           one bullet per character, 8 if empty, at most 12
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from portal.profile.schemas import FieldKind

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
BULLET = "•"
SSN_PREFIX = "XXX-XX-"
SSN_PLACEHOLDER = "XXX-XX-XXXX"
DOCUMENT_PREFIX = BULLET * 4
DOCUMENT_PLACEHOLDER = BULLET * 8
GENERIC_DEFAULT_LEN = 8
GENERIC_MAX_LEN = 12
SSN_DIGITS = 9

SSN_PATTERN = re.compile(r"^\d{3}-\d{2}-\d{4}$")
_NON_DIGIT = re.compile(r"\D")


# ---------------------------------------------------------------------------
# Masks
# ---------------------------------------------------------------------------

def mask_ssn(raw: str) -> str:
    if not raw:
        return ""
    digits = _NON_DIGIT.sub("", raw)
    if len(digits) >= 4:
        return f"{SSN_PREFIX}{digits[-4:]}"
    return SSN_PLACEHOLDER


def mask_document(raw: str) -> str:
    if not raw:
        return ""
    if len(raw) >= 4:
        return f"{DOCUMENT_PREFIX}{raw[-4:]}"
    return DOCUMENT_PLACEHOLDER


def mask_generic(raw: str) -> str:
    if not raw:
        return ""
    return BULLET * min(len(raw) or GENERIC_DEFAULT_LEN, GENERIC_MAX_LEN)


# ---------------------------------------------------------------------------
# Input formatting
# ---------------------------------------------------------------------------

def format_ssn(raw: str) -> str:
    """Keep digits only and group them as ddd-dd-dddd while typing."""
    digits = _NON_DIGIT.sub("", raw or "")[:SSN_DIGITS]
    if len(digits) <= 3:
        return digits
    if len(digits) <= 5:
        return f"{digits[:3]}-{digits[3:]}"
    return f"{digits[:3]}-{digits[3:5]}-{digits[5:]}"


def format_document(raw: str) -> str:
    return (raw or "").upper()


def format_generic(raw: str) -> str:
    return raw or ""


def is_valid_ssn(value: str) -> bool:
    return bool(SSN_PATTERN.fullmatch(value or ""))


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldRule:
    mask: Callable[[str], str]
    format: Callable[[str], str]


FIELD_RULES: dict[FieldKind, FieldRule] = {
    FieldKind.ssn: FieldRule(mask=mask_ssn, format=format_ssn),
    FieldKind.license: FieldRule(mask=mask_document, format=format_document),
    FieldKind.passport: FieldRule(mask=mask_document, format=format_document),
    FieldKind.generic: FieldRule(mask=mask_generic, format=format_generic),
}


def mask_value(kind: FieldKind, raw: str) -> str:
    return FIELD_RULES[kind].mask(raw)


def format_value(kind: FieldKind, raw: str) -> str:
    return FIELD_RULES[kind].format(raw)
