"""
Masking and formatting rules per field kind.

Groups:
  1. Display masks (ssn / license / passport / generic)
  2. Input formatting while typing
  3. Dispatch table coverage
"""
from __future__ import annotations

import pytest

from portal.profile.masking import (
    DOCUMENT_PLACEHOLDER,
    FIELD_RULES,
    SSN_PLACEHOLDER,
    format_ssn,
    format_value,
    is_valid_ssn,
    mask_value,
)
from portal.profile.schemas import FieldKind


# ===========================================================================
# TEST GROUP 1: Display masks
# ===========================================================================

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("123-45-6789", "XXX-XX-6789"),
        ("123456789", "XXX-XX-6789"),
        ("123-45-67", "XXX-XX-4567"),
        ("12", SSN_PLACEHOLDER),
        ("", ""),
    ],
)
def test_ssn_mask(raw: str, expected: str) -> None:
    assert mask_value(FieldKind.ssn, raw) == expected


@pytest.mark.parametrize("kind", [FieldKind.license, FieldKind.passport])
def test_document_mask_shows_last_four(kind: FieldKind) -> None:
    assert mask_value(kind, "D1234567") == "••••4567"
    assert mask_value(kind, "ABCD") == "••••ABCD"


@pytest.mark.parametrize("kind", [FieldKind.license, FieldKind.passport])
def test_document_mask_short_value_uses_placeholder(kind: FieldKind) -> None:
    assert mask_value(kind, "X12") == DOCUMENT_PLACEHOLDER
    assert len(DOCUMENT_PLACEHOLDER) == 8


def test_generic_mask_length_is_capped() -> None:
    assert mask_value(FieldKind.generic, "abc") == "•••"
    assert mask_value(FieldKind.generic, "x" * 40) == "•" * 12


def test_mask_does_not_mutate_input() -> None:
    raw = "123-45-6789"
    for _ in range(3):
        mask_value(FieldKind.ssn, raw)
    assert raw == "123-45-6789"


# ===========================================================================
# TEST GROUP 2: Input formatting
# ===========================================================================

@pytest.mark.parametrize(
    "typed, expected",
    [
        ("1", "1"),
        ("123", "123"),
        ("1234", "123-4"),
        ("12345", "123-45"),
        ("123456", "123-45-6"),
        ("123456789", "123-45-6789"),
        ("123-45-6789", "123-45-6789"),
        ("123 45 67890", "123-45-6789"),   # tenth digit dropped
        ("abc", ""),
    ],
)
def test_format_ssn_groups_digits(typed: str, expected: str) -> None:
    assert format_ssn(typed) == expected


def test_documents_are_uppercased() -> None:
    assert format_value(FieldKind.license, "d12ab") == "D12AB"
    assert format_value(FieldKind.passport, "p00x") == "P00X"


def test_generic_format_is_identity() -> None:
    assert format_value(FieldKind.generic, "MixedCase 1") == "MixedCase 1"


def test_ssn_pattern() -> None:
    assert is_valid_ssn("123-45-6789")
    assert not is_valid_ssn("123-45-678")
    assert not is_valid_ssn("123456789")
    assert not is_valid_ssn("")


# ===========================================================================
# TEST GROUP 3: Dispatch table
# ===========================================================================

def test_every_kind_has_a_rule() -> None:
    assert set(FIELD_RULES) == set(FieldKind)
