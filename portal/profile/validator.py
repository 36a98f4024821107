"""
Profile form validator.

Required-field checks run locally before any save request. All violations are
collected in a single pass and returned in declaration order, so the UI can
scroll to the first offending field.

Rules enforced:
  1. first_name         non-empty
  2. last_name          non-empty
  3. date_of_birth      ISO date (YYYY-MM-DD)
  4. country_of_birth   non-empty
  5. primary_language   non-empty
  6. tax_id_type        SSN or ITIN
  7. ssn                ddd-dd-dddd, or a value already on file with nothing typed
  8. accept_terms       true

Document expiration is a soft check: warnings never block a save.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable, Mapping

from portal.profile.masking import is_valid_ssn
from portal.profile.schemas import ErrorDetail, ExpirationStatus, TaxIdType

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: tuple[str, ...] = (
    "first_name",
    "last_name",
    "date_of_birth",
    "country_of_birth",
    "primary_language",
    "tax_id_type",
    "ssn",
    "accept_terms",
)

_ISSUES: dict[str, str] = {
    "first_name": "First name is required.",
    "last_name": "Last name is required.",
    "date_of_birth": "Date of birth is required in YYYY-MM-DD format.",
    "country_of_birth": "Country of birth is required.",
    "primary_language": "Primary language is required.",
    "tax_id_type": "Tax ID type must be SSN or ITIN.",
    "ssn": "A valid SSN/ITIN in the format XXX-XX-XXXX is required.",
    "accept_terms": "You must accept the terms and conditions.",
}

_TAX_ID_TYPES = frozenset(t.value for t in TaxIdType)


def _blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def _valid_iso_date(value: Any) -> bool:
    if _blank(value):
        return False
    try:
        date.fromisoformat(str(value).strip())
    except ValueError:
        return False
    return True


def validate_required_fields(
    snapshot: Mapping[str, Any],
    ssn_value: str,
    ssn_on_file: bool,
) -> list[str]:
    """
    Return the required fields that are empty or malformed, in rule order.

    Args:
        snapshot: Current plain form values.
        ssn_value: Plaintext currently held by the SSN field ("" if untouched).
        ssn_on_file: True when the server reports a stored SSN/ITIN.
    """
    invalid: list[str] = []

    for name in ("first_name", "last_name"):
        if _blank(snapshot.get(name)):
            invalid.append(name)

    if not _valid_iso_date(snapshot.get("date_of_birth")):
        invalid.append("date_of_birth")

    for name in ("country_of_birth", "primary_language"):
        if _blank(snapshot.get(name)):
            invalid.append(name)

    if snapshot.get("tax_id_type") not in _TAX_ID_TYPES:
        invalid.append("tax_id_type")

    if ssn_value:
        if not is_valid_ssn(ssn_value):
            invalid.append("ssn")
    elif not ssn_on_file:
        invalid.append("ssn")

    if snapshot.get("accept_terms") is not True:
        invalid.append("accept_terms")

    if invalid:
        # Field names only, never the values
        logger.info("Profile validation failed: %d field(s) %s", len(invalid), invalid)
    return invalid


def issue_details(fields: Iterable[str]) -> list[ErrorDetail]:
    """Human-readable details for the standard error envelope."""
    return [
        ErrorDetail(field=name, issue=_ISSUES.get(name, "Invalid value."))
        for name in fields
    ]


def document_warnings(groups: Iterable[Any]) -> list[str]:
    """
    Soft expiration check over document groups.

    Returns a warning string per expired or soon-to-expire document; an empty
    list when every document is fine or has no expiration date.
    """
    warnings: list[str] = []
    for group in groups:
        info = group.expiration()
        if info is None:
            continue
        label = group.name.replace("_", " ")
        if info.status is ExpirationStatus.expired:
            warnings.append(f"Your {label} expired on {info.date_str}.")
        elif info.status is ExpirationStatus.soon:
            warnings.append(
                f"Your {label} expires in {info.days_left} day(s) ({info.date_str})."
            )
    return warnings
