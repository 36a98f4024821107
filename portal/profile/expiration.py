"""
Expiration status for identity documents (driver's license, passport).
"""
from __future__ import annotations

import re
from datetime import date
from typing import Optional

from portal.profile.schemas import ExpirationInfo, ExpirationStatus

DEFAULT_WARNING_DAYS = 90

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def get_expiration_info(
    date_str: str,
    warning_days: int = DEFAULT_WARNING_DAYS,
    today: Optional[date] = None,
) -> Optional[ExpirationInfo]:
    """
    Classify a YYYY-MM-DD expiration date.

    Returns None for empty or malformed input. 'soon' covers the window of
    warning_days (inclusive) before expiry; a date equal to today is 'soon'.
    """
    if not date_str or not _ISO_DATE.match(date_str):
        return None
    try:
        expires = date.fromisoformat(date_str)
    except ValueError:
        return None

    days_left = (expires - (today or date.today())).days
    if days_left < 0:
        status = ExpirationStatus.expired
    elif days_left <= warning_days:
        status = ExpirationStatus.soon
    else:
        status = ExpirationStatus.ok
    return ExpirationInfo(status=status, days_left=days_left, date_str=date_str)
