# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Lifecycle Rules — Status derivation and validity date arithmetic.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from typing import Iterable

from consent_vault.storage.models import (
    ConsentHandle,
    ConsentPreference,
    ConsentStatus,
    Duration,
    HandleStatus,
    Period,
    PreferenceStatus,
)

DEFAULT_CONSENT_VALIDITY = Duration(value=1, unit=Period.YEARS)


def derive_consent_status(preferences: Iterable[ConsentPreference]) -> ConsentStatus:
    """
    ACTIVE when any purpose is accepted, or when every purpose was
    explicitly declined (a recorded reject-all). INACTIVE otherwise.
    """
    statuses = [p.preference_status for p in preferences]
    if any(s == PreferenceStatus.ACCEPTED for s in statuses):
        return ConsentStatus.ACTIVE
    if statuses and all(s == PreferenceStatus.NOTACCEPTED for s in statuses):
        return ConsentStatus.ACTIVE
    return ConsentStatus.INACTIVE


def effective_handle_status(handle: ConsentHandle, now: datetime) -> HandleStatus:
    """Stored status, except that any handle at or past expires_at reads EXPIRED."""
    if handle.expires_at is not None and now >= handle.expires_at:
        return HandleStatus.EXPIRED
    return handle.status


def add_duration(start: datetime, duration: Duration) -> datetime:
    """Calendar-aware addition; month ends clamp (Jan 31 + 1 month -> Feb 28/29)."""
    if duration.unit == Period.DAYS:
        return start + timedelta(days=duration.value)
    months = duration.value * (12 if duration.unit == Period.YEARS else 1)
    total = start.month - 1 + months
    year, month = start.year + total // 12, total % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def consent_end_date(
    preferences: Iterable[ConsentPreference],
    start: datetime,
) -> datetime:
    """Earliest end date of any accepted purpose; one year out when none is accepted."""
    ends = [
        p.end_date for p in preferences
        if p.preference_status == PreferenceStatus.ACCEPTED and p.end_date is not None
    ]
    return min(ends) if ends else add_duration(start, DEFAULT_CONSENT_VALIDITY)
