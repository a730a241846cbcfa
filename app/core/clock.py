"""Clinic-local time helpers."""

from datetime import datetime
from zoneinfo import ZoneInfo

from app.config import settings


def clinic_now() -> datetime:
    """Return the current time in the clinic's timezone."""
    return datetime.now(ZoneInfo(settings.clinic_timezone))
