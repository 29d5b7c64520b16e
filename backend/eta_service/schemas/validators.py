"""Reusable field checks for the application wizard.

Each check raises `PydanticCustomError` whose *type* is the
machine-readable error key (e.g. ``contact.errors.phoneInvalid``).
Display strings are resolved by the front end, never here.

Usage in a step schema:

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        return check_phone(v, "contact.errors.phoneInvalid")
"""

import calendar
import re
from datetime import date

from pydantic import ValidationInfo
from pydantic_core import PydanticCustomError

from eta_service.config import settings


EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_REGEX = re.compile(r"^\+?[1-9]\d{6,14}$")
PASSPORT_NUMBER_REGEX = re.compile(r"^[A-Z0-9]{6,12}$", re.IGNORECASE)


def today_from(info: ValidationInfo) -> date:
    """Reference date for relative-date rules.

    Callers may pin it via ``model_validate(data, context={"today": ...})``.
    """
    context = info.context or {}
    return context.get("today") or date.today()


def min_validity_months_from(info: ValidationInfo) -> int:
    context = info.context or {}
    return context.get("min_validity_months", settings.passport_min_validity_months)


def add_months(value: date, months: int) -> date:
    """Calendar-aware month addition, clamped to the target month's last day.

    add_months(date(2026, 8, 31), 6) -> date(2027, 2, 28)
    """
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def check_email(value: str, error_key: str) -> str:
    """Syntactic email check. Case is preserved (confirmation is exact-match)."""
    if len(value) > 254 or not EMAIL_REGEX.match(value):  # RFC 5321
        raise PydanticCustomError(error_key, "Invalid email address format")
    return value


def check_phone(value: str, error_key: str) -> str:
    """International number, optional leading +, 7-15 digits, no leading 0."""
    if not PHONE_REGEX.match(value):
        raise PydanticCustomError(error_key, "Invalid phone number format")
    return value


def check_passport_number(value: str, error_key: str) -> str:
    if not PASSPORT_NUMBER_REGEX.match(value):
        raise PydanticCustomError(error_key, "Passport number must be 6-12 letters or digits")
    return value


def check_not_after(value: date, limit: date, error_key: str) -> date:
    if value > limit:
        raise PydanticCustomError(error_key, "Date must not be after {limit}", {"limit": limit.isoformat()})
    return value


def check_strictly_after(value: date, limit: date, error_key: str) -> date:
    if not value > limit:
        raise PydanticCustomError(error_key, "Date must be after {limit}", {"limit": limit.isoformat()})
    return value


def check_strictly_before(value: date, limit: date, error_key: str) -> date:
    if not value < limit:
        raise PydanticCustomError(error_key, "Date must be before {limit}", {"limit": limit.isoformat()})
    return value
