"""Mozambican mobile number validation and formatting."""
import re

ALLOWED_PREFIXES = ("84", "85", "86", "87")
COUNTRY_CODE = "258"
NATIONAL_LENGTH = 9

_NON_DIGITS = re.compile(r"\D")


def _digits(raw: str) -> str:
    return _NON_DIGITS.sub("", raw or "")


def normalize_phone_number(raw: str) -> str:
    """Return the 9-digit national number, or "" if there are fewer digits."""
    digits = _digits(raw)
    if len(digits) < NATIONAL_LENGTH:
        return ""
    return digits[-NATIONAL_LENGTH:]


def validate_phone_number(raw: str) -> bool:
    national = _digits(raw)[-NATIONAL_LENGTH:]
    return len(national) == NATIONAL_LENGTH and national[:2] in ALLOWED_PREFIXES


def format_phone_number(raw: str) -> str:
    national = normalize_phone_number(raw)
    if not national:
        return raw
    return f"+{COUNTRY_CODE} {national[:2]} {national[2:5]} {national[5:]}"
