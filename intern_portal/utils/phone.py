"""
Phone number canonicalization, validation and masking utilities.

Phone numbers are stored and keyed as digits only: country code followed by
the subscriber number, no '+' and no separators (e.g. 919876543210).
"""
import re

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

PHONE_PATTERN = re.compile(r"^[1-9]\d{9,14}$", re.ASCII)
_SEPARATORS = re.compile(r"[\s\-.()]")


def canonicalize_phone(phone: str) -> str:
    """
    Canonicalize and validate a phone number.

    Strips surrounding whitespace, a single leading '+', and the separators
    space, '-', '.', '(' and ')'. The result must be 10-15 digits with a
    non-zero first digit.

    Args:
        phone: Raw phone number as entered by the user

    Returns:
        Canonical digits-only phone number

    Raises:
        ValueError: If phone number is missing or malformed
    """
    if not isinstance(phone, str) or not phone.strip():
        raise ValueError("Phone number is required")

    candidate = phone.strip()
    if candidate.startswith("+"):
        candidate = candidate[1:]
    candidate = _SEPARATORS.sub("", candidate)

    if not PHONE_PATTERN.fullmatch(candidate):
        raise ValueError("Invalid phone number format")
    return candidate


def validate_phone(phone: str) -> bool:
    """Validate phone number without raising exception."""
    try:
        canonicalize_phone(phone)
        return True
    except ValueError:
        return False


def mask_phone(phone: str) -> str:
    """
    Mask all but the last 4 characters: 919876543210 -> ********3210.

    Length is preserved. Values of 4 characters or fewer are returned as is.
    """
    if len(phone) <= 4:
        return phone
    return "*" * (len(phone) - 4) + phone[-4:]


def get_phone_last4(phone: str) -> str:
    """
    Get last 4 digits of phone number for safe logging.

    Returns:
        Last 4 digits as string, or all digits if fewer than 4
    """
    digits = "".join(filter(str.isdigit, phone or ""))
    if len(digits) >= 4:
        return digits[-4:]
    return digits


def to_e164(phone: str) -> str:
    """
    Format a canonical phone number as E.164 (+919876543210) for providers
    that require it.

    Raises:
        ValueError: If the number cannot be parsed
    """
    try:
        parsed = phonenumbers.parse(f"+{phone}", None)
    except NumberParseException as e:
        raise ValueError(f"Invalid phone number format: {str(e)}")
    return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)
