"""
Custom Validators
Validation and formatting helpers for phone numbers, amounts and templates
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

MIN_WITHDRAWAL = Decimal('1')
MAX_WITHDRAWAL = Decimal('150000')


def validate_phone_number(phone: str) -> Optional[str]:
    """
    Validate a Kenyan mobile number

    Accepts 07XXXXXXXX, 01XXXXXXXX, 2547XXXXXXXX and +2541XXXXXXXX forms.

    Args:
        phone: Phone number to validate

    Returns:
        The number in local 0XXXXXXXXX form, or None if invalid
    """
    if not phone:
        return None

    phone_clean = re.sub(r'[\s\-]', '', str(phone)).lstrip('+')

    if phone_clean.startswith('254'):
        phone_clean = '0' + phone_clean[3:]

    if not re.match(r'^0[17]\d{8}$', phone_clean):
        return None

    return phone_clean


def format_phone_number(phone: str) -> Optional[str]:
    """
    Convert a Kenyan mobile number to the 254XXXXXXXXX form the providers expect

    Returns:
        Formatted number, or None if the input is not a valid number
    """
    local = validate_phone_number(phone)
    if local is None:
        return None
    return '254' + local[1:]


def to_decimal(value) -> Optional[Decimal]:
    """Parse an amount into a Decimal, returning None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


def validate_withdrawal_amount(amount) -> tuple[bool, Optional[Decimal]]:
    """
    Validate a withdrawal amount against the payout limits

    Returns:
        Tuple of (is_valid, parsed_amount)
    """
    parsed = to_decimal(amount)
    if parsed is None:
        return False, None
    if parsed < MIN_WITHDRAWAL or parsed > MAX_WITHDRAWAL:
        return False, parsed
    return True, parsed


def format_message(template: str, values: dict) -> str:
    """
    Substitute {key} placeholders in an SMS template

    Unknown placeholders are left untouched.
    """
    if not template:
        return ''

    def _replace(match):
        key = match.group(1)
        if key in values and values[key] is not None:
            return str(values[key])
        return match.group(0)

    return re.sub(r'\{(\w+)\}', _replace, template)
