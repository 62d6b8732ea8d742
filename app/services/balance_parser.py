"""
Balance Parser
Reads numeric balances out of account-balance query results
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

PREFERRED_BUCKETS = ('merchant account', 'working account', 'utility account')

SETTLEMENT_BALANCE_KEYS = (
    'DebitAccountBalance',
    'AccountBalance',
    'CreditAccountBalance',
    'WorkingAccountBalance',
    'UtilityAccountBalance',
)

_LEADING_NUMBER = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)')
_EMBEDDED_NUMBER = re.compile(r'-?\d+(?:\.\d+)?')


def _leading_number(text) -> Optional[Decimal]:
    """Number at the start of `text` ("500.00", "12 KES"), or None"""
    if text is None:
        return None
    match = _LEADING_NUMBER.match(str(text).strip())
    if not match:
        return None
    try:
        return Decimal(match.group(0))
    except InvalidOperation:
        return None


def _parse_composite(text: str) -> Optional[Decimal]:
    candidates = []
    named = {}

    for segment in (part.strip() for part in text.split('&')):
        if not segment:
            continue
        fields = [field.strip() for field in segment.split('|')]

        if len(fields) >= 3:
            preferred = _leading_number(fields[2])
            if preferred is not None:
                candidates.append(preferred)
                if fields[0]:
                    named[fields[0].lower()] = preferred
                continue

        for field in fields:
            candidate = _leading_number(field)
            if candidate is not None:
                candidates.append(candidate)

    for bucket in PREFERRED_BUCKETS:
        if bucket in named:
            return named[bucket]

    if candidates:
        return max(candidates)
    return None


def parse_balance(value) -> Optional[Decimal]:
    """
    Parse a balance value.

    Plain numbers are returned directly. Composite values such as
    "Working Account|KES|500.00|0&Utility Account|KES|120.00|0" prefer the
    merchant, then working, then utility bucket, else the largest amount.
    Returns None when nothing numeric is present.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            return None
        return parsed if parsed.is_finite() else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    direct = _leading_number(text)
    if direct is not None:
        return direct

    if '&' in text and '|' in text:
        composite = _parse_composite(text)
        if composite is not None:
            return composite

    fields = [field.strip() for field in text.split('|')]
    for index in (2, 3):
        if index < len(fields):
            candidate = _leading_number(fields[index])
            if candidate is not None:
                return candidate

    for field in fields:
        candidate = _leading_number(field)
        if candidate is not None:
            return candidate

    match = _EMBEDDED_NUMBER.search(text)
    if match:
        return Decimal(match.group(0))

    return None


def extract_settlement_balance(result) -> Optional[Decimal]:
    """Parse the first known balance key from a result callback's ResultParameters"""
    parameters = ((result or {}).get('ResultParameters') or {}).get('ResultParameter')
    if isinstance(parameters, dict):
        parameters = [parameters]
    if not isinstance(parameters, list):
        return None

    for key in SETTLEMENT_BALANCE_KEYS:
        for item in parameters:
            if isinstance(item, dict) and item.get('Key') == key and item.get('Value') is not None:
                return parse_balance(item['Value'])

    return None
