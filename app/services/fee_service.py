"""
Withdrawal Fee Engine
Stepped payout fees per destination type
"""

from decimal import Decimal

# (upper bound inclusive, fee)
PHONE_FEE_TIERS = [
    (Decimal('100'), Decimal('10')),
    (Decimal('1000'), Decimal('20')),
    (Decimal('150000'), Decimal('100')),
]
PHONE_FEE_ABOVE_TOP = Decimal('0')

BUSINESS_FEE_TIERS = [
    (Decimal('100'), Decimal('10')),
    (Decimal('1500'), Decimal('30')),
    (Decimal('2500'), Decimal('50')),
    (Decimal('3500'), Decimal('60')),
    (Decimal('10000'), Decimal('80')),
    (Decimal('20000'), Decimal('100')),
    (Decimal('30000'), Decimal('120')),
    (Decimal('35000'), Decimal('130')),
    (Decimal('40000'), Decimal('140')),
    (Decimal('150000'), Decimal('150')),
    (Decimal('250000'), Decimal('200')),
    (Decimal('500000'), Decimal('500')),
]
BUSINESS_FEE_ABOVE_TOP = Decimal('500')


def _lookup(amount: Decimal, tiers, above_top: Decimal) -> Decimal:
    for upper, fee in tiers:
        if amount <= upper:
            return fee
    return above_top


def compute_fee(amount, destination_type: str) -> Decimal:
    """
    Fee for paying `amount` out to a destination type.

    'Phone' uses the mobile payout table; Till and Paybill use the business table.
    """
    amount = Decimal(str(amount))
    if str(destination_type or '').lower() == 'phone':
        return _lookup(amount, PHONE_FEE_TIERS, PHONE_FEE_ABOVE_TOP)
    return _lookup(amount, BUSINESS_FEE_TIERS, BUSINESS_FEE_ABOVE_TOP)


def net_payout(amount, destination_type: str) -> Decimal:
    """Amount that reaches the destination; callers reject values <= 0"""
    amount = Decimal(str(amount))
    return amount - compute_fee(amount, destination_type)
