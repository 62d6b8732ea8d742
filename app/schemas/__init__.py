"""
Schemas Package
Marshmallow schemas for request validation
"""

from app.schemas.payment_schema import (
    StkPushSchema,
    PPPoEPaymentSchema,
    BillPaymentSchema,
    SMSPaymentSchema,
    WithdrawSchema,
    TransactionActionSchema,
    BusinessTransferSchema,
    CheckPaymentSchema
)

__all__ = [
    'StkPushSchema',
    'PPPoEPaymentSchema',
    'BillPaymentSchema',
    'SMSPaymentSchema',
    'WithdrawSchema',
    'TransactionActionSchema',
    'BusinessTransferSchema',
    'CheckPaymentSchema'
]
