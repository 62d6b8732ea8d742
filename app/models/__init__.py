from app.models.payment_record import (
    PaymentRecord,
    PaymentStatus,
    PaymentType,
    ServiceType,
    NULL_SENTINEL,
    PAYMENT_METHOD_C2B,
    PAYMENT_METHOD_API,
)
from app.models.funds_account import FundsAccount
from app.models.c2b_transfer_pool import C2BTransferPool, DestinationType
from app.models.platform import Platform, PlatformConfig, SystemSettings, BlockedUser, Admin
from app.models.catalog import Package, PPPoESubscription, PlatformBill, SMSWallet
from app.models.audit_log import AuditLog
from app.models.webhook_event import WebhookEvent

__all__ = [
    'PaymentRecord', 'PaymentStatus', 'PaymentType', 'ServiceType',
    'NULL_SENTINEL', 'PAYMENT_METHOD_C2B', 'PAYMENT_METHOD_API',
    'FundsAccount', 'C2BTransferPool', 'DestinationType',
    'Platform', 'PlatformConfig', 'SystemSettings', 'BlockedUser', 'Admin',
    'Package', 'PPPoESubscription', 'PlatformBill', 'SMSWallet',
    'AuditLog', 'WebhookEvent',
]
