import uuid
from datetime import datetime
from enum import Enum

from app.extensions import db


class PaymentStatus(str, Enum):
    PENDING = 'PENDING'
    PROCESSING = 'PROCESSING'
    COMPLETE = 'COMPLETE'
    FAILED = 'FAILED'


class PaymentType(str, Enum):
    DEPOSIT = 'deposit'
    WITHDRAWAL = 'withdrawal'
    B2B_TRANSFER = 'b2b transfer'
    B2POCHI_TRANSFER = 'b2pochi transfer'
    MPESA_B2B = 'mpesa b2b'


class ServiceType(str, Enum):
    HOTSPOT = 'hotspot'
    PPPOE = 'pppoe'
    BILL = 'bill'
    SMS = 'sms'
    MPESA_B2B = 'Mpesa B2B'
    MPESA_B2POCHI = 'Mpesa B2Pochi'

    @classmethod
    def parse(cls, value):
        """Resolve a stored service string, defaulting to hotspot."""
        raw = str(value or cls.HOTSPOT.value)
        for member in cls:
            if member.value.lower() == raw.lower():
                return member
        return None


# Sentinel stored in destination descriptor columns that do not apply
NULL_SENTINEL = 'null'

PAYMENT_METHOD_C2B = 'Mpesa C2B'
PAYMENT_METHOD_API = 'Mpesa API'


class PaymentRecord(db.Model):
    __tablename__ = 'mpesa_codes'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), nullable=False, index=True)

    # Settlement reference (overwritten on completion) and request-time correlation code
    code = db.Column(db.String(255), nullable=False, index=True)
    reqcode = db.Column(db.String(255), unique=True, nullable=False, index=True)

    amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    phone = db.Column(db.String(32))
    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    type = db.Column(db.String(32), nullable=False, default=PaymentType.DEPOSIT.value)
    service = db.Column(db.String(32), nullable=False, default=ServiceType.HOTSPOT.value)
    payment_method = db.Column(db.String(32))

    # Product references
    reason = db.Column(db.String(255))
    reference_id = db.Column(db.String(255))

    # Destination descriptors
    till = db.Column(db.String(32), default=NULL_SENTINEL)
    paybill = db.Column(db.String(32), default=NULL_SENTINEL)
    account = db.Column(db.String(64), default=NULL_SENTINEL)

    failed_reason = db.Column(db.Text)
    mac = db.Column(db.String(255))
    reversed = db.Column(db.Boolean)
    verified = db.Column(db.Boolean)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_complete(self) -> bool:
        return self.status == PaymentStatus.COMPLETE

    @property
    def is_c2b(self) -> bool:
        return str(self.payment_method or '').lower() == PAYMENT_METHOD_C2B.lower()

    def to_dict(self):
        return {
            'id': self.id,
            'platformID': self.platform_id,
            'code': self.code,
            'reqcode': self.reqcode,
            'amount': str(self.amount) if self.amount is not None else None,
            'phone': self.phone,
            'status': self.status,
            'type': self.type,
            'service': self.service,
            'paymentMethod': self.payment_method,
            'reason': self.reason,
            'referenceID': self.reference_id,
            'till': self.till,
            'paybill': self.paybill,
            'account': self.account,
            'failed_reason': self.failed_reason,
            'mac': self.mac,
            'reversed': self.reversed,
            'verified': self.verified,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<PaymentRecord {self.reqcode} - {self.status}>'
