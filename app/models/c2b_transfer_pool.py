import uuid
from datetime import datetime
from enum import Enum

from app.extensions import db


class DestinationType(str, Enum):
    TILL = 'till'
    PAYBILL = 'paybill'
    POCHI = 'pochi'

    @classmethod
    def parse(cls, value):
        """Case-insensitive lookup; returns None for unknown destination types."""
        try:
            return cls(str(value or '').strip().lower())
        except ValueError:
            return None


class C2BTransferPool(db.Model):
    __tablename__ = 'c2b_transfer_pools'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), unique=True, nullable=False, index=True)

    destination_type = db.Column(db.String(16), nullable=False)
    destination_short_code = db.Column(db.String(32), nullable=False)
    destination_account = db.Column(db.String(64), default='null')
    amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'platformID': self.platform_id,
            'destinationType': self.destination_type,
            'destinationShortCode': self.destination_short_code,
            'destinationAccount': self.destination_account,
            'amount': str(self.amount),
        }

    def __repr__(self):
        return f'<C2BTransferPool {self.platform_id} - {self.amount}>'
