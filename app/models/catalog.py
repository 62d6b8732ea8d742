import uuid
from datetime import datetime

from app.extensions import db


class Package(db.Model):
    """Hotspot package. `period` is the session length in minutes."""
    __tablename__ = 'packages'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price = db.Column(db.Numeric(15, 2), nullable=False)
    period = db.Column(db.String(64))
    devices = db.Column(db.Integer, default=1)
    category = db.Column(db.String(32))
    account_number = db.Column(db.String(64), index=True)
    router_host = db.Column(db.String(255))

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'price': str(self.price),
            'period': self.period,
            'devices': self.devices,
            'category': self.category,
        }


class PPPoESubscription(db.Model):
    __tablename__ = 'pppoe'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255))
    client_name = db.Column(db.String(255))
    service_name = db.Column(db.String(255))
    station = db.Column(db.String(255))
    email = db.Column(db.String(255))
    period = db.Column(db.String(64))  # e.g. "1 month"
    price = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    payment_link = db.Column(db.String(255), unique=True, index=True)
    account_number = db.Column(db.String(64), index=True)
    status = db.Column(db.String(16), nullable=False, default='inactive')
    expires_at = db.Column(db.DateTime)
    reminder_sent = db.Column(db.Boolean, nullable=False, default=False)


class PlatformBill(db.Model):
    __tablename__ = 'platform_billing'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255))
    amount = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    price = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default='Unpaid')
    paid_at = db.Column(db.DateTime)


class SMSWallet(db.Model):
    __tablename__ = 'sms_wallets'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    # Wallets billed through the platform gateway; custom gateways are not debited here
    is_default = db.Column(db.Boolean, nullable=False, default=True)
    balance = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    cost_per_sms = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    remaining_sms = db.Column(db.Integer, nullable=False, default=0)
    sent_hotspot = db.Column(db.Boolean, nullable=False, default=True)
    hotspot_template = db.Column(db.Text)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
