import uuid
from datetime import datetime

from app.extensions import db


class Platform(db.Model):
    """A tenant (WiFi/ISP operator)."""
    __tablename__ = 'platforms'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    url = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f'<Platform {self.platform_id} - {self.name}>'


class PlatformConfig(db.Model):
    """Per-tenant payment configuration: collection mode, credentials and destinations."""
    __tablename__ = 'platform_configs'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), unique=True, nullable=False, index=True)

    # Collection mode
    is_c2b = db.Column(db.Boolean, nullable=False, default=False)
    is_api = db.Column(db.Boolean, nullable=False, default=False)
    is_b2b = db.Column(db.Boolean, nullable=False, default=False)

    # Tenant Daraja credentials (API mode)
    mpesa_consumer_key = db.Column(db.String(255))
    mpesa_consumer_secret = db.Column(db.String(255))
    mpesa_pass_key = db.Column(db.String(255))
    mpesa_short_code = db.Column(db.String(32), index=True)
    mpesa_short_code_type = db.Column(db.String(16))  # Phone | Till | Paybill
    mpesa_account_number = db.Column(db.String(64))
    mpesa_account_initiator = db.Column(db.String(255))
    mpesa_account_initiator_password = db.Column(db.String(255))

    # C2B sweep destination
    mpesa_c2b_short_code = db.Column(db.String(32), index=True)
    mpesa_c2b_short_code_type = db.Column(db.String(16))  # till | paybill | pochi
    mpesa_c2b_account_number = db.Column(db.String(64))

    offline_payments = db.Column(db.Boolean, nullable=False, default=False)
    sms = db.Column(db.Boolean, nullable=False, default=False)
    registered_url = db.Column(db.Boolean, nullable=False, default=False)

    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def has_initiator(self) -> bool:
        return bool(self.mpesa_account_initiator and self.mpesa_account_initiator_password)

    @property
    def has_c2b_destination(self) -> bool:
        return bool(self.mpesa_c2b_short_code and self.mpesa_c2b_short_code_type)

    def __repr__(self):
        return f'<PlatformConfig {self.platform_id}>'


class SystemSettings(db.Model):
    __tablename__ = 'settings'

    id = db.Column(db.Integer, primary_key=True)
    under_maintenance = db.Column(db.Boolean, nullable=False, default=False)
    maintenance_reason = db.Column(db.Text)


class BlockedUser(db.Model):
    __tablename__ = 'blocked_users'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), nullable=False, index=True)
    phone = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default='blocked')
    blocked_by = db.Column(db.String(255))

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class Admin(db.Model):
    __tablename__ = 'admins'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(255))
    email = db.Column(db.String(255))
    role = db.Column(db.String(32), nullable=False, default='admin')

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
