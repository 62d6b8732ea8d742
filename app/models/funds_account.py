import uuid
from datetime import datetime

from app.extensions import db


class FundsAccount(db.Model):
    __tablename__ = 'funds'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    platform_id = db.Column(db.String(64), unique=True, nullable=False, index=True)

    balance = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    withdrawals = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    deposits = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    # Settlement float reported by the provider, and the id of the last balance query
    short_code_balance = db.Column(db.Numeric(15, 2))
    short_identifier = db.Column(db.String(255), index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'platformID': self.platform_id,
            'balance': str(self.balance),
            'withdrawals': str(self.withdrawals),
            'deposits': str(self.deposits),
            'shortCodeBalance': str(self.short_code_balance) if self.short_code_balance is not None else None,
            'shortIdentifier': self.short_identifier,
        }

    def __repr__(self):
        return f'<FundsAccount {self.platform_id} - {self.balance}>'
