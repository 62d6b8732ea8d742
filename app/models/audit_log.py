import uuid
from datetime import datetime
from app.extensions import db


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_id = db.Column(db.String(36), db.ForeignKey('mpesa_codes.id'), index=True)
    platform_id = db.Column(db.String(64), index=True)

    # Event details
    event_type = db.Column(db.String(100), nullable=False)
    event_data = db.Column(db.JSON)

    # Request context
    user_id = db.Column(db.String(255))
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))

    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'payment_id': self.payment_id,
            'platform_id': self.platform_id,
            'event_type': self.event_type,
            'event_data': self.event_data,
            'user_id': self.user_id,
            'ip_address': self.ip_address,
            'timestamp': self.timestamp.isoformat()
        }

    def __repr__(self):
        return f'<AuditLog {self.id} - {self.event_type}>'
