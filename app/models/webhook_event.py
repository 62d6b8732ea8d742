import uuid
from datetime import datetime
from app.extensions import db


class WebhookEvent(db.Model):
    """Journal of every inbound provider callback."""
    __tablename__ = 'webhook_events'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    payment_id = db.Column(db.String(36), db.ForeignKey('mpesa_codes.id'), index=True)

    provider = db.Column(db.String(50), nullable=False, index=True)
    event_type = db.Column(db.String(100), nullable=False)

    payload = db.Column(db.JSON, nullable=False)
    verified = db.Column(db.Boolean, default=True)

    processed = db.Column(db.Boolean, default=False, index=True)
    error_message = db.Column(db.Text)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    processed_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'id': self.id,
            'payment_id': self.payment_id,
            'provider': self.provider,
            'event_type': self.event_type,
            'verified': self.verified,
            'processed': self.processed,
            'error_message': self.error_message,
            'created_at': self.created_at.isoformat(),
            'processed_at': self.processed_at.isoformat() if self.processed_at else None
        }

    def __repr__(self):
        return f'<WebhookEvent {self.id} - {self.provider}>'
