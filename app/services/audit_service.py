"""
Audit Service
Persists audit entries for payment lifecycle transitions and credential alerts
"""

from typing import Dict, Any, Optional
from flask import request, has_request_context

from app.extensions import db
from app.models import AuditLog
from app.utils.logger import get_logger

logger = get_logger(__name__)


class AuditService:
    """Service for creating and querying audit logs"""

    @staticmethod
    def log_event(
            event_type: str,
            event_data: Dict[str, Any],
            payment_id: Optional[str] = None,
            platform_id: Optional[str] = None,
            user_id: Optional[str] = None,
            ip_address: Optional[str] = None,
            user_agent: Optional[str] = None
    ) -> AuditLog:
        """
        Create an audit log entry

        Args:
            event_type: Type of event (e.g., 'payment.completed', 'credentials.invalid')
            event_data: Additional event data
            payment_id: Id of the related payment record, if any
            platform_id: Tenant the event belongs to
            user_id: Admin id if available
            ip_address: IP address of the request
            user_agent: User agent string

        Returns:
            Created AuditLog object
        """
        if has_request_context():
            if not ip_address:
                ip_address = AuditService._get_client_ip()
            if not user_agent:
                user_agent = request.headers.get('User-Agent')

        audit_log = AuditLog(
            payment_id=payment_id,
            platform_id=platform_id,
            event_type=event_type,
            event_data=event_data,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent
        )

        db.session.add(audit_log)

        try:
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f'Failed to create audit log: {str(e)}')
            raise

        return audit_log

    @staticmethod
    def _get_client_ip() -> Optional[str]:
        """
        Get client IP address from request
        Handles proxy headers (X-Forwarded-For, X-Real-IP)
        """
        if request.headers.get('X-Forwarded-For'):
            return request.headers.get('X-Forwarded-For').split(',')[0].strip()
        if request.headers.get('X-Real-IP'):
            return request.headers.get('X-Real-IP')
        return request.remote_addr
