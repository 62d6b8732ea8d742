"""
Credential Diagnostics
Separates tenant configuration failures (bad keys, PIN, passkey) from ordinary payment failures
"""

from datetime import datetime
from typing import Optional

from app.services.audit_service import AuditService
from app.websockets.events import emit_to_platform, log_to_platform
from app.utils.logger import get_logger

logger = get_logger(__name__)

CONSUMER_CREDENTIALS_INVALID = 'M-PESA consumer key or secret is invalid. Update them in Settings.'
INITIATOR_PIN_INVALID = 'M-PESA initiator PIN is wrong or expired. Update it in Settings.'
PASSKEY_INVALID = 'M-PESA passkey is invalid. Update it in Settings.'


def _extract(error):
    """Pull (status_code, message) out of a provider error, response dict or plain exception"""
    status_code = getattr(error, 'status_code', None)
    body = getattr(error, 'response_data', None)

    if isinstance(error, dict):
        body = error
        status_code = error.get('status_code', status_code)

    message = None
    if isinstance(body, dict):
        message = body.get('errorMessage') or body.get('message') or body.get('error')
    elif isinstance(body, str) and body.strip():
        message = body

    if not message and isinstance(error, BaseException):
        message = str(error)

    return status_code, str(message or '')


class CredentialDiagnostics:

    @staticmethod
    def diagnose(error) -> Optional[str]:
        """
        Inspect a failed provider interaction.

        Returns:
            Operator-facing diagnosis for credential-class failures, otherwise None
        """
        if error is None:
            return None

        status_code, message = _extract(error)
        text = message.lower()

        if status_code == 401 or 'invalid credentials' in text or 'invalid consumer' in text:
            return CONSUMER_CREDENTIALS_INVALID
        if 'invalid security credential' in text or 'initiator information is invalid' in text:
            return INITIATOR_PIN_INVALID
        if 'invalid passkey' in text:
            return PASSKEY_INVALID
        return None

    @staticmethod
    def alert(platform_id: str, error) -> Optional[str]:
        """
        Diagnose and, for credential-class failures, alert the tenant once.

        Returns:
            The diagnosis when an alert was raised, otherwise None
        """
        diagnosis = CredentialDiagnostics.diagnose(error)
        if not diagnosis or not platform_id:
            return diagnosis

        emit_to_platform(platform_id, 'payments:credential-error', {
            'message': diagnosis,
            'at': datetime.utcnow().isoformat(),
        })
        log_to_platform(platform_id, diagnosis, 'error')

        try:
            _, raw = _extract(error)
            AuditService.log_event(
                event_type='credentials.invalid',
                event_data={'diagnosis': diagnosis, 'provider_message': raw},
                platform_id=platform_id
            )
        except Exception as e:
            logger.error(f'Failed to audit credential alert for {platform_id}: {str(e)}')

        return diagnosis
