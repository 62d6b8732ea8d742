"""
Activation Orchestrator
Hands a completed deposit to provisioning, per service type
"""

import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Tuple

from flask import current_app
from flask_jwt_extended import create_access_token

from app.extensions import db
from app.integrations import get_provisioning_client, get_sms_sender, get_mailer
from app.models import ServiceType, NULL_SENTINEL
from app.services.audit_service import AuditService
from app.services.platform_service import PlatformService
from app.utils.logger import get_logger
from app.utils.periods import add_period, package_minutes
from app.utils.validators import format_message
from app.websockets.events import emit_payment_event, emit_to_platform, log_to_platform

logger = get_logger(__name__)

CONNECTING_MESSAGE = 'Payment received, please wait connecting you shortly...'
ACTIVATION_FAILED_MESSAGE = ('Payment received but failed to automatically connect to WIFI. '
                             'Please connect manually using M-PESA Message.')
VOUCHER_FAILED_MESSAGE = ('Payment received but voucher activation failed. '
                          'Please contact customer care for assistance.')


def _call(context: str, func, *args) -> dict:
    """Run a collaborator call, turning any raised error into a failed result"""
    try:
        result = func(*args)
    except Exception as e:
        logger.error(f'{context} raised: {str(e)}')
        return {'success': False, 'message': str(e)}
    return result if isinstance(result, dict) else {'success': False, 'message': f'{context} returned no result'}


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec='milliseconds') + 'Z'


class ActivationService:

    @staticmethod
    def compute_expiry_from_package(package, now: Optional[datetime] = None) -> Tuple[timedelta, datetime]:
        """Session length from the package period in minutes, 24 hours when missing or invalid"""
        minutes = package_minutes(getattr(package, 'period', None))
        expires_in = timedelta(minutes=minutes)
        return expires_in, (now or datetime.utcnow()) + expires_in

    @staticmethod
    def create_hotspot_token(phone: str, username: str, package_id: str, platform_id: str,
                             expires_in: timedelta) -> str:
        return create_access_token(
            identity=str(username),
            additional_claims={
                'phone': phone,
                'username': username,
                'packageID': package_id,
                'platformID': platform_id,
            },
            expires_delta=expires_in
        )

    @staticmethod
    def announce(record, code: str, amount, package_name: Optional[str] = None):
        """Push the completed payment to the tenant's recent-payments feed"""
        emit_to_platform(record.platform_id, 'payments:recent', {
            'id': record.id,
            'code': code,
            'phone': record.phone,
            'amount': str(amount),
            'status': 'COMPLETE',
            'service': record.service or ServiceType.HOTSPOT.value,
            'packageName': package_name,
            'createdAt': _iso(datetime.utcnow()),
        })

    @staticmethod
    def activate(record, settlement_code: str, amount, package=None, login_code: Optional[str] = None,
                 failure_message: str = ACTIVATION_FAILED_MESSAGE) -> dict:
        """
        Run the service-specific activation for a freshly completed deposit.

        Activation never changes the payment's status; a failure here leaves
        the record COMPLETE and is reported through notifications.

        Returns:
            {'success': bool, 'status': str, 'message': str, ...}
        """
        service = ServiceType.parse(record.service)

        if service == ServiceType.HOTSPOT:
            return ActivationService._activate_hotspot(
                record, settlement_code, amount, package, login_code, failure_message
            )
        if service == ServiceType.PPPOE:
            return ActivationService._activate_pppoe(record, settlement_code, amount)
        if service == ServiceType.BILL:
            return ActivationService._mark_bill_paid(record)
        if service in (ServiceType.SMS, ServiceType.MPESA_B2B, ServiceType.MPESA_B2POCHI):
            return {'success': True, 'status': 'COMPLETE', 'message': 'No activation required'}

        logger.warning(f'Unknown service {record.service!r} on payment {record.id}')
        return {'success': False, 'status': 'UNKNOWN_SERVICE', 'message': f'Unknown service {record.service}'}

    # Hotspot

    @staticmethod
    def _activate_hotspot(record, settlement_code, amount, package, login_code, failure_message) -> dict:
        if package is None:
            package = PlatformService.find_package(record.platform_id, amount, record.reason)
        if package is None:
            return {'success': False, 'status': 'INVALID_PACKAGE', 'message': 'Invalid package'}

        checkout_id = record.reqcode
        base_code = settlement_code or checkout_id
        login_code = login_code or base_code

        expires_in, expires_at = ActivationService.compute_expiry_from_package(package)
        token = ActivationService.create_hotspot_token(
            record.phone, login_code, package.id, record.platform_id, expires_in
        )

        client = get_provisioning_client()
        result = _call('add_manual_code', client.add_manual_code, {
            'token': token,
            'phone': record.phone,
            'packageID': package.id,
            'platformID': record.platform_id,
            'package': package.to_dict(),
            'code': base_code,
            'mac': base_code,
        })

        if not result.get('success'):
            emit_payment_event('deposit-status', {
                'status': 'COMPLETE_INACTIVE',
                'checkoutRequestId': checkout_id,
                'message': CONNECTING_MESSAGE,
                'loginCode': login_code,
            }, checkout_id)

            result = ActivationService._retry_add_manual_code(client, {
                'phone': record.phone,
                'packageID': package.id,
                'platformID': record.platform_id,
                'code': base_code,
                'mac': base_code,
                'token': NULL_SENTINEL,
            })

        if not result.get('success'):
            log_to_platform(record.platform_id, f'Activation failed after retries (ref {checkout_id})', 'warn')
            emit_payment_event('deposit-status', {
                'status': 'INACTIVE',
                'checkoutRequestId': checkout_id,
                'message': failure_message,
                'error': result.get('message'),
                'loginCode': login_code,
            }, checkout_id)
            AuditService.log_event(
                'activation.failed',
                {'service': ServiceType.HOTSPOT.value, 'code': base_code, 'error': result.get('message')},
                payment_id=record.id,
                platform_id=record.platform_id
            )
            return {'success': False, 'status': 'INACTIVE', 'message': failure_message, 'login_code': login_code}

        emit_payment_event('deposit-success', {
            'status': 'COMPLETE',
            'checkoutRequestId': checkout_id,
            'message': 'Payment successful!',
            'loginCode': login_code,
            'token': token,
            'expiresAt': _iso(expires_at),
        }, checkout_id)
        log_to_platform(record.platform_id, f'Activation completed (ref {checkout_id})', 'success')
        AuditService.log_event(
            'activation.succeeded',
            {'service': ServiceType.HOTSPOT.value, 'code': base_code},
            payment_id=record.id,
            platform_id=record.platform_id
        )

        sms = ActivationService.send_hotspot_sms(record, package, result.get('code'))
        if not sms.get('success'):
            logger.info(f'Hotspot SMS not sent for {record.id}: {sms.get("message")}')

        return {
            'success': True,
            'status': 'COMPLETE',
            'message': 'Payment successful!',
            'login_code': login_code,
            'token': token,
            'expires_at': _iso(expires_at),
        }

    @staticmethod
    def _retry_add_manual_code(client, data: dict) -> dict:
        """Retry once per interval until success or the retry window closes"""
        interval = current_app.config.get('ACTIVATION_RETRY_INTERVAL', 1)
        window = current_app.config.get('ACTIVATION_RETRY_TIMEOUT', 10)

        result = {'success': False, 'message': 'Activation retry window elapsed'}
        started = time.monotonic()
        attempts = 0
        while time.monotonic() - started < window:
            attempts += 1
            result = _call('add_manual_code', client.add_manual_code, data)
            if result.get('success'):
                break
            time.sleep(interval)

        logger.info(f'add_manual_code retried {attempts} time(s) for {data.get("code")}: success={bool(result.get("success"))}')
        return result

    @staticmethod
    def send_hotspot_sms(record, package, code_info=None) -> dict:
        """Send the tenant's hotspot SMS template; debit a default wallet only after a successful send"""
        config = PlatformService.get_config(record.platform_id)
        if config is None or not config.sms:
            return {'success': False, 'message': 'SMS disabled'}

        wallet = PlatformService.get_sms_wallet(record.platform_id)
        if wallet is None:
            return {'success': False, 'message': 'SMS not found!'}
        if wallet.sent_hotspot is False:
            return {'success': False, 'message': 'Hotspot SMS sending is disabled!'}

        balance = Decimal(str(wallet.balance or 0))
        cost = Decimal(str(wallet.cost_per_sms or 0))
        if wallet.is_default and balance < cost:
            return {'success': False, 'message': 'Insufficient SMS Balance!'}

        platform = PlatformService.get_platform(record.platform_id)
        if platform is None:
            return {'success': False, 'message': 'Platform not found!'}

        code_info = code_info if isinstance(code_info, dict) else {}
        message = format_message(wallet.hotspot_template, {
            'company': platform.name,
            'username': code_info.get('username'),
            'period': package.period,
            'expiry': code_info.get('expireAt'),
            'package': package.name,
        })

        sent = _call('send_sms', get_sms_sender().send, record.phone, message, wallet)
        if sent.get('success') and wallet.is_default:
            wallet.balance = balance - cost
            wallet.remaining_sms = int(wallet.remaining_sms or 0) - 1
            db.session.commit()
        return sent

    # PPPoE

    @staticmethod
    def _activate_pppoe(record, settlement_code, amount) -> dict:
        payment_link = record.reference_id or record.reason
        subscription = PlatformService.find_pppoe_by_link(payment_link)
        if subscription is None:
            return {'success': False, 'status': 'INVALID_LINK', 'message': 'Invalid paymentLink'}

        result = _call('manage_pppoe', get_provisioning_client().manage_pppoe, {
            'platformID': subscription.platform_id,
            'service': subscription.service_name,
            'user': subscription.client_name,
            'host': subscription.station,
        })
        if not result.get('success'):
            log_to_platform(record.platform_id, f'PPPoE enable failed for {payment_link}: {result.get("message")}', 'error')
            AuditService.log_event(
                'activation.failed',
                {'service': ServiceType.PPPOE.value, 'code': settlement_code, 'error': result.get('message')},
                payment_id=record.id,
                platform_id=record.platform_id
            )
            return {'success': False, 'status': 'FAILED', 'message': 'Failed to enable PPPoE Server!'}

        subscription.status = 'active'
        subscription.amount = 0
        subscription.reminder_sent = False
        expires_at = add_period(datetime.utcnow(), subscription.period)
        if expires_at is not None:
            subscription.expires_at = expires_at
        db.session.commit()

        if subscription.email:
            ActivationService._send_pppoe_receipt(subscription, settlement_code, amount)

        log_to_platform(record.platform_id, f'PPPoE service enabled for {payment_link}', 'success')
        return {'success': True, 'status': 'active', 'message': 'PPPoE Server enabled successfully'}

    @staticmethod
    def _send_pppoe_receipt(subscription, receipt: str, amount) -> dict:
        platform = PlatformService.get_platform(subscription.platform_id)
        name = platform.name if platform else subscription.platform_id
        link = f'https://{platform.url if platform else ""}/pppoe?info={subscription.payment_link}'

        message = (
            f'<p>Confirmed we have received KSH {amount} for your PPPoE Service. '
            f'<strong>RECEIPT NUMBER - {receipt}</strong>.</p>'
            f'<p>For more status and information about this service, visit:<br />'
            f'<a href="{link}">{link}</a></p>'
        )
        sent = _call('send_email', get_mailer().send, {
            'name': subscription.email,
            'type': 'accounts',
            'to': subscription.email,
            'email': subscription.email,
            'subject': f'Payment received. Your {name} PPPoE Service has been enabled!',
            'message': message,
            'company': name,
        })
        if not sent.get('success'):
            logger.warning(f'Failed to send PPPoE receipt email: {sent.get("message")}')
        return sent

    # Bill

    @staticmethod
    def _mark_bill_paid(record) -> dict:
        bill = PlatformService.get_bill(record.reference_id)
        if bill is None:
            return {'success': False, 'status': 'INVALID_BILL', 'message': 'Bill does not exist!'}
        bill.status = 'Paid'
        bill.paid_at = datetime.utcnow()
        bill.amount = 0
        db.session.commit()
        return {'success': True, 'status': 'paid', 'message': 'Bill paid'}

    # Late completion

    @staticmethod
    def complete_for_service(record) -> Optional[dict]:
        """
        Finish activation for a record that is already COMPLETE, e.g. from a status poll.

        A hotspot code that provisioning already knows is returned as-is
        without calling provisioning again.
        A PPPoE subscription that is still active is left untouched.
        """
        if record is None or not record.platform_id:
            return None

        service = ServiceType.parse(record.service)
        client = get_provisioning_client()

        if service == ServiceType.HOTSPOT:
            if not record.reason:
                return None
            try:
                existing = client.find_user(record.code, record.platform_id)
            except Exception as e:
                logger.error(f'find_user raised: {str(e)}')
                existing = None
            if existing:
                return {'status': 'COMPLETE', 'login_code': existing.get('username') or existing.get('code') or record.code}

            result = _call('add_manual_code', client.add_manual_code, {
                'phone': record.phone,
                'packageID': record.reason,
                'platformID': record.platform_id,
                'code': record.code,
                'mac': record.mac or NULL_SENTINEL,
                'token': NULL_SENTINEL,
            })
            if result.get('success'):
                code = result.get('code') if isinstance(result.get('code'), dict) else {}
                return {'status': 'COMPLETE', 'login_code': code.get('username') or code.get('code') or record.code}
            return {'status': 'FAILED', 'message': result.get('message') or 'Activation failed.'}

        if service == ServiceType.PPPOE:
            subscription = PlatformService.find_pppoe_by_link(record.reference_id or record.reason)
            if subscription is None:
                return None
            if subscription.status == 'active' and subscription.expires_at and subscription.expires_at > datetime.utcnow():
                return {'status': 'active'}
            subscription.status = 'active'
            expires_at = add_period(datetime.utcnow(), subscription.period)
            if expires_at is not None:
                subscription.expires_at = expires_at
            db.session.commit()
            _call('manage_pppoe', client.manage_pppoe, {
                'platformID': record.platform_id,
                'user': subscription.client_name,
                'host': subscription.station,
            })
            return {'status': 'active'}

        if service == ServiceType.BILL:
            result = ActivationService._mark_bill_paid(record)
            return {'status': 'paid'} if result['success'] else None

        return None
