"""
Webhook Service
Journals and reconciles inbound provider callbacks against the payment ledger
"""

import time
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any, Optional, Tuple

from flask import current_app

from app.extensions import db
from app.errors import InsufficientFunds
from app.integrations import get_mailer, get_provisioning_client
from app.models import (
    WebhookEvent,
    PaymentRecord,
    PaymentStatus,
    PaymentType,
    ServiceType,
    DestinationType,
    NULL_SENTINEL,
    PAYMENT_METHOD_C2B
)
from app.providers import get_provider, get_c2b_provider
from app.providers.base import PaymentProviderError
from app.providers.intasend_provider import IntaSendProvider
from app.providers.mpesa_provider import MPesaProvider
from app.services.activation_service import ActivationService, VOUCHER_FAILED_MESSAGE, _call
from app.services.audit_service import AuditService
from app.services.balance_parser import extract_settlement_balance
from app.services.c2b_pool_service import C2BPoolService
from app.services.correlation_store import get_correlation_store
from app.services.funds_service import FundsService
from app.services.ledger_service import LedgerService
from app.services.message_normalizer import MessageNormalizer
from app.services.platform_service import PlatformService
from app.utils.logger import get_logger
from app.utils.periods import add_period
from app.utils.validators import format_phone_number
from app.websockets.events import emit_payment_event, emit_to_platform, log_to_platform

logger = get_logger(__name__)

ACCEPTED = {'ResultCode': 0, 'ResultDesc': 'Accepted'}
REVERSAL_ALREADY_DONE = 'R000001'

SHORTCODE_FIELDS = ('BusinessShortCode', 'ShortCode', 'Shortcode', 'PaybillNumber')
ACCOUNT_FIELDS = ('BillRefNumber', 'AccountReference', 'AccountNumber', 'BillRef')
AMOUNT_FIELDS = ('TransAmount', 'Amount')
PHONE_FIELDS = ('MSISDN', 'PhoneNumber', 'Phone')
TRANSACTION_FIELDS = ('TransID', 'TransId', 'TransactionID', 'TransactionId')

WITHDRAWAL_STATUS_MAP = {
    'pending': PaymentStatus.PENDING,
    'successful': PaymentStatus.COMPLETE,
    'cancelled': PaymentStatus.FAILED,
}

Response = Tuple[Dict[str, Any], int]


def _first(payload: dict, fields) -> Optional[Any]:
    for field in fields:
        value = payload.get(field)
        if value not in (None, ''):
            return value
    return None


class WebhookService:

    # Journal

    @staticmethod
    def receive_webhook(provider: str, event_type: str, payload: Dict[str, Any], verified: bool = True) -> WebhookEvent:
        """Store the raw callback before any processing"""
        webhook_event = WebhookEvent(
            provider=provider,
            event_type=event_type,
            payload=payload if isinstance(payload, dict) else {'raw': payload},
            verified=verified,
            processed=False
        )
        db.session.add(webhook_event)
        db.session.commit()
        return webhook_event

    @staticmethod
    def _finish(webhook_event: WebhookEvent, payment_id: Optional[str] = None, error: Optional[str] = None):
        webhook_event.payment_id = payment_id
        webhook_event.processed = error is None
        webhook_event.error_message = error
        webhook_event.processed_at = datetime.utcnow()
        db.session.commit()

    # STK deposit callback

    @staticmethod
    def handle_stk_callback(payload: Dict[str, Any]) -> Response:
        webhook_event = WebhookService.receive_webhook('mpesa', 'stk_callback', payload)
        parsed = MPesaProvider.parse_callback(payload)
        if parsed.get('kind') != 'stk':
            WebhookService._finish(webhook_event, error='Unrecognised STK callback')
            return {'success': False, 'message': 'Invalid callback payload.'}, 400

        checkout_id = parsed['checkout_request_id']
        record = LedgerService.find_by_request_code(checkout_id)
        if record is None:
            WebhookService._finish(webhook_event, error='Unknown CheckoutRequestID')
            return {'success': False, 'message': 'MPesa code not found for the given invoice ID.'}, 404

        log_to_platform(record.platform_id, f'STK callback received: {parsed["result_desc"]} (ref {checkout_id})')

        if parsed['success']:
            if record.is_complete:
                WebhookService._finish(webhook_event, payment_id=record.id)
                return {'success': True, 'message': 'Already processed.'}, 200

            receipt = parsed.get('mpesa_receipt_number') or checkout_id
            amount = parsed.get('amount') if parsed.get('amount') is not None else record.amount
            body, status = WebhookService.settle_stk_deposit(record, receipt, amount)
            WebhookService._finish(webhook_event, payment_id=record.id)
            return body, status

        if not LedgerService.fail(record.id, parsed['result_desc'], PaymentType.DEPOSIT):
            log_to_platform(record.platform_id, f'Late failure callback ignored for completed payment (ref {checkout_id})', 'warn')
            WebhookService._finish(webhook_event, payment_id=record.id)
            return {'success': True, 'message': 'Already processed.'}, 200

        message = MessageNormalizer.to_user_message(parsed['result_desc'])
        emit_payment_event('deposit-status', {
            'status': 'FAILED',
            'checkoutRequestId': checkout_id,
            'message': message,
        }, checkout_id)
        AuditService.log_event(
            'payment.failed',
            {'result_code': parsed['result_code'], 'result_desc': parsed['result_desc']},
            payment_id=record.id,
            platform_id=record.platform_id
        )
        log_to_platform(record.platform_id, f'STK payment failed: {parsed["result_desc"]} (ref {checkout_id})', 'warn')
        WebhookService._finish(webhook_event, payment_id=record.id)

        return {
            'success': False,
            'type': 'error',
            'message': MessageNormalizer.to_user_message('Transaction not successful')
        }, 400

    @staticmethod
    def settle_stk_deposit(record: PaymentRecord, receipt: str, amount) -> Response:
        """
        Complete an STK deposit and run its side effects exactly once.

        Shared by the STK callback and the reconciler.
        """
        if not LedgerService.complete(record.id, receipt, amount, PaymentType.DEPOSIT):
            return {'success': True, 'message': 'Already processed.'}, 200

        AuditService.log_event(
            'payment.completed',
            {'receipt': receipt, 'amount': str(amount)},
            payment_id=record.id,
            platform_id=record.platform_id
        )
        log_to_platform(record.platform_id, f'STK payment marked COMPLETE (ref {record.reqcode})', 'success')

        if record.is_c2b:
            C2BPoolService.settle_receipt(record, amount)

        service = ServiceType.parse(record.service)
        if service == ServiceType.HOTSPOT:
            package = PlatformService.find_package(record.platform_id, amount, record.reason)
            if package is None:
                log_to_platform(record.platform_id, f'No package matches {amount} for {record.reqcode}', 'warn')
                return {'success': False, 'message': 'Invalid package'}, 400
            ActivationService.announce(record, receipt, amount, package.name)
            ActivationService.activate(record, receipt, amount, package=package)
        elif service == ServiceType.PPPOE:
            subscription = PlatformService.find_pppoe_by_link(record.reference_id or record.reason)
            ActivationService.announce(
                record, receipt, amount,
                (subscription.name or subscription.service_name) if subscription else None
            )
            ActivationService.activate(record, receipt, amount)
        else:
            ActivationService.activate(record, receipt, amount)

        return {'success': True, 'message': 'Deposit callback processed.'}, 200

    # Initiator result callback

    @staticmethod
    def handle_result_callback(payload: Dict[str, Any]) -> Response:
        """Route a B2B/B2Pochi/balance/reversal/verification result to its tenant"""
        webhook_event = WebhookService.receive_webhook('mpesa', 'result', payload)
        parsed = MPesaProvider.parse_callback(payload)
        if parsed.get('kind') != 'result':
            WebhookService._finish(webhook_event, error='Unrecognised result callback')
            return {'success': True}, 200

        originator_id = parsed.get('originator_conversation_id')
        result_code = parsed.get('result_code')
        params = parsed.get('result_params') or {}
        raw = parsed.get('raw_result') or {}

        entry = get_correlation_store().resolve(originator_id)
        platform_id = entry.platform_id if entry else None
        intent = entry.type if entry else None
        if platform_id is None:
            funds = FundsService.find_by_short_identifier(originator_id)
            if funds is not None:
                platform_id = funds.platform_id
                intent = 'balance'

        if platform_id is None:
            logger.warning(f'Result callback {originator_id} matched no tenant')
            WebhookService._finish(webhook_event, error='No tenant for originator id')
            return {'success': True}, 200

        succeeded = result_code in ('0', REVERSAL_ALREADY_DONE)
        if succeeded:
            balance = extract_settlement_balance(raw)
            if balance is not None:
                FundsService.record_settlement_balance(platform_id, balance)

        if intent == 'reverse':
            target = params.get('OriginalTransactionID') or parsed.get('transaction_id')
            reversed_ = result_code == REVERSAL_ALREADY_DONE or result_code == '0'
            LedgerService.mark_reversed(target, reversed_)
        elif intent == 'verify':
            target = params.get('ReceiptNo') or parsed.get('transaction_id')
            LedgerService.mark_verified(target, result_code == '0')
        elif intent in ('b2b-transfer', 'b2pochi-transfer', 'c2b-pochi'):
            transfer = LedgerService.find_by_request_code(originator_id)
            if transfer is not None:
                if result_code == '0':
                    LedgerService.complete(transfer.id, parsed.get('transaction_id'))
                else:
                    LedgerService.fail(transfer.id, parsed.get('result_desc'))

        emit_to_platform(platform_id, 'payments:daraja-result', {
            'originatorId': originator_id,
            'type': intent,
            'data': raw,
        })
        log_to_platform(
            platform_id,
            f'M-PESA {intent or "request"} result: {parsed.get("result_desc")} ({originator_id})',
            'success' if succeeded else 'warn'
        )
        WebhookService._finish(webhook_event)
        return {'success': True}, 200

    # Offline paybill confirmation

    @staticmethod
    def handle_confirmation(payload: Dict[str, Any]) -> Response:
        """Credit a paybill payment made without an STK prompt; always accepted"""
        webhook_event = WebhookService.receive_webhook('mpesa', 'confirmation', payload)
        payload = payload if isinstance(payload, dict) else {}

        short_code = _first(payload, SHORTCODE_FIELDS)
        config = PlatformService.find_config_by_shortcode(short_code)
        if config is None:
            WebhookService._finish(webhook_event, error='Unknown shortcode')
            return ACCEPTED, 200

        platform_id = config.platform_id
        is_c2b_short_code = str(config.mpesa_c2b_short_code or '') == str(short_code)
        short_code_type = config.mpesa_c2b_short_code_type if is_c2b_short_code else config.mpesa_short_code_type
        log_to_platform(platform_id, f'Confirmation callback received (shortcode {short_code})')

        if not config.offline_payments or str(short_code_type or '').lower() != DestinationType.PAYBILL.value:
            WebhookService._finish(webhook_event)
            return ACCEPTED, 200

        account_number = _first(payload, ACCOUNT_FIELDS)
        amount = _first(payload, AMOUNT_FIELDS)
        phone = _first(payload, PHONE_FIELDS)
        transaction_id = _first(payload, TRANSACTION_FIELDS)

        if not account_number or not amount or not phone:
            log_to_platform(platform_id, 'Offline paybill confirmation missing account/amount/phone', 'warn')
            WebhookService._finish(webhook_event, error='Missing account/amount/phone')
            return ACCEPTED, 200

        if transaction_id and LedgerService.exists_with_code(str(transaction_id)):
            WebhookService._finish(webhook_event)
            return ACCEPTED, 200

        clean_phone = format_phone_number(str(phone)) or str(phone)
        payment_code = str(transaction_id or f'{short_code}-{int(time.time() * 1000)}')
        account_value = str(account_number).strip()
        payment_method = PAYMENT_METHOD_C2B if is_c2b_short_code else 'unknown'

        package = PlatformService.find_package_by_account(platform_id, account_value)
        if package is not None:
            record = LedgerService.create(
                platform_id=platform_id,
                amount=amount,
                code=payment_code,
                reqcode=payment_code,
                phone=clean_phone,
                status=PaymentStatus.COMPLETE,
                type=PaymentType.DEPOSIT,
                service=ServiceType.HOTSPOT,
                reason=package.id,
                paybill=str(short_code),
                account=account_value,
                payment_method=payment_method,
            )
            added = _call('add_manual_code', get_provisioning_client().add_manual_code, {
                'phone': clean_phone,
                'packageID': package.id,
                'platformID': platform_id,
                'code': payment_code,
                'mac': NULL_SENTINEL,
                'token': NULL_SENTINEL,
            })
            ActivationService.announce(record, payment_code, amount, package.name)
            log_to_platform(
                platform_id,
                f'Offline paybill hotspot payment received ({payment_code})',
                'success' if added.get('success') else 'warn'
            )
            WebhookService._finish(webhook_event, payment_id=record.id)
            return ACCEPTED, 200

        subscription = PlatformService.find_pppoe_by_account(platform_id, account_value)
        if subscription is not None:
            record = LedgerService.create(
                platform_id=platform_id,
                amount=amount,
                code=payment_code,
                reqcode=payment_code,
                phone=clean_phone,
                status=PaymentStatus.COMPLETE,
                type=PaymentType.DEPOSIT,
                service=ServiceType.PPPOE,
                reason=None,
                reference_id=subscription.payment_link or subscription.id,
                paybill=str(short_code),
                account=account_value,
                payment_method=payment_method,
            )
            subscription.status = 'active'
            expires_at = add_period(datetime.utcnow(), subscription.period)
            if expires_at is not None:
                subscription.expires_at = expires_at
            db.session.commit()

            enabled = _call('manage_pppoe', get_provisioning_client().manage_pppoe, {
                'platformID': platform_id,
                'user': subscription.client_name,
                'host': subscription.station,
            })
            ActivationService.announce(record, payment_code, amount, subscription.name or subscription.service_name)
            log_to_platform(
                platform_id,
                f'Offline paybill PPPoE payment received ({payment_code})',
                'success' if enabled.get('success') else 'warn'
            )
            WebhookService._finish(webhook_event, payment_id=record.id)
            return ACCEPTED, 200

        log_to_platform(platform_id, f'Offline paybill payment received but no match ({account_value})', 'warn')
        WebhookService._finish(webhook_event, error='No matching package or PPPoE account')
        return ACCEPTED, 200

    @staticmethod
    def acknowledge(event_type: str, payload: Dict[str, Any]) -> Response:
        """Validation, timeout and pull callbacks carry no business logic"""
        webhook_event = WebhookService.receive_webhook('mpesa', event_type, payload)
        WebhookService._finish(webhook_event)
        return ACCEPTED, 200

    @staticmethod
    def handle_paystack_deposit(payload: Dict[str, Any]) -> Response:
        webhook_event = WebhookService.receive_webhook('paystack', 'deposit', payload)
        WebhookService._finish(webhook_event)
        return {'success': True, 'message': 'Webhook event received but ignored'}, 200

    # IntaSend

    @staticmethod
    def _challenge_ok(payload: Dict[str, Any]) -> bool:
        try:
            return get_provider('intasend').verify_webhook_signature(payload)
        except ValueError as e:
            logger.error(f'IntaSend not configured: {str(e)}')
            return False

    @staticmethod
    def handle_intasend_deposit(payload: Dict[str, Any]) -> Response:
        payload = payload if isinstance(payload, dict) else {}
        verified = WebhookService._challenge_ok(payload)
        webhook_event = WebhookService.receive_webhook('intasend', 'deposit', payload, verified=verified)
        if not verified:
            WebhookService._finish(webhook_event, error='Challenge mismatch')
            return {'success': False, 'message': 'Unauthorized request!'}, 200

        parsed = IntaSendProvider.parse_callback(payload)
        if not parsed['invoice_id'] or not parsed['state'] or not parsed['net_amount'] or not parsed['account']:
            WebhookService._finish(webhook_event, error='Missing fields')
            return {'success': False, 'message': 'Missing required fields in callback data!'}, 200

        record = LedgerService.find_by_request_code(parsed['invoice_id'])
        if record is None:
            WebhookService._finish(webhook_event, error='Unknown invoice_id')
            return {'success': False, 'message': 'MPesa code not found for the given invoice ID.'}, 200

        log_to_platform(
            record.platform_id,
            f'IntaSend deposit callback: {parsed["state"]} (ref {parsed["invoice_id"]})',
            'success' if parsed['status'] == PaymentStatus.COMPLETE.value else 'warn'
        )

        body, status = WebhookService.settle_intasend_deposit(
            record,
            parsed['status'],
            reference=parsed.get('mpesa_reference'),
            net_amount=parsed['net_amount'],
            value=parsed.get('value'),
            failed_reason=parsed.get('failed_reason')
        )
        WebhookService._finish(webhook_event, payment_id=record.id)
        return body, status

    @staticmethod
    def settle_intasend_deposit(record: PaymentRecord, status: str, reference: Optional[str] = None,
                                net_amount=None, value=None, failed_reason: Optional[str] = None) -> Response:
        """Apply an IntaSend invoice state; shared by the callback and the reconciler"""
        if status != PaymentStatus.COMPLETE.value:
            if status == PaymentStatus.FAILED.value:
                LedgerService.fail(record.id, failed_reason or 'Payment failed', PaymentType.DEPOSIT)
                emit_payment_event('deposit-status', {
                    'status': 'FAILED',
                    'checkoutRequestId': record.reqcode,
                    'message': MessageNormalizer.to_user_message(failed_reason or 'Payment failed'),
                }, record.reqcode)
            else:
                LedgerService.set_status(record, status)
            return {'success': True, 'message': 'Deposit callback processed.'}, 200

        reference = reference.strip() if isinstance(reference, str) and reference.strip() else record.reqcode
        net_amount = net_amount if net_amount is not None else record.amount
        if not LedgerService.complete(record.id, reference, net_amount, PaymentType.DEPOSIT):
            return {'success': True, 'message': 'Already processed.'}, 200

        FundsService.credit(record.platform_id, net_amount)
        AuditService.log_event(
            'payment.completed',
            {'receipt': reference, 'net_amount': str(net_amount), 'provider': 'intasend'},
            payment_id=record.id,
            platform_id=record.platform_id
        )

        if ServiceType.parse(record.service) == ServiceType.HOTSPOT:
            package = PlatformService.find_package(
                record.platform_id, value if value is not None else net_amount, record.reason
            )
            if package is None:
                return {'success': False, 'message': 'Invalid package', 'value': value}, 200
            login_code = record.mac if record.mac and record.mac != NULL_SENTINEL else reference
            ActivationService.announce(record, reference, net_amount, package.name)
            ActivationService.activate(
                record, reference, net_amount, package=package,
                login_code=login_code, failure_message=VOUCHER_FAILED_MESSAGE
            )
        else:
            ActivationService.activate(record, reference, net_amount)

        return {'success': True, 'message': 'Deposit callback processed.'}, 200

    @staticmethod
    def handle_intasend_withdrawal(payload: Dict[str, Any]) -> Response:
        payload = payload if isinstance(payload, dict) else {}
        verified = WebhookService._challenge_ok(payload)
        webhook_event = WebhookService.receive_webhook('intasend', 'withdrawal', payload, verified=verified)
        if not verified:
            WebhookService._finish(webhook_event, error='Challenge mismatch')
            return {'success': False, 'message': 'Unauthorized request!'}, 400

        parsed = IntaSendProvider.parse_callback(payload)
        if not parsed.get('file_id') or not parsed.get('status') or parsed.get('amount') is None:
            WebhookService._finish(webhook_event, error='Missing fields')
            return {'success': False, 'message': 'Missing required fields in callback data!'}, 200

        record = LedgerService.find_by_request_code(parsed['file_id'])
        if record is None:
            WebhookService._finish(webhook_event, error='Unknown file_id')
            return {'success': False, 'message': 'MPesa code not found for the given request reference ID.'}, 404

        platform_id = record.platform_id
        amount = Decimal(str(parsed['amount']))
        charge = Decimal(str(parsed.get('charge') or 0))
        total = amount + charge
        status = WITHDRAWAL_STATUS_MAP.get(str(parsed['status']).lower())

        if status == PaymentStatus.COMPLETE:
            if LedgerService.complete(record.id, amount=total):
                try:
                    FundsService.debit(platform_id, total)
                except InsufficientFunds:
                    log_to_platform(platform_id, f'Withdrawal {parsed["file_id"]} settled but balance could not cover {total}', 'error')
                    AuditService.log_event(
                        'withdrawal.debit_refused',
                        {'file_id': parsed['file_id'], 'total': str(total)},
                        payment_id=record.id,
                        platform_id=platform_id
                    )
                else:
                    WebhookService._notify_withdrawal(platform_id, parsed['file_id'], amount, charge, total)
                    log_to_platform(platform_id, f'Withdrawal of {total} completed (ref {parsed["file_id"]})', 'success')
        elif status is not None:
            LedgerService.set_status(record, status, amount=total)
            log_to_platform(platform_id, f'Withdrawal {parsed["file_id"]} is {status.value}', 'info')
        else:
            logger.info(f'Withdrawal {parsed["file_id"]} reported unmapped status {parsed["status"]}')

        WebhookService._finish(webhook_event, payment_id=record.id)
        return {'success': True, 'message': 'Withdrawal callback processed.'}, 200

    @staticmethod
    def _notify_withdrawal(platform_id: str, file_id: str, amount, charge, total):
        platform = PlatformService.get_platform(platform_id)
        company = platform.name if platform else platform_id
        mailer = get_mailer()
        for admin in PlatformService.super_admins(platform_id):
            if not admin.email:
                continue
            try:
                sent = mailer.send({
                    'name': admin.name or admin.email,
                    'type': 'accounts',
                    'to': admin.email,
                    'email': admin.email,
                    'subject': 'Successful withdrawal request!',
                    'message': (f'You withdrawal of {total} KSH for a of fee KSH {charge} has been completed.'
                                f'Confirmed {file_id}. KSH {amount} has been send to your M-PESA account.'),
                    'company': company,
                })
            except Exception as e:
                logger.error(f'Withdrawal email to {admin.email} raised: {str(e)}')
                continue
            if not sent.get('success'):
                logger.warning(f'Withdrawal email to {admin.email} failed: {sent.get("message")}')

    # Reconciliation

    @staticmethod
    def reconcile_record(record: PaymentRecord) -> Optional[str]:
        """
        Poll the provider for a stale deposit and apply the outcome.

        Returns:
            The status applied, or None when the record was left alone
        """
        code = record.reqcode
        if IntaSendProvider.looks_like_invoice_id(code):
            result = get_provider('intasend').verify_payment(code)
            status = result['status']
            if status == PaymentStatus.PENDING.value:
                return None
            WebhookService.settle_intasend_deposit(
                record, status,
                reference=result.get('mpesa_reference'),
                net_amount=result.get('net_amount'),
                value=result.get('amount'),
                failed_reason=result.get('failed_reason')
            )
            return status

        if code.startswith('ws_CO_'):
            if record.is_c2b:
                provider = get_c2b_provider()
            else:
                config = PlatformService.get_config(record.platform_id)
                if config is None or not config.is_api:
                    return None
                provider = get_provider('mpesa', config)

            result = provider.verify_payment(code)
            status = result['status']
            if status == PaymentStatus.COMPLETE.value:
                WebhookService.settle_stk_deposit(record, code, record.amount)
            elif status == PaymentStatus.FAILED.value:
                reason = (result.get('additional_data') or {}).get('result_desc') or 'Payment failed'
                LedgerService.fail(record.id, reason, PaymentType.DEPOSIT)
            else:
                return None
            return status

        return None

    @staticmethod
    def reconcile_pending_payments() -> Dict[str, int]:
        cfg = current_app.config
        records = LedgerService.stale_pending(
            cfg.get('RECONCILE_MIN_AGE_SECONDS', 120),
            cfg.get('RECONCILE_MAX_AGE_DAYS', 7)
        )

        summary = {'checked': 0, 'completed': 0, 'failed': 0, 'errors': 0}
        for record in records:
            summary['checked'] += 1
            try:
                status = WebhookService.reconcile_record(record)
            except (PaymentProviderError, ValueError) as e:
                db.session.rollback()
                summary['errors'] += 1
                logger.warning(f'Reconcile of {record.reqcode} failed: {str(e)}')
                continue
            if status == PaymentStatus.COMPLETE.value:
                summary['completed'] += 1
            elif status == PaymentStatus.FAILED.value:
                summary['failed'] += 1

        logger.info(f'Reconciled pending payments: {summary}')
        return summary
