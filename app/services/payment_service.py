import time
from decimal import Decimal
from typing import Dict, Any, Optional

from flask import current_app

from app.extensions import db
from app.errors import AppError, ValidationError, Unauthorized, Forbidden, PaymentNotFound, ConfigurationError
from app.models import (
    Platform,
    PaymentRecord,
    PlatformConfig,
    PaymentStatus,
    PaymentType,
    ServiceType,
    DestinationType,
    NULL_SENTINEL,
    PAYMENT_METHOD_C2B,
    PAYMENT_METHOD_API
)
from app.providers import get_provider, get_c2b_provider
from app.providers.base import PaymentProviderError
from app.services.activation_service import ActivationService
from app.services.audit_service import AuditService
from app.services.correlation_store import get_correlation_store
from app.services.credential_diagnostics import CredentialDiagnostics
from app.services.fee_service import compute_fee
from app.services.funds_service import FundsService
from app.services.ledger_service import LedgerService
from app.services.message_normalizer import MessageNormalizer
from app.services.platform_service import PlatformService
from app.utils.logger import get_logger
from app.utils.validators import validate_withdrawal_amount, to_decimal
from app.websockets.events import log_to_platform

logger = get_logger(__name__)

WIFI_DESCRIPTION = 'WiFi Subscription Payment'
PPPOE_DESCRIPTION = 'PPPoE Subscription Payment'


def _millis() -> int:
    return int(time.time() * 1000)


def _mask(phone) -> str:
    return str(phone or '')[-4:] or 'unknown'


class PaymentService:
    """Outbound payment operations: collections, payouts and initiator commands"""

    # Shared checks

    @staticmethod
    def _maintenance() -> Optional[Dict[str, Any]]:
        reason = PlatformService.maintenance_reason()
        if reason:
            return {'success': False, 'message': reason}
        return None

    @staticmethod
    def _authenticate(token: Optional[str]) -> dict:
        if not token:
            raise ValidationError('Missing credentials required!')
        auth = PlatformService.authenticate(token)
        if not auth.get('success'):
            raise Unauthorized(auth.get('message') or 'Unauthorized')
        admin = auth.get('admin') or {}
        if not admin.get('platformID'):
            raise ValidationError('Missing platformID.')
        return admin

    @staticmethod
    def _require_superuser(admin: dict):
        if admin.get('role') != 'superuser':
            raise Forbidden('Unauthorised!')

    @staticmethod
    def _require_initiator(platform_id: str) -> PlatformConfig:
        config = PlatformService.get_config(platform_id)
        if config is None or not config.is_api:
            raise ConfigurationError('Mpesa API not configured.')
        if not config.has_initiator:
            raise ConfigurationError('Mpesa API initiator credentials missing.')
        return config

    @staticmethod
    def _provider_failure(platform_id: str, error: PaymentProviderError, fallback: str) -> AppError:
        """Alert on credential-class failures and build the error the caller sees"""
        diagnosis = CredentialDiagnostics.alert(platform_id, error)
        message = MessageNormalizer.to_user_message(error.provider_message) if error.provider_message else fallback
        log_to_platform(platform_id, f'{fallback}: {error.provider_message or str(error)}', 'error')
        return AppError(diagnosis or message or fallback, error.status_code if error.status_code and error.status_code < 500 else 500)

    # Collections

    @staticmethod
    def _collect(platform_id: str, config: PlatformConfig, phone: str, amount,
                 description: str, account_reference: Optional[str] = None) -> Dict[str, Any]:
        """
        Send the payment prompt through the tenant's collection mode.

        Returns:
            {'checkout_id', 'record_fields'} where record_fields carries mode-specific columns
        """
        if config.is_c2b:
            if not config.has_c2b_destination:
                raise ConfigurationError('Configure MPESA C2B destination details in Settings.')
            result = get_c2b_provider().stk_push(
                amount, phone, account_reference or platform_id, description
            )
            destination = DestinationType.parse(config.mpesa_c2b_short_code_type)
            short_code = str(config.mpesa_c2b_short_code)
            return {
                'checkout_id': result['transaction_id'],
                'record_fields': {
                    'payment_method': PAYMENT_METHOD_C2B,
                    'till': short_code if destination == DestinationType.TILL else NULL_SENTINEL,
                    'paybill': short_code if destination == DestinationType.PAYBILL else NULL_SENTINEL,
                    'account': (config.mpesa_c2b_account_number or '') if destination == DestinationType.PAYBILL else NULL_SENTINEL,
                },
            }

        if config.is_api:
            is_paybill = str(config.mpesa_short_code_type or '').lower() == 'paybill'
            result = get_provider('mpesa', config).stk_push(
                amount, phone,
                'PayBill' if is_paybill else 'BuyGoods',
                description,
                party_b=config.mpesa_account_number or config.mpesa_short_code
            )
            return {'checkout_id': result['transaction_id'], 'record_fields': {}}

        if config.is_b2b:
            result = get_provider('intasend').initialize_payment(
                amount, 'KES', {'phone': phone}, {'api_ref': account_reference or description}
            )
            return {'checkout_id': result['transaction_id'], 'record_fields': {}}

        raise ConfigurationError('Configure Platform payments to continue!')

    @staticmethod
    def stk_push(phone: str, amount, package: Optional[dict], mac: Optional[str], platform_id: str) -> Dict[str, Any]:
        """Start a hotspot package purchase"""
        maintenance = PaymentService._maintenance()
        if maintenance:
            return maintenance

        if not phone or not amount:
            raise ValidationError('Phone number and amount are required.')

        blocked = PlatformService.blocked_entry(platform_id, phone)
        if blocked is not None:
            return {
                'success': False,
                'message': (f'Your phone number has been blocked by {blocked.blocked_by} due to violation of terms. '
                            'Please contact customer care for assistance.')
            }

        if not package or not package.get('id'):
            raise ValidationError('Missing credentials required!')

        config = PlatformService.get_config(platform_id)
        if config is None:
            raise ConfigurationError('Configure Platform payments to continue!')

        platform = PlatformService.get_platform(platform_id)
        log_to_platform(
            platform_id,
            f'Payment request started ({package.get("name") or package.get("id")}, KES {amount}, phone ****{_mask(phone)})'
        )

        try:
            collected = PaymentService._collect(
                platform_id, config, phone, amount, WIFI_DESCRIPTION,
                account_reference=platform.name if platform and config.is_c2b else None
            )
        except PaymentProviderError as e:
            logger.error(f'STK push failed for {platform_id}: {str(e)}')
            raise PaymentService._provider_failure(platform_id, e, 'Failed to initiate STK Push')

        checkout_id = collected['checkout_id']
        record = LedgerService.create(
            platform_id=platform_id,
            amount=amount,
            code=checkout_id,
            reqcode=checkout_id,
            phone=phone,
            status=PaymentStatus.PENDING,
            type=PaymentType.DEPOSIT,
            service=ServiceType.HOTSPOT,
            reason=package['id'],
            mac=mac,
            **collected['record_fields']
        )

        AuditService.log_event(
            'payment.initiated',
            {'service': 'hotspot', 'amount': str(amount), 'package': package.get('id')},
            payment_id=record.id,
            platform_id=platform_id
        )
        log_to_platform(platform_id, f'STK push initiated (ref {checkout_id})', 'success')

        return {
            'success': True,
            'message': 'STK Push initiated successfully',
            'data': {'checkoutRequestId': checkout_id}
        }

    @staticmethod
    def pay_pppoe(phone: str, payment_link: str) -> Dict[str, Any]:
        maintenance = PaymentService._maintenance()
        if maintenance:
            return maintenance

        if not phone or not payment_link:
            raise ValidationError('Missing credentials are required.')

        subscription = PlatformService.find_pppoe_by_link(payment_link)
        if subscription is None:
            raise ValidationError('PPPoE Package does not exists!')

        outstanding = Decimal(str(subscription.amount or 0))
        amount = outstanding if outstanding > 0 else Decimal(str(subscription.price or 0))
        platform_id = subscription.platform_id

        config = PlatformService.get_config(platform_id)
        if config is None:
            raise ConfigurationError('Configure Platform payments to continue!')

        log_to_platform(platform_id, f'PPPoE payment request started (KES {amount}, phone ****{_mask(phone)})')

        try:
            collected = PaymentService._collect(platform_id, config, phone, amount, PPPOE_DESCRIPTION)
        except PaymentProviderError as e:
            logger.error(f'PPPoE STK push failed for {platform_id}: {str(e)}')
            raise PaymentService._provider_failure(platform_id, e, 'Failed to initiate STK Push')

        checkout_id = collected['checkout_id']
        LedgerService.create(
            platform_id=platform_id,
            amount=amount,
            code=checkout_id,
            reqcode=checkout_id,
            phone=phone,
            status=PaymentStatus.PENDING,
            type=PaymentType.DEPOSIT,
            service=ServiceType.PPPOE,
            reason=None,
            reference_id=payment_link,
            **collected['record_fields']
        )
        log_to_platform(platform_id, f'PPPoE STK push initiated (ref {checkout_id})', 'success')

        return {
            'success': True,
            'message': 'STK Push initiated successfully',
            'data': {'checkoutRequestId': checkout_id}
        }

    @staticmethod
    def _intasend_collection(platform_id: str, phone: str, amount, api_ref: str, **fields) -> Dict[str, Any]:
        try:
            result = get_provider('intasend').initialize_payment(amount, 'KES', {'phone': phone}, {'api_ref': api_ref})
        except PaymentProviderError as e:
            logger.error(f'IntaSend collection failed for {platform_id}: {str(e)}')
            raise PaymentService._provider_failure(platform_id, e, 'Failed to initiate STK Push')

        invoice_id = result['transaction_id']
        LedgerService.create(
            platform_id=platform_id,
            amount=amount,
            code=invoice_id,
            reqcode=invoice_id,
            phone=phone,
            status=PaymentStatus.PENDING,
            type=PaymentType.DEPOSIT,
            **fields
        )
        return {
            'success': True,
            'message': 'STK Push initiated successfully',
            'data': {'checkoutRequestId': invoice_id}
        }

    @staticmethod
    def pay_bill(token: str, phone: str, months, bill_id: str) -> Dict[str, Any]:
        """Pay the tenant's platform subscription bill for a number of months"""
        if not phone or not bill_id or not months:
            raise ValidationError('Missing credentials are required.')

        admin = PaymentService._authenticate(token)
        PaymentService._require_superuser(admin)

        bill = PlatformService.get_bill(bill_id)
        if bill is None:
            raise ValidationError('Bill does not exist!')

        try:
            months = int(months)
        except (TypeError, ValueError):
            raise ValidationError('Invalid months value.')

        amount = Decimal(str(bill.amount or 0)) + Decimal(str(bill.price or 0)) * months
        return PaymentService._intasend_collection(
            admin['platformID'], phone, amount, 'Platform Bill Payment',
            service=ServiceType.BILL,
            reference_id=bill.id
        )

    @staticmethod
    def pay_sms(token: str, phone: str, amount) -> Dict[str, Any]:
        """Top up the tenant's SMS wallet"""
        if not phone or not amount:
            raise ValidationError('Missing credentials are required.')

        admin = PaymentService._authenticate(token)
        PaymentService._require_superuser(admin)

        wallet = PlatformService.get_sms_wallet(admin['platformID'])
        if wallet is None:
            raise ValidationError('SMS Wallet does not exists!')

        parsed = to_decimal(amount)
        if parsed is None or parsed <= 0:
            raise ValidationError('Amount must be greater than 0.')

        return PaymentService._intasend_collection(
            admin['platformID'], phone, parsed, 'SMS Wallet Top Up',
            service=ServiceType.SMS,
            reason=wallet.id
        )

    # Payouts

    @staticmethod
    def withdraw(token: str, amount) -> Dict[str, Any]:
        """
        Pay the tenant's balance out to its configured phone, till or paybill.

        The balance is only debited when the payout callback reports success.
        """
        maintenance = PaymentService._maintenance()
        if maintenance:
            return {'success': False, 'type': 'error', 'message': maintenance['message']}

        if not token:
            raise ValidationError('Missing credentials required!')
        if amount in (None, ''):
            raise ValidationError('Missing fields are required!')

        admin = PaymentService._authenticate(token)
        platform_id = admin['platformID']

        valid, gross = validate_withdrawal_amount(amount)
        if not valid:
            raise ValidationError('Invalid amount, try again!')

        if PlatformService.get_admin(admin.get('adminID')) is None:
            raise PaymentNotFound('Admin does not exist!')

        funds = FundsService.get(platform_id)
        if funds is None:
            raise PaymentNotFound('Platform account does not exist!')

        config = PlatformService.get_config(platform_id)
        if config is None:
            raise ConfigurationError('Configure Platform payments to continue!')

        balance = Decimal(str(funds.balance or 0))
        if balance < gross:
            raise ValidationError('Insufficient funds for withdrawal!')
        if not config.is_b2b and balance <= 0:
            raise ValidationError(
                'Invalid operation for withdrawal, configure B2B payments on the Settings Tab first!'
            )
        if LedgerService.has_pending_withdrawal(platform_id):
            raise ValidationError('You have a pending withdrawal request, wait until it is processed!')

        destination_type = str(config.mpesa_short_code_type or 'Phone')
        fee = compute_fee(gross, destination_type)
        net = gross - fee
        if net <= 0:
            raise ValidationError('Withdrawal amount is too small after fees.')

        provider = get_provider('intasend')
        try:
            if destination_type.lower() == 'phone':
                response = provider.payout_mpesa(config.mpesa_short_code, net)
            else:
                is_paybill = destination_type.lower() == 'paybill'
                response = provider.payout_b2b(
                    config.mpesa_short_code,
                    'PayBill' if is_paybill else 'TillNumber',
                    config.mpesa_account_number or '',
                    net
                )
        except PaymentProviderError as e:
            logger.error(f'Withdrawal payout failed for {platform_id}: {str(e)}')
            log_to_platform(platform_id, f'Withdrawal payout failed: {e.provider_message or str(e)}', 'error')
            raise AppError('Withdrawal request failed, try again later!', 500)

        file_id = response.get('file_id')
        if not file_id:
            raise ValidationError('Withdrawal failed! Intasend error.')

        record = LedgerService.create(
            platform_id=platform_id,
            amount=gross,
            code=file_id,
            reqcode=file_id,
            phone=config.mpesa_short_code,
            status=PaymentStatus.PENDING,
            type=PaymentType.WITHDRAWAL,
            service=ServiceType.MPESA_B2B,
        )
        AuditService.log_event(
            'withdrawal.initiated',
            {'amount': str(gross), 'fee': str(fee), 'net': str(net), 'file_id': file_id},
            payment_id=record.id,
            platform_id=platform_id
        )
        log_to_platform(platform_id, f'Withdrawal of {gross} initiated (fee {fee}, ref {file_id})', 'success')

        return {
            'success': True,
            'message': 'Withdrawal initiated successfully!',
            'data': {'fileId': file_id, 'amount': str(gross), 'fee': str(fee), 'net': str(net)}
        }

    # Initiator commands

    @staticmethod
    def _resolve_transaction(platform_id: str, transaction_code: Optional[str], payment_id: Optional[str],
                             action: str):
        """Transaction code plus the record it came from, when looked up by payment id"""
        if transaction_code or not payment_id:
            return transaction_code, None

        payment = PaymentRecord.query.filter_by(id=payment_id, platform_id=platform_id).first()
        if payment is not None and payment.status != PaymentStatus.COMPLETE.value:
            raise ValidationError(f'Only COMPLETE transactions can be {action}.')
        code = (payment.code or payment.reqcode) if payment is not None else None
        return code, payment

    @staticmethod
    def verify_transaction(token: str, transaction_code: Optional[str] = None,
                           payment_id: Optional[str] = None) -> Dict[str, Any]:
        admin = PaymentService._authenticate(token)
        platform_id = admin['platformID']
        config = PaymentService._require_initiator(platform_id)

        code, _ = PaymentService._resolve_transaction(platform_id, transaction_code, payment_id, 'verified')
        if not code:
            raise ValidationError('Transaction code is required.')

        try:
            response = get_provider('mpesa', config).transaction_status(code)
        except PaymentProviderError as e:
            raise PaymentService._provider_failure(platform_id, e, 'Verification failed')

        originator_id = response.get('OriginatorConversationID') or response.get('originatorConversationID')
        if originator_id:
            get_correlation_store().register(originator_id, platform_id, 'verify')

        log_to_platform(platform_id, f'Verification requested for {code}')
        return {'success': True, 'message': 'Verification request sent successfully', 'data': response}

    @staticmethod
    def reverse_transaction(token: str, transaction_code: Optional[str] = None,
                            payment_id: Optional[str] = None, amount=None) -> Dict[str, Any]:
        admin = PaymentService._authenticate(token)
        platform_id = admin['platformID']
        config = PaymentService._require_initiator(platform_id)

        code, payment = PaymentService._resolve_transaction(platform_id, transaction_code, payment_id, 'reversed')
        if not amount and payment is not None:
            amount = payment.amount
        if not code:
            raise ValidationError('Transaction code is required.')
        if not amount:
            raise ValidationError('Amount is required for reversal.')

        try:
            response = get_provider('mpesa', config).reverse(code, amount)
        except PaymentProviderError as e:
            raise PaymentService._provider_failure(platform_id, e, 'Reversal failed')

        originator_id = response.get('OriginatorConversationID') or response.get('originatorConversationID')
        if originator_id:
            get_correlation_store().register(originator_id, platform_id, 'reverse')

        AuditService.log_event(
            'payment.reversal_requested',
            {'code': code, 'amount': str(amount)},
            payment_id=payment.id if payment is not None else None,
            platform_id=platform_id
        )
        log_to_platform(platform_id, f'Reversal requested for {code}')
        return {'success': True, 'message': 'Reversal request sent successfully', 'data': response}

    @staticmethod
    def transfer_to_business(token: str, amount, destination_type: str, destination_short_code: str,
                             destination_account: Optional[str] = None, remarks: Optional[str] = None) -> Dict[str, Any]:
        """Move money from the tenant's shortcode to a till, paybill or Pochi wallet"""
        admin = PaymentService._authenticate(token)
        platform_id = admin['platformID']
        config = PaymentService._require_initiator(platform_id)

        parsed = to_decimal(amount)
        if parsed is None or parsed <= 0:
            raise ValidationError('Amount must be greater than 0.')

        destination = DestinationType.parse(destination_type)
        if destination is None:
            raise ValidationError('Destination type must be Till, Paybill, or Pochi.')
        if not destination_short_code:
            raise ValidationError('Destination shortcode is required.')
        if destination == DestinationType.PAYBILL and not destination_account:
            raise ValidationError('Paybill account number is required.')

        provider = get_provider('mpesa', config)
        remarks = remarks or 'Business transfer'
        try:
            if destination == DestinationType.POCHI:
                response = provider.b2pochi_transfer(
                    parsed, destination_short_code, f'B2POCHI-{_millis()}',
                    remarks=remarks, occasion='Business transfer'
                )
            else:
                response = provider.b2b_transfer(
                    parsed, destination.value, destination_short_code,
                    account_reference=destination_account or '',
                    remarks=remarks
                )
        except PaymentProviderError as e:
            raise PaymentService._provider_failure(platform_id, e, 'Transfer failed')

        is_pochi = destination == DestinationType.POCHI
        originator_id = response.get('OriginatorConversationID') or response.get('originatorConversationID')
        if originator_id:
            get_correlation_store().register(originator_id, platform_id, 'b2pochi-transfer' if is_pochi else 'b2b-transfer')

        conversation_id = (originator_id
                           or response.get('ConversationID')
                           or response.get('TransID')
                           or f'{destination_short_code}-{_millis()}')

        LedgerService.create(
            platform_id=platform_id,
            amount=parsed,
            code=conversation_id,
            reqcode=conversation_id,
            phone=str(destination_short_code),
            status=PaymentStatus.PENDING,
            type=PaymentType.B2POCHI_TRANSFER if is_pochi else PaymentType.B2B_TRANSFER,
            service=ServiceType.MPESA_B2POCHI if is_pochi else ServiceType.MPESA_B2B,
            payment_method=PAYMENT_METHOD_API,
            till=str(destination_short_code) if destination == DestinationType.TILL else NULL_SENTINEL,
            paybill=str(destination_short_code) if destination == DestinationType.PAYBILL else NULL_SENTINEL,
            account=str(destination_account) if destination == DestinationType.PAYBILL else NULL_SENTINEL,
        )
        log_to_platform(platform_id, f'{destination.value.title()} transfer of {parsed} requested (ref {conversation_id})', 'success')

        return {'success': True, 'message': 'Transfer request sent successfully', 'data': response}

    @staticmethod
    def request_shortcode_balance(platform_id: str) -> Dict[str, Any]:
        config = PlatformService.get_config(platform_id)
        if config is None:
            raise ConfigurationError('Configure Platform payments to continue!')
        if not config.is_api:
            raise ConfigurationError('Configure Platform payments to Mpesa API!')
        if not config.has_initiator:
            raise ConfigurationError('Configure Platform payments to Mpesa API Initiator Username!')

        try:
            response = get_provider('mpesa', config).account_balance()
        except PaymentProviderError as e:
            raise PaymentService._provider_failure(platform_id, e, 'Failed to request balance')

        originator_id = response.get('OriginatorConversationID')
        if str(response.get('ResponseCode')) == '0' and originator_id:
            FundsService.remember_balance_query(platform_id, originator_id)
            get_correlation_store().register(originator_id, platform_id, 'balance')
            return {'success': True, 'message': 'Balance request sent successfully', 'data': response}

        return {'success': False, 'message': 'Failed to request balance', 'data': response}

    @staticmethod
    def register_urls() -> Dict[str, Any]:
        """Register confirmation/validation URLs for every platform that needs them"""
        base_url = current_app.config.get('BASE_URL', '').rstrip('/')
        registered, failed = [], []

        for platform in Platform.query.all():
            platform_id = platform.platform_id
            config = PlatformService.get_config(platform_id)
            if config is None:
                continue
            if not (config.offline_payments or not config.registered_url or config.is_api or config.is_c2b):
                continue

            use_c2b = bool(config.is_c2b and config.mpesa_c2b_short_code)
            short_code = config.mpesa_c2b_short_code if use_c2b else config.mpesa_short_code
            if not short_code:
                continue

            try:
                provider = get_c2b_provider() if use_c2b else get_provider('mpesa', config)
                if use_c2b:
                    provider.shortcode = str(short_code)
                response = provider.register_c2b_urls(f'{base_url}/mpesa/confirmation', f'{base_url}/mpesa/validation')
            except (PaymentProviderError, ValueError) as e:
                logger.error(f'URL registration failed for {platform_id}: {str(e)}')
                if isinstance(e, PaymentProviderError):
                    CredentialDiagnostics.alert(platform_id, e)
                failed.append(platform_id)
                continue

            if str(response.get('ResponseCode')) == '0':
                config.registered_url = True
                db.session.commit()
                registered.append(platform_id)
                log_to_platform(platform_id, f'C2B URLs registered for {short_code}', 'success')
            else:
                failed.append(platform_id)

        logger.info(f'C2B URL registration: {len(registered)} registered, {len(failed)} failed')
        return {'registered': registered, 'failed': failed}

    # Status

    @staticmethod
    def check_payment(code: Optional[str]) -> Dict[str, Any]:
        """Status poll from the captive portal, completing activation on demand"""
        if not code:
            raise ValidationError('Missing payment code.')

        record = LedgerService.find_by_any_code(code)
        if record is None:
            return {'success': False, 'message': 'Payment not found.'}

        if record.status in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
            return {'success': False, 'status': record.status, 'message': 'Payment is still pending.'}

        if record.status == PaymentStatus.FAILED.value:
            return {
                'success': False,
                'status': record.status,
                'message': MessageNormalizer.to_user_message(record.failed_reason or 'Payment failed.')
            }

        outcome = ActivationService.complete_for_service(record) or {}
        if ServiceType.parse(record.service) == ServiceType.HOTSPOT:
            if outcome.get('status') != 'COMPLETE':
                return {
                    'success': False,
                    'status': 'FAILED',
                    'message': outcome.get('message') or 'Activation failed.'
                }

            login_code = outcome.get('login_code') or record.code
            package = PlatformService.get_package(record.platform_id, record.reason)
            expires_in, expires_at = ActivationService.compute_expiry_from_package(package)
            token = ActivationService.create_hotspot_token(
                record.phone, login_code, record.reason, record.platform_id, expires_in
            )
            return {
                'success': True,
                'status': PaymentStatus.COMPLETE.value,
                'message': 'Payment received. Connecting you shortly.',
                'loginCode': login_code,
                'token': token,
                'expiresAt': expires_at.isoformat(timespec='milliseconds') + 'Z',
            }

        return {
            'success': True,
            'status': PaymentStatus.COMPLETE.value,
            'message': 'Payment completed successfully.',
        }
