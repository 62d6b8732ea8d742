"""
C2B Sweep Pool
Small C2B receipts accumulate per tenant until they clear the provider's minimum transfer amount
"""

import time
from decimal import Decimal
from typing import Optional

from flask import current_app

from app.extensions import db
from app.models import (
    C2BTransferPool,
    DestinationType,
    PaymentStatus,
    PaymentType,
    ServiceType,
    NULL_SENTINEL,
    PAYMENT_METHOD_C2B
)
from app.providers import get_c2b_provider
from app.providers.base import PaymentProviderError
from app.services.correlation_store import get_correlation_store
from app.services.ledger_service import LedgerService
from app.services.platform_service import PlatformService
from app.utils.logger import get_logger
from app.websockets.events import log_to_platform

logger = get_logger(__name__)


def _millis() -> int:
    return int(time.time() * 1000)


class C2BPoolService:

    @staticmethod
    def threshold() -> Decimal:
        return Decimal(str(current_app.config.get('C2B_POOL_THRESHOLD', 10)))

    @staticmethod
    def destination(platform_id: str) -> Optional[dict]:
        """Sweep destination from the tenant's C2B settings, or None when not configured"""
        config = PlatformService.get_config(platform_id)
        if config is None or not config.has_c2b_destination:
            return None
        destination_type = DestinationType.parse(config.mpesa_c2b_short_code_type)
        if destination_type is None:
            return None
        return {
            'type': destination_type,
            'short_code': str(config.mpesa_c2b_short_code),
            'account': config.mpesa_c2b_account_number or NULL_SENTINEL,
        }

    @staticmethod
    def get_pool(platform_id: str) -> Optional[C2BTransferPool]:
        return C2BTransferPool.query.filter_by(platform_id=platform_id).first()

    @staticmethod
    def add(platform_id: str, amount, destination: dict) -> C2BTransferPool:
        """Add an amount to the tenant's pool under a row lock"""
        amount = Decimal(str(amount))
        pool = C2BTransferPool.query.filter_by(platform_id=platform_id).with_for_update().first()
        if pool is None:
            pool = C2BTransferPool(platform_id=platform_id, amount=0)
            db.session.add(pool)

        pool.destination_type = destination['type'].value
        pool.destination_short_code = destination['short_code']
        pool.destination_account = destination.get('account') or NULL_SENTINEL
        pool.amount = Decimal(str(pool.amount or 0)) + amount
        db.session.commit()

        logger.info(f'Pooled {amount} for {platform_id}, pool now {pool.amount}')
        return pool

    @staticmethod
    def flush(platform_id: str, destination: dict) -> dict:
        """
        Transfer the pooled amount out if it has reached the threshold.

        The amount is taken out of the pool in the locked read, before the
        provider call, so a concurrent flush for the same tenant finds an empty
        pool. A failed transfer puts the amount back.

        Returns:
            {'attempted': bool, 'success': bool, 'amount': Decimal}
        """
        pool = C2BTransferPool.query.filter_by(platform_id=platform_id).with_for_update().first()
        if pool is None:
            db.session.commit()
            return {'attempted': False, 'success': False, 'amount': Decimal('0')}

        pooled = Decimal(str(pool.amount or 0))
        if pooled < C2BPoolService.threshold():
            db.session.commit()
            return {'attempted': False, 'success': False, 'amount': pooled}

        pool.amount = Decimal('0')
        db.session.commit()

        try:
            C2BPoolService.transfer(platform_id, pooled, destination, pooled_sweep=True)
        except (PaymentProviderError, ValueError) as e:
            db.session.rollback()
            logger.error(f'C2B pool flush failed for {platform_id}: {str(e)}')
            C2BPoolService._restore(platform_id, pooled)
            log_to_platform(platform_id, f'C2B pooled transfer of {pooled} failed, will retry', 'warn')
            return {'attempted': True, 'success': False, 'amount': pooled}

        log_to_platform(platform_id, f'C2B pooled transfer of {pooled} sent', 'success')
        return {'attempted': True, 'success': True, 'amount': pooled}

    @staticmethod
    def _restore(platform_id: str, amount: Decimal):
        pool = C2BTransferPool.query.filter_by(platform_id=platform_id).with_for_update().first()
        pool.amount = Decimal(str(pool.amount or 0)) + amount
        db.session.commit()

    @staticmethod
    def transfer(platform_id: str, amount, destination: dict, reference: Optional[str] = None,
                 phone: Optional[str] = None, pooled_sweep: bool = False) -> dict:
        """
        Send an outbound transfer from the shared C2B shortcode.

        Pochi destinations use B2Pochi, whose result is correlated by originator id.
        Till and paybill destinations use B2B and leave a PENDING ledger record.
        """
        provider = get_c2b_provider()
        amount = Decimal(str(amount))

        if destination['type'] == DestinationType.POCHI:
            reference = reference or f'C2BPO-{_millis()}'
            response = provider.b2pochi_transfer(
                amount, destination['short_code'], reference,
                remarks=f'C2B Pochi {reference}', occasion='C2B Pochi'
            )
            originator_id = response.get('OriginatorConversationID') or response.get('originatorConversationID')
            if originator_id:
                get_correlation_store().register(originator_id, platform_id, 'c2b-pochi')
            logger.info(f'C2B Pochi transfer of {amount} queued for {platform_id} (ref {reference})')
            return response

        if destination['type'] == DestinationType.PAYBILL and destination.get('account') in (None, '', NULL_SENTINEL):
            raise ValueError('Destination Paybill account number missing.')

        reference = reference or f'C2BPOOL-{_millis()}'
        is_paybill = destination['type'] == DestinationType.PAYBILL
        response = provider.b2b_transfer(
            amount,
            destination['type'].value,
            destination['short_code'],
            account_reference=destination.get('account') if is_paybill else '',
            remarks=f'C2B Payout {reference}'
        )

        conversation_id = (response.get('OriginatorConversationID')
                           or response.get('ConversationID')
                           or f'{reference}-{_millis()}')
        LedgerService.create(
            platform_id=platform_id,
            amount=amount,
            code=conversation_id,
            reqcode=conversation_id,
            phone=phone or NULL_SENTINEL,
            status=PaymentStatus.PENDING,
            type=PaymentType.MPESA_B2B,
            service=ServiceType.MPESA_B2B,
            till=NULL_SENTINEL if is_paybill else destination['short_code'],
            paybill=destination['short_code'] if is_paybill else NULL_SENTINEL,
            account=destination.get('account') if is_paybill else NULL_SENTINEL,
            payment_method=PAYMENT_METHOD_C2B,
        )
        logger.info(f'C2B B2B transfer of {amount} queued for {platform_id} (ref {reference}, pooled={pooled_sweep})')
        return response

    @staticmethod
    def settle_receipt(record, amount) -> dict:
        """
        Route a completed C2B deposit: pool and flush below the threshold,
        transfer directly otherwise. A failed direct transfer is pooled.
        """
        platform_id = record.platform_id
        destination = C2BPoolService.destination(platform_id)
        if destination is None:
            logger.warning(f'C2B destination not configured for {platform_id}, receipt {record.code} not swept')
            return {'pooled': False, 'transferred': False}

        amount = Decimal(str(amount))
        if amount < C2BPoolService.threshold():
            C2BPoolService.add(platform_id, amount, destination)
            flushed = C2BPoolService.flush(platform_id, destination)
            log_to_platform(platform_id, f'C2B transfer pooled (amount {amount})', 'info')
            return {'pooled': True, 'transferred': flushed['success'], 'flush': flushed}

        try:
            C2BPoolService.transfer(platform_id, amount, destination, reference=record.code, phone=record.phone)
        except (PaymentProviderError, ValueError) as e:
            db.session.rollback()
            logger.error(f'C2B direct transfer failed for {platform_id}: {str(e)}')
            C2BPoolService.add(platform_id, amount, destination)
            log_to_platform(platform_id, f'C2B transfer failed, pooled for retry (ref {record.code})', 'warn')
            return {'pooled': True, 'transferred': False}

        log_to_platform(platform_id, f'C2B transfer queued (ref {record.code})', 'success')
        return {'pooled': False, 'transferred': True}
