"""
Payment Ledger
Creation, lookup and status transitions for payment records
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.errors import DuplicateRequest
from app.models import PaymentRecord, PaymentStatus, PaymentType
from app.utils.logger import get_logger

logger = get_logger(__name__)


class LedgerService:

    @staticmethod
    def create(**fields) -> PaymentRecord:
        """
        Insert a payment record.

        `reqcode` is required and unique; `code` defaults to it.

        Raises:
            DuplicateRequest: a record with this reqcode already exists
        """
        reqcode = fields.get('reqcode')
        if not reqcode:
            raise ValueError('reqcode is required')

        fields.setdefault('code', reqcode)
        fields.setdefault('status', PaymentStatus.PENDING.value)
        for key in ('status', 'type', 'service'):
            if hasattr(fields.get(key), 'value'):
                fields[key] = fields[key].value
        if fields.get('amount') is not None:
            fields['amount'] = str(fields['amount'])

        record = PaymentRecord(**fields)
        db.session.add(record)
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            logger.warning(f'Duplicate payment request {reqcode}: {str(e.orig)}')
            raise DuplicateRequest(f'Payment request {reqcode} already exists')

        logger.info(f'Payment record created: {record.reqcode} ({record.service}/{record.type}) for {record.platform_id}')
        return record

    @staticmethod
    def find_by_request_code(reqcode: str) -> Optional[PaymentRecord]:
        if not reqcode:
            return None
        return PaymentRecord.query.filter_by(reqcode=reqcode).first()

    @staticmethod
    def find_by_any_code(code: str) -> Optional[PaymentRecord]:
        """Settlement code first, then request code"""
        if not code:
            return None
        record = PaymentRecord.query.filter_by(code=code).order_by(PaymentRecord.created_at.desc()).first()
        if record:
            return record
        return PaymentRecord.query.filter_by(reqcode=code).first()

    @staticmethod
    def exists_with_code(code: str) -> bool:
        return db.session.query(PaymentRecord.id).filter(
            or_(PaymentRecord.code == code, PaymentRecord.reqcode == code)
        ).first() is not None

    @staticmethod
    def complete(record_id: str, settlement_code: Optional[str] = None, amount=None,
                 payment_type: Optional[str] = None) -> bool:
        """
        Move a record to COMPLETE unless it already is.

        The transition is a single conditional UPDATE, so of two concurrent
        completions exactly one wins.

        Returns:
            True if this call completed the record, False if it was already COMPLETE
        """
        values = {
            PaymentRecord.status: PaymentStatus.COMPLETE.value,
            PaymentRecord.updated_at: datetime.utcnow(),
        }
        if settlement_code:
            values[PaymentRecord.code] = str(settlement_code)
        if amount is not None:
            values[PaymentRecord.amount] = str(amount)
        if payment_type:
            values[PaymentRecord.type] = getattr(payment_type, 'value', payment_type)

        updated = PaymentRecord.query.filter(
            PaymentRecord.id == record_id,
            PaymentRecord.status != PaymentStatus.COMPLETE.value
        ).update(values, synchronize_session=False)
        db.session.commit()

        record = db.session.get(PaymentRecord, record_id)
        if record is not None:
            db.session.refresh(record)

        if updated:
            logger.info(f'Payment {record_id} completed (code {settlement_code})')
        else:
            logger.info(f'Payment {record_id} already complete, skipping')
        return bool(updated)

    @staticmethod
    def fail(record_id: str, reason: Optional[str] = None, payment_type: Optional[str] = None) -> bool:
        """
        Mark a record FAILED. A COMPLETE record is never downgraded.

        Returns:
            True if the record changed
        """
        values = {
            PaymentRecord.status: PaymentStatus.FAILED.value,
            PaymentRecord.failed_reason: reason,
            PaymentRecord.updated_at: datetime.utcnow(),
        }
        if payment_type:
            values[PaymentRecord.type] = getattr(payment_type, 'value', payment_type)

        updated = PaymentRecord.query.filter(
            PaymentRecord.id == record_id,
            PaymentRecord.status != PaymentStatus.COMPLETE.value
        ).update(values, synchronize_session=False)
        db.session.commit()

        record = db.session.get(PaymentRecord, record_id)
        if record is not None:
            db.session.refresh(record)

        if updated:
            logger.info(f'Payment {record_id} failed: {reason}')
        return bool(updated)

    @staticmethod
    def set_status(record: PaymentRecord, status: PaymentStatus, amount=None) -> PaymentRecord:
        """Unconditional status write used by withdrawal callbacks"""
        record.status = getattr(status, 'value', status)
        if amount is not None:
            record.amount = str(amount)
        db.session.commit()
        return record

    @staticmethod
    def mark_reversed(code: str, reversed_: bool) -> Optional[PaymentRecord]:
        record = LedgerService.find_by_any_code(code)
        if record is None:
            return None
        record.reversed = bool(reversed_)
        db.session.commit()
        return record

    @staticmethod
    def mark_verified(code: str, verified: bool) -> Optional[PaymentRecord]:
        record = LedgerService.find_by_any_code(code)
        if record is None:
            return None
        record.verified = bool(verified)
        db.session.commit()
        return record

    @staticmethod
    def has_pending_withdrawal(platform_id: str) -> bool:
        return db.session.query(PaymentRecord.id).filter_by(
            platform_id=platform_id,
            type=PaymentType.WITHDRAWAL.value,
            status=PaymentStatus.PENDING.value
        ).first() is not None

    @staticmethod
    def stale_pending(min_age_seconds: int, max_age_days: int, now: Optional[datetime] = None) -> list:
        """PENDING/PROCESSING deposits old enough to poll, but not abandoned"""
        now = now or datetime.utcnow()
        return PaymentRecord.query.filter(
            PaymentRecord.status.in_([PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value]),
            PaymentRecord.type == PaymentType.DEPOSIT.value,
            PaymentRecord.created_at <= now - timedelta(seconds=min_age_seconds),
            PaymentRecord.created_at >= now - timedelta(days=max_age_days)
        ).order_by(PaymentRecord.created_at.asc()).all()
