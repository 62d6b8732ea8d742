"""
Unit Tests for the Payment Ledger and Funds Accounting
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.errors import DuplicateRequest, InsufficientFunds
from app.models import PaymentRecord, PaymentStatus, PaymentType, FundsAccount
from app.services.funds_service import FundsService
from app.services.ledger_service import LedgerService


class TestLedgerService:

    def test_create_defaults_code_to_reqcode(self, session):
        record = LedgerService.create(
            platform_id='P1', reqcode='ws_CO_1', amount=Decimal('50'),
            status=PaymentStatus.PENDING, type=PaymentType.DEPOSIT
        )
        assert record.code == 'ws_CO_1'
        assert record.status == 'PENDING'
        assert record.type == 'deposit'
        assert record.till == 'null'

    def test_create_rejects_duplicate_reqcode(self, session):
        LedgerService.create(platform_id='P1', reqcode='ws_CO_1', amount=50)
        with pytest.raises(DuplicateRequest):
            LedgerService.create(platform_id='P1', reqcode='ws_CO_1', amount=50)
        assert PaymentRecord.query.count() == 1

    def test_create_requires_reqcode(self, session):
        with pytest.raises(ValueError):
            LedgerService.create(platform_id='P1', amount=50)

    def test_complete_wins_once(self, session, make_record):
        record = make_record('ws_CO_1')

        assert LedgerService.complete(record.id, 'RCP1', Decimal('50')) is True
        assert LedgerService.complete(record.id, 'RCP2', Decimal('60')) is False

        stored = session.get(PaymentRecord, record.id)
        assert stored.status == 'COMPLETE'
        assert stored.code == 'RCP1'
        assert stored.amount == Decimal('50')

    def test_fail_never_downgrades_complete(self, session, make_record):
        record = make_record('ws_CO_1', status=PaymentStatus.COMPLETE.value)

        assert LedgerService.fail(record.id, 'Request cancelled by user') is False
        assert session.get(PaymentRecord, record.id).status == 'COMPLETE'

    def test_fail_records_reason(self, session, make_record):
        record = make_record('ws_CO_1')

        assert LedgerService.fail(record.id, 'Request cancelled by user', PaymentType.DEPOSIT) is True

        stored = session.get(PaymentRecord, record.id)
        assert stored.status == 'FAILED'
        assert stored.failed_reason == 'Request cancelled by user'

    def test_find_by_any_code_prefers_settlement_code(self, session, make_record):
        make_record('ws_CO_1', code='RCP1')

        assert LedgerService.find_by_any_code('RCP1').reqcode == 'ws_CO_1'
        assert LedgerService.find_by_any_code('ws_CO_1').reqcode == 'ws_CO_1'
        assert LedgerService.find_by_any_code('nope') is None
        assert LedgerService.exists_with_code('RCP1') is True
        assert LedgerService.exists_with_code('nope') is False

    def test_mark_reversed_and_verified(self, session, make_record):
        make_record('ws_CO_1', code='RCP1', status=PaymentStatus.COMPLETE.value)

        assert LedgerService.mark_reversed('RCP1', True).reversed is True
        assert LedgerService.mark_verified('RCP1', False).verified is False
        assert LedgerService.mark_reversed('unknown', True) is None

    def test_has_pending_withdrawal(self, session, make_record):
        assert LedgerService.has_pending_withdrawal('P1') is False
        make_record('FILE1', type=PaymentType.WITHDRAWAL.value)
        assert LedgerService.has_pending_withdrawal('P1') is True

    def test_stale_pending_window(self, session, make_record):
        now = datetime.utcnow()
        make_record('fresh', created_at=now - timedelta(seconds=30))
        make_record('stale', created_at=now - timedelta(minutes=10))
        make_record('abandoned', created_at=now - timedelta(days=8))
        make_record('processing', created_at=now - timedelta(minutes=5), status=PaymentStatus.PROCESSING.value)
        make_record('done', created_at=now - timedelta(minutes=10), status=PaymentStatus.COMPLETE.value)
        make_record('payout', created_at=now - timedelta(minutes=10), type=PaymentType.WITHDRAWAL.value)

        stale = LedgerService.stale_pending(120, 7, now=now)

        assert [r.reqcode for r in stale] == ['stale', 'processing']


class TestFundsService:

    def test_first_credit_creates_account(self, session):
        account = FundsService.credit('P9', Decimal('100'))

        assert account.balance == Decimal('100')
        assert account.deposits == Decimal('100')
        assert account.withdrawals == Decimal('0')

    def test_credit_increments(self, session, funds):
        account = FundsService.credit('P1', '25.50')

        assert account.balance == Decimal('1025.50')
        assert account.deposits == Decimal('1025.50')

    def test_debit(self, session, funds):
        account = FundsService.debit('P1', Decimal('400'))

        assert account.balance == Decimal('600')
        assert account.withdrawals == Decimal('400')

    def test_debit_refused_when_balance_short(self, session, funds):
        with pytest.raises(InsufficientFunds):
            FundsService.debit('P1', Decimal('1000.01'))

        assert FundsService.get('P1').balance == Decimal('1000')

    def test_balance_conservation(self, session, funds):
        FundsService.credit('P1', 300)
        FundsService.debit('P1', 450)

        account = FundsService.get('P1')
        assert account.balance == account.deposits - account.withdrawals

    def test_settlement_balance_and_short_identifier(self, session):
        FundsService.remember_balance_query('P1', 'AG_BAL')
        FundsService.record_settlement_balance('P1', Decimal('4800'))

        account = FundsService.find_by_short_identifier('AG_BAL')
        assert account.platform_id == 'P1'
        assert account.short_code_balance == Decimal('4800')
        assert isinstance(account, FundsAccount)
