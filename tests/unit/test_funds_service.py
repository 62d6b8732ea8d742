"""
Unit Tests for Funds Accounting
"""

from decimal import Decimal

import pytest

from app.errors import InsufficientFunds
from app.models import FundsAccount
from app.services.funds_service import FundsService


class TestCredit:

    def test_first_deposit_creates_account(self, session, platform):
        account = FundsService.credit('P1', '48.50')

        assert account.balance == Decimal('48.50')
        assert account.deposits == Decimal('48.50')
        assert account.withdrawals == Decimal('0')
        assert FundsAccount.query.filter_by(platform_id='P1').count() == 1

    def test_credit_increments_existing_account(self, funds):
        account = FundsService.credit('P1', 250)

        assert account.balance == Decimal('1250')
        assert account.deposits == Decimal('1250')


class TestDebit:

    def test_debit_within_balance(self, funds):
        account = FundsService.debit('P1', '400')

        assert account.balance == Decimal('600')
        assert account.withdrawals == Decimal('400')
        assert account.balance == account.deposits - account.withdrawals

    def test_debit_of_entire_balance(self, funds):
        assert FundsService.debit('P1', 1000).balance == Decimal('0')

    def test_overdraft_is_refused(self, funds):
        with pytest.raises(InsufficientFunds):
            FundsService.debit('P1', '1000.01')

        account = FundsService.get('P1')
        assert account.balance == Decimal('1000')
        assert account.withdrawals == Decimal('0')

    def test_debit_without_account(self, session, platform):
        with pytest.raises(InsufficientFunds):
            FundsService.debit('P1', 1)


class TestShortcodeBalance:

    def test_record_settlement_balance(self, funds):
        FundsService.record_settlement_balance('P1', '500.00')

        assert FundsService.get('P1').short_code_balance == Decimal('500.00')

    def test_record_settlement_balance_creates_account(self, session, platform):
        account = FundsService.record_settlement_balance('P1', '12.5')

        assert account.short_code_balance == Decimal('12.5')
        assert account.balance == 0

    def test_short_identifier_lookup(self, funds):
        FundsService.remember_balance_query('P1', 'AG_20240101_1')

        assert FundsService.find_by_short_identifier('AG_20240101_1').platform_id == 'P1'
        assert FundsService.find_by_short_identifier('AG_OTHER') is None
        assert FundsService.find_by_short_identifier('') is None
