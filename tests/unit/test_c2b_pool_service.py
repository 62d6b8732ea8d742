"""
Unit Tests for the C2B sweep pool
"""

from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from app.models import C2BTransferPool, PaymentRecord, PaymentType, DestinationType
from app.providers.base import TransferError
from app.services.c2b_pool_service import C2BPoolService
from app.services.ledger_service import LedgerService

TILL = {'type': DestinationType.TILL, 'short_code': '5123456', 'account': 'null'}


@pytest.fixture
def c2b_provider():
    provider = Mock()
    provider.b2b_transfer.return_value = {
        'OriginatorConversationID': 'AG_POOL_1',
        'ConversationID': 'AG_CONV_1',
        'ResponseCode': '0',
    }
    provider.b2pochi_transfer.return_value = {'OriginatorConversationID': 'AG_POCHI_1', 'ResponseCode': '0'}
    with patch('app.services.c2b_pool_service.get_c2b_provider', return_value=provider):
        yield provider


def _pool_amount():
    pool = C2BPoolService.get_pool('P1')
    return pool.amount if pool else None


class TestDestination:

    def test_from_tenant_settings(self, session, c2b_config):
        destination = C2BPoolService.destination('P1')

        assert destination['type'] == DestinationType.TILL
        assert destination['short_code'] == '5123456'
        assert destination['account'] == 'null'

    def test_missing_configuration(self, session, platform):
        assert C2BPoolService.destination('P1') is None


class TestSettleReceipt:

    def test_small_receipts_pool_until_threshold(self, session, c2b_config, make_record, c2b_provider):
        first = make_record('ws_CO_1', code='RCP1', amount=Decimal('7'), payment_method='Mpesa C2B')
        second = make_record('ws_CO_2', code='RCP2', amount=Decimal('7'), payment_method='Mpesa C2B')

        outcome = C2BPoolService.settle_receipt(first, Decimal('7'))
        assert outcome['pooled'] is True
        assert outcome['transferred'] is False
        assert _pool_amount() == Decimal('7')
        c2b_provider.b2b_transfer.assert_not_called()

        outcome = C2BPoolService.settle_receipt(second, Decimal('7'))
        assert outcome['transferred'] is True
        c2b_provider.b2b_transfer.assert_called_once()
        assert c2b_provider.b2b_transfer.call_args.args[0] == Decimal('14')
        assert _pool_amount() == Decimal('0')

        sweep = PaymentRecord.query.filter_by(reqcode='AG_POOL_1').one()
        assert sweep.type == PaymentType.MPESA_B2B.value
        assert sweep.status == 'PENDING'
        assert sweep.till == '5123456'
        assert sweep.amount == Decimal('14')

    def test_large_receipt_transfers_directly(self, session, c2b_config, make_record, c2b_provider):
        record = make_record('ws_CO_1', code='RCP1', amount=Decimal('50'), payment_method='Mpesa C2B')

        outcome = C2BPoolService.settle_receipt(record, Decimal('50'))

        assert outcome == {'pooled': False, 'transferred': True}
        assert c2b_provider.b2b_transfer.call_args.args[0] == Decimal('50')
        assert 'RCP1' in c2b_provider.b2b_transfer.call_args.kwargs['remarks']
        assert _pool_amount() is None

    def test_failed_direct_transfer_is_pooled(self, session, c2b_config, make_record, c2b_provider):
        c2b_provider.b2b_transfer.side_effect = TransferError('System busy', status_code=500)
        record = make_record('ws_CO_1', code='RCP1', amount=Decimal('50'), payment_method='Mpesa C2B')

        outcome = C2BPoolService.settle_receipt(record, Decimal('50'))

        assert outcome == {'pooled': True, 'transferred': False}
        assert _pool_amount() == Decimal('50')

    def test_failed_flush_keeps_pool(self, session, c2b_config, make_record, c2b_provider):
        c2b_provider.b2b_transfer.side_effect = TransferError('System busy', status_code=500)
        C2BPoolService.add('P1', Decimal('8'), TILL)
        record = make_record('ws_CO_1', code='RCP1', amount=Decimal('5'), payment_method='Mpesa C2B')

        outcome = C2BPoolService.settle_receipt(record, Decimal('5'))

        assert outcome['flush']['attempted'] is True
        assert outcome['flush']['success'] is False
        assert _pool_amount() == Decimal('13')

    def test_concurrent_flush_sends_pool_once(self, session, c2b_config, c2b_provider):
        C2BPoolService.add('P1', Decimal('7'), TILL)
        C2BPoolService.add('P1', Decimal('7'), TILL)
        real_create = LedgerService.create
        nested = []

        def create_then_flush_again(**fields):
            record = real_create(**fields)
            if not nested:
                # a second receipt's flush runs once the sweep record is committed
                nested.append(C2BPoolService.flush('P1', TILL))
            return record

        with patch('app.services.c2b_pool_service.LedgerService.create', side_effect=create_then_flush_again):
            outcome = C2BPoolService.flush('P1', TILL)

        assert outcome['success'] is True
        assert nested[0]['attempted'] is False
        assert c2b_provider.b2b_transfer.call_count == 1
        assert _pool_amount() == Decimal('0')

    def test_pool_is_emptied_before_provider_call(self, session, c2b_config, c2b_provider):
        C2BPoolService.add('P1', Decimal('12'), TILL)
        seen = []
        c2b_provider.b2b_transfer.side_effect = lambda *args, **kwargs: (
            seen.append(_pool_amount()) or {'OriginatorConversationID': 'AG_POOL_2', 'ResponseCode': '0'}
        )

        C2BPoolService.flush('P1', TILL)

        assert seen == [Decimal('0')]

    def test_failed_flush_restores_amount(self, session, c2b_config, c2b_provider):
        c2b_provider.b2b_transfer.side_effect = TransferError('System busy', status_code=500)
        C2BPoolService.add('P1', Decimal('12'), TILL)

        outcome = C2BPoolService.flush('P1', TILL)

        assert outcome == {'attempted': True, 'success': False, 'amount': Decimal('12')}
        assert _pool_amount() == Decimal('12')

    def test_without_destination_nothing_moves(self, session, platform, make_record, c2b_provider):
        record = make_record('ws_CO_1', code='RCP1', amount=Decimal('5'), payment_method='Mpesa C2B')

        assert C2BPoolService.settle_receipt(record, Decimal('5')) == {'pooled': False, 'transferred': False}
        assert C2BTransferPool.query.count() == 0


class TestTransfer:

    def test_pochi_registers_correlation(self, session, c2b_provider):
        from app.services.correlation_store import get_correlation_store

        destination = {'type': DestinationType.POCHI, 'short_code': '0712345678', 'account': 'null'}
        C2BPoolService.transfer('P1', Decimal('20'), destination, reference='C2BPO-1')

        c2b_provider.b2pochi_transfer.assert_called_once()
        entry = get_correlation_store().resolve('AG_POCHI_1')
        assert entry.platform_id == 'P1'
        assert entry.type == 'c2b-pochi'
        assert PaymentRecord.query.count() == 0

    def test_paybill_requires_account(self, session, c2b_provider):
        destination = {'type': DestinationType.PAYBILL, 'short_code': '400200', 'account': 'null'}

        with pytest.raises(ValueError):
            C2BPoolService.transfer('P1', Decimal('20'), destination)
        c2b_provider.b2b_transfer.assert_not_called()

    def test_paybill_transfer_records_destination(self, session, c2b_provider):
        destination = {'type': DestinationType.PAYBILL, 'short_code': '400200', 'account': 'ACC-9'}

        C2BPoolService.transfer('P1', Decimal('20'), destination, reference='REF1')

        kwargs = c2b_provider.b2b_transfer.call_args.kwargs
        assert kwargs['account_reference'] == 'ACC-9'
        record = PaymentRecord.query.filter_by(reqcode='AG_POOL_1').one()
        assert record.paybill == '400200'
        assert record.account == 'ACC-9'
        assert record.till == 'null'
