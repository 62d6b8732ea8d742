"""
Integration Tests for Webhook Endpoints
"""

import json
from decimal import Decimal

import pytest

from app.models import PaymentRecord, PaymentStatus, PPPoESubscription, WebhookEvent, AuditLog
from app.services.correlation_store import get_correlation_store
from app.services.funds_service import FundsService


def _post(client, path, payload):
    return client.post(path, data=json.dumps(payload), content_type='application/json')


class TestStkCallback:
    """Daraja STK push results for hotspot purchases"""

    @pytest.fixture
    def pending(self, api_config, package, make_record):
        return make_record('ws_CO_1', reason='PKG1', mac='AA:BB:CC:DD:EE:FF')

    def test_success_completes_and_activates(self, client, stk_payload, pending, collaborators, emitted, fake_clock):
        response = _post(client, '/mpesa/callback', stk_payload('ws_CO_1'))

        assert response.status_code == 200
        assert json.loads(response.data)['message'] == 'Deposit callback processed.'

        record = PaymentRecord.query.filter_by(reqcode='ws_CO_1').one()
        assert record.status == 'COMPLETE'
        assert record.code == 'RCP123'

        sent = collaborators.provisioning.add_manual_code.call_args.args[0]
        assert sent['code'] == 'RCP123'
        assert sent['packageID'] == 'PKG1'
        assert len(emitted.events('deposit-success')) == 1
        assert len(emitted.events('payments:recent')) == 1

        event = WebhookEvent.query.filter_by(event_type='stk_callback').one()
        assert event.processed is True
        assert event.payment_id == record.id

    def test_duplicate_callback_is_idempotent(self, client, stk_payload, pending, collaborators, emitted, fake_clock):
        _post(client, '/mpesa/callback', stk_payload('ws_CO_1'))
        response = _post(client, '/mpesa/callback', stk_payload('ws_CO_1', receipt='RCP999'))

        assert response.status_code == 200
        assert json.loads(response.data)['message'] == 'Already processed.'
        assert collaborators.provisioning.add_manual_code.call_count == 1
        assert PaymentRecord.query.filter_by(reqcode='ws_CO_1').one().code == 'RCP123'
        assert AuditLog.query.filter_by(event_type='payment.completed').count() == 1

    def test_cancelled_payment(self, client, stk_payload, pending, collaborators, emitted):
        payload = stk_payload('ws_CO_1', result_code=1032, result_desc='Request cancelled by user')

        response = _post(client, '/mpesa/callback', payload)

        assert response.status_code == 400
        body = json.loads(response.data)
        assert body['success'] is False
        assert body['message'] == 'Transaction not successful'

        record = PaymentRecord.query.filter_by(reqcode='ws_CO_1').one()
        assert record.status == 'FAILED'
        assert record.failed_reason == 'Request cancelled by user'

        failed = emitted.events('deposit-status')
        assert failed[0]['status'] == 'FAILED'
        assert failed[0]['message'] == 'You cancelled the payment request!'
        collaborators.provisioning.add_manual_code.assert_not_called()

    def test_failure_after_success_does_not_downgrade(self, client, stk_payload, pending, emitted, fake_clock):
        _post(client, '/mpesa/callback', stk_payload('ws_CO_1'))
        late = _post(client, '/mpesa/callback', stk_payload('ws_CO_1', result_code=1, result_desc='Insufficient balance'))

        assert late.status_code == 200
        assert json.loads(late.data)['message'] == 'Already processed.'
        assert PaymentRecord.query.filter_by(reqcode='ws_CO_1').one().status == 'COMPLETE'
        assert 'FAILED' not in emitted.statuses()
        assert AuditLog.query.filter_by(event_type='payment.failed').count() == 0

    def test_unknown_checkout_id(self, client, stk_payload, db):
        response = _post(client, '/mpesa/callback', stk_payload('ws_CO_missing'))

        assert response.status_code == 404
        event = WebhookEvent.query.one()
        assert event.processed is False
        assert event.error_message == 'Unknown CheckoutRequestID'

    def test_malformed_payload(self, client, db):
        response = _post(client, '/mpesa/callback', {'hello': 'world'})

        assert response.status_code == 400
        assert json.loads(response.data)['message'] == 'Invalid callback payload.'

    def test_amount_without_package_is_reported(self, client, stk_payload, pending, collaborators, emitted):
        response = _post(client, '/mpesa/callback', stk_payload('ws_CO_1', amount=49))

        assert response.status_code == 400
        assert json.loads(response.data)['message'] == 'Invalid package'
        assert PaymentRecord.query.filter_by(reqcode='ws_CO_1').one().status == 'COMPLETE'
        collaborators.provisioning.add_manual_code.assert_not_called()

    def test_activation_failure_keeps_payment_complete(self, client, stk_payload, pending, collaborators, emitted, fake_clock):
        collaborators.provisioning.add_manual_code.return_value = {'success': False, 'message': 'router offline'}

        response = _post(client, '/mpesa/callback', stk_payload('ws_CO_1'))

        assert response.status_code == 200
        assert PaymentRecord.query.filter_by(reqcode='ws_CO_1').one().status == 'COMPLETE'
        assert emitted.statuses()[-1] == 'INACTIVE'


class TestResultCallback:
    """Initiator command results routed through the correlation store"""

    def test_balance_result_records_settlement_balance(self, client, result_payload, api_config, funds):
        get_correlation_store().register('AG_BAL', 'P1', 'balance')
        payload = result_payload('AG_BAL', parameters={
            'AccountBalance': 'Working Account|KES|4800.00|4800.00|0.00|0.00&Utility Account|KES|12.00|12.00|0.00|0.00'
        })

        response = _post(client, '/mpesa/result', payload)

        assert response.status_code == 200
        assert json.loads(response.data) == {'success': True}
        assert FundsService.get('P1').short_code_balance == Decimal('4800')

    def test_balance_result_found_by_short_identifier(self, client, result_payload, api_config):
        FundsService.remember_balance_query('P1', 'AG_OLD')

        _post(client, '/mpesa/result', result_payload('AG_OLD', parameters={'AccountBalance': '250.00'}))

        assert FundsService.get('P1').short_code_balance == Decimal('250')

    def test_reversal_marks_payment(self, client, result_payload, api_config, make_record, emitted):
        make_record('ws_CO_1', code='RCP1', status=PaymentStatus.COMPLETE.value)
        get_correlation_store().register('AG_REV', 'P1', 'reverse')

        _post(client, '/mpesa/result', result_payload('AG_REV', parameters={'OriginalTransactionID': 'RCP1'}))

        assert PaymentRecord.query.filter_by(code='RCP1').one().reversed is True
        results = emitted.events('payments:daraja-result')
        assert results[0]['type'] == 'reverse'

    def test_already_reversed_counts_as_reversed(self, client, result_payload, api_config, make_record):
        make_record('ws_CO_1', code='RCP1', status=PaymentStatus.COMPLETE.value)
        get_correlation_store().register('AG_REV', 'P1', 'reverse')

        _post(client, '/mpesa/result', result_payload(
            'AG_REV', result_code='R000001', parameters={'OriginalTransactionID': 'RCP1'}
        ))

        assert PaymentRecord.query.filter_by(code='RCP1').one().reversed is True

    def test_verification_marks_payment(self, client, result_payload, api_config, make_record):
        make_record('ws_CO_1', code='RCP1', status=PaymentStatus.COMPLETE.value)
        get_correlation_store().register('AG_VER', 'P1', 'verify')

        _post(client, '/mpesa/result', result_payload('AG_VER', result_code=2001, result_desc='Invalid initiator',
                                                       parameters={'ReceiptNo': 'RCP1'}))

        assert PaymentRecord.query.filter_by(code='RCP1').one().verified is False

    def test_b2b_transfer_completes(self, client, result_payload, api_config, make_record):
        make_record('AG_B2B', type='b2b transfer', service='Mpesa B2B')
        get_correlation_store().register('AG_B2B', 'P1', 'b2b-transfer')

        _post(client, '/mpesa/result', result_payload('AG_B2B', transaction_id='TX9'))

        record = PaymentRecord.query.filter_by(reqcode='AG_B2B').one()
        assert record.status == 'COMPLETE'
        assert record.code == 'TX9'

    def test_correlation_is_single_use(self, client, result_payload, api_config, make_record):
        make_record('AG_B2B', type='b2b transfer', service='Mpesa B2B')
        get_correlation_store().register('AG_B2B', 'P1', 'b2b-transfer')

        _post(client, '/mpesa/result', result_payload('AG_B2B', result_code=1, result_desc='Insufficient funds'))
        _post(client, '/mpesa/result', result_payload('AG_B2B', transaction_id='TX9'))

        assert PaymentRecord.query.filter_by(reqcode='AG_B2B').one().status == 'FAILED'

    def test_unmatched_originator_is_acknowledged(self, client, result_payload, db, emitted):
        response = _post(client, '/mpesa/result', result_payload('AG_NOBODY'))

        assert response.status_code == 200
        assert emitted.events('payments:daraja-result') == []
        assert WebhookEvent.query.one().error_message == 'No tenant for originator id'


def _confirmation(account, trans_id='OFF1', amount='50', short_code='174379'):
    return {
        'TransactionType': 'Pay Bill',
        'TransID': trans_id,
        'TransAmount': amount,
        'BusinessShortCode': short_code,
        'BillRefNumber': account,
        'MSISDN': '254712345678',
        'FirstName': 'Jane',
    }


class TestConfirmation:
    """Offline paybill payments made with the account number, no STK prompt"""

    @pytest.fixture
    def offline(self, session, api_config):
        api_config.offline_payments = True
        session.commit()
        return api_config

    def test_hotspot_account(self, client, offline, package, collaborators, emitted):
        response = _post(client, '/mpesa/confirmation', _confirmation('WIFI50'))

        assert json.loads(response.data) == {'ResultCode': 0, 'ResultDesc': 'Accepted'}
        record = PaymentRecord.query.filter_by(reqcode='OFF1').one()
        assert record.status == 'COMPLETE'
        assert record.reason == 'PKG1'
        assert record.paybill == '174379'
        assert record.account == 'WIFI50'

        sent = collaborators.provisioning.add_manual_code.call_args.args[0]
        assert sent['code'] == 'OFF1'
        assert sent['mac'] == 'null'
        assert len(emitted.events('payments:recent')) == 1

    def test_duplicate_transaction_is_ignored(self, client, offline, package, collaborators):
        _post(client, '/mpesa/confirmation', _confirmation('WIFI50'))
        response = _post(client, '/mpesa/confirmation', _confirmation('WIFI50'))

        assert response.status_code == 200
        assert PaymentRecord.query.count() == 1
        assert collaborators.provisioning.add_manual_code.call_count == 1

    def test_pppoe_account(self, client, offline, pppoe_subscription, collaborators):
        _post(client, '/mpesa/confirmation', _confirmation('HOME01', amount='1500'))

        subscription = PPPoESubscription.query.filter_by(payment_link='link-01').one()
        assert subscription.status == 'active'
        assert subscription.expires_at is not None
        collaborators.provisioning.manage_pppoe.assert_called_once_with({
            'platformID': 'P1',
            'user': 'client-01',
            'host': '10.0.0.1',
        })
        record = PaymentRecord.query.filter_by(reqcode='OFF1').one()
        assert record.service == 'pppoe'
        assert record.reference_id == 'link-01'

    def test_provisioning_error_still_accepted(self, client, offline, package, collaborators, emitted):
        collaborators.provisioning.add_manual_code.side_effect = RuntimeError('router unreachable')

        response = _post(client, '/mpesa/confirmation', _confirmation('WIFI50'))

        assert response.status_code == 200
        assert json.loads(response.data) == {'ResultCode': 0, 'ResultDesc': 'Accepted'}
        assert PaymentRecord.query.filter_by(reqcode='OFF1').one().status == 'COMPLETE'
        assert WebhookEvent.query.one().processed is True

    def test_pppoe_enable_error_still_accepted(self, client, offline, pppoe_subscription, collaborators, emitted):
        collaborators.provisioning.manage_pppoe.side_effect = RuntimeError('router unreachable')

        response = _post(client, '/mpesa/confirmation', _confirmation('HOME01', amount='1500'))

        assert response.status_code == 200
        assert PaymentRecord.query.filter_by(reqcode='OFF1').one().service == 'pppoe'
        assert WebhookEvent.query.one().processed is True

    def test_offline_payments_disabled(self, client, api_config, package, collaborators):
        response = _post(client, '/mpesa/confirmation', _confirmation('WIFI50'))

        assert response.status_code == 200
        assert PaymentRecord.query.count() == 0
        collaborators.provisioning.add_manual_code.assert_not_called()

    def test_unknown_shortcode(self, client, offline):
        response = _post(client, '/mpesa/confirmation', _confirmation('WIFI50', short_code='999999'))

        assert json.loads(response.data)['ResultCode'] == 0
        assert PaymentRecord.query.count() == 0

    def test_unmatched_account(self, client, offline, package):
        _post(client, '/mpesa/confirmation', _confirmation('NOPE'))

        assert PaymentRecord.query.count() == 0
        assert WebhookEvent.query.one().error_message == 'No matching package or PPPoE account'


class TestAcknowledgements:

    @pytest.mark.parametrize('path', ['/mpesa/validation', '/mpesa/timeout', '/mpesa/pull-callback'])
    def test_acknowledged_and_journaled(self, client, db, path):
        response = _post(client, path, {'TransID': 'X1'})

        assert response.status_code == 200
        assert json.loads(response.data) == {'ResultCode': 0, 'ResultDesc': 'Accepted'}
        assert WebhookEvent.query.one().processed is True

    def test_paystack_is_ignored(self, client, db):
        response = _post(client, '/mpesa/paystack/deposit', {'event': 'charge.success'})

        assert response.status_code == 200
        assert json.loads(response.data)['message'] == 'Webhook event received but ignored'
        assert WebhookEvent.query.filter_by(provider='paystack').count() == 1


class TestIntaSendDeposit:

    @pytest.fixture
    def invoice(self, b2b_config, package, make_record):
        return make_record('QWE123', reason='PKG1')

    @staticmethod
    def _payload(**overrides):
        payload = {
            'invoice_id': 'QWE123',
            'state': 'COMPLETE',
            'net_amount': '48.50',
            'value': '50',
            'account': '254712345678',
            'mpesa_reference': 'RCP7',
            'challenge': 'test-challenge',
        }
        payload.update(overrides)
        return payload

    def test_complete_credits_funds_and_activates(self, client, invoice, collaborators, emitted, fake_clock):
        response = _post(client, '/mpesa/intasend/deposit', self._payload())

        assert response.status_code == 200
        record = PaymentRecord.query.filter_by(reqcode='QWE123').one()
        assert record.status == 'COMPLETE'
        assert record.code == 'RCP7'
        assert record.amount == Decimal('48.50')

        account = FundsService.get('P1')
        assert account.balance == Decimal('48.50')
        assert account.deposits == Decimal('48.50')

        sent = collaborators.provisioning.add_manual_code.call_args.args[0]
        assert sent['code'] == 'RCP7'

    def test_replay_credits_once(self, client, invoice, emitted, fake_clock):
        _post(client, '/mpesa/intasend/deposit', self._payload())
        response = _post(client, '/mpesa/intasend/deposit', self._payload())

        assert json.loads(response.data)['message'] == 'Already processed.'
        assert FundsService.get('P1').balance == Decimal('48.50')

    def test_challenge_mismatch(self, client, invoice):
        response = _post(client, '/mpesa/intasend/deposit', self._payload(challenge='guess'))

        assert response.status_code == 200
        assert json.loads(response.data)['message'] == 'Unauthorized request!'
        assert PaymentRecord.query.filter_by(reqcode='QWE123').one().status == 'PENDING'
        assert WebhookEvent.query.one().verified is False

    def test_failed_invoice(self, client, invoice, emitted):
        _post(client, '/mpesa/intasend/deposit', self._payload(state='FAILED', failed_reason='Request cancelled by user'))

        record = PaymentRecord.query.filter_by(reqcode='QWE123').one()
        assert record.status == 'FAILED'
        assert emitted.events('deposit-status')[0]['message'] == 'You cancelled the payment request!'
        assert FundsService.get('P1') is None

    def test_missing_fields(self, client, invoice):
        payload = self._payload()
        del payload['net_amount']

        response = _post(client, '/mpesa/intasend/deposit', payload)

        assert json.loads(response.data)['message'] == 'Missing required fields in callback data!'


class TestIntaSendWithdrawal:

    @pytest.fixture
    def payout(self, b2b_config, funds, make_record):
        return make_record('FILE1', type='withdrawal', service='Mpesa B2B', amount=Decimal('500'))

    @staticmethod
    def _payload(status='Successful', challenge='test-challenge'):
        return {
            'file_id': 'FILE1',
            'challenge': challenge,
            'transactions': [{'status': status, 'amount': '480', 'charge': '20'}],
        }

    def test_successful_payout_debits_once(self, client, payout, collaborators):
        _post(client, '/mpesa/intasend/withdrawal', self._payload())
        response = _post(client, '/mpesa/intasend/withdrawal', self._payload())

        assert response.status_code == 200
        record = PaymentRecord.query.filter_by(reqcode='FILE1').one()
        assert record.status == 'COMPLETE'
        assert record.amount == Decimal('500')

        account = FundsService.get('P1')
        assert account.balance == Decimal('500')
        assert account.withdrawals == Decimal('500')

        collaborators.mailer.send.assert_called_once()
        email = collaborators.mailer.send.call_args.args[0]
        assert email['to'] == 'owner@acme.test'
        assert 'FILE1' in email['message']

    def test_cancelled_payout(self, client, payout, collaborators):
        _post(client, '/mpesa/intasend/withdrawal', self._payload(status='Cancelled'))

        assert PaymentRecord.query.filter_by(reqcode='FILE1').one().status == 'FAILED'
        assert FundsService.get('P1').balance == Decimal('1000')
        collaborators.mailer.send.assert_not_called()

    def test_challenge_mismatch(self, client, payout):
        response = _post(client, '/mpesa/intasend/withdrawal', self._payload(challenge='nope'))

        assert response.status_code == 400
        assert FundsService.get('P1').balance == Decimal('1000')

    def test_unknown_file(self, client, b2b_config):
        payload = self._payload()
        payload['file_id'] = 'FILE404'

        response = _post(client, '/mpesa/intasend/withdrawal', payload)

        assert response.status_code == 404
