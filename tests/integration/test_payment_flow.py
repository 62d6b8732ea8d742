"""
Integration Tests for Payment Flow
End-to-end: HTTP request, provider callback, ledger, funds and sweep
"""

import json
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest

from app.models import PaymentRecord, Package, C2BTransferPool
from app.providers.base import PaymentVerificationError
from app.services.funds_service import FundsService
from app.tasks.reconcile_payments_task import reconcile_pending_payments
from app.tasks.register_urls_task import register_c2b_urls
from app.tasks.shortcode_balance_task import request_shortcode_balances

AUTH = {'Authorization': 'Bearer dashboard-token'}


def _post(client, path, payload, headers=None):
    return client.post(path, data=json.dumps(payload), content_type='application/json', headers=headers or {})


def _stk_body(amount=50, package_id='PKG1', **overrides):
    body = {
        'phone': '0712345678',
        'amount': amount,
        'package': {'id': package_id, 'name': '1 Hour'},
        'mac': 'AA:BB:CC:DD:EE:FF',
        'platformID': 'P1',
        'token': 'ignored-extra',
    }
    body.update(overrides)
    return body


class TestHotspotPurchase:

    def test_stk_push_then_callback_then_status(self, client, api_config, package, stk_payload,
                                                collaborators, emitted, fake_clock):
        mpesa = Mock()
        mpesa.stk_push.return_value = {'transaction_id': 'ws_CO_FLOW', 'status': 'PENDING'}

        with patch('app.services.payment_service.get_provider', return_value=mpesa):
            response = _post(client, '/mpesa/stkpush', _stk_body())

        assert response.status_code == 200
        assert json.loads(response.data)['data']['checkoutRequestId'] == 'ws_CO_FLOW'

        pending = json.loads(_post(client, '/mpesa/confirm', {'code': 'ws_CO_FLOW'}).data)
        assert pending['status'] == 'PENDING'

        response = _post(client, '/mpesa/callback', stk_payload('ws_CO_FLOW', receipt='RCPFLOW'))
        assert response.status_code == 200

        collaborators.provisioning.find_user.return_value = {'username': 'RCPFLOW'}
        status = json.loads(_post(client, '/mpesa/confirm', {'code': 'RCPFLOW'}).data)
        assert status['success'] is True
        assert status['status'] == 'COMPLETE'
        assert status['loginCode'] == 'RCPFLOW'

    def test_stk_push_schema_errors(self, client, api_config):
        body = _stk_body()
        del body['platformID']

        response = _post(client, '/mpesa/stkpush', body)

        assert response.status_code == 400
        data = json.loads(response.data)
        assert data['success'] is False
        assert 'platformID' in data['details']

    def test_unconfigured_platform_error_shape(self, client, platform):
        response = _post(client, '/mpesa/stkpush', _stk_body())

        assert response.status_code == 400
        data = json.loads(response.data)
        assert data == {
            'success': False,
            'error': 'Configuration error',
            'message': 'Configure Platform payments to continue!'
        }

    def test_confirm_requires_code(self, client, db):
        assert _post(client, '/mpesa/confirm', {}).status_code == 400


class TestC2BSweep:
    """Small C2B receipts pool until they cover one transfer"""

    @pytest.fixture
    def cheap_package(self, session, c2b_config):
        package = Package(id='PKG7', platform_id='P1', name='Quick', price=Decimal('7'), period='10')
        session.add(package)
        session.commit()
        return package

    def test_two_small_receipts_sweep_once(self, client, cheap_package, stk_payload, emitted, fake_clock):
        collector = Mock()
        collector.stk_push.side_effect = [
            {'transaction_id': 'ws_CO_A', 'status': 'PENDING'},
            {'transaction_id': 'ws_CO_B', 'status': 'PENDING'},
        ]
        sweeper = Mock()
        sweeper.b2b_transfer.return_value = {'OriginatorConversationID': 'AG_SWEEP', 'ResponseCode': '0'}

        with patch('app.services.payment_service.get_c2b_provider', return_value=collector), \
             patch('app.services.c2b_pool_service.get_c2b_provider', return_value=sweeper):
            _post(client, '/mpesa/stkpush', _stk_body(amount=7, package_id='PKG7'))
            _post(client, '/mpesa/stkpush', _stk_body(amount=7, package_id='PKG7'))

            _post(client, '/mpesa/callback', stk_payload('ws_CO_A', receipt='RCPA', amount=7))
            sweeper.b2b_transfer.assert_not_called()

            _post(client, '/mpesa/callback', stk_payload('ws_CO_B', receipt='RCPB', amount=7))

        sweeper.b2b_transfer.assert_called_once()
        args = sweeper.b2b_transfer.call_args.args
        assert args[0] == Decimal('14')
        assert args[1] == 'till'
        assert args[2] == '5123456'

        assert C2BTransferPool.query.filter_by(platform_id='P1').one().amount == Decimal('0')
        deposits = PaymentRecord.query.filter(PaymentRecord.reqcode.in_(['ws_CO_A', 'ws_CO_B'])).all()
        assert {r.status for r in deposits} == {'COMPLETE'}
        assert {r.payment_method for r in deposits} == {'Mpesa C2B'}


class TestWithdrawal:

    @pytest.fixture
    def intasend(self):
        provider = Mock()
        provider.payout_mpesa.return_value = {'file_id': 'FILE1'}
        with patch('app.services.payment_service.get_provider', return_value=provider):
            yield provider

    def test_withdraw_with_idempotency_key(self, client, b2b_config, funds, intasend, collaborators):
        headers = {**AUTH, 'Idempotency-Key': 'withdraw-1'}

        first = _post(client, '/mpesa/withdraw', {'amount': 500}, headers)
        second = _post(client, '/mpesa/withdraw', {'amount': 500}, headers)

        assert first.status_code == 200
        assert json.loads(first.data) == json.loads(second.data)
        intasend.payout_mpesa.assert_called_once()
        assert PaymentRecord.query.filter_by(type='withdrawal').count() == 1
        assert collaborators.authenticator.authenticate.call_args.args[0] == 'dashboard-token'

    def test_withdraw_then_payout_callback(self, client, b2b_config, funds, intasend, collaborators):
        _post(client, '/mpesa/withdraw', {'amount': 500}, AUTH)

        callback = {
            'file_id': 'FILE1',
            'challenge': 'test-challenge',
            'transactions': [{'status': 'Successful', 'amount': '480', 'charge': '20'}],
        }
        _post(client, '/mpesa/intasend/withdrawal', callback)

        account = FundsService.get('P1')
        assert account.balance == Decimal('500')
        assert account.balance == account.deposits - account.withdrawals

    def test_token_from_body(self, client, b2b_config, funds, intasend, collaborators):
        _post(client, '/mpesa/withdraw', {'amount': 100, 'token': 'body-token'})

        assert collaborators.authenticator.authenticate.call_args.args[0] == 'body-token'

    def test_missing_amount(self, client, b2b_config, funds, intasend):
        response = _post(client, '/mpesa/withdraw', {}, AUTH)

        assert response.status_code == 400
        intasend.payout_mpesa.assert_not_called()


class TestInitiatorRoutes:

    def test_business_transfer_rejects_unknown_destination(self, client, api_config):
        body = {'amount': 100, 'destinationType': 'bank', 'destinationShortCode': '400200'}

        response = _post(client, '/mpesa/b2b-transfer', body, AUTH)

        assert response.status_code == 400
        assert 'destinationType' in json.loads(response.data)['details']

    def test_verify_without_api_mode(self, client, c2b_config):
        response = _post(client, '/mpesa/verify-transaction', {'transactionCode': 'RCP1'}, AUTH)

        assert response.status_code == 400
        assert json.loads(response.data)['message'] == 'Mpesa API not configured.'


class TestScheduledTasks:

    def _stale(self, make_record, reqcode, **fields):
        return make_record(reqcode, created_at=datetime.utcnow() - timedelta(minutes=10), **fields)

    def test_reconcile_settles_and_fails(self, api_config, package, make_record, emitted, fake_clock):
        self._stale(make_record, 'ws_CO_OLD', reason='PKG1')
        self._stale(make_record, 'QWE123', reason='PKG1')
        make_record('ws_CO_NEW', reason='PKG1')

        mpesa = Mock()
        mpesa.verify_payment.return_value = {'status': 'COMPLETE', 'additional_data': {'result_code': '0'}}
        intasend = Mock()
        intasend.verify_payment.return_value = {'status': 'FAILED', 'failed_reason': 'Request cancelled by user'}

        def _get_provider(name, config=None):
            return {'mpesa': mpesa, 'intasend': intasend}[name]

        with patch('app.services.webhook_service.get_provider', side_effect=_get_provider):
            summary = reconcile_pending_payments.run()

        assert summary == {'checked': 2, 'completed': 1, 'failed': 1, 'errors': 0}
        assert PaymentRecord.query.filter_by(reqcode='ws_CO_OLD').one().status == 'COMPLETE'
        assert PaymentRecord.query.filter_by(reqcode='QWE123').one().status == 'FAILED'
        assert PaymentRecord.query.filter_by(reqcode='ws_CO_NEW').one().status == 'PENDING'

    def test_reconcile_counts_provider_errors(self, api_config, make_record):
        self._stale(make_record, 'ws_CO_OLD', reason='PKG1')
        mpesa = Mock()
        mpesa.verify_payment.side_effect = PaymentVerificationError('network error')

        with patch('app.services.webhook_service.get_provider', return_value=mpesa):
            summary = reconcile_pending_payments.run()

        assert summary['errors'] == 1
        assert PaymentRecord.query.filter_by(reqcode='ws_CO_OLD').one().status == 'PENDING'

    def test_still_pending_is_left_alone(self, api_config, make_record):
        self._stale(make_record, 'ws_CO_OLD', reason='PKG1')
        mpesa = Mock()
        mpesa.verify_payment.return_value = {'status': 'PENDING', 'additional_data': {}}

        with patch('app.services.webhook_service.get_provider', return_value=mpesa):
            summary = reconcile_pending_payments.run()

        assert summary == {'checked': 1, 'completed': 0, 'failed': 0, 'errors': 0}

    def test_balance_task(self, api_config):
        mpesa = Mock()
        mpesa.account_balance.return_value = {'OriginatorConversationID': 'AG_BAL', 'ResponseCode': '0'}

        with patch('app.services.payment_service.get_provider', return_value=mpesa):
            assert request_shortcode_balances.run() == 1

    def test_register_urls_task(self, api_config):
        mpesa = Mock()
        mpesa.register_c2b_urls.return_value = {'ResponseCode': '0'}

        with patch('app.services.payment_service.get_provider', return_value=mpesa):
            assert register_c2b_urls.run() == {'registered': ['P1'], 'failed': []}


class TestHealth:

    def test_health(self, client):
        response = client.get('/api/v1/health')

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['checks']['database']['status'] == 'healthy'
        assert data['checks']['redis']['status'] == 'healthy'

    def test_liveness_and_readiness(self, client):
        assert client.get('/api/v1/health/live').status_code == 200
        assert client.get('/api/v1/health/ready').status_code == 200

    def test_metrics_counts_payments(self, client, make_record):
        make_record('ws_CO_1')

        data = json.loads(client.get('/api/v1/metrics').data)

        assert data['application']['payments']['total'] == 1
        assert data['application']['payments']['by_status'] == {'PENDING': 1}
