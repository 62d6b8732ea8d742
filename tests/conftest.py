"""
Pytest Configuration and Fixtures
"""
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock, patch

import fakeredis
import pytest

from app import create_app
from app.extensions import db as _db, redis_client as _redis_client
from app.models import (
    PaymentRecord,
    Platform,
    PlatformConfig,
    Package,
    PPPoESubscription,
    FundsAccount,
    Admin,
    PaymentStatus,
    PaymentType,
    ServiceType
)
from app.services.correlation_store import reset_correlation_store

PLATFORM_ID = 'P1'
ADMIN_ID = 'admin-1'


@pytest.fixture(scope='session')
def app():
    """Create application for testing"""
    app = create_app('testing')

    # Establish application context
    ctx = app.app_context()
    ctx.push()

    yield app

    ctx.pop()


@pytest.fixture(scope='function')
def db(app):
    """Fresh schema per test"""
    _db.create_all()

    yield _db

    _db.session.remove()
    _db.drop_all()


@pytest.fixture(scope='function')
def session(db):
    return db.session


@pytest.fixture(scope='function')
def redis_client(app):
    """
    Fake Redis for tests, swapped into the app redis client.
    """
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    original = _redis_client.client
    _redis_client.client = fake_redis

    yield fake_redis

    fake_redis.flushall()
    _redis_client.client = original


@pytest.fixture(autouse=True)
def clear_state(redis_client):
    reset_correlation_store()
    yield
    reset_correlation_store()


@pytest.fixture(scope='function')
def client(app, db):
    """Create a test client"""
    return app.test_client()


@pytest.fixture(autouse=True)
def collaborators(app):
    """
    Mock provisioning, SMS, mail and admin authentication.

    Provisioning succeeds and the dashboard token resolves to a superuser
    of PLATFORM_ID unless a test says otherwise.
    """
    provisioning = Mock()
    provisioning.add_manual_code.return_value = {'success': True, 'code': {'username': 'ABC123', 'expireAt': None}}
    provisioning.manage_pppoe.return_value = {'success': True, 'message': 'enabled'}
    provisioning.find_user.return_value = None

    sms_sender = Mock()
    sms_sender.send.return_value = {'success': True, 'message': 'sent'}

    mailer = Mock()
    mailer.send.return_value = {'success': True, 'message': 'sent'}

    authenticator = Mock()
    authenticator.authenticate.return_value = {
        'success': True,
        'admin': {'platformID': PLATFORM_ID, 'adminID': ADMIN_ID, 'role': 'superuser'}
    }

    mocks = {
        'provisioning_client': provisioning,
        'sms_sender': sms_sender,
        'mailer': mailer,
        'authenticator': authenticator,
    }
    app.extensions.update(mocks)

    yield SimpleNamespace(
        provisioning=provisioning,
        sms_sender=sms_sender,
        mailer=mailer,
        authenticator=authenticator
    )

    for name in mocks:
        app.extensions.pop(name, None)


class EmitRecorder:
    """Captures socket emits as (event, payload, room) tuples"""

    def __init__(self, socketio_mock):
        self._mock = socketio_mock

    @property
    def calls(self):
        return [(c.args[0], c.args[1], c.kwargs.get('room')) for c in self._mock.emit.call_args_list]

    def events(self, name):
        return [payload for event, payload, _ in self.calls if event == name]

    def statuses(self, name='deposit-status'):
        return [payload.get('status') for payload in self.events(name)]


@pytest.fixture(scope='function')
def emitted():
    with patch('app.websockets.events.socketio') as socketio_mock:
        yield EmitRecorder(socketio_mock)


class FakeClock:
    """Stands in for the time module inside the activation retry loop"""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def monotonic(self):
        return self.now

    def time(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(scope='function')
def fake_clock():
    clock = FakeClock()
    with patch('app.services.activation_service.time', clock):
        yield clock


# Model factories

@pytest.fixture(scope='function')
def platform(session):
    platform = Platform(platform_id=PLATFORM_ID, name='Acme WiFi', url='acme.example.com')
    session.add(platform)
    session.add(Admin(id=ADMIN_ID, platform_id=PLATFORM_ID, name='Owner', email='owner@acme.test', role='superuser'))
    session.commit()
    return platform


@pytest.fixture(scope='function')
def api_config(session, platform):
    """Tenant collecting through its own Daraja credentials"""
    config = PlatformConfig(
        platform_id=PLATFORM_ID,
        is_api=True,
        mpesa_consumer_key='tenant-key',
        mpesa_consumer_secret='tenant-secret',
        mpesa_pass_key='tenant-passkey',
        mpesa_short_code='174379',
        mpesa_short_code_type='Paybill',
        mpesa_account_number='ACME',
        mpesa_account_initiator='acme-api',
        mpesa_account_initiator_password='acme-pin',
    )
    session.add(config)
    session.commit()
    return config


@pytest.fixture(scope='function')
def c2b_config(session, platform):
    """Tenant collecting on the shared C2B shortcode, swept to its own till"""
    config = PlatformConfig(
        platform_id=PLATFORM_ID,
        is_c2b=True,
        mpesa_c2b_short_code='5123456',
        mpesa_c2b_short_code_type='till',
    )
    session.add(config)
    session.commit()
    return config


@pytest.fixture(scope='function')
def b2b_config(session, platform):
    """Tenant collecting through IntaSend and withdrawing to a phone"""
    config = PlatformConfig(
        platform_id=PLATFORM_ID,
        is_b2b=True,
        mpesa_short_code='0712345678',
        mpesa_short_code_type='Phone',
    )
    session.add(config)
    session.commit()
    return config


@pytest.fixture(scope='function')
def package(session, platform):
    package = Package(
        id='PKG1',
        platform_id=PLATFORM_ID,
        name='1 Hour',
        price=Decimal('50'),
        period='60',
        devices=1,
        category='Data',
        account_number='WIFI50',
    )
    session.add(package)
    session.commit()
    return package


@pytest.fixture(scope='function')
def pppoe_subscription(session, platform):
    subscription = PPPoESubscription(
        platform_id=PLATFORM_ID,
        name='Home 10Mbps',
        client_name='client-01',
        service_name='pppoe-home',
        station='10.0.0.1',
        email='client@acme.test',
        period='1 month',
        price=Decimal('1500'),
        amount=Decimal('0'),
        payment_link='link-01',
        account_number='HOME01',
        status='inactive',
    )
    session.add(subscription)
    session.commit()
    return subscription


@pytest.fixture(scope='function')
def funds(session, platform):
    account = FundsAccount(
        platform_id=PLATFORM_ID,
        balance=Decimal('1000'),
        deposits=Decimal('1000'),
        withdrawals=Decimal('0'),
    )
    session.add(account)
    session.commit()
    return account


@pytest.fixture(scope='function')
def make_record(session):
    """Build and persist a payment record"""

    def _make(reqcode, **fields):
        values = {
            'platform_id': PLATFORM_ID,
            'code': reqcode,
            'reqcode': reqcode,
            'amount': Decimal('50'),
            'phone': '254712345678',
            'status': PaymentStatus.PENDING.value,
            'type': PaymentType.DEPOSIT.value,
            'service': ServiceType.HOTSPOT.value,
            'created_at': datetime.utcnow(),
        }
        values.update(fields)
        record = PaymentRecord(**values)
        session.add(record)
        session.commit()
        return record

    return _make


def stk_callback(checkout_id, result_code=0, result_desc='The service request is processed successfully.',
                 receipt='RCP123', amount=50):
    """Daraja STK callback body"""
    stk = {
        'MerchantRequestID': 'merchant-1',
        'CheckoutRequestID': checkout_id,
        'ResultCode': result_code,
        'ResultDesc': result_desc,
    }
    if result_code == 0:
        stk['CallbackMetadata'] = {
            'Item': [
                {'Name': 'Amount', 'Value': amount},
                {'Name': 'MpesaReceiptNumber', 'Value': receipt},
                {'Name': 'PhoneNumber', 'Value': 254712345678},
            ]
        }
    return {'Body': {'stkCallback': stk}}


def result_callback(originator_id, result_code=0, result_desc='Success', transaction_id='TX1', parameters=None):
    """Daraja initiator result body"""
    result = {
        'ResultType': 0,
        'ResultCode': result_code,
        'ResultDesc': result_desc,
        'OriginatorConversationID': originator_id,
        'ConversationID': 'AG_1',
        'TransactionID': transaction_id,
    }
    if parameters:
        result['ResultParameters'] = {
            'ResultParameter': [{'Key': k, 'Value': v} for k, v in parameters.items()]
        }
    return {'Result': result}


@pytest.fixture
def stk_payload():
    return stk_callback


@pytest.fixture
def result_payload():
    return result_callback
