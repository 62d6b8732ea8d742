"""
Payment API Endpoints
Customer collections, tenant payouts and initiator commands
"""

from flask import Blueprint, request, jsonify
from marshmallow import ValidationError

from app.schemas.payment_schema import (
    StkPushSchema,
    PPPoEPaymentSchema,
    BillPaymentSchema,
    SMSPaymentSchema,
    WithdrawSchema,
    TransactionActionSchema,
    BusinessTransferSchema,
    CheckPaymentSchema
)
from app.services.payment_service import PaymentService
from app.services.idempotency_service import idempotent
from app.utils.authorization import request_token
from app.utils.decorators import rate_limit

payments_bp = Blueprint('payments', __name__)

stk_push_schema = StkPushSchema()
pppoe_schema = PPPoEPaymentSchema()
bill_schema = BillPaymentSchema()
sms_schema = SMSPaymentSchema()
withdraw_schema = WithdrawSchema()
transaction_action_schema = TransactionActionSchema()
transfer_schema = BusinessTransferSchema()
check_schema = CheckPaymentSchema()


def _invalid(e: ValidationError):
    return jsonify({
        'success': False,
        'error': 'Validation error',
        'message': 'Missing credentials are required.',
        'details': e.messages
    }), 400


@payments_bp.route('/stkpush', methods=['POST'])
@rate_limit(max_requests=10, window_seconds=60, key_prefix='stkpush')
def stk_push():
    """
    Start a hotspot package purchase

    Body:
        {
            "phone": "0712345678",
            "amount": 50,
            "package": {"id": "...", "name": "1 Hour"},
            "mac": "AA:BB:CC:DD:EE:FF",
            "platformID": "..."
        }
    """
    try:
        data = stk_push_schema.load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _invalid(e)

    result = PaymentService.stk_push(
        phone=data['phone'],
        amount=data['amount'],
        package=data['package'],
        mac=data.get('mac'),
        platform_id=data['platform_id']
    )
    return jsonify(result), 200


@payments_bp.route('/payPPPoE', methods=['POST'])
@rate_limit(max_requests=10, window_seconds=60, key_prefix='paypppoe')
def pay_pppoe():
    try:
        data = pppoe_schema.load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _invalid(e)

    return jsonify(PaymentService.pay_pppoe(data['phone'], data['payment_link'])), 200


@payments_bp.route('/paybill', methods=['POST'])
def pay_bill():
    """Pay the platform bill (superusers only)"""
    try:
        data = bill_schema.load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _invalid(e)

    result = PaymentService.pay_bill(request_token(), data['phone'], data['months'], data['bill_id'])
    return jsonify(result), 200


@payments_bp.route('/paysms', methods=['POST'])
def pay_sms():
    """Top up the SMS wallet (superusers only)"""
    try:
        data = sms_schema.load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _invalid(e)

    return jsonify(PaymentService.pay_sms(request_token(), data['phone'], data['amount'])), 200


@payments_bp.route('/withdraw', methods=['POST'])
@idempotent(ttl=86400)
def withdraw():
    """
    Withdraw the tenant balance

    Headers:
        - Authorization: Bearer <dashboard token>
        - Idempotency-Key: repeated keys replay the first response
    """
    try:
        data = withdraw_schema.load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _invalid(e)

    return jsonify(PaymentService.withdraw(request_token(), data['amount'])), 200


@payments_bp.route('/verify-transaction', methods=['POST'])
def verify_transaction():
    try:
        data = transaction_action_schema.load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _invalid(e)

    result = PaymentService.verify_transaction(
        request_token(),
        transaction_code=data.get('transaction_code'),
        payment_id=data.get('payment_id')
    )
    return jsonify(result), 200


@payments_bp.route('/reverse-transaction', methods=['POST'])
def reverse_transaction():
    try:
        data = transaction_action_schema.load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _invalid(e)

    result = PaymentService.reverse_transaction(
        request_token(),
        transaction_code=data.get('transaction_code'),
        payment_id=data.get('payment_id'),
        amount=data.get('amount')
    )
    return jsonify(result), 200


@payments_bp.route('/b2b-transfer', methods=['POST'])
@idempotent(ttl=86400)
def transfer_to_business():
    """
    Transfer from the tenant shortcode to a till, paybill or Pochi wallet

    Body:
        {
            "amount": 1000,
            "destinationType": "Paybill",
            "destinationShortCode": "400200",
            "destinationAccount": "ACC-1",
            "remarks": "Supplier"
        }
    """
    try:
        data = transfer_schema.load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _invalid(e)

    result = PaymentService.transfer_to_business(
        request_token(),
        amount=data['amount'],
        destination_type=data['destination_type'],
        destination_short_code=data['destination_short_code'],
        destination_account=data.get('destination_account'),
        remarks=data.get('remarks')
    )
    return jsonify(result), 200


@payments_bp.route('/confirm', methods=['POST'])
def check_payment():
    """Captive portal status poll by settlement or request code"""
    try:
        data = check_schema.load(request.get_json(silent=True) or {})
    except ValidationError as e:
        return _invalid(e)

    return jsonify(PaymentService.check_payment(data['code'])), 200
