"""
Webhook API Endpoints
Handles incoming callbacks from M-PESA Daraja, IntaSend and Paystack
"""

from flask import Blueprint, request, jsonify

from app.extensions import db
from app.services.webhook_service import WebhookService, ACCEPTED
from app.utils.logger import get_logger

webhooks_bp = Blueprint('webhooks', __name__)
logger = get_logger(__name__)


def _payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


@webhooks_bp.route('/callback', methods=['POST'])
def stk_callback():
    """
    STK push result

    Body:
        {"Body": {"stkCallback": {"CheckoutRequestID": "...", "ResultCode": 0, ...}}}
    """
    try:
        body, status = WebhookService.handle_stk_callback(_payload())
    except Exception as e:
        db.session.rollback()
        logger.error(f'STK callback error: {str(e)}')
        return jsonify({'success': False, 'message': 'Internal server error while processing callback.'}), 500
    return jsonify(body), status


@webhooks_bp.route('/result', methods=['POST'])
def result_callback():
    """Result of an initiator command (B2B, B2Pochi, balance, reversal, status query)"""
    try:
        body, status = WebhookService.handle_result_callback(_payload())
    except Exception as e:
        db.session.rollback()
        logger.error(f'Result callback error: {str(e)}')
        return jsonify({'success': True}), 200
    return jsonify(body), status


@webhooks_bp.route('/confirmation', methods=['POST'])
def confirmation():
    """Offline paybill confirmation; Daraja only expects an acknowledgement"""
    try:
        body, status = WebhookService.handle_confirmation(_payload())
    except Exception as e:
        db.session.rollback()
        logger.error(f'Confirmation callback error: {str(e)}')
        return jsonify(ACCEPTED), 200
    return jsonify(body), status


@webhooks_bp.route('/validation', methods=['POST'])
def validation():
    body, status = WebhookService.acknowledge('validation', _payload())
    return jsonify(body), status


@webhooks_bp.route('/timeout', methods=['POST'])
def queue_timeout():
    body, status = WebhookService.acknowledge('timeout', _payload())
    return jsonify(body), status


@webhooks_bp.route('/pull-callback', methods=['POST'])
def pull_callback():
    body, status = WebhookService.acknowledge('pull', _payload())
    return jsonify(body), status


@webhooks_bp.route('/intasend/deposit', methods=['POST'])
def intasend_deposit():
    """IntaSend collection state change; the challenge field must match"""
    try:
        body, status = WebhookService.handle_intasend_deposit(_payload())
    except Exception as e:
        db.session.rollback()
        logger.error(f'IntaSend deposit callback error: {str(e)}')
        return jsonify({'success': False, 'message': 'Internal server error while processing callback.'}), 500
    return jsonify(body), status


@webhooks_bp.route('/intasend/withdrawal', methods=['POST'])
def intasend_withdrawal():
    """IntaSend payout file state change"""
    try:
        body, status = WebhookService.handle_intasend_withdrawal(_payload())
    except Exception as e:
        db.session.rollback()
        logger.error(f'IntaSend withdrawal callback error: {str(e)}')
        return jsonify({'success': False, 'message': 'Internal server error while processing callback.'}), 500
    return jsonify(body), status


@webhooks_bp.route('/paystack/deposit', methods=['POST'])
def paystack_deposit():
    payload = _payload()
    logger.info(f'Paystack event received: {payload.get("event", "unknown")}')
    body, status = WebhookService.handle_paystack_deposit(payload)
    return jsonify(body), status
