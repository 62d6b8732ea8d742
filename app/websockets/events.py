from flask_socketio import emit, join_room, leave_room
from app.extensions import socketio
from app.utils.logger import get_logger

logger = get_logger(__name__)


def platform_room(platform_id: str) -> str:
    return f'platform-{platform_id}'


@socketio.on('connect')
def handle_connect():
    """Handle client connection"""
    logger.debug('Socket client connected')
    emit('connected', {'message': 'Connected to payments'})


@socketio.on('disconnect')
def handle_disconnect():
    logger.debug('Socket client disconnected')


@socketio.on('subscribe_payment')
def handle_subscribe_payment(data):
    """Subscribe a captive-portal client to updates for one checkout"""
    checkout_id = (data or {}).get('checkoutRequestId')
    if checkout_id:
        join_room(checkout_id)
        emit('subscribed', {
            'message': f'Subscribed to payment {checkout_id}',
            'room': checkout_id
        })


@socketio.on('unsubscribe_payment')
def handle_unsubscribe_payment(data):
    checkout_id = (data or {}).get('checkoutRequestId')
    if checkout_id:
        leave_room(checkout_id)
        emit('unsubscribed', {'message': f'Unsubscribed from payment {checkout_id}'})


@socketio.on('join_platform')
def handle_join_platform(data):
    """Join the tenant dashboard room"""
    platform_id = (data or {}).get('platformID')
    if platform_id:
        room = platform_room(platform_id)
        join_room(room)
        emit('subscribed', {'message': f'Joined {room}', 'room': room})


def emit_to_platform(platform_id: str, event: str, payload: dict):
    """Emit an event to every dashboard connected for the tenant"""
    if not platform_id:
        return
    try:
        socketio.emit(event, payload, room=platform_room(platform_id))
    except Exception as e:
        logger.warning(f'Failed to emit {event} to platform {platform_id}: {str(e)}')


def emit_payment_event(event: str, payload: dict, checkout_id: str):
    """
    Emit a deposit-status/deposit-success event to the client waiting on a checkout

    Args:
        event: 'deposit-status' or 'deposit-success'
        payload: Event body
        checkout_id: Request code the client subscribed with
    """
    if not checkout_id:
        return
    try:
        socketio.emit(event, payload, room=checkout_id)
    except Exception as e:
        logger.warning(f'Failed to emit {event} for {checkout_id}: {str(e)}')


def log_to_platform(platform_id: str, message: str, level: str = 'info'):
    """Mirror a lifecycle log line to the application log and the tenant's live log"""
    log_method = {'warn': logger.warning, 'error': logger.error}.get(level, logger.info)
    log_method(f'[{platform_id}] {message}')
    emit_to_platform(platform_id, 'log', {
        'message': message,
        'context': 'payments',
        'level': level,
    })
