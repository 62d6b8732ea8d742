from app import celery_app

from app.errors import AppError
from app.models import PlatformConfig
from app.services.payment_service import PaymentService
from app.utils.logger import get_logger

logger = get_logger(__name__)


@celery_app.task(name='app.tasks.shortcode_balance_task.request_shortcode_balances')
def request_shortcode_balances() -> int:
    """Ask Daraja for the shortcode balance of every API-mode platform"""
    requested = 0

    for config in PlatformConfig.query.filter_by(is_api=True).all():
        if not config.has_initiator:
            continue
        try:
            result = PaymentService.request_shortcode_balance(config.platform_id)
        except AppError as e:
            logger.warning(f'Balance request for {config.platform_id} failed: {e.message}')
            continue
        if result.get('success'):
            requested += 1

    return requested
