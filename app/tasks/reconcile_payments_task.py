from app import celery_app

from app.services.webhook_service import WebhookService
from app.utils.decorators import log_execution_time


@celery_app.task(name='app.tasks.reconcile_payments_task.reconcile_pending_payments')
@log_execution_time
def reconcile_pending_payments() -> dict:
    """
    Re-verify deposits stuck in PENDING or PROCESSING with their provider

    Runs every minute from the beat schedule. Records younger than
    RECONCILE_MIN_AGE_SECONDS are left for their callback, and records
    older than RECONCILE_MAX_AGE_DAYS are abandoned.
    """
    return WebhookService.reconcile_pending_payments()
