from app import celery_app

from app.services.payment_service import PaymentService


@celery_app.task(name='app.tasks.register_urls_task.register_c2b_urls')
def register_c2b_urls() -> dict:
    """Register confirmation/validation URLs for platforms that need them"""
    return PaymentService.register_urls()
