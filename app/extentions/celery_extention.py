from celery import Celery


def create_celery(app=None):
    celery = Celery(__name__, include=[
        'app.tasks.reconcile_payments_task',
        'app.tasks.shortcode_balance_task',
        'app.tasks.register_urls_task',
    ])

    if app:
        init_celery(celery, app)

    return celery


def init_celery(celery, app):
    celery.conf.update(
        broker_url=app.config["CELERY_BROKER_URL"],
        result_backend=app.config["CELERY_RESULT_BACKEND"],
        beat_schedule=app.config.get("CELERY_BEAT_SCHEDULE", {}),
        task_track_started=True,
        task_time_limit=5 * 60,
        task_always_eager=app.config.get("TESTING", False),
    )

    class ContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery.Task = ContextTask
