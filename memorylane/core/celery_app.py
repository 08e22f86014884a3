from celery import Celery

from memorylane.core.config import settings

celery_app = Celery(
    "memorylane",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["memorylane.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # A poll loop runs for up to 5 minutes; give it headroom before the hard kill
    task_time_limit=15 * 60,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)
