"""
Celery Worker Configuration
Sets up Celery with Redis as message broker and result backend.

Run with:
    celery -A office_lunch.celery_worker worker --loglevel=info
"""

from celery import Celery

from office_lunch.core.config import get_settings

# Redis connection URL
REDIS_URL = get_settings().redis_url or "redis://localhost:6379/0"

celery_app = Celery(
    "office_lunch_worker",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["office_lunch.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # One export at a time per worker; the sheet is rewritten as a whole
    worker_prefetch_multiplier=1,
    worker_concurrency=2,

    result_expires=3600,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,
)


if __name__ == "__main__":
    celery_app.start()
