"""Celery configuration."""

from celery import Celery

from smsgate.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "smsgate_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "smsgate.tasks.numbers",
        "smsgate.tasks.deposits",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_default_retry_delay=60,
    task_max_retries=5,
    task_routes={
        "numbers.*": {"queue": "numbers"},
        "deposits.*": {"queue": "deposits"},
    },
    beat_schedule={
        "expire-overdue-numbers": {
            "task": "numbers.expire_overdue",
            "schedule": 60.0,
        },
        "expire-stale-deposits": {
            "task": "deposits.expire_stale",
            "schedule": 60.0,
        },
        "reconcile-deposits": {
            "task": "deposits.reconcile",
            "schedule": 3 * 3600.0,
        },
    },
)
