"""
Celery Application Configuration
"""
from celery import Celery
from celery.schedules import crontab

from errands.core.config import settings

celery_app = Celery(
    "errands_express",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["errands.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Manila",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    # Reminder / overdue / ban sweep, idempotent per day
    "check-balance-reminders-daily": {
        "task": "errands.workers.tasks.check_balance_reminders",
        "schedule": crontab(hour="8", minute="0"),
    },
}
