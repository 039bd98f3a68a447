"""
Celery Application Configuration
"""
from celery import Celery

from landlord_assistant.core.config import settings

celery_app = Celery(
    "landlord_assistant",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["landlord_assistant.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    # תזכורות שכירות/שירותים: הבדיקה משווה יום, שעה ודקה ב-UTC
    "run-due-reminders": {
        "task": "landlord_assistant.workers.tasks.run_due_reminders",
        "schedule": settings.REMINDER_CHECK_INTERVAL_SECONDS,
    },
}
