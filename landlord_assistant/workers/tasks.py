"""
Celery Tasks - periodic jobs that run outside the web process
"""
import asyncio
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime, timezone

from landlord_assistant.core.logging import get_logger, set_correlation_id
from landlord_assistant.db.database import get_task_session
from landlord_assistant.domain.services.reminder_service import ReminderService
from landlord_assistant.workers.celery_app import celery_app

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    event loop חדש למשימה, עם ניקוי מלא בסיום.

    ה-Redis client הוא singleton שנקשר ל-loop שבו נוצר, לכן הוא נסגר
    יחד עם ה-loop.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            from landlord_assistant.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "Task cleanup failed",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="landlord_assistant.workers.tasks.run_due_reminders")
def run_due_reminders():
    """שליחת התזכורות שהגיע זמנן. בטוח להרצה חוזרת באותה דקה"""

    async def _run():
        async with get_task_session() as db:
            results = await ReminderService.run_due(db, datetime.now(timezone.utc))

        if results:
            logger.info(
                "Due reminders processed",
                extra_data={
                    "reminders": len(results),
                    "sent": sum(r.sent for r in results),
                    "failed": sum(r.failed for r in results),
                },
            )
        return [asdict(r) for r in results]

    return run_async(_run())
