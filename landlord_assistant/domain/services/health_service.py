"""
שירות בדיקת בריאות — בדיקות תלויות (DB, Redis, Evolution API).

מספק שתי רמות בדיקה:
- liveness: האם התהליך חי (ללא בדיקת תלויות)
- readiness: בדיקה של התלויות שהמערכת צריכה כדי לענות לדיירים
"""
from typing import Any

from sqlalchemy import text

from landlord_assistant.core.config import settings
from landlord_assistant.core.logging import get_logger
from landlord_assistant.core.redis_client import get_redis
from landlord_assistant.db import database
from landlord_assistant.domain.services.whatsapp import get_whatsapp_provider

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"
_CHECK_SKIPPED = "skipped"

# הודעות שגיאה מסוננות: ללא חשיפת פרטי תשתית
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"
_ERROR_EVOLUTION = "error: evolution_api_not_configured"


async def _check_db() -> str:
    """בדיקת חיבור למסד הנתונים באמצעות שאילתה קלה."""
    try:
        async with database.AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("DB health check failed", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    """
    בדיקת Redis באמצעות PING.

    Redis נדרש רק כש-COOLDOWN_STORE=redis; אחרת הבדיקה מדולגת.
    """
    if settings.COOLDOWN_STORE != "redis":
        return _CHECK_SKIPPED
    try:
        client = await get_redis()
        await client.ping()
        return _CHECK_OK
    except Exception as e:
        logger.warning("Redis health check failed", extra_data={"error": str(e)})
        return _ERROR_REDIS


def _check_evolution_api() -> str:
    """בלי כתובת וטוקן אין שליחת הודעות בכלל"""
    return _CHECK_OK if get_whatsapp_provider().is_configured else _ERROR_EVOLUTION


async def check_readiness() -> dict[str, Any]:
    """
    בדיקת מוכנות — מחזיר dict עם סטטוס כללי ופירוט לכל תלות:
    - status: "healthy" אם הכל תקין, "degraded" אם יש בעיה באחת התלויות
    - db / redis / evolution_api: "ok", "skipped" או "error: ..."
    """
    checks = {
        "db": await _check_db(),
        "redis": await _check_redis(),
        "evolution_api": _check_evolution_api(),
    }

    all_ok = all(v in (_CHECK_OK, _CHECK_SKIPPED) for v in checks.values())
    overall_status = _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED

    if not all_ok:
        logger.warning("Readiness check degraded", extra_data=checks)

    return {"status": overall_status, **checks}
