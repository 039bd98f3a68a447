"""
Landlord Assistant - Main FastAPI Application
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from landlord_assistant.core.config import settings
from landlord_assistant.core.logging import setup_logging, get_logger
from landlord_assistant.core.middleware import setup_middleware, setup_exception_handlers
from landlord_assistant.api.routes import router as api_router
from landlord_assistant.db import models  # noqa: F401  רישום הטבלות ב-metadata
from landlord_assistant.db.database import engine, Base

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    yield

    logger.info("Shutting down application")
    # תשובות ממתינות בזיכרון לא שורדות restart; הטיימרים מבוטלים
    from landlord_assistant.domain.services.reply_scheduler import get_reply_scheduler
    await get_reply_scheduler().shutdown()

    from landlord_assistant.core.redis_client import close_redis
    await close_redis()
    # סגירת חיבורי מסד הנתונים למניעת connection pool exhaustion
    await engine.dispose()
    logger.info("Database connections disposed")


_OPENAPI_TAGS = [
    {
        "name": "Maintenance",
        "description": "שיחות תחזוקה: יצירה, צ'אט, שכתוב טיוטה, עוזר, autopilot וסטטוס.",
    },
    {
        "name": "Admin",
        "description": "ספריית דיירים/קבלנים/יחידות, הגדרות תשובה אוטומטית ודיאגנוסטיקה.",
    },
    {"name": "Utilities", "description": "חשבונות שירותים, שליחה לדייר ובדיקת חריגות."},
    {"name": "Reminders", "description": "תזכורות חודשיות לשכר דירה ולחשבונות."},
    {"name": "Webhooks", "description": "Webhook לקבלת הודעות WhatsApp מ-Evolution API."},
    {"name": "Health", "description": "בדיקות חיוּת ומוכנות."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "עוזר וואטסאפ לבעלי דירות: מסווג הודעות דיירים, מכין טיוטות, "
        "מאחד הודעות רצופות ועונה אוטומטית כשזה בטוח."
    ),
    openapi_tags=_OPENAPI_TAGS,
    lifespan=lifespan,
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

# Safe dev default to support local frontend development without opening CORS in production.
if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Admin-API-Key", "X-Correlation-ID"],
    )

app.include_router(api_router, prefix="/api")


@app.get(
    "/health",
    summary="בדיקת חיוּת (Liveness Probe)",
    description="בדיקה קלה שהתהליך חי ומגיב. לא בודק תלויות חיצוניות.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    """Liveness probe — התהליך חי ומגיב."""
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="בדיקת מוכנות (Readiness Probe)",
    description=(
        "בדיקת התלויות: DB, Redis (כש-COOLDOWN_STORE=redis) והגדרת Evolution API. "
        "מחזיר status=healthy אם הכל תקין, או status=degraded עם פירוט."
    ),
    responses={
        200: {
            "description": "כל התלויות תקינות",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "db": "ok",
                        "redis": "skipped",
                        "evolution_api": "ok",
                    }
                }
            },
        },
        503: {
            "description": "לפחות תלות אחת לא זמינה",
            "content": {
                "application/json": {
                    "example": {
                        "status": "degraded",
                        "db": "ok",
                        "redis": "skipped",
                        "evolution_api": "error: evolution_api_not_configured",
                    }
                }
            },
        },
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    """Readiness probe — בדיקת התלויות החיצוניות."""
    from landlord_assistant.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
