"""
Reminder Endpoints: תזכורות חודשיות לשכר דירה ולחשבונות שירותים.

השליחה המתוזמנת רצה ב-Celery beat (workers/tasks.py); כאן ניהול ושליחה ידנית.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from landlord_assistant.api.dependencies.admin_auth import require_admin_api_key
from landlord_assistant.api.routes.schemas import DeleteResponse
from landlord_assistant.core.logging import get_logger
from landlord_assistant.db.database import get_db
from landlord_assistant.db.models.reminder import ReminderStyle, ReminderType
from landlord_assistant.domain.services.reminder_service import ReminderService

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class ReminderCreate(BaseModel):
    reminder_type: ReminderType
    # עד 28 כדי שהתזכורת תצא בכל חודש
    day_of_month: int = Field(ge=1, le=28)
    time_utc: str = Field(pattern=r"^([01]\d|2[0-3]):[0-5]\d$", examples=["09:00"])
    style: ReminderStyle = ReminderStyle.MEDIUM


class ReminderResponse(BaseModel):
    id: int
    reminder_type: ReminderType
    day_of_month: int
    time_utc: str
    style: ReminderStyle
    is_active: bool
    last_sent_stamp: Optional[str]
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ReminderSendResponse(BaseModel):
    reminder_id: int
    sent: int
    failed: int
    message: str


@router.get("", response_model=list[ReminderResponse], summary="רשימת תזכורות")
async def list_reminders(db: AsyncSession = Depends(get_db)):
    return await ReminderService.list_reminders(db)


@router.post(
    "",
    response_model=ReminderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="יצירת תזכורת",
)
async def create_reminder(data: ReminderCreate, db: AsyncSession = Depends(get_db)):
    return await ReminderService.create_reminder(db, **data.model_dump())


@router.delete("/{reminder_id}", response_model=DeleteResponse, summary="מחיקת תזכורת")
async def delete_reminder(reminder_id: int, db: AsyncSession = Depends(get_db)) -> DeleteResponse:
    await ReminderService.delete_reminder(db, reminder_id)
    logger.info("Reminder deleted", extra_data={"reminder_id": reminder_id})
    return DeleteResponse()


@router.post(
    "/{reminder_id}/send",
    response_model=ReminderSendResponse,
    summary="שליחה מיידית",
    description="שולח את התזכורת עכשיו לכל הדיירים הפעילים, בלי קשר ליום ולשעה שלה.",
)
async def send_reminder(reminder_id: int, db: AsyncSession = Depends(get_db)):
    reminder = await ReminderService.get_reminder(db, reminder_id)
    result = await ReminderService.send_reminder(db, reminder)
    return ReminderSendResponse(**vars(result))
