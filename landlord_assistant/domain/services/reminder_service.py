"""
Reminder Service - monthly rent and utility reminders broadcast to tenants

תזכורת "בשלה" כשהיום בחודש, השעה והדקה (UTC) תואמים, וה-stamp של הדקה
הזו עוד לא נרשם. ה-stamp נשמר לפני השליחה, כך שבדיקה חוזרת באותה דקה
לא שולחת שוב.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from landlord_assistant.core.exceptions import ErrorCode, NotFoundException
from landlord_assistant.core.logging import get_logger
from landlord_assistant.core.validation import PhoneNumberValidator
from landlord_assistant.db.models.reminder import Reminder, ReminderStyle, ReminderType
from landlord_assistant.db.models.tenant import Tenant
from landlord_assistant.domain.services.agent_service import AgentService, get_agent_service
from landlord_assistant.domain.services.whatsapp import BaseWhatsAppProvider, get_whatsapp_provider

logger = get_logger(__name__)

TEMPLATES: dict[ReminderType, dict[ReminderStyle, str]] = {
    ReminderType.RENT: {
        ReminderStyle.SHORT: "Rent reminder: your payment is due today. Let me know if you need anything.",
        ReminderStyle.MEDIUM: (
            "Hi! Friendly reminder that rent is due today. "
            "If you have a payment update, please share it."
        ),
        ReminderStyle.PROFESSIONAL: (
            "Hello, this is a reminder that rent is due today. "
            "Please confirm once payment is sent."
        ),
        ReminderStyle.CASUAL: "Hey! Rent is due today. Ping me if anything comes up.",
    },
    ReminderType.UTILITY: {
        ReminderStyle.SHORT: (
            "Utility bill reminder: payment is due today. Let me know if you have questions."
        ),
        ReminderStyle.MEDIUM: (
            "Hi! Friendly reminder that the utility bill is due today. "
            "Reach out if you need the statement."
        ),
        ReminderStyle.PROFESSIONAL: (
            "Hello, this is a reminder that the utility bill is due today. "
            "Please confirm once paid."
        ),
        ReminderStyle.CASUAL: "Hey! Utility bill is due today. Let me know if you need the details.",
    },
}


@dataclass
class ReminderRunResult:
    reminder_id: int
    sent: int
    failed: int
    message: str = ""


def parse_time_utc(value: Optional[str]) -> Optional[tuple[int, int]]:
    """"HH:MM" → (שעה, דקה); None לערך לא תקין"""
    hour_part, _, minute_part = (value or "").strip().partition(":")
    try:
        hour = int(hour_part)
        minute = int(minute_part or 0)
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def _as_utc(now: datetime) -> datetime:
    """datetime בלי אזור זמן נחשב UTC"""
    return now.replace(tzinfo=timezone.utc) if now.tzinfo is None else now.astimezone(timezone.utc)


def reminder_stamp(now: datetime) -> str:
    return _as_utc(now).strftime("%Y-%m-%dT%H:%MZ")


def is_due(reminder: Reminder, now: datetime) -> bool:
    if not reminder.is_active:
        return False
    time = parse_time_utc(reminder.time_utc)
    if time is None:
        return False
    now = _as_utc(now)
    if (now.day, now.hour, now.minute) != (reminder.day_of_month, *time):
        return False
    return reminder.last_sent_stamp != reminder_stamp(now)


def template_message(reminder_type: ReminderType | str, style: ReminderStyle | str) -> str:
    return TEMPLATES[ReminderType(reminder_type)][ReminderStyle(style)]


class ReminderService:
    """Reminder CRUD and delivery"""

    @staticmethod
    async def list_reminders(db: AsyncSession) -> list[Reminder]:
        return list((await db.execute(select(Reminder).order_by(Reminder.id))).scalars().all())

    @staticmethod
    async def get_reminder(db: AsyncSession, reminder_id: int) -> Reminder:
        reminder = await db.get(Reminder, reminder_id)
        if reminder is None:
            raise NotFoundException("Reminder", reminder_id, ErrorCode.REMINDER_NOT_FOUND)
        return reminder

    @staticmethod
    async def create_reminder(
        db: AsyncSession,
        *,
        reminder_type: ReminderType,
        day_of_month: int,
        time_utc: str,
        style: ReminderStyle = ReminderStyle.MEDIUM,
    ) -> Reminder:
        reminder = Reminder(
            reminder_type=reminder_type,
            day_of_month=day_of_month,
            time_utc=time_utc,
            style=style,
        )
        db.add(reminder)
        await db.commit()
        await db.refresh(reminder)
        logger.info(
            "Reminder created",
            extra_data={
                "reminder_id": reminder.id,
                "type": reminder.reminder_type.value,
                "day_of_month": day_of_month,
                "time_utc": time_utc,
            },
        )
        return reminder

    @staticmethod
    async def delete_reminder(db: AsyncSession, reminder_id: int) -> None:
        reminder = await ReminderService.get_reminder(db, reminder_id)
        await db.delete(reminder)
        await db.commit()

    @staticmethod
    async def _recipients(db: AsyncSession) -> list[tuple[int, str]]:
        result = await db.execute(
            select(Tenant.id, Tenant.phone)
            .where(Tenant.is_active.is_(True))
            .where(Tenant.phone.is_not(None))
            .order_by(Tenant.id)
        )
        return [(tenant_id, phone) for tenant_id, phone in result.all()]

    @staticmethod
    async def send_reminder(
        db: AsyncSession,
        reminder: Reminder,
        *,
        now: Optional[datetime] = None,
        agent: Optional[AgentService] = None,
        provider: Optional[BaseWhatsAppProvider] = None,
    ) -> ReminderRunResult:
        """שליחה לכל הדיירים הפעילים; נוסח מהמודל, ואם אין, מהתבנית"""
        now = now or datetime.now(timezone.utc)
        reminder_id = reminder.id
        reminder.last_sent_stamp = reminder_stamp(now)
        await db.commit()

        agent = agent or get_agent_service()
        provider = provider or get_whatsapp_provider()
        text = await agent.generate_reminder_message(
            reminder.reminder_type.value, reminder.style.value, "today"
        ) or template_message(reminder.reminder_type, reminder.style)

        sent = failed = 0
        for tenant_id, phone in await ReminderService._recipients(db):
            result = await provider.send_text(phone, text)
            if result.ok:
                sent += 1
                continue
            failed += 1
            logger.warning(
                "Reminder not delivered",
                extra_data={
                    "reminder_id": reminder_id,
                    "tenant_id": tenant_id,
                    "phone": PhoneNumberValidator.mask(phone),
                    "error": result.error,
                },
            )

        logger.info(
            "Reminder sent",
            extra_data={"reminder_id": reminder_id, "sent": sent, "failed": failed},
        )
        return ReminderRunResult(reminder_id=reminder_id, sent=sent, failed=failed, message=text)

    @staticmethod
    async def run_due(
        db: AsyncSession,
        now: Optional[datetime] = None,
        *,
        agent: Optional[AgentService] = None,
        provider: Optional[BaseWhatsAppProvider] = None,
    ) -> list[ReminderRunResult]:
        now = now or datetime.now(timezone.utc)
        results = []
        for reminder in await ReminderService.list_reminders(db):
            if not is_due(reminder, now):
                continue
            results.append(await ReminderService.send_reminder(
                db, reminder, now=now, agent=agent, provider=provider
            ))
        return results
