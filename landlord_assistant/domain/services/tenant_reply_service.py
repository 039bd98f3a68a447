"""
Tenant Reply Service - the reply cycle shared by immediate and batched replies

מחזור תשובה: סיווג → טיוטה → שמירת הניתוח → שליחת תשובה אוטומטית (אם מותר)
→ הערכת autopilot → התראה לבעלי הדירה. אותו מחזור רץ מיד להודעה דחופה
ומה-flush של ה-scheduler להודעות שנאספו.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from landlord_assistant.autopilot.engine import AutopilotEngine, AutopilotOutcome
from landlord_assistant.autopilot.states import AutopilotReason, ChatRole
from landlord_assistant.core.config import settings
from landlord_assistant.core.logging import get_logger, log_async_operation, set_conversation_id
from landlord_assistant.core.validation import PhoneNumberValidator
from landlord_assistant.db.database import background_session
from landlord_assistant.db.models.maintenance_request import MaintenanceRequest
from landlord_assistant.db.models.tenant import Tenant
from landlord_assistant.domain.services.agent_service import (
    AgentService,
    DraftResult,
    TriageResult,
    get_agent_service,
)
from landlord_assistant.domain.services.auto_reply_settings import (
    AutoReplySettings,
    load_auto_reply_settings,
)
from landlord_assistant.domain.services.landlord_notification_service import (
    LandlordNotificationService,
)
from landlord_assistant.domain.services.reply_scheduler import (
    PendingBucket,
    ReplyScheduler,
    get_reply_scheduler,
)
from landlord_assistant.domain.services.repository import ConversationRepository
from landlord_assistant.domain.services.utility_service import utility_context
from landlord_assistant.domain.services.whatsapp import BaseWhatsAppProvider, get_whatsapp_provider

logger = get_logger(__name__)


def tenant_key(tenant_id: int) -> str:
    """מפתח ה-bucket וה-cooldown של דייר"""
    return str(tenant_id)


def channel_for(is_group: bool) -> str:
    return "whatsapp_group" if is_group else "whatsapp"


@dataclass
class ReplyCycleResult:
    record: Optional[MaintenanceRequest]
    triage: TriageResult
    draft: DraftResult
    auto_reply_sent: bool
    auto_reply_reason: str
    autopilot: Optional[AutopilotOutcome] = None
    alerts_delivered: int = 0


class TenantReplyService:
    """Tenant message intake and reply cycle"""

    def __init__(
        self,
        db: AsyncSession,
        *,
        agent: Optional[AgentService] = None,
        scheduler: Optional[ReplyScheduler] = None,
        provider: Optional[BaseWhatsAppProvider] = None,
    ):
        self.repo = ConversationRepository(db)
        self.agent = agent or get_agent_service()
        self.scheduler = scheduler or get_reply_scheduler()
        self.provider = provider or get_whatsapp_provider()
        self.autopilot = AutopilotEngine(self.repo)

    async def record_tenant_message(
        self,
        tenant: Tenant,
        content: str,
        *,
        is_group: bool = False,
        sender: Optional[str] = None,
        media: bool = False,
    ) -> Optional[MaintenanceRequest]:
        """
        רישום הודעת הדייר לפני כל קריאה למודל.

        ממשיך את השיחה הפתוחה האחרונה של הדייר; פותח שיחה חדשה רק אם אין.
        """
        meta = {"channel": channel_for(is_group), "sender": sender or tenant.phone, "media": media}
        existing = await self.repo.find_latest_open_for_tenant(tenant.id)
        if existing is not None:
            appended = await self.repo.append_chat_message(existing.id, ChatRole.TENANT, content, meta)
            return appended or existing

        return await self.repo.create_maintenance(
            message=content,
            tenant_id=tenant.id,
            unit_id=tenant.unit_id,
            autopilot_enabled=settings.AUTOPILOT_DEFAULT_ENABLED,
            first_entry_meta=meta,
        )

    async def _send_auto_reply(
        self,
        *,
        tenant: Tenant,
        record: Optional[MaintenanceRequest],
        draft: DraftResult,
        reply_to: str,
        is_group: bool,
        batched: bool,
        auto_settings: AutoReplySettings,
    ) -> tuple[bool, str]:
        """שליחת הטיוטה לדייר לפי מדיניות התשובה האוטומטית. מחזיר (נשלח, סיבה)"""
        if not draft.has_content:
            return False, "no_draft"
        if not (auto_settings.enabled and tenant.auto_reply_enabled):
            logger.info(
                "Auto-reply disabled for tenant",
                extra_data={"tenant_id": tenant.id, "global_enabled": auto_settings.enabled},
            )
            return False, "auto_reply_disabled"

        text = draft.draft.strip()
        result = await self.provider.send_text(reply_to, text)
        if not result.ok:
            logger.warning(
                "Auto-reply not delivered",
                extra_data={
                    "tenant_id": tenant.id,
                    "reply_to": PhoneNumberValidator.mask(reply_to),
                    "error": result.error,
                },
            )
            return False, "send_failed"

        if record is not None:
            await self.repo.append_chat_message(
                record.id,
                ChatRole.AI,
                text,
                {"auto_reply": True, "batched": batched, "channel": channel_for(is_group)},
            )
        await self.scheduler.record_reply_sent(tenant_key(tenant.id))

        logger.info(
            "Auto-reply sent",
            extra_data={"tenant_id": tenant.id, "batched": batched, "length": len(text)},
        )
        return True, "draft_sent"

    async def run_reply_cycle(
        self,
        *,
        tenant: Tenant,
        record: Optional[MaintenanceRequest],
        message: str,
        reply_to: str,
        is_group: bool = False,
        triage: Optional[TriageResult] = None,
        batched: bool = False,
        auto_settings: Optional[AutoReplySettings] = None,
    ) -> ReplyCycleResult:
        if triage is None:
            triage = await self.agent.triage_maintenance(message)
        if auto_settings is None:
            auto_settings = await load_auto_reply_settings(self.repo)

        draft = await self.agent.draft_tenant_reply(
            message,
            triage,
            chat_log=record.chat_log if record is not None else None,
            landlord_reply=record.landlord_reply if record is not None else None,
            utility_check=await utility_context(self.repo.db, tenant.id, tenant.unit_id),
        )

        if record is not None:
            record = await self.repo.update_analysis(
                record.id, triage.model_dump(), draft.model_dump()
            ) or record

        sent, reason = await self._send_auto_reply(
            tenant=tenant,
            record=record,
            draft=draft,
            reply_to=reply_to,
            is_group=is_group,
            batched=batched,
            auto_settings=auto_settings,
        )

        outcome = None
        if record is not None:
            # טעינה מחדש: השליחה האוטומטית הוסיפה רשומת ai
            record = await self.repo.get_maintenance(record.id) or record
            outcome = await self.autopilot.maybe_run(
                record,
                triage.model_dump(),
                draft.draft if draft.has_content else None,
                AutopilotReason.TENANT_MESSAGE,
            )
            record = outcome.record or record

        delivered = await LandlordNotificationService.notify_tenant_message(
            tenant.name,
            tenant.phone or reply_to,
            message,
            triage.severity,
            draft.draft if draft.has_content else None,
        )

        return ReplyCycleResult(
            record=record,
            triage=triage,
            draft=draft,
            auto_reply_sent=sent,
            auto_reply_reason=reason,
            autopilot=outcome,
            alerts_delivered=delivered,
        )


@log_async_operation("batched_reply_flush")
async def flush_pending_bucket(bucket: PendingBucket, combined: str) -> None:
    """
    מחזור תשובה אחד להודעות שנאספו.

    הקטעים כבר נרשמו בשיחה בזמן הקבלה, לכן הטקסט המאוחד לא נרשם שוב.
    הסיווג רץ מחדש על הטקסט המאוחד.
    """
    async with background_session() as db:
        service = TenantReplyService(db)
        tenant = await service.repo.get_tenant(bucket.tenant_id)
        if tenant is None:
            logger.warning(
                "Pending reply dropped, tenant not found",
                extra_data={"tenant_id": bucket.tenant_id},
            )
            return

        record = await service.repo.find_latest_open_for_tenant(tenant.id)
        if record is None:
            # השיחה נסגרה בזמן ההמתנה: פותחים חדשה עם הטקסט המאוחד
            record = await service.repo.create_maintenance(
                message=combined,
                tenant_id=tenant.id,
                unit_id=tenant.unit_id,
                autopilot_enabled=settings.AUTOPILOT_DEFAULT_ENABLED,
                first_entry_meta={
                    "channel": channel_for(bucket.is_group),
                    "batched": True,
                    "media": bucket.has_media,
                },
            )
        if record is not None:
            set_conversation_id(str(record.id))

        result = await service.run_reply_cycle(
            tenant=tenant,
            record=record,
            message=combined,
            reply_to=bucket.reply_to,
            is_group=bucket.is_group,
            batched=True,
        )
        logger.info(
            "Batched tenant reply cycle finished",
            extra_data={
                "tenant_id": tenant.id,
                "messages": len(bucket.messages),
                "auto_reply_sent": result.auto_reply_sent,
                "auto_reply_reason": result.auto_reply_reason,
            },
        )
