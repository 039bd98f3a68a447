"""
WhatsApp Webhook Handler - Inbound Router (Evolution API)

כל הודעה נכנסת מסווגת לפי השולח: בעל דירה, דייר, קבלן או לא מוכר.
התשובה תמיד 200 עם WebhookAck, גם כשההודעה נבלעת או כשהעיבוד נכשל,
כדי ש-Evolution API לא ישלח אותה שוב.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from landlord_assistant.autopilot.states import ChatRole
from landlord_assistant.core.logging import get_logger, set_conversation_id
from landlord_assistant.core.validation import PhoneNumberValidator
from landlord_assistant.db.database import get_db
from landlord_assistant.db.models.maintenance_request import MaintenanceRequest
from landlord_assistant.db.models.tenant import Tenant
from landlord_assistant.domain.services.agent_service import get_agent_service
from landlord_assistant.domain.services.auto_reply_settings import load_auto_reply_settings
from landlord_assistant.domain.services.landlord_notification_service import (
    LandlordNotificationService,
    is_landlord_number,
)
from landlord_assistant.domain.services.repository import ConversationRepository
from landlord_assistant.domain.services.sender_classifier import (
    ContractorSender,
    Ignored,
    InboundMessage,
    LandlordSender,
    SenderDirectory,
    classify_sender,
    parse_inbound_message,
)
from landlord_assistant.domain.services.tenant_reply_service import (
    TenantReplyService,
    tenant_key,
)
from landlord_assistant.domain.services.webhook_status import (
    WebhookAck,
    WebhookStatus,
    get_webhook_status,
    set_webhook_status,
)
from landlord_assistant.domain.services.whatsapp import get_whatsapp_provider

logger = get_logger(__name__)

router = APIRouter()

NO_ACTIVE_REQUESTS_TEXT = "No active tenant requests right now."


def format_assistant_draft_reply(analysis: str, draft: str) -> str:
    return (
        f"AI Assistance:\nAction: {analysis or 'No analysis'}\n"
        f"Tenant draft: {draft or 'No draft yet'}"
    )


def _last_tenant_message(record: MaintenanceRequest) -> str:
    for entry in reversed(record.chat_log or []):
        if entry.get("role") == ChatRole.TENANT.value:
            return str(entry.get("content") or "")
    return record.message or ""


# ──────────────────────────────────────────────
#  בעל דירה
# ──────────────────────────────────────────────


async def _handle_landlord_message(
    db: AsyncSession,
    message: InboundMessage,
    sender: str,
) -> WebhookAck:
    """
    הודעת בעל דירה מתייחסת לשיחה הפעילה האחרונה.

    בקשת טיוטה → ניתוח + טיוטה לדייר, נשמרת כטיוטת השיחה.
    שאלה כללית → תשובת עוזר.
    אישור + טיוטה קיימת → העברת הטיוטה לדייר.
    """
    repo = ConversationRepository(db)
    notifier = LandlordNotificationService
    agent = get_agent_service()

    record = await repo.find_latest_open()
    if record is None:
        await notifier.reply_to_landlord(sender, NO_ACTIVE_REQUESTS_TEXT)
        return WebhookAck(routed="landlord_no_active")

    set_conversation_id(str(record.id))
    text = message.content
    record = await repo.append_chat_message(
        record.id,
        ChatRole.LANDLORD,
        text,
        {"channel": "whatsapp", "sender": sender},
        set_landlord_reply=text,
    ) or record

    intent = await agent.classify_landlord_intent(text)
    base_draft = record.draft_text
    triage = record.triage_json or {"summary": record.message}
    tenant_message = _last_tenant_message(record)

    suggestion = await agent.advisor_suggest(
        text,
        base_draft=base_draft,
        triage=triage,
        tenant_message=tenant_message,
        chat_log=record.chat_log,
    )

    tenant_draft = ""
    if intent.wants_draft:
        # תשובת fallback של העוזר היא לא טיוטה לדייר
        tenant_draft = (suggestion.reply.strip() if not suggestion.notes else "") or base_draft
        assist_text = format_assistant_draft_reply(suggestion.analysis.strip(), tenant_draft)
        await notifier.reply_to_landlord(sender, assist_text)
        await repo.append_chat_message(
            record.id, ChatRole.AI, assist_text, {"channel": "whatsapp", "assistant": True}
        )
        await repo.update_ai_draft(
            record.id,
            {
                **(record.ai_draft or {}),
                "draft": tenant_draft,
                "analysis": suggestion.analysis,
                "source": "advisor",
            },
        )
    else:
        assist_text = f"AI Assistance: {suggestion.reply}"
        await notifier.reply_to_landlord(sender, assist_text)
        await repo.append_chat_message(
            record.id, ChatRole.AI, assist_text, {"channel": "whatsapp", "assistant": True}
        )

    forward_draft = (tenant_draft or base_draft).strip()
    if intent.approves and forward_draft and record.tenant_id is not None:
        tenant = await repo.get_tenant(record.tenant_id)
        if tenant is not None and tenant.phone:
            result = await get_whatsapp_provider().send_text(tenant.phone, forward_draft)
            if result.ok:
                await repo.append_chat_message(
                    record.id,
                    ChatRole.AI,
                    forward_draft,
                    {"channel": "whatsapp", "forwarded": True, "approved_by": sender},
                )
            else:
                logger.warning(
                    "Approved draft not delivered to tenant",
                    extra_data={"maintenance_id": record.id, "error": result.error},
                )

    logger.info(
        "Landlord message handled",
        extra_data={
            "maintenance_id": record.id,
            "wants_draft": intent.wants_draft,
            "approves": intent.approves,
            "intent_source": intent.source,
        },
    )
    return WebhookAck(routed="landlord", llm_invoked=True)


# ──────────────────────────────────────────────
#  דייר
# ──────────────────────────────────────────────


async def _handle_tenant_message(
    db: AsyncSession,
    message: InboundMessage,
    tenant: Tenant,
) -> WebhookAck:
    service = TenantReplyService(db)
    content = message.content

    # ההודעה נרשמת לפני כל קריאה למודל
    record = await service.record_tenant_message(
        tenant,
        content,
        is_group=message.is_group,
        sender=message.sender,
        media=message.has_media,
    )
    if record is not None:
        set_conversation_id(str(record.id))

    triage = await service.agent.triage_maintenance(content)
    if record is not None:
        record = await service.repo.update_analysis(record.id, triage.model_dump()) or record

    auto_settings = await load_auto_reply_settings(service.repo)
    key = tenant_key(tenant.id)
    delay_ms = await service.scheduler.compute_delay_ms(
        key,
        severity=triage.severity,
        text=content,
        delay_seconds=auto_settings.delay_seconds,
        cooldown_seconds=auto_settings.cooldown_seconds,
    )

    if delay_ms > 0:
        service.scheduler.enqueue(
            key=key,
            tenant_id=tenant.id,
            content=content,
            reply_to=message.reply_to,
            delay_ms=delay_ms,
            is_group=message.is_group,
            media=message.has_media,
            cooldown_seconds=auto_settings.cooldown_seconds,
        )
        return WebhookAck(
            routed="tenant_queued",
            llm_invoked=True,
            auto_reply_reason="queued_delay",
            delay_ms=delay_ms,
        )

    result = await service.run_reply_cycle(
        tenant=tenant,
        record=record,
        message=content,
        reply_to=message.reply_to,
        is_group=message.is_group,
        triage=triage,
        auto_settings=auto_settings,
    )
    return WebhookAck(
        routed="tenant",
        llm_invoked=True,
        auto_reply_sent=result.auto_reply_sent,
        auto_reply_reason=result.auto_reply_reason,
        delay_ms=0,
    )


# ──────────────────────────────────────────────
#  קבלן
# ──────────────────────────────────────────────


async def _handle_contractor_message(message: InboundMessage, contractor) -> WebhookAck:
    await LandlordNotificationService.relay_contractor_message(
        contractor.name, contractor.phone, message.content
    )
    logger.info(
        "Contractor message relayed",
        extra_data={
            "contractor_id": contractor.id,
            "sender": PhoneNumberValidator.mask(message.sender),
            "is_group": message.is_group,
        },
    )
    return WebhookAck(routed="contractor")


@router.post(
    "/evolution",
    response_model=WebhookAck,
    summary="Webhook - WhatsApp (Evolution API)",
    description=(
        "נקודת כניסה להודעות WhatsApp נכנסות. מסווגת את השולח ומנתבת "
        "לזרימת בעל דירה, דייר או קבלן. תמיד מחזירה 200."
    ),
)
async def evolution_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> WebhookAck:
    try:
        payload = await request.json()
    except ValueError:
        payload = {}

    message = parse_inbound_message(payload)
    masked_sender = PhoneNumberValidator.mask(message.sender) if message.sender else None

    repo = ConversationRepository(db)
    tenant = contractor = None
    # בקבוצה גם מספר בעל הדירה נבדק מול ספריית הדיירים
    landlord = bool(message.sender) and is_landlord_number(message.sender)
    if message.content and message.sender and not (landlord and not message.is_group):
        tenant = await repo.find_tenant_by_phone(message.sender)
        if tenant is None:
            contractor = await repo.find_contractor_by_phone(message.sender)

    role = classify_sender(
        message,
        SenderDirectory(is_landlord=is_landlord_number, tenant=tenant, contractor=contractor),
    )

    logger.info(
        "WhatsApp message received",
        extra_data={
            "sender": masked_sender,
            "is_group": message.is_group,
            "from_me": message.from_me,
            "role": type(role).__name__,
            "has_media": message.has_media,
        },
    )

    is_landlord = isinstance(role, LandlordSender)
    if isinstance(role, Ignored):
        ack = WebhookAck(ignored=role.reason)
        if role.reason == "unknown_sender":
            logger.warning(
                "WhatsApp message from unknown sender ignored",
                extra_data={"sender": masked_sender, "is_group": message.is_group},
            )
    elif isinstance(role, ContractorSender):
        ack = await _handle_contractor_message(message, role.contractor)
    else:
        try:
            if isinstance(role, LandlordSender):
                ack = await _handle_landlord_message(db, message, role.phone)
            else:
                ack = await _handle_tenant_message(db, message, role.tenant)
        except Exception as e:
            logger.error(
                "WhatsApp message handling failed",
                extra_data={
                    "sender": masked_sender,
                    "role": type(role).__name__,
                    "error": str(e),
                },
                exc_info=True,
            )
            ack = WebhookAck(
                routed="landlord" if is_landlord else "tenant",
                warning="analysis_failed",
            )

    set_webhook_status(ack, sender=masked_sender, is_group=message.is_group, is_landlord=is_landlord)
    return ack


@router.get(
    "/status",
    response_model=WebhookStatus | None,
    summary="Last WhatsApp webhook status",
    description="התוצאה של ה-webhook האחרון שהתקבל (לאבחון).",
)
async def whatsapp_webhook_status() -> WebhookStatus | None:
    return get_webhook_status()
