"""
Maintenance Conversation Routes

שיחות התחזוקה מהצד של בעל הדירה: יצירה, צפייה, הודעות צ'אט,
שכתוב טיוטה, עוזר, autopilot ושינוי סטטוס.
"""
from datetime import datetime
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from landlord_assistant.api.dependencies.admin_auth import require_admin_api_key
from landlord_assistant.api.routes.schemas import DeleteResponse
from landlord_assistant.autopilot.engine import AutopilotEngine
from landlord_assistant.autopilot.states import AutopilotReason, ChatRole
from landlord_assistant.core.config import settings
from landlord_assistant.core.exceptions import AppException, ConversationNotFoundError, ErrorCode
from landlord_assistant.core.logging import get_logger, set_conversation_id
from landlord_assistant.core.validation import TextSanitizer
from landlord_assistant.db.database import get_db
from landlord_assistant.db.models.maintenance_request import MaintenanceRequest, MaintenanceStatus
from landlord_assistant.domain.services.agent_service import TriageResult, get_agent_service
from landlord_assistant.domain.services.directory_service import DirectoryService
from landlord_assistant.domain.services.repository import ConversationRepository
from landlord_assistant.domain.services.utility_service import utility_context

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class MaintenanceCreate(BaseModel):
    message: str = Field(min_length=1, max_length=4000)
    tenant_id: Optional[int] = None
    unit_id: Optional[int] = None
    autopilot_enabled: Optional[bool] = None

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        cleaned = TextSanitizer.sanitize(v)
        if not cleaned:
            raise ValueError("Message cannot be empty")
        return cleaned


class ChatMessageRequest(BaseModel):
    role: Literal["tenant", "landlord"] = "landlord"
    content: str = Field(min_length=1, max_length=4000)

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        cleaned = TextSanitizer.sanitize(v)
        if not cleaned:
            raise ValueError("Message cannot be empty")
        return cleaned


class InstructionsRequest(BaseModel):
    instructions: str = Field(default="", max_length=4000)


class AutopilotToggleRequest(BaseModel):
    enabled: bool
    reason: Optional[str] = Field(default=None, max_length=500)
    run_now: Optional[bool] = None


class StatusUpdateRequest(BaseModel):
    status: MaintenanceStatus


class MaintenanceResponse(BaseModel):
    id: int
    tenant_id: Optional[int]
    unit_id: Optional[int]
    message: str
    status: MaintenanceStatus
    priority: Optional[str]
    category: Optional[str]
    triage_json: Optional[dict[str, Any]]
    ai_draft: Optional[dict[str, Any]]
    landlord_reply: Optional[str]
    chat_log: list[dict[str, Any]]
    autopilot_enabled: bool
    autopilot_status: Optional[str]
    autopilot_log: list[dict[str, Any]]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ChatResponse(BaseModel):
    """תשובת הוספת הודעה — warning כשהניתוח נכשל אבל ההודעה נשמרה"""
    maintenance: MaintenanceResponse
    warning: Optional[str] = None


class AdvisorResponse(BaseModel):
    analysis: str
    reply: str
    notes: Optional[str] = None


async def _get_or_404(repo: ConversationRepository, maintenance_id: int) -> MaintenanceRequest:
    record = await repo.get_maintenance(maintenance_id)
    if record is None:
        raise ConversationNotFoundError(str(maintenance_id))
    set_conversation_id(str(record.id))
    return record


def _triage_of(record: MaintenanceRequest) -> dict[str, Any]:
    return record.triage_json or {"summary": record.message}


def _last_tenant_message(record: MaintenanceRequest) -> str:
    for entry in reversed(record.chat_log or []):
        if entry.get("role") == ChatRole.TENANT.value:
            return str(entry.get("content") or "")
    return record.message


@router.post(
    "/",
    response_model=MaintenanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="יצירת שיחת תחזוקה",
    description="פותח שיחה מהודעת דייר, מסווג אותה ומכין טיוטת תשובה.",
)
async def create_maintenance(data: MaintenanceCreate, db: AsyncSession = Depends(get_db)):
    repo = ConversationRepository(db)
    agent = get_agent_service()

    unit_id = data.unit_id
    if data.tenant_id is not None:
        tenant = await DirectoryService.get_tenant(db, data.tenant_id)
        unit_id = unit_id if unit_id is not None else tenant.unit_id

    triage = await agent.triage_maintenance(data.message)
    draft = await agent.draft_tenant_reply(
        data.message,
        triage,
        utility_check=await utility_context(db, data.tenant_id, unit_id),
    )
    autopilot_enabled = (
        settings.AUTOPILOT_DEFAULT_ENABLED
        if data.autopilot_enabled is None
        else data.autopilot_enabled
    )

    record = await repo.create_maintenance(
        message=data.message,
        tenant_id=data.tenant_id,
        unit_id=unit_id,
        triage=triage.model_dump(),
        ai_draft=draft.model_dump(),
        autopilot_enabled=autopilot_enabled,
        first_entry_meta={"channel": "api"},
    )
    if record is None:
        # נכשל רק אם מסד הנתונים לא זמין
        raise AppException(
            "Maintenance conversation could not be stored",
            ErrorCode.EXTERNAL_SERVICE_UNAVAILABLE,
            status_code=503,
        )
    return record


@router.get("/", response_model=list[MaintenanceResponse], summary="רשימת שיחות")
async def list_maintenance(
    status_filter: Optional[MaintenanceStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    return await ConversationRepository(db).list_maintenance(status_filter, limit)


@router.get(
    "/{maintenance_id}",
    response_model=MaintenanceResponse,
    summary="שיחה לפי מזהה",
    responses={404: {"description": "השיחה לא נמצאה"}},
)
async def get_maintenance(maintenance_id: int, db: AsyncSession = Depends(get_db)):
    return await _get_or_404(ConversationRepository(db), maintenance_id)


@router.post(
    "/{maintenance_id}/chat",
    response_model=ChatResponse,
    summary="הוספת הודעה לשיחה",
    description=(
        "ההודעה נשמרת קודם. אחר כך רצים סיווג וטיוטה מחדש; "
        "כשל בניתוח מחזיר warning=analysis_failed וההודעה נשארת שמורה."
    ),
)
async def post_chat_message(
    maintenance_id: int,
    data: ChatMessageRequest,
    db: AsyncSession = Depends(get_db),
) -> ChatResponse:
    repo = ConversationRepository(db)
    record = await _get_or_404(repo, maintenance_id)

    role = ChatRole(data.role)
    record = await repo.append_chat_message(
        record.id,
        role,
        data.content,
        {"channel": "api"},
        set_landlord_reply=data.content if role == ChatRole.LANDLORD else None,
    ) or record

    try:
        agent = get_agent_service()
        tenant_message = _last_tenant_message(record)
        # הודעת בעל דירה לא משנה את הסיווג הקיים
        if role == ChatRole.LANDLORD and record.triage_json:
            triage = TriageResult.model_validate(record.triage_json)
        else:
            triage = await agent.triage_maintenance(tenant_message)
        draft = await agent.draft_tenant_reply(
            tenant_message,
            triage,
            chat_log=record.chat_log,
            landlord_reply=record.landlord_reply,
            utility_check=await utility_context(db, record.tenant_id, record.unit_id),
        )
        record = await repo.update_analysis(
            record.id, triage.model_dump(), draft.model_dump()
        ) or record

        if role == ChatRole.TENANT:
            outcome = await AutopilotEngine(repo).maybe_run(
                record,
                triage.model_dump(),
                draft.draft if draft.has_content else None,
                AutopilotReason.TENANT_MESSAGE,
            )
            record = outcome.record or record
    except Exception as e:
        logger.error(
            "Conversation analysis failed",
            extra_data={"maintenance_id": maintenance_id, "error": str(e)},
            exc_info=True,
        )
        record = await repo.get_maintenance(maintenance_id) or record
        return ChatResponse(
            maintenance=MaintenanceResponse.model_validate(record),
            warning="analysis_failed",
        )

    return ChatResponse(maintenance=MaintenanceResponse.model_validate(record))


@router.post("/{maintenance_id}/refine", response_model=MaintenanceResponse, summary="שכתוב טיוטה")
async def refine_draft(
    maintenance_id: int,
    data: InstructionsRequest,
    db: AsyncSession = Depends(get_db),
):
    repo = ConversationRepository(db)
    record = await _get_or_404(repo, maintenance_id)

    draft = await get_agent_service().refine_draft(
        data.instructions,
        record.draft_text,
        triage=_triage_of(record),
        tenant_message=_last_tenant_message(record),
        chat_log=record.chat_log,
        landlord_reply=record.landlord_reply,
    )
    return await repo.update_ai_draft(record.id, draft.model_dump()) or record


@router.post(
    "/{maintenance_id}/advisor",
    response_model=AdvisorResponse,
    summary="שאלה לעוזר",
    description="ניתוח והצעת תשובה לבעל הדירה. לא משנה את השיחה.",
)
async def ask_advisor(
    maintenance_id: int,
    data: InstructionsRequest,
    db: AsyncSession = Depends(get_db),
) -> AdvisorResponse:
    record = await _get_or_404(ConversationRepository(db), maintenance_id)
    suggestion = await get_agent_service().advisor_suggest(
        data.instructions,
        base_draft=record.draft_text,
        triage=_triage_of(record),
        tenant_message=_last_tenant_message(record),
        chat_log=record.chat_log,
    )
    return AdvisorResponse(**suggestion.model_dump())


@router.patch(
    "/{maintenance_id}/autopilot",
    response_model=MaintenanceResponse,
    summary="הפעלה/כיבוי autopilot",
    description="run_now ברירת מחדל = enabled: הפעלה מריצה הערכה ידנית מיד.",
)
async def toggle_autopilot(
    maintenance_id: int,
    data: AutopilotToggleRequest,
    db: AsyncSession = Depends(get_db),
):
    repo = ConversationRepository(db)
    record = await _get_or_404(repo, maintenance_id)
    outcome = await AutopilotEngine(repo).set_enabled(
        record, data.enabled, note=data.reason, run_now=data.run_now
    )
    return outcome.record or record


@router.patch("/{maintenance_id}/status", response_model=MaintenanceResponse, summary="עדכון סטטוס")
async def update_status(
    maintenance_id: int,
    data: StatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    repo = ConversationRepository(db)
    record = await _get_or_404(repo, maintenance_id)
    updated = await repo.update_status(record.id, data.status)
    logger.info(
        "Maintenance status changed",
        extra_data={"maintenance_id": record.id, "status": data.status.value},
    )
    return updated or record


@router.delete(
    "/{maintenance_id}",
    response_model=DeleteResponse,
    summary="מחיקת שיחה",
    description="מחיקה מלאה של השיחה ושל היומנים שלה. חשבונות שירותים שקושרו אליה נשארים.",
    responses={404: {"description": "השיחה לא נמצאה"}},
)
async def delete_maintenance(maintenance_id: int, db: AsyncSession = Depends(get_db)) -> DeleteResponse:
    if not await ConversationRepository(db).delete_maintenance(maintenance_id):
        raise ConversationNotFoundError(str(maintenance_id))
    logger.info("Maintenance conversation deleted", extra_data={"maintenance_id": maintenance_id})
    return DeleteResponse()
