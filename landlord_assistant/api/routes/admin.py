"""
Admin Endpoints — ניהול ספריית הדיירים/קבלנים, הגדרות תשובה אוטומטית ודיאגנוסטיקה.

כל הנקודות דורשות X-Admin-API-Key.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from landlord_assistant.api.dependencies.admin_auth import require_admin_api_key
from landlord_assistant.api.routes.schemas import DeleteResponse
from landlord_assistant.core.circuit_breaker import (
    CircuitBreaker,
    get_llm_circuit_breaker,
    get_whatsapp_circuit_breaker,
)
from landlord_assistant.core.logging import get_logger
from landlord_assistant.core.validation import PhoneNumberValidator, TextSanitizer
from landlord_assistant.db.database import get_db
from landlord_assistant.domain.services.auto_reply_settings import (
    MAX_COOLDOWN_MINUTES,
    MAX_DELAY_MINUTES,
    load_auto_reply_settings,
    save_auto_reply_settings,
)
from landlord_assistant.domain.services.directory_service import DirectoryService
from landlord_assistant.domain.services.landlord_notification_service import landlord_numbers
from landlord_assistant.domain.services.reply_scheduler import get_reply_scheduler
from landlord_assistant.domain.services.repository import ConversationRepository
from landlord_assistant.domain.services.tenant_reply_service import tenant_key
from landlord_assistant.domain.services.whatsapp import get_whatsapp_provider

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


# ─── Pydantic models ────────────────────────────────────────────────────────


class ContactFields(BaseModel):
    """ולידציה משותפת לשם ולטלפון של דיירים וקבלנים"""

    @field_validator("phone", check_fields=False)
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not PhoneNumberValidator.validate(v):
            raise ValueError("Invalid phone number format")
        return v.strip()

    @field_validator("name", check_fields=False)
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        if v is None:
            return None
        cleaned = TextSanitizer.sanitize(v.strip(), max_length=100)
        if not cleaned:
            raise ValueError("Name cannot be empty")
        return cleaned


class TenantCreate(ContactFields):
    name: str
    phone: str
    email: Optional[str] = Field(default=None, max_length=255)
    unit_id: Optional[int] = None
    auto_reply_enabled: bool = True


class TenantUpdate(ContactFields):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = Field(default=None, max_length=255)
    unit_id: Optional[int] = None
    auto_reply_enabled: Optional[bool] = None
    is_active: Optional[bool] = None


class TenantResponse(BaseModel):
    id: int
    name: str
    phone: Optional[str]
    email: Optional[str]
    unit_id: Optional[int]
    auto_reply_enabled: bool
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContractorCreate(ContactFields):
    name: str
    phone: str
    email: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = Field(default=None, max_length=100)


class ContractorUpdate(ContactFields):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = Field(default=None, max_length=255)
    role: Optional[str] = Field(default=None, max_length=100)
    is_active: Optional[bool] = None


class ContractorResponse(BaseModel):
    id: int
    name: str
    phone: str
    email: Optional[str]
    role: Optional[str]
    is_active: bool

    class Config:
        from_attributes = True


class UnitCreate(BaseModel):
    label: str = Field(min_length=1, max_length=100)
    address: str = Field(min_length=1, max_length=255)


class UnitUpdate(BaseModel):
    label: Optional[str] = Field(default=None, min_length=1, max_length=100)
    address: Optional[str] = Field(default=None, min_length=1, max_length=255)


class UnitResponse(BaseModel):
    id: int
    label: str
    address: str

    class Config:
        from_attributes = True


class AutoReplySettingsResponse(BaseModel):
    enabled: bool
    delay_minutes: float
    cooldown_minutes: float


class AutoReplySettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    delay_minutes: Optional[float] = Field(default=None, ge=0, le=MAX_DELAY_MINUTES)
    cooldown_minutes: Optional[float] = Field(default=None, ge=0, le=MAX_COOLDOWN_MINUTES)


class WhatsAppTestRequest(BaseModel):
    to: str
    text: str = Field(default="Test message from Landlord Assistant", min_length=1, max_length=4000)

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        if not PhoneNumberValidator.validate(v):
            raise ValueError("Invalid phone number format")
        return v.strip()


class WhatsAppTestResponse(BaseModel):
    ok: bool
    error: Optional[str] = None
    provider: str


class CircuitBreakerStatusResponse(BaseModel):
    """סטטוס של circuit breaker בודד"""
    service: str
    state: str = Field(description="closed | open | half_open")
    failure_count: int
    success_count: int
    half_open_calls: int
    retry_after_seconds: float = Field(
        description="שניות עד שניסיון חוזר אפשרי (0 אם לא פתוח)"
    )


class PendingReplyCancelResponse(BaseModel):
    tenant_id: int
    cancelled: bool


# ─── Tenants ────────────────────────────────────────────────────────────────


@router.get("/tenants", response_model=list[TenantResponse], summary="רשימת דיירים")
async def list_tenants(
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
):
    return await DirectoryService.list_tenants(db, include_inactive)


@router.post(
    "/tenants",
    response_model=TenantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="יצירת דייר",
    responses={409: {"description": "מספר הטלפון כבר רשום"}},
)
async def create_tenant(data: TenantCreate, db: AsyncSession = Depends(get_db)):
    return await DirectoryService.create_tenant(db, **data.model_dump())


@router.get("/tenants/{tenant_id}", response_model=TenantResponse, summary="דייר לפי מזהה")
async def get_tenant(tenant_id: int, db: AsyncSession = Depends(get_db)):
    return await DirectoryService.get_tenant(db, tenant_id)


@router.patch(
    "/tenants/{tenant_id}",
    response_model=TenantResponse,
    summary="עדכון דייר",
    description="עדכון חלקי, כולל auto_reply_enabled לכיבוי תשובות אוטומטיות לדייר.",
)
async def update_tenant(
    tenant_id: int,
    data: TenantUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await DirectoryService.update_tenant(db, tenant_id, **data.model_dump(exclude_unset=True))


@router.delete("/tenants/{tenant_id}", response_model=TenantResponse, summary="השבתת דייר")
async def delete_tenant(tenant_id: int, db: AsyncSession = Depends(get_db)):
    tenant = await DirectoryService.deactivate_tenant(db, tenant_id)
    # הודעות ממתינות של דייר מושבת לא יישלחו
    get_reply_scheduler().cancel(tenant_key(tenant.id))
    return tenant


# ─── Contractors ────────────────────────────────────────────────────────────


@router.get("/contractors", response_model=list[ContractorResponse], summary="רשימת קבלנים")
async def list_contractors(
    include_inactive: bool = False,
    db: AsyncSession = Depends(get_db),
):
    return await DirectoryService.list_contractors(db, include_inactive)


@router.post(
    "/contractors",
    response_model=ContractorResponse,
    status_code=status.HTTP_201_CREATED,
    summary="יצירת קבלן",
    responses={409: {"description": "מספר הטלפון כבר רשום"}},
)
async def create_contractor(data: ContractorCreate, db: AsyncSession = Depends(get_db)):
    return await DirectoryService.create_contractor(db, **data.model_dump())


@router.get("/contractors/{contractor_id}", response_model=ContractorResponse, summary="קבלן לפי מזהה")
async def get_contractor(contractor_id: int, db: AsyncSession = Depends(get_db)):
    return await DirectoryService.get_contractor(db, contractor_id)


@router.patch("/contractors/{contractor_id}", response_model=ContractorResponse, summary="עדכון קבלן")
async def update_contractor(
    contractor_id: int,
    data: ContractorUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await DirectoryService.update_contractor(
        db, contractor_id, **data.model_dump(exclude_unset=True)
    )


@router.delete("/contractors/{contractor_id}", response_model=ContractorResponse, summary="השבתת קבלן")
async def delete_contractor(contractor_id: int, db: AsyncSession = Depends(get_db)):
    return await DirectoryService.deactivate_contractor(db, contractor_id)


# ─── Units ──────────────────────────────────────────────────────────────────


@router.get("/units", response_model=list[UnitResponse], summary="רשימת יחידות")
async def list_units(db: AsyncSession = Depends(get_db)):
    return await DirectoryService.list_units(db)


@router.post(
    "/units",
    response_model=UnitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="יצירת יחידה",
)
async def create_unit(data: UnitCreate, db: AsyncSession = Depends(get_db)):
    return await DirectoryService.create_unit(db, data.label, data.address)


@router.patch("/units/{unit_id}", response_model=UnitResponse, summary="עדכון יחידה")
async def update_unit(unit_id: int, data: UnitUpdate, db: AsyncSession = Depends(get_db)):
    return await DirectoryService.update_unit(db, unit_id, **data.model_dump(exclude_none=True))


@router.delete(
    "/units/{unit_id}",
    response_model=DeleteResponse,
    summary="מחיקת יחידה",
    description="דיירים, שיחות וחשבונות שמקושרים ליחידה נשארים בלי יחידה.",
)
async def delete_unit(unit_id: int, db: AsyncSession = Depends(get_db)) -> DeleteResponse:
    await DirectoryService.delete_unit(db, unit_id)
    return DeleteResponse()


# ─── Auto-reply settings ────────────────────────────────────────────────────


@router.get(
    "/auto-reply",
    response_model=AutoReplySettingsResponse,
    summary="הגדרות תשובה אוטומטית",
    description="ההגדרות בתוקף: ערכים שמורים מעל ברירות המחדל מה-env.",
)
async def get_auto_reply(db: AsyncSession = Depends(get_db)):
    current = await load_auto_reply_settings(ConversationRepository(db))
    return AutoReplySettingsResponse(**current.to_dict())


@router.patch("/auto-reply", response_model=AutoReplySettingsResponse, summary="עדכון הגדרות תשובה אוטומטית")
async def update_auto_reply(data: AutoReplySettingsUpdate, db: AsyncSession = Depends(get_db)):
    current = await save_auto_reply_settings(ConversationRepository(db), **data.model_dump())
    return AutoReplySettingsResponse(**current.to_dict())


# ─── Diagnostics ────────────────────────────────────────────────────────────


@router.get("/landlord-numbers", response_model=list[str], summary="מספרי בעלי הדירה (ממוסכים)")
async def get_landlord_numbers() -> list[str]:
    return [PhoneNumberValidator.mask(n) for n in landlord_numbers()]


@router.post(
    "/whatsapp/test",
    response_model=WhatsAppTestResponse,
    summary="שליחת הודעת בדיקה",
    description="שולח הודעה דרך Evolution API ומחזיר את תוצאת השליחה.",
)
async def send_whatsapp_test(data: WhatsAppTestRequest) -> WhatsAppTestResponse:
    provider = get_whatsapp_provider()
    result = await provider.send_text(data.to, data.text)
    logger.info(
        "WhatsApp test message",
        extra_data={"to": PhoneNumberValidator.mask(data.to), "ok": result.ok, "error": result.error},
    )
    return WhatsAppTestResponse(ok=result.ok, error=result.error, provider=provider.provider_name)


def _cb_to_response(cb: CircuitBreaker) -> CircuitBreakerStatusResponse:
    """המרת circuit breaker למודל תשובה"""
    return CircuitBreakerStatusResponse(**cb.snapshot())


@router.get(
    "/circuit-breakers",
    response_model=list[CircuitBreakerStatusResponse],
    summary="סטטוס circuit breakers",
    description="המצב הנוכחי של ה-breakers של WhatsApp ושל מודל השפה.",
)
async def get_circuit_breaker_status() -> list[CircuitBreakerStatusResponse]:
    breakers = [get_whatsapp_circuit_breaker(), get_llm_circuit_breaker()]
    return [_cb_to_response(cb) for cb in breakers]


@router.delete(
    "/pending-replies/{tenant_id}",
    response_model=PendingReplyCancelResponse,
    summary="ביטול תשובה ממתינה",
    description="מבטל את ה-bucket הממתין של הדייר, כולל הטיימר שלו. ההודעות נשארות בשיחה.",
)
async def cancel_pending_reply(tenant_id: int) -> PendingReplyCancelResponse:
    cancelled = get_reply_scheduler().cancel(tenant_key(tenant_id))
    return PendingReplyCancelResponse(tenant_id=tenant_id, cancelled=cancelled)
