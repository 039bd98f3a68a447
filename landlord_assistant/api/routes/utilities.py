"""
Utility Endpoints: חשבונות שירותים, שליחת חשבון לדייר בוואטסאפ ובדיקת חריגות.

כל הנקודות דורשות X-Admin-API-Key.
"""
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from landlord_assistant.api.dependencies.admin_auth import require_admin_api_key
from landlord_assistant.api.routes.schemas import DeleteResponse
from landlord_assistant.core.exceptions import ConversationNotFoundError
from landlord_assistant.core.validation import PhoneNumberValidator
from landlord_assistant.db.database import get_db
from landlord_assistant.db.models.utility_bill import UtilityType
from landlord_assistant.domain.services.repository import ConversationRepository
from landlord_assistant.domain.services.utility_service import UtilityCheck, UtilityService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


# ─── Pydantic models ────────────────────────────────────────────────────────


class BillPeriodFields(BaseModel):
    @model_validator(mode="after")
    def validate_period(self):
        start = getattr(self, "billing_period_start", None)
        end = getattr(self, "billing_period_end", None)
        if start and end and end < start:
            raise ValueError("billing_period_end must not be before billing_period_start")
        return self


class UtilityBillCreate(BillPeriodFields):
    utility_type: UtilityType
    amount_cents: int = Field(ge=0)
    currency: str = Field(default="CAD", min_length=3, max_length=3)
    billing_period_start: Optional[date] = None
    billing_period_end: Optional[date] = None
    statement_url: Optional[str] = Field(default=None, max_length=500)
    anomaly_flag: bool = False
    anomaly_notes: Optional[str] = Field(default=None, max_length=2000)
    unit_id: Optional[int] = None
    tenant_id: Optional[int] = None
    maintenance_id: Optional[int] = None


class UtilityBillUpdate(BillPeriodFields):
    utility_type: Optional[UtilityType] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    billing_period_start: Optional[date] = None
    billing_period_end: Optional[date] = None
    statement_url: Optional[str] = Field(default=None, max_length=500)
    anomaly_flag: Optional[bool] = None
    anomaly_notes: Optional[str] = Field(default=None, max_length=2000)


class UtilityBillResponse(BaseModel):
    id: int
    utility_type: UtilityType
    amount_cents: int
    currency: str
    billing_period_start: Optional[date]
    billing_period_end: Optional[date]
    statement_url: Optional[str]
    anomaly_flag: bool
    anomaly_notes: Optional[str]
    unit_id: Optional[int]
    tenant_id: Optional[int]
    maintenance_id: Optional[int]
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BillSendRequest(BaseModel):
    to: str
    message: Optional[str] = Field(default=None, max_length=4000)
    statement_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("to")
    @classmethod
    def validate_to(cls, v: str) -> str:
        if not PhoneNumberValidator.validate(v):
            raise ValueError("Invalid phone number format")
        return v.strip()


class BillSendResponse(BaseModel):
    ok: bool
    error: Optional[str] = None
    text: str


# ─── Bills ──────────────────────────────────────────────────────────────────


@router.get("/bills", response_model=list[UtilityBillResponse], summary="רשימת חשבונות")
async def list_bills(
    unit_id: Optional[int] = Query(default=None),
    tenant_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await UtilityService.list_bills(db, unit_id=unit_id, tenant_id=tenant_id)


@router.post(
    "/bills",
    response_model=UtilityBillResponse,
    status_code=status.HTTP_201_CREATED,
    summary="רישום חשבון",
)
async def create_bill(data: UtilityBillCreate, db: AsyncSession = Depends(get_db)):
    if data.maintenance_id is not None:
        if await ConversationRepository(db).get_maintenance(data.maintenance_id) is None:
            raise ConversationNotFoundError(str(data.maintenance_id))
    return await UtilityService.create_bill(db, **data.model_dump())


@router.get("/bills/{bill_id}", response_model=UtilityBillResponse, summary="חשבון בודד")
async def get_bill(bill_id: int, db: AsyncSession = Depends(get_db)):
    return await UtilityService.get_bill(db, bill_id)


@router.patch("/bills/{bill_id}", response_model=UtilityBillResponse, summary="עדכון חשבון")
async def update_bill(bill_id: int, data: UtilityBillUpdate, db: AsyncSession = Depends(get_db)):
    return await UtilityService.update_bill(db, bill_id, **data.model_dump(exclude_none=True))


@router.delete("/bills/{bill_id}", response_model=DeleteResponse, summary="מחיקת חשבון")
async def delete_bill(bill_id: int, db: AsyncSession = Depends(get_db)) -> DeleteResponse:
    await UtilityService.delete_bill(db, bill_id)
    return DeleteResponse()


@router.post(
    "/bills/{bill_id}/send-whatsapp",
    response_model=BillSendResponse,
    summary="שליחת חשבון בוואטסאפ",
    description="הטקסט הוא ההודעה, ואחריה בשורה נפרדת קישור החשבון אם קיים.",
)
async def send_bill(
    bill_id: int, data: BillSendRequest, db: AsyncSession = Depends(get_db)
) -> BillSendResponse:
    text, result = await UtilityService.send_bill(
        db, bill_id, data.to, message=data.message, statement_url=data.statement_url
    )
    return BillSendResponse(ok=result.ok, error=result.error, text=text)


# ─── Utility check ──────────────────────────────────────────────────────────


@router.get(
    "/check",
    response_model=Optional[UtilityCheck],
    summary="בדיקת חריגות בחשבונות",
    description="החשבונות האחרונים של הדייר או היחידה. null כשאין חשבונות.",
)
async def check_utilities(
    tenant_id: Optional[int] = Query(default=None),
    unit_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await UtilityService.utility_check(db, tenant_id=tenant_id, unit_id=unit_id)
