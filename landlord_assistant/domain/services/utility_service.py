"""
Utility Service - utility bills, sending statements to tenants and the utility check

בדיקת השירותים נבנית מהחשבונות שנרשמו לדייר או ליחידה, ומצורפת
להקשר של טיוטת התשובה לדייר.
"""
from datetime import date
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from landlord_assistant.core.config import settings
from landlord_assistant.core.exceptions import ErrorCode, NotFoundException
from landlord_assistant.core.logging import get_logger
from landlord_assistant.core.validation import PhoneNumberValidator
from landlord_assistant.db.models.utility_bill import UtilityBill
from landlord_assistant.domain.services.directory_service import DirectoryService
from landlord_assistant.domain.services.whatsapp import BaseWhatsAppProvider, SendResult, get_whatsapp_provider

logger = get_logger(__name__)

DEFAULT_BILL_MESSAGE = "Utility bill available"

# מספר החשבונות האחרונים שנכנסים לבדיקה
UTILITY_CHECK_BILLS = 3


class UtilityBillSummary(BaseModel):
    id: int
    utility_type: str
    amount_cents: int
    currency: str
    tenant_share_cents: int
    landlord_share_cents: int
    billing_period_start: Optional[date] = None
    billing_period_end: Optional[date] = None
    statement_url: Optional[str] = None
    anomaly_flag: bool = False
    anomaly_notes: Optional[str] = None


class UtilityCheck(BaseModel):
    """סיכום החשבונות האחרונים, כפי שמוצג למודל בזמן כתיבת טיוטה"""
    status: Literal["ok"] = "ok"
    anomaly_found: bool = False
    notes: str = ""
    bills: list[UtilityBillSummary] = Field(default_factory=list)


def split_amount(amount_cents: int, tenant_share: Optional[float] = None) -> tuple[int, int]:
    """חלוקת סכום בין הדייר לבעל הדירה. מחזיר (דייר, בעל דירה)"""
    share = settings.UTILITY_TENANT_SHARE if tenant_share is None else tenant_share
    tenant_part = int(round(amount_cents * share))
    return tenant_part, amount_cents - tenant_part


def bill_message(message: Optional[str], statement_url: Optional[str]) -> str:
    text = (message or "").strip() or DEFAULT_BILL_MESSAGE
    url = (statement_url or "").strip()
    return f"{text}\n{url}" if url else text


def _summarize(bill: UtilityBill) -> UtilityBillSummary:
    tenant_part, landlord_part = split_amount(bill.amount_cents)
    return UtilityBillSummary(
        id=bill.id,
        utility_type=bill.utility_type.value,
        amount_cents=bill.amount_cents,
        currency=bill.currency,
        tenant_share_cents=tenant_part,
        landlord_share_cents=landlord_part,
        billing_period_start=bill.billing_period_start,
        billing_period_end=bill.billing_period_end,
        statement_url=bill.statement_url,
        anomaly_flag=bill.anomaly_flag,
        anomaly_notes=bill.anomaly_notes,
    )


class UtilityService:
    """CRUD for utility bills"""

    @staticmethod
    async def list_bills(
        db: AsyncSession,
        unit_id: Optional[int] = None,
        tenant_id: Optional[int] = None,
    ) -> list[UtilityBill]:
        query = select(UtilityBill).order_by(UtilityBill.created_at.desc(), UtilityBill.id.desc())
        if unit_id is not None:
            query = query.where(UtilityBill.unit_id == unit_id)
        if tenant_id is not None:
            query = query.where(UtilityBill.tenant_id == tenant_id)
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def get_bill(db: AsyncSession, bill_id: int) -> UtilityBill:
        bill = await db.get(UtilityBill, bill_id)
        if bill is None:
            raise NotFoundException("UtilityBill", bill_id, ErrorCode.UTILITY_BILL_NOT_FOUND)
        return bill

    @staticmethod
    async def create_bill(db: AsyncSession, **fields: Any) -> UtilityBill:
        await DirectoryService.ensure_unit(db, fields.get("unit_id"))
        if fields.get("tenant_id") is not None:
            await DirectoryService.get_tenant(db, fields["tenant_id"])

        bill = UtilityBill(**fields)
        db.add(bill)
        await db.commit()
        await db.refresh(bill)
        logger.info(
            "Utility bill logged",
            extra_data={
                "bill_id": bill.id,
                "utility_type": bill.utility_type.value,
                "anomaly": bill.anomaly_flag,
            },
        )
        return bill

    @staticmethod
    async def update_bill(db: AsyncSession, bill_id: int, **changes: Any) -> UtilityBill:
        bill = await UtilityService.get_bill(db, bill_id)
        if "unit_id" in changes:
            await DirectoryService.ensure_unit(db, changes["unit_id"])
        if changes.get("tenant_id") is not None:
            await DirectoryService.get_tenant(db, changes["tenant_id"])

        for name, value in changes.items():
            setattr(bill, name, value)
        await db.commit()
        await db.refresh(bill)
        return bill

    @staticmethod
    async def delete_bill(db: AsyncSession, bill_id: int) -> None:
        bill = await UtilityService.get_bill(db, bill_id)
        await db.delete(bill)
        await db.commit()
        logger.info("Utility bill deleted", extra_data={"bill_id": bill_id})

    @staticmethod
    async def send_bill(
        db: AsyncSession,
        bill_id: int,
        to: str,
        *,
        message: Optional[str] = None,
        statement_url: Optional[str] = None,
        provider: Optional[BaseWhatsAppProvider] = None,
    ) -> tuple[str, SendResult]:
        """שליחת החשבון בוואטסאפ. statement_url מהבקשה גובר על זה השמור"""
        bill = await UtilityService.get_bill(db, bill_id)
        text = bill_message(message, statement_url or bill.statement_url)
        result = await (provider or get_whatsapp_provider()).send_text(to, text)
        logger.info(
            "Utility bill sent over WhatsApp",
            extra_data={
                "bill_id": bill.id,
                "to": PhoneNumberValidator.mask(to),
                "ok": result.ok,
                "error": result.error,
            },
        )
        return text, result

    @staticmethod
    async def utility_check(
        db: AsyncSession,
        tenant_id: Optional[int] = None,
        unit_id: Optional[int] = None,
    ) -> Optional[UtilityCheck]:
        """החשבונות האחרונים של הדייר או היחידה; None כשאין חשבונות"""
        filters = []
        if tenant_id is not None:
            filters.append(UtilityBill.tenant_id == tenant_id)
        if unit_id is not None:
            filters.append(UtilityBill.unit_id == unit_id)
        if not filters:
            return None

        result = await db.execute(
            select(UtilityBill)
            .where(or_(*filters))
            .order_by(UtilityBill.created_at.desc(), UtilityBill.id.desc())
            .limit(UTILITY_CHECK_BILLS)
        )
        bills = list(result.scalars().all())
        if not bills:
            return None

        flagged = [b for b in bills if b.anomaly_flag]
        if flagged:
            notes = "; ".join(
                (b.anomaly_notes or f"{b.utility_type.value} bill flagged").strip() for b in flagged
            )
        else:
            notes = "No anomalies in recent bills."
        return UtilityCheck(
            anomaly_found=bool(flagged),
            notes=notes,
            bills=[_summarize(b) for b in bills],
        )


async def utility_context(
    db: AsyncSession,
    tenant_id: Optional[int] = None,
    unit_id: Optional[int] = None,
) -> Optional[dict[str, Any]]:
    """בדיקת השירותים כ-dict מוכן ל-prompt של הטיוטה"""
    check = await UtilityService.utility_check(db, tenant_id, unit_id)
    return check.model_dump(mode="json") if check is not None else None
