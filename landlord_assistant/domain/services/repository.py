"""
Conversation Repository - persistence for maintenance conversations and directory lookups

כל פעולה כאן "אופציונלית": כשל של מסד הנתונים (SQLAlchemyError) נבלע,
ה-session עובר rollback, נרשמת אזהרה ומוחזר None / ערך ברירת מחדל.
הזרימה שקוראת לכאן ממשיכה עם הערכים שבזיכרון ולא נעצרת.

chat_log ו-autopilot_log נכתבים רק בהוספה: כל כתיבה בונה רשימה חדשה
מהרשימה הקיימת + הרשומה החדשה. רשומות קיימות לא משתנות ולא נמחקות.
"""
from datetime import datetime
from functools import wraps
from typing import Any, Optional

from sqlalchemy import select, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from landlord_assistant.autopilot.states import AutopilotEventType, AutopilotStatus, ChatRole
from landlord_assistant.core.logging import get_logger
from landlord_assistant.core.validation import PhoneNumberValidator
from landlord_assistant.db.models.app_setting import AppSetting
from landlord_assistant.db.models.contractor import Contractor
from landlord_assistant.db.models.maintenance_request import (
    ACTIVE_STATUSES,
    MaintenanceRequest,
    MaintenanceStatus,
)
from landlord_assistant.db.models.tenant import Tenant
from landlord_assistant.db.models.utility_bill import UtilityBill

logger = get_logger(__name__)


def _utc_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


def build_chat_entry(
    role: ChatRole | str,
    content: str,
    meta: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """רשומת שיחה: role, content, created_at ו-meta אופציונלי"""
    entry: dict[str, Any] = {
        "role": ChatRole(role).value,
        "content": content,
        "created_at": _utc_iso(),
    }
    if meta:
        entry["meta"] = dict(meta)
    return entry


def build_autopilot_entry(
    event_type: AutopilotEventType | str,
    message: str,
    status: AutopilotStatus | str | None = None,
    meta: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """רשומת יומן החלטות של autopilot"""
    entry: dict[str, Any] = {
        "type": AutopilotEventType(event_type).value,
        "message": message,
        "created_at": _utc_iso(),
    }
    if status is not None:
        entry["status"] = status.value if isinstance(status, AutopilotStatus) else str(status)
    if meta:
        entry["meta"] = dict(meta)
    return entry


def persistence_optional(operation: str, default: Any = None):
    """
    עוטף פעולת repository: SQLAlchemyError / OSError → rollback + אזהרה + ערך ברירת מחדל.

    default יכול להיות callable (למשל list) כדי לא לשתף אובייקט mutable.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(self: "ConversationRepository", *args, **kwargs):
            try:
                return await func(self, *args, **kwargs)
            except (SQLAlchemyError, OSError) as e:
                try:
                    await self.db.rollback()
                except (SQLAlchemyError, OSError):
                    pass
                logger.warning(
                    f"Persistence unavailable during {operation}",
                    extra_data={"operation": operation, "error": str(e)},
                )
                return default() if callable(default) else default

        return wrapper
    return decorator


class ConversationRepository:
    """גישה לשיחות תחזוקה, לספריית הדיירים/קבלנים ולהגדרות הגלובליות"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Directory ====================

    @persistence_optional("find_tenant_by_phone")
    async def find_tenant_by_phone(self, phone: Optional[str]) -> Optional[Tenant]:
        candidates = PhoneNumberValidator.lookup_candidates(phone)
        if not candidates:
            return None
        result = await self.db.execute(
            select(Tenant)
            .where(or_(*[Tenant.phone == c for c in candidates]))
            .where(Tenant.is_active.is_(True))
            .order_by(Tenant.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @persistence_optional("find_contractor_by_phone")
    async def find_contractor_by_phone(self, phone: Optional[str]) -> Optional[Contractor]:
        candidates = PhoneNumberValidator.lookup_candidates(phone)
        if not candidates:
            return None
        result = await self.db.execute(
            select(Contractor)
            .where(or_(*[Contractor.phone == c for c in candidates]))
            .where(Contractor.is_active.is_(True))
            .order_by(Contractor.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    @persistence_optional("get_tenant")
    async def get_tenant(self, tenant_id: Optional[int]) -> Optional[Tenant]:
        if tenant_id is None:
            return None
        return await self.db.get(Tenant, tenant_id)

    # ==================== Conversations ====================

    @persistence_optional("get_maintenance")
    async def get_maintenance(self, maintenance_id: Optional[int]) -> Optional[MaintenanceRequest]:
        if maintenance_id is None:
            return None
        result = await self.db.execute(
            select(MaintenanceRequest)
            .where(MaintenanceRequest.id == maintenance_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @persistence_optional("list_maintenance", default=list)
    async def list_maintenance(
        self,
        status: Optional[MaintenanceStatus] = None,
        limit: int = 50,
    ) -> list[MaintenanceRequest]:
        query = select(MaintenanceRequest).order_by(
            MaintenanceRequest.created_at.desc(), MaintenanceRequest.id.desc()
        )
        if status is not None:
            query = query.where(MaintenanceRequest.status == status)
        result = await self.db.execute(query.limit(limit).execution_options(populate_existing=True))
        return list(result.scalars().all())

    @persistence_optional("find_latest_open_for_tenant")
    async def find_latest_open_for_tenant(self, tenant_id: Optional[int]) -> Optional[MaintenanceRequest]:
        """השיחה הפעילה האחרונה של הדייר — הנתב ממשיך אותה במקום לפתוח חדשה"""
        if tenant_id is None:
            return None
        result = await self.db.execute(
            select(MaintenanceRequest)
            .where(MaintenanceRequest.tenant_id == tenant_id)
            .where(MaintenanceRequest.status.in_(ACTIVE_STATUSES))
            .order_by(MaintenanceRequest.created_at.desc(), MaintenanceRequest.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @persistence_optional("find_latest_open")
    async def find_latest_open(self) -> Optional[MaintenanceRequest]:
        """השיחה הפעילה האחרונה בכלל — היעד של הודעות בעל הדירה"""
        result = await self.db.execute(
            select(MaintenanceRequest)
            .where(MaintenanceRequest.status.in_(ACTIVE_STATUSES))
            .order_by(MaintenanceRequest.created_at.desc(), MaintenanceRequest.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @persistence_optional("create_maintenance")
    async def create_maintenance(
        self,
        *,
        message: str,
        tenant_id: Optional[int] = None,
        unit_id: Optional[int] = None,
        triage: Optional[dict[str, Any]] = None,
        ai_draft: Optional[dict[str, Any]] = None,
        autopilot_enabled: bool = False,
        first_entry_meta: Optional[dict[str, Any]] = None,
    ) -> Optional[MaintenanceRequest]:
        """פתיחת שיחה חדשה; הודעת הדייר הראשונה נרשמת כרשומת השיחה הראשונה"""
        classification = (triage or {}).get("classification") or {}
        record = MaintenanceRequest(
            tenant_id=tenant_id,
            unit_id=unit_id,
            message=message,
            status=MaintenanceStatus.OPEN,
            priority=classification.get("severity"),
            category=classification.get("category"),
            triage_json=triage,
            ai_draft=ai_draft,
            chat_log=[build_chat_entry(ChatRole.TENANT, message, first_entry_meta)],
            autopilot_enabled=autopilot_enabled,
            autopilot_status=AutopilotStatus.IDLE.value if autopilot_enabled else None,
            autopilot_log=[],
        )
        self.db.add(record)
        await self.db.commit()
        await self.db.refresh(record)

        logger.info(
            "Maintenance conversation created",
            extra_data={"maintenance_id": record.id, "tenant_id": tenant_id},
        )
        return record

    async def _load_for_update(self, maintenance_id: int) -> Optional[MaintenanceRequest]:
        result = await self.db.execute(
            select(MaintenanceRequest)
            .where(MaintenanceRequest.id == maintenance_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @persistence_optional("append_chat_message")
    async def append_chat_message(
        self,
        maintenance_id: int,
        role: ChatRole | str,
        content: str,
        meta: Optional[dict[str, Any]] = None,
        set_landlord_reply: Optional[str] = None,
    ) -> Optional[MaintenanceRequest]:
        record = await self._load_for_update(maintenance_id)
        if record is None:
            return None

        # רשימה חדשה: SQLAlchemy מזהה שינוי ב-JSON רק בהחלפת האובייקט
        record.chat_log = [*(record.chat_log or []), build_chat_entry(role, content, meta)]
        if set_landlord_reply is not None:
            record.landlord_reply = set_landlord_reply

        await self.db.commit()
        await self.db.refresh(record)
        return record

    @persistence_optional("update_analysis")
    async def update_analysis(
        self,
        maintenance_id: int,
        triage: Optional[dict[str, Any]] = None,
        ai_draft: Optional[dict[str, Any]] = None,
    ) -> Optional[MaintenanceRequest]:
        record = await self._load_for_update(maintenance_id)
        if record is None:
            return None

        if triage is not None:
            record.triage_json = dict(triage)
            classification = triage.get("classification") or {}
            record.priority = classification.get("severity") or record.priority
            record.category = classification.get("category") or record.category
        if ai_draft is not None:
            record.ai_draft = dict(ai_draft)

        await self.db.commit()
        await self.db.refresh(record)
        return record

    @persistence_optional("update_ai_draft")
    async def update_ai_draft(
        self,
        maintenance_id: int,
        ai_draft: dict[str, Any],
    ) -> Optional[MaintenanceRequest]:
        record = await self._load_for_update(maintenance_id)
        if record is None:
            return None
        record.ai_draft = dict(ai_draft)
        await self.db.commit()
        await self.db.refresh(record)
        return record

    @persistence_optional("update_status")
    async def update_status(
        self,
        maintenance_id: int,
        status: MaintenanceStatus,
    ) -> Optional[MaintenanceRequest]:
        record = await self._load_for_update(maintenance_id)
        if record is None:
            return None
        record.status = status
        record.status_changed_at = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def delete_maintenance(self, maintenance_id: int) -> bool:
        """מחיקה מלאה של שיחה; פעולת ניהול מפורשת, כשל מתפרץ"""
        record = await self.db.get(MaintenanceRequest, maintenance_id)
        if record is None:
            return False
        await self.db.execute(
            update(UtilityBill)
            .where(UtilityBill.maintenance_id == maintenance_id)
            .values(maintenance_id=None)
        )
        await self.db.delete(record)
        await self.db.commit()
        return True

    @persistence_optional("set_autopilot_enabled")
    async def set_autopilot_enabled(
        self,
        maintenance_id: int,
        enabled: bool,
        note: Optional[str] = None,
    ) -> Optional[MaintenanceRequest]:
        """הפעלה/כיבוי — תמיד נרשמת רשומת config, והסטטוס הופך ל-idle/disabled"""
        record = await self._load_for_update(maintenance_id)
        if record is None:
            return None

        entry = build_autopilot_entry(
            AutopilotEventType.CONFIG,
            note or ("Autopilot enabled" if enabled else "Autopilot disabled"),
            AutopilotStatus.ENABLED if enabled else AutopilotStatus.DISABLED,
            {"enabled": enabled},
        )
        record.autopilot_enabled = enabled
        record.autopilot_status = (AutopilotStatus.IDLE if enabled else AutopilotStatus.DISABLED).value
        record.autopilot_log = [*(record.autopilot_log or []), entry]

        await self.db.commit()
        await self.db.refresh(record)
        return record

    @persistence_optional("log_autopilot_event")
    async def log_autopilot_event(
        self,
        maintenance_id: int,
        event_type: AutopilotEventType,
        message: str,
        status: Optional[AutopilotStatus] = None,
        meta: Optional[dict[str, Any]] = None,
    ) -> Optional[MaintenanceRequest]:
        record = await self._load_for_update(maintenance_id)
        if record is None:
            return None

        entry = build_autopilot_entry(event_type, message, status, meta)
        record.autopilot_log = [*(record.autopilot_log or []), entry]
        if status is not None:
            record.autopilot_status = status.value

        await self.db.commit()
        await self.db.refresh(record)
        return record

    # ==================== Settings ====================

    @persistence_optional("get_setting")
    async def get_setting(self, key: str) -> Optional[str]:
        row = await self.db.get(AppSetting, key)
        return row.value if row is not None else None

    async def set_setting(self, key: str, value: str) -> None:
        """כתיבת הגדרה — כאן כשל כן מתפרץ, כי מדובר בפעולת ניהול מפורשת"""
        row = await self.db.get(AppSetting, key)
        if row is None:
            self.db.add(AppSetting(key=key, value=value))
        else:
            row.value = value
        await self.db.commit()
