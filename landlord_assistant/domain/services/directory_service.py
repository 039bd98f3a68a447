"""
Directory Service - tenants, contractors and units
"""
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from landlord_assistant.core.exceptions import (
    ErrorCode,
    NotFoundException,
    PhoneAlreadyRegisteredError,
)
from landlord_assistant.core.logging import get_logger
from landlord_assistant.core.validation import PhoneNumberValidator
from landlord_assistant.db.models.contractor import Contractor
from landlord_assistant.db.models.maintenance_request import MaintenanceRequest
from landlord_assistant.db.models.tenant import Tenant
from landlord_assistant.db.models.unit import Unit
from landlord_assistant.db.models.utility_bill import UtilityBill

logger = get_logger(__name__)


def canonical_phone(phone: Optional[str]) -> Optional[str]:
    """+ספרות — הצורה שבה מספרים נשמרים בספרייה"""
    digits = PhoneNumberValidator.digits(phone)
    return f"+{digits}" if digits else None


class DirectoryService:
    """CRUD for the sender directory"""

    @staticmethod
    async def _ensure_phone_free(
        db: AsyncSession,
        model: type[Tenant] | type[Contractor],
        phone: Optional[str],
        exclude_id: Optional[int] = None,
    ) -> None:
        candidates = PhoneNumberValidator.lookup_candidates(phone)
        if not candidates:
            return
        query = select(model.id).where(or_(*[model.phone == c for c in candidates]))
        if exclude_id is not None:
            query = query.where(model.id != exclude_id)
        if (await db.execute(query.limit(1))).scalar_one_or_none() is not None:
            raise PhoneAlreadyRegisteredError(PhoneNumberValidator.mask(phone))

    @staticmethod
    async def ensure_unit(db: AsyncSession, unit_id: Optional[int]) -> None:
        if unit_id is not None and await db.get(Unit, unit_id) is None:
            raise NotFoundException("Unit", unit_id, ErrorCode.UNIT_NOT_FOUND)

    # ==================== Tenants ====================

    @staticmethod
    async def list_tenants(db: AsyncSession, include_inactive: bool = False) -> list[Tenant]:
        query = select(Tenant).order_by(Tenant.id)
        if not include_inactive:
            query = query.where(Tenant.is_active.is_(True))
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def get_tenant(db: AsyncSession, tenant_id: int) -> Tenant:
        tenant = await db.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundException("Tenant", tenant_id, ErrorCode.TENANT_NOT_FOUND)
        return tenant

    @staticmethod
    async def create_tenant(db: AsyncSession, **fields: Any) -> Tenant:
        fields["phone"] = canonical_phone(fields.get("phone"))
        await DirectoryService._ensure_phone_free(db, Tenant, fields["phone"])
        await DirectoryService.ensure_unit(db, fields.get("unit_id"))

        tenant = Tenant(**fields)
        db.add(tenant)
        await db.commit()
        await db.refresh(tenant)
        logger.info(
            "Tenant created",
            extra_data={"tenant_id": tenant.id, "phone": PhoneNumberValidator.mask(tenant.phone)},
        )
        return tenant

    @staticmethod
    async def update_tenant(db: AsyncSession, tenant_id: int, **changes: Any) -> Tenant:
        tenant = await DirectoryService.get_tenant(db, tenant_id)
        if "phone" in changes:
            changes["phone"] = canonical_phone(changes["phone"])
            await DirectoryService._ensure_phone_free(db, Tenant, changes["phone"], tenant_id)
        if "unit_id" in changes:
            await DirectoryService.ensure_unit(db, changes["unit_id"])

        for name, value in changes.items():
            setattr(tenant, name, value)
        await db.commit()
        await db.refresh(tenant)
        logger.info(
            "Tenant updated",
            extra_data={"tenant_id": tenant.id, "fields": sorted(changes)},
        )
        return tenant

    @staticmethod
    async def deactivate_tenant(db: AsyncSession, tenant_id: int) -> Tenant:
        """מחיקה רכה — השיחות הקיימות נשארות מקושרות"""
        return await DirectoryService.update_tenant(db, tenant_id, is_active=False)

    # ==================== Contractors ====================

    @staticmethod
    async def list_contractors(db: AsyncSession, include_inactive: bool = False) -> list[Contractor]:
        query = select(Contractor).order_by(Contractor.id)
        if not include_inactive:
            query = query.where(Contractor.is_active.is_(True))
        return list((await db.execute(query)).scalars().all())

    @staticmethod
    async def get_contractor(db: AsyncSession, contractor_id: int) -> Contractor:
        contractor = await db.get(Contractor, contractor_id)
        if contractor is None:
            raise NotFoundException("Contractor", contractor_id, ErrorCode.CONTRACTOR_NOT_FOUND)
        return contractor

    @staticmethod
    async def create_contractor(db: AsyncSession, **fields: Any) -> Contractor:
        fields["phone"] = canonical_phone(fields.get("phone"))
        await DirectoryService._ensure_phone_free(db, Contractor, fields["phone"])

        contractor = Contractor(**fields)
        db.add(contractor)
        await db.commit()
        await db.refresh(contractor)
        logger.info("Contractor created", extra_data={"contractor_id": contractor.id})
        return contractor

    @staticmethod
    async def update_contractor(db: AsyncSession, contractor_id: int, **changes: Any) -> Contractor:
        contractor = await DirectoryService.get_contractor(db, contractor_id)
        if "phone" in changes:
            changes["phone"] = canonical_phone(changes["phone"])
            await DirectoryService._ensure_phone_free(
                db, Contractor, changes["phone"], contractor_id
            )
        for name, value in changes.items():
            setattr(contractor, name, value)
        await db.commit()
        await db.refresh(contractor)
        return contractor

    @staticmethod
    async def deactivate_contractor(db: AsyncSession, contractor_id: int) -> Contractor:
        return await DirectoryService.update_contractor(db, contractor_id, is_active=False)

    # ==================== Units ====================

    @staticmethod
    async def list_units(db: AsyncSession) -> list[Unit]:
        return list((await db.execute(select(Unit).order_by(Unit.id))).scalars().all())

    @staticmethod
    async def create_unit(db: AsyncSession, label: str, address: str) -> Unit:
        unit = Unit(label=label, address=address)
        db.add(unit)
        await db.commit()
        await db.refresh(unit)
        return unit

    @staticmethod
    async def get_unit(db: AsyncSession, unit_id: int) -> Unit:
        unit = await db.get(Unit, unit_id)
        if unit is None:
            raise NotFoundException("Unit", unit_id, ErrorCode.UNIT_NOT_FOUND)
        return unit

    @staticmethod
    async def update_unit(db: AsyncSession, unit_id: int, **changes: Any) -> Unit:
        unit = await DirectoryService.get_unit(db, unit_id)
        for name, value in changes.items():
            setattr(unit, name, value)
        await db.commit()
        await db.refresh(unit)
        return unit

    @staticmethod
    async def delete_unit(db: AsyncSession, unit_id: int) -> None:
        """
        מחיקת יחידה. דיירים, שיחות וחשבונות שמקושרים אליה נשארים, בלי יחידה.

        הניתוק נעשה במפורש ולא דרך ON DELETE SET NULL, כי SQLite לא אוכף
        מפתחות זרים כברירת מחדל.
        """
        unit = await DirectoryService.get_unit(db, unit_id)
        for model in (Tenant, MaintenanceRequest, UtilityBill):
            await db.execute(update(model).where(model.unit_id == unit_id).values(unit_id=None))
        await db.delete(unit)
        await db.commit()
        logger.info("Unit deleted", extra_data={"unit_id": unit_id})
