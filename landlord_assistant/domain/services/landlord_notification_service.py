"""
Landlord Notification Service - alerts and relays to the configured landlord numbers
"""
from typing import Optional

from landlord_assistant.core.config import settings
from landlord_assistant.core.logging import get_logger
from landlord_assistant.core.validation import PhoneNumberValidator
from landlord_assistant.domain.services.whatsapp import SendResult, get_whatsapp_provider

logger = get_logger(__name__)

NO_DRAFT_PLACEHOLDER = "(no draft yet)"


def _parse_csv_setting(value: str) -> list[str]:
    """פירוק הגדרת CSV למערך ערכים נקיים"""
    return [v.strip() for v in value.split(",") if v.strip()]


def landlord_numbers() -> list[str]:
    return _parse_csv_setting(settings.LANDLORD_WHATSAPP_NUMBERS)


def is_landlord_number(phone: Optional[str]) -> bool:
    return any(PhoneNumberValidator.same_number(phone, n) for n in landlord_numbers())


def format_tenant_alert(
    tenant_name: Optional[str],
    tenant_phone: Optional[str],
    message: str,
    severity: Optional[str],
    draft: Optional[str],
) -> str:
    return (
        f"Tenant {tenant_name or 'Unknown'} ({tenant_phone or 'unknown'}) says: {message}\n"
        f"Severity: {severity or 'normal'}\n"
        f"Draft: {(draft or '').strip() or NO_DRAFT_PLACEHOLDER}"
    )


def format_contractor_relay(name: Optional[str], phone: Optional[str], content: str) -> str:
    return f"Contractor {name or 'Unknown'} ({phone or 'unknown'}) says: {content}"


class LandlordNotificationService:
    """Service for sending notifications to landlords"""

    @staticmethod
    async def _send(to: str, text: str, kind: str) -> SendResult:
        result = await get_whatsapp_provider().send_text(to, text)
        if not result.ok:
            logger.warning(
                "Landlord notification not delivered",
                extra_data={
                    "kind": kind,
                    "phone": PhoneNumberValidator.mask(to),
                    "error": result.error,
                },
            )
        return result

    @staticmethod
    async def broadcast(text: str, kind: str = "alert") -> int:
        """
        שליחה לכל מספר בעל דירה בנפרד.

        כשלון ביעד אחד לא עוצר את השאר. מחזיר את מספר היעדים שקיבלו.
        """
        targets = landlord_numbers()
        if not targets:
            logger.warning("No landlord numbers configured", extra_data={"kind": kind})
            return 0

        delivered = 0
        for target in targets:
            result = await LandlordNotificationService._send(target, text, kind)
            if result.ok:
                delivered += 1

        logger.info(
            "Landlord broadcast finished",
            extra_data={"kind": kind, "targets": len(targets), "delivered": delivered},
        )
        return delivered

    @staticmethod
    async def notify_tenant_message(
        tenant_name: Optional[str],
        tenant_phone: Optional[str],
        message: str,
        severity: Optional[str],
        draft: Optional[str],
    ) -> int:
        text = format_tenant_alert(tenant_name, tenant_phone, message, severity, draft)
        return await LandlordNotificationService.broadcast(text, kind="tenant_alert")

    @staticmethod
    async def relay_contractor_message(
        name: Optional[str],
        phone: Optional[str],
        content: str,
    ) -> int:
        text = format_contractor_relay(name, phone, content)
        return await LandlordNotificationService.broadcast(text, kind="contractor_relay")

    @staticmethod
    async def reply_to_landlord(to: str, text: str) -> SendResult:
        """תשובה ישירה לבעל הדירה ששלח את ההודעה"""
        return await LandlordNotificationService._send(to, text, "landlord_reply")
