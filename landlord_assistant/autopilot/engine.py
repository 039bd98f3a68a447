"""
Autopilot Decision Engine

מחליט אם לרשום את הטיוטה האחרונה כתשובת AI בשיחה, ללא מעורבות בעל הדירה.
הבדיקות רצות לפי סדר ונעצרות בכשלון הראשון. כל הערכה נרשמת ביומן ההחלטות
של השיחה, כך שאפשר לשחזר למה autopilot ענה או לא ענה.
"""
from dataclasses import dataclass
from typing import Any, Optional

from landlord_assistant.autopilot.states import (
    SAFE_AUTOPILOT_SEVERITIES,
    AutopilotEventType,
    AutopilotReason,
    AutopilotStatus,
    ChatRole,
    Severity,
)
from landlord_assistant.core.logging import get_logger
from landlord_assistant.db.models.maintenance_request import MaintenanceRequest
from landlord_assistant.domain.services.repository import ConversationRepository

logger = get_logger(__name__)


@dataclass
class AutopilotOutcome:
    """תוצאת הערכה אחת"""
    ran: bool
    status: Optional[AutopilotStatus] = None
    record: Optional[MaintenanceRequest] = None


def _resolve_severity(record: MaintenanceRequest, triage: Optional[dict[str, Any]]) -> str:
    classification = (triage or {}).get("classification") or {}
    severity = Severity.parse(classification.get("severity") or record.severity)
    return severity.value if severity else str(classification.get("severity") or "unknown")


def _resolve_draft(record: MaintenanceRequest, draft: Optional[str]) -> str:
    return (draft or "").strip() or (record.draft_text or "").strip()


class AutopilotEngine:
    """Gate and record autopilot replies for one conversation at a time"""

    def __init__(self, repository: ConversationRepository):
        self.repository = repository

    async def _skip(
        self,
        record: MaintenanceRequest,
        message: str,
        status: AutopilotStatus,
        meta: dict[str, Any],
    ) -> AutopilotOutcome:
        updated = await self.repository.log_autopilot_event(
            record.id, AutopilotEventType.SKIP, message, status, meta
        )
        logger.info(
            "Autopilot skipped",
            extra_data={"maintenance_id": record.id, "status": status.value, **meta},
        )
        return AutopilotOutcome(ran=False, status=status, record=updated or record)

    async def maybe_run(
        self,
        record: Optional[MaintenanceRequest],
        triage: Optional[dict[str, Any]] = None,
        draft: Optional[str] = None,
        reason: AutopilotReason = AutopilotReason.TENANT_MESSAGE,
    ) -> AutopilotOutcome:
        """
        הערכת autopilot על השיחה.

        Args:
            record: השיחה (אחרי הוספת הודעת הדייר)
            triage: הסיווג העדכני, אם קיים; אחרת נלקח מהשיחה
            draft: הטיוטה העדכנית, אם קיימת; אחרת נלקחת מהשיחה
            reason: מה הפעיל את ההערכה
        """
        if record is None or not record.autopilot_enabled:
            return AutopilotOutcome(ran=False, record=record)

        reason_value = AutopilotReason(reason).value
        severity = _resolve_severity(record, triage)
        logged = await self.repository.log_autopilot_event(
            record.id,
            AutopilotEventType.SYSTEM,
            "Autopilot evaluating latest activity",
            AutopilotStatus.EVALUATING,
            {"severity": severity, "reason": reason_value},
        )
        current = logged or record

        if severity not in SAFE_AUTOPILOT_SEVERITIES:
            return await self._skip(
                current,
                f"Autopilot blocked at severity {severity}",
                AutopilotStatus.BLOCKED_SEVERITY,
                {"severity": severity, "reason": reason_value},
            )

        if current.last_chat_role != ChatRole.TENANT.value:
            return await self._skip(
                current,
                "Autopilot idle (no tenant awaiting reply)",
                AutopilotStatus.IDLE,
                {"last_role": current.last_chat_role, "reason": reason_value},
            )

        reply = _resolve_draft(current, draft)
        if not reply:
            return await self._skip(
                current,
                "Autopilot waiting for draft content",
                AutopilotStatus.AWAITING_DRAFT,
                {"reason": reason_value},
            )

        appended = await self.repository.append_chat_message(
            current.id,
            ChatRole.AI,
            reply,
            {"autopilot": True, "severity": severity, "reason": reason_value},
            set_landlord_reply=reply,
        )
        updated = await self.repository.log_autopilot_event(
            current.id,
            AutopilotEventType.AUTO_REPLY,
            "Autopilot sent reply using latest draft",
            AutopilotStatus.AUTO_REPLIED,
            {"severity": severity, "reason": reason_value, "length": len(reply)},
        )
        logger.info(
            "Autopilot replied",
            extra_data={"maintenance_id": current.id, "severity": severity, "reason": reason_value},
        )
        return AutopilotOutcome(
            ran=True,
            status=AutopilotStatus.AUTO_REPLIED,
            record=updated or appended or current,
        )

    async def set_enabled(
        self,
        record: MaintenanceRequest,
        enabled: bool,
        note: Optional[str] = None,
        run_now: Optional[bool] = None,
    ) -> AutopilotOutcome:
        """הפעלה/כיבוי; בהפעלה עם run_now מורצת הערכה ידנית מיד"""
        updated = await self.repository.set_autopilot_enabled(record.id, enabled, note)
        if updated is None:
            # לא נשמר: עדכון בזיכרון כדי שהתגובה תשקף את הבקשה
            record.autopilot_enabled = enabled
            record.autopilot_status = (
                AutopilotStatus.IDLE if enabled else AutopilotStatus.DISABLED
            ).value
            updated = record

        logger.info(
            "Autopilot toggled",
            extra_data={"maintenance_id": record.id, "enabled": enabled},
        )

        if run_now is None:
            run_now = enabled
        if enabled and run_now:
            return await self.maybe_run(updated, reason=AutopilotReason.MANUAL_RUN)
        return AutopilotOutcome(ran=False, status=None, record=updated)
