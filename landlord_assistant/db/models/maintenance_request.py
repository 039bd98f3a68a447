"""
MaintenanceRequest Model - a tenant conversation thread

chat_log ו-autopilot_log הם רשימות JSON שנכתבות רק בהוספה (append-only).
כל עדכון בונה רשימה חדשה כדי ש-SQLAlchemy יזהה את השינוי.
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, JSON, ForeignKey, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship

from landlord_assistant.db.database import Base


class MaintenanceStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


# סטטוסים שבהם שיחה נחשבת פעילה להמשך
ACTIVE_STATUSES = (MaintenanceStatus.OPEN, MaintenanceStatus.IN_PROGRESS)


class MaintenanceRequest(Base):
    """שיחת תחזוקה של דייר"""

    __tablename__ = "maintenance_requests"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True, index=True)
    unit_id = Column(Integer, ForeignKey("units.id", ondelete="SET NULL"), nullable=True)

    message = Column(Text, nullable=False)
    status = Column(
        SQLEnum(
            MaintenanceStatus,
            name="maintenance_status",
            values_callable=lambda x: [e.value for e in x],
        ),
        default=MaintenanceStatus.OPEN,
        nullable=False,
        index=True,
    )
    priority = Column(String(20), nullable=True)
    category = Column(String(50), nullable=True)

    triage_json = Column(JSON, nullable=True)
    ai_draft = Column(JSON, nullable=True)
    landlord_reply = Column(Text, nullable=True)
    chat_log = Column(JSON, nullable=False, default=list)

    autopilot_enabled = Column(Boolean, default=False, nullable=False)
    autopilot_status = Column(String(50), nullable=True)
    autopilot_log = Column(JSON, nullable=False, default=list)

    status_changed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tenant = relationship("Tenant", lazy="selectin")

    @property
    def severity(self) -> str:
        """החומרה האחרונה שסווגה, באותיות קטנות ("" אם אין)"""
        triage = self.triage_json or {}
        classification = triage.get("classification") or {}
        return str(classification.get("severity") or "").lower()

    @property
    def draft_text(self) -> str:
        draft = self.ai_draft or {}
        text = draft.get("draft") if isinstance(draft, dict) else None
        return text.strip() if isinstance(text, str) else ""

    @property
    def last_chat_role(self) -> str | None:
        log = self.chat_log or []
        return log[-1].get("role") if log else None
