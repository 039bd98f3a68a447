"""
Autopilot and Conversation Vocabulary

Severity levels returned by the classifier, chat-log roles, decision-log entry
types and the status tokens written to ``MaintenanceRequest.autopilot_status``.
"""
from enum import Enum


class Severity(str, Enum):
    """Urgency tier returned by the classifier"""

    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @classmethod
    def parse(cls, value: object, default: "Severity | None" = None) -> "Severity | None":
        """Case-insensitive parse; unknown values map to ``default``"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return default


# autopilot עונה רק על חומרה נמוכה/רגילה
SAFE_AUTOPILOT_SEVERITIES = frozenset({Severity.LOW.value, Severity.NORMAL.value})
# חומרה שמבטלת את ההשהיה ומטופלת מיד
BYPASS_SEVERITIES = frozenset({Severity.HIGH.value, Severity.CRITICAL.value})


class ChatRole(str, Enum):
    """Author of a chat-log entry"""

    TENANT = "tenant"
    LANDLORD = "landlord"
    AI = "ai"


class AutopilotEventType(str, Enum):
    """Decision-log entry type"""

    SYSTEM = "system"
    CONFIG = "config"
    AUTO_REPLY = "auto_reply"
    SKIP = "skip"
    ERROR = "error"


class AutopilotStatus(str, Enum):
    """Status tokens written to the conversation by the engine or by enable/disable"""

    IDLE = "idle"
    EVALUATING = "evaluating"
    BLOCKED_SEVERITY = "blocked_severity"
    AWAITING_DRAFT = "awaiting_draft"
    AUTO_REPLIED = "auto_replied"
    ENABLED = "enabled"
    DISABLED = "disabled"


class AutopilotReason(str, Enum):
    """What triggered an autopilot evaluation"""

    TENANT_MESSAGE = "tenant_message"
    MANUAL_RUN = "manual_run"
