"""
Domain Services

מייצא רק שירותים שאינם תלויים ב-autopilot, כדי ש-import של
landlord_assistant.autopilot.engine לא ייצור מעגל.
"""
from landlord_assistant.domain.services.agent_service import AgentService
from landlord_assistant.domain.services.directory_service import DirectoryService
from landlord_assistant.domain.services.landlord_notification_service import (
    LandlordNotificationService,
)

__all__ = [
    "AgentService",
    "DirectoryService",
    "LandlordNotificationService",
]
