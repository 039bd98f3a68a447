"""
Database Models
"""
from landlord_assistant.db.models.unit import Unit
from landlord_assistant.db.models.tenant import Tenant
from landlord_assistant.db.models.contractor import Contractor
from landlord_assistant.db.models.maintenance_request import MaintenanceRequest, MaintenanceStatus
from landlord_assistant.db.models.app_setting import AppSetting
from landlord_assistant.db.models.utility_bill import UtilityBill, UtilityType
from landlord_assistant.db.models.reminder import Reminder, ReminderStyle, ReminderType

__all__ = [
    "Unit",
    "Tenant",
    "Contractor",
    "MaintenanceRequest",
    "MaintenanceStatus",
    "AppSetting",
    "UtilityBill",
    "UtilityType",
    "Reminder",
    "ReminderStyle",
    "ReminderType",
]
