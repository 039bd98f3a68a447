"""
API Routes
"""
from fastapi import APIRouter

from landlord_assistant.api.routes.admin import router as admin_router
from landlord_assistant.api.routes.maintenance import router as maintenance_router
from landlord_assistant.api.routes.reminders import router as reminders_router
from landlord_assistant.api.routes.utilities import router as utilities_router
from landlord_assistant.api.webhooks.whatsapp import router as whatsapp_router

router = APIRouter()

router.include_router(maintenance_router, prefix="/maintenance", tags=["Maintenance"])
router.include_router(admin_router, prefix="/admin", tags=["Admin"])
router.include_router(utilities_router, prefix="/admin/utilities", tags=["Utilities"])
router.include_router(reminders_router, prefix="/admin/reminders", tags=["Reminders"])
router.include_router(whatsapp_router, prefix="/webhooks/whatsapp", tags=["Webhooks"])
