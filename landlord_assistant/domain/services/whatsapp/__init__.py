"""
WhatsApp Provider Abstraction Layer

שכבת הפשטה לשליחת הודעות WhatsApp דרך Evolution API.
"""
from landlord_assistant.domain.services.whatsapp.base_provider import BaseWhatsAppProvider, SendResult
from landlord_assistant.domain.services.whatsapp.provider_factory import (
    get_whatsapp_provider,
    reset_providers,
)

__all__ = [
    "BaseWhatsAppProvider",
    "SendResult",
    "get_whatsapp_provider",
    "reset_providers",
]
