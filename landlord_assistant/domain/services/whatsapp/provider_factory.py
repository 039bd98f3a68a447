"""
Provider Factory — יצירת ספק WhatsApp לפי הגדרות.

ספק יחיד (Evolution API) משותף לתשובות לדיירים ולהתראות לבעלי הדירה.
"""
from __future__ import annotations

import threading

from landlord_assistant.core.circuit_breaker import get_whatsapp_circuit_breaker
from landlord_assistant.core.logging import get_logger
from landlord_assistant.domain.services.whatsapp.base_provider import BaseWhatsAppProvider

logger = get_logger(__name__)

_provider: BaseWhatsAppProvider | None = None
_lock = threading.Lock()


def _create_provider() -> BaseWhatsAppProvider:
    from landlord_assistant.domain.services.whatsapp.evolution_provider import EvolutionProvider

    return EvolutionProvider(circuit_breaker=get_whatsapp_circuit_breaker())


def get_whatsapp_provider() -> BaseWhatsAppProvider:
    """ספק WhatsApp משותף"""
    global _provider
    if _provider is None:
        with _lock:
            if _provider is None:
                _provider = _create_provider()
                logger.info(
                    "WhatsApp provider initialized",
                    extra_data={
                        "provider": _provider.provider_name,
                        "configured": _provider.is_configured,
                    },
                )
    return _provider


def reset_providers() -> None:
    """איפוס ספקים — לשימוש בבדיקות בלבד."""
    global _provider
    with _lock:
        _provider = None
