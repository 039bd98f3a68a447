"""
Evolution API Provider — מימוש BaseWhatsAppProvider מעל Evolution API.

POST {EVOLUTION_API_BASE_URL}{EVOLUTION_API_SEND_PATH} עם כותרת הטוקן,
כולל retry על סטטוסים זמניים ו-circuit breaker.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional
from urllib.parse import quote

import httpx

from landlord_assistant.core.circuit_breaker import CircuitBreaker
from landlord_assistant.core.config import settings
from landlord_assistant.core.exceptions import CircuitBreakerOpenError, WhatsAppError
from landlord_assistant.core.logging import get_logger
from landlord_assistant.core.validation import PhoneNumberValidator
from landlord_assistant.domain.services.whatsapp.base_provider import (
    BaseWhatsAppProvider,
    SendResult,
)

logger = get_logger(__name__)

NOT_CONFIGURED_ERROR = "evolution_api_not_configured"


class EvolutionProvider(BaseWhatsAppProvider):
    """
    מימוש ספק WhatsApp מעל Evolution API.

    גוף הבקשה: {number, text, session, instance?}. אם נתיב השליחה מכיל
    {session} הוא מוחלף בשם ה-session.
    """

    def __init__(
        self,
        circuit_breaker: CircuitBreaker,
        *,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
    ) -> None:
        self._circuit_breaker = circuit_breaker
        self._base_url = (settings.EVOLUTION_API_BASE_URL if base_url is None else base_url).rstrip("/")
        self._token = settings.EVOLUTION_API_TOKEN if token is None else token
        self._token_header = settings.EVOLUTION_API_TOKEN_HEADER
        self._send_path = settings.EVOLUTION_API_SEND_PATH
        self._session = settings.EVOLUTION_API_SESSION
        self._instance = settings.EVOLUTION_API_INSTANCE
        self._max_retries = settings.WHATSAPP_MAX_RETRIES
        self._transient_status_codes = {
            int(code.strip())
            for code in settings.WHATSAPP_TRANSIENT_STATUS_CODES.split(",")
            if code.strip()
        }

    # ── ממשק ציבורי ──

    @property
    def provider_name(self) -> str:
        return "evolution"

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url and self._token)

    def normalize_destination(self, to: str) -> str:
        """JID פרטי → החלק שלפני @; JID של קבוצה נשאר כמו שהוא; מספר רגיל → ללא רווחים"""
        trimmed = (to or "").strip()
        if trimmed.endswith("@g.us"):
            return trimmed
        if "@" in trimmed:
            return trimmed.split("@", 1)[0]
        return "".join(trimmed.split())

    def _send_url(self) -> str:
        path = self._send_path.replace("{session}", quote(self._session, safe=""))
        return f"{self._base_url}{path}"

    def _build_payload(self, to: str, text: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "number": self.normalize_destination(to),
            "text": text,
            "session": self._session,
        }
        if self._instance:
            payload["instance"] = self._instance
        return payload

    # ── retry helper פנימי ──

    async def _request_with_retry(self, payload: dict, operation_name: str) -> None:
        """שליחת בקשה עם retry ו-exponential backoff.

        זורק WhatsAppError אם כל הניסיונות נכשלו.
        """
        phone_masked = PhoneNumberValidator.mask(payload.get("number", ""))
        headers = {self._token_header: self._token}

        async with httpx.AsyncClient(timeout=30.0) as client:
            for attempt in range(self._max_retries):
                try:
                    response = await client.post(self._send_url(), json=payload, headers=headers)
                    if response.is_success:
                        return

                    if (
                        response.status_code in self._transient_status_codes
                        and attempt < self._max_retries - 1
                    ):
                        backoff = 2 ** attempt
                        logger.warning(
                            f"Transient error during {operation_name}, retrying",
                            extra_data={
                                "phone": phone_masked,
                                "status_code": response.status_code,
                                "attempt": attempt + 1,
                                "max_retries": self._max_retries,
                                "backoff_seconds": backoff,
                            },
                        )
                        await asyncio.sleep(backoff)
                        continue

                    raise WhatsAppError.from_response(
                        "sendText",
                        response,
                        message=f"send_failed_{response.status_code}",
                    )
                except httpx.TimeoutException:
                    if attempt < self._max_retries - 1:
                        backoff = 2 ** attempt
                        logger.warning(
                            f"{operation_name} timeout, retrying",
                            extra_data={
                                "phone": phone_masked,
                                "attempt": attempt + 1,
                                "backoff_seconds": backoff,
                            },
                        )
                        await asyncio.sleep(backoff)
                        continue
                    raise WhatsAppError(
                        message="timeout after retries",
                        details={"timeout": True, "attempts": self._max_retries},
                    )
                except httpx.RequestError as exc:
                    if attempt < self._max_retries - 1:
                        backoff = 2 ** attempt
                        logger.warning(
                            f"Network error during {operation_name}, retrying",
                            extra_data={
                                "phone": phone_masked,
                                "error": str(exc),
                                "attempt": attempt + 1,
                                "backoff_seconds": backoff,
                            },
                        )
                        await asyncio.sleep(backoff)
                        continue
                    raise WhatsAppError(
                        message=f"network error: {exc}",
                        details={"network_error": True, "attempts": self._max_retries},
                    )

    # ── שליחת הודעות ──

    async def send_text(self, to: str, text: str) -> SendResult:
        """שליחת טקסט דרך Evolution API עם retry ו-circuit breaker."""
        if not self.is_configured:
            return SendResult(ok=False, error=NOT_CONFIGURED_ERROR)

        payload = self._build_payload(to, text)

        async def _send() -> None:
            await self._request_with_retry(payload, "WhatsApp send")

        try:
            await self._circuit_breaker.execute(_send)
        except (WhatsAppError, CircuitBreakerOpenError) as exc:
            logger.error(
                "WhatsApp send failed",
                extra_data={
                    "phone": PhoneNumberValidator.mask(payload["number"]),
                    "error": exc.message,
                    "provider": self.provider_name,
                },
            )
            return SendResult(ok=False, error=exc.message)

        logger.info(
            "WhatsApp message sent",
            extra_data={
                "phone": PhoneNumberValidator.mask(payload["number"]),
                "length": len(text),
            },
        )
        return SendResult(ok=True)
