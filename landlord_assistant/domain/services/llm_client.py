"""
LLM Client - Gemini generateContent over httpx

שכבה דקה מעל ה-REST API של Gemini: ניסיונות חוזרים עם backoff אקספוננציאלי
לשגיאות זמניות, והגנת circuit breaker. מחזירה טקסט גולמי או זורקת LLMError;
הפרשנות (JSON, ערכי fallback) נעשית ב-agent_service.
"""
import asyncio
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from landlord_assistant.core.circuit_breaker import CircuitBreaker, get_llm_circuit_breaker
from landlord_assistant.core.config import settings
from landlord_assistant.core.exceptions import LLMError
from landlord_assistant.core.logging import get_logger

logger = get_logger(__name__)

# סטטוסים שמצדיקים ניסיון חוזר
_TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class BaseLLMClient(ABC):
    """ממשק למודל שפה — מקבל prompt ומחזיר טקסט"""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: float = 0.4,
        json_output: bool = False,
    ) -> str:
        """Generate a completion; raises LLMError on failure"""


class GeminiClient(BaseLLMClient):
    """Google Gemini REST client"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_base_seconds: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = settings.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or settings.GEMINI_MODEL
        self.base_url = (base_url or settings.GEMINI_BASE_URL).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.LLM_TIMEOUT_SECONDS
        self.max_retries = settings.LLM_MAX_RETRIES if max_retries is None else max_retries
        self.retry_base_seconds = (
            settings.LLM_RETRY_BASE_SECONDS if retry_base_seconds is None else retry_base_seconds
        )
        self._circuit_breaker = circuit_breaker or get_llm_circuit_breaker()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _build_body(
        self,
        prompt: str,
        system: Optional[str],
        temperature: float,
        json_output: bool,
    ) -> dict[str, Any]:
        generation_config: dict[str, Any] = {"temperature": temperature}
        if json_output:
            generation_config["responseMimeType"] = "application/json"

        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        return body

    async def _post(self, body: dict[str, Any]) -> str:
        """קריאה בודדת ל-generateContent"""
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json=body,
                )
        except httpx.TimeoutException as e:
            raise LLMError(f"timeout after {self.timeout_seconds}s", transient=True) from e
        except httpx.TransportError as e:
            raise LLMError(f"transport error: {e}", transient=True) from e

        if response.status_code != 200:
            raise LLMError(
                f"generateContent returned status {response.status_code}",
                transient=response.status_code in _TRANSIENT_STATUS_CODES,
                details={"status_code": response.status_code, "response_text": response.text[:300]},
            )

        try:
            data = response.json()
            parts = data["candidates"][0]["content"]["parts"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMError("unexpected response shape") from e

        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict)).strip()
        if not text:
            raise LLMError("empty completion")
        return text

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: float = 0.4,
        json_output: bool = False,
    ) -> str:
        if not self.is_configured:
            raise LLMError("GEMINI_API_KEY is not set")

        body = self._build_body(prompt, system, temperature, json_output)
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                return await self._circuit_breaker.execute(self._post, body)
            except LLMError as e:
                if not e.transient or attempt == attempts - 1:
                    raise
                delay = self.retry_base_seconds * (2 ** attempt)
                logger.warning(
                    "Transient LLM error, retrying",
                    extra_data={
                        "attempt": attempt + 1,
                        "max_attempts": attempts,
                        "retry_in_seconds": delay,
                        "error": e.message,
                    },
                )
                await asyncio.sleep(delay)

        raise LLMError("retries exhausted")  # pragma: no cover


_client: Optional[BaseLLMClient] = None
_client_lock = threading.Lock()


def get_llm_client() -> BaseLLMClient:
    """LLM client singleton"""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = GeminiClient()
                logger.info(
                    "LLM client created",
                    extra_data={"model": _client.model, "configured": _client.is_configured},
                )
    return _client


def reset_llm_client() -> None:
    """איפוס ה-singleton — לבדיקות"""
    global _client
    with _client_lock:
        _client = None
