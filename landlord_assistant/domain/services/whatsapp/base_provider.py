"""
ממשק בסיסי לספק WhatsApp — Dependency Inversion.

השכבה העסקית (נתב ה-webhook, המתזמן, התראות בעל הדירה) תלויה רק בממשק הזה.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SendResult:
    """תוצאת שליחה — הקוראים רושמים ללוג ולא מנסים שוב בעצמם"""
    ok: bool
    error: Optional[str] = None


class BaseWhatsAppProvider(ABC):
    """
    ממשק אחיד לשליחת הודעות WhatsApp.

    כל מימוש אחראי על:
    - שליחת HTTP
    - retry + circuit breaker
    - נרמול יעד לפורמט הנדרש ע"י הספק
    """

    @abstractmethod
    async def send_text(self, to: str, text: str) -> SendResult:
        """
        שליחת הודעת טקסט.

        Args:
            to: מספר טלפון או JID.
            text: טקסט ההודעה — נשלח as-is.

        Returns:
            SendResult. כשלון מדווח בתוצאה ולא כחריגה.
        """

    @abstractmethod
    def normalize_destination(self, to: str) -> str:
        """
        נרמול יעד לפורמט הספק.

        לדוגמה: "972501234567@s.whatsapp.net" → "972501234567"
        """

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """האם יש מספיק הגדרות כדי לשלוח בפועל"""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """שם הספק לשימוש בלוגים ודיאגנוסטיקה."""
