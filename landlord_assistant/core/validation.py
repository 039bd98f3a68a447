"""
Input Validation Utilities

- Phone number / WhatsApp JID normalization and masking
- Text sanitization for inbound message content
"""
import re

_NON_DIGITS = re.compile(r"\D")
_INTERNATIONAL_PHONE = re.compile(r"^\+?[1-9]\d{6,14}$")


class PhoneNumberValidator:
    """Phone number validation and normalization"""

    @staticmethod
    def validate(phone: str) -> bool:
        """E.164-like check after removing spaces and dashes"""
        if not phone:
            return False
        cleaned = re.sub(r"[\s\-()]", "", phone)
        return bool(_INTERNATIONAL_PHONE.match(cleaned))

    @staticmethod
    def digits(phone: str | None) -> str:
        """ספרות בלבד — הצורה הקנונית להשוואת מספרים"""
        if not phone:
            return ""
        return _NON_DIGITS.sub("", phone)

    @staticmethod
    def from_jid(jid: str | None) -> str:
        """
        המרת מזהה WhatsApp למספר.

        "972501234567@s.whatsapp.net" -> "972501234567"
        "972501234567:12@s.whatsapp.net" -> "972501234567"
        """
        if not jid or not isinstance(jid, str):
            return ""
        user_part = jid.split("@", 1)[0].split(":", 1)[0]
        return PhoneNumberValidator.digits(user_part)

    @staticmethod
    def lookup_candidates(phone: str | None) -> list[str]:
        """
        הצורות שבהן מספר עשוי להיות שמור בספרייה: כפי שהוזן, ספרות בלבד, ועם +.
        """
        if not phone:
            return []
        trimmed = phone.strip()
        digits = PhoneNumberValidator.digits(trimmed)
        candidates = [trimmed]
        if digits:
            candidates.extend([digits, f"+{digits}"])
        # ללא כפילויות, שומר על סדר
        return list(dict.fromkeys(c for c in candidates if c))

    @staticmethod
    def same_number(a: str | None, b: str | None) -> bool:
        da = PhoneNumberValidator.digits(a)
        return bool(da) and da == PhoneNumberValidator.digits(b)

    @staticmethod
    def mask(phone: str | None) -> str:
        """
        Mask phone number for logging (privacy).

        Returns:
            Masked phone number (e.g., 97250123****)
        """
        if not phone or len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


class TextSanitizer:
    """Text sanitization for inbound content"""

    @staticmethod
    def sanitize(text: str | None, max_length: int = 4000) -> str:
        """
        Trim, cap length, drop null bytes and collapse runs of spaces.

        Newlines are kept because batched tenant messages are joined with them.
        """
        if not text:
            return ""
        sanitized = text.strip()[:max_length]
        sanitized = sanitized.replace("\x00", "")
        return re.sub(r" +", " ", sanitized)
