"""
Sender Classifier - parse Evolution API webhook payloads and resolve who sent them

parse_inbound_message() מחלץ טקסט, תיאור מדיה ופרטי שולח מה-payload.
classify_sender() היא פונקציה טהורה: מקבלת את ההודעה ואת תוצאות החיפוש
בספרייה ומחזירה תפקיד אחד, לפי סדר עדיפויות קבוע.
"""
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from landlord_assistant.core.validation import PhoneNumberValidator, TextSanitizer
from landlord_assistant.db.models.contractor import Contractor
from landlord_assistant.db.models.tenant import Tenant

AI_ASSISTANCE_PREFIX = "AI Assistance:"

GROUP_JID_SUFFIX = "@g.us"


@dataclass(frozen=True)
class InboundMessage:
    """הודעה נכנסת אחרי חילוץ מה-payload"""
    text: str
    media_note: str
    remote_jid: str
    participant: str
    is_group: bool
    sender: str
    reply_to: str
    from_me: bool

    @property
    def content(self) -> str:
        """טקסט + תיאור מדיה, מופרדים ברווח"""
        return " ".join(part for part in (self.text, self.media_note) if part).strip()

    @property
    def has_media(self) -> bool:
        return bool(self.media_note)


def _message_dict(data: dict[str, Any]) -> dict[str, Any]:
    message = data.get("message")
    return message if isinstance(message, dict) else {}


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def extract_text(data: dict[str, Any]) -> str:
    message = _message_dict(data)
    extended = message.get("extendedTextMessage") or {}
    image = message.get("imageMessage") or {}
    video = message.get("videoMessage") or {}
    for candidate in (
        message.get("conversation"),
        extended.get("text") if isinstance(extended, dict) else None,
        message.get("text"),
        image.get("caption") if isinstance(image, dict) else None,
        video.get("caption") if isinstance(video, dict) else None,
        data.get("text"),
        data.get("message"),
    ):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def extract_media_note(data: dict[str, Any]) -> str:
    message = _message_dict(data)

    def caption(kind: str) -> str:
        part = message.get(kind)
        return _str(part.get("caption")).strip() if isinstance(part, dict) else ""

    if message.get("imageMessage"):
        return f"[image received] {caption('imageMessage')}".strip()
    if message.get("videoMessage"):
        return f"[video received] {caption('videoMessage')}".strip()
    if message.get("audioMessage") or message.get("ptt"):
        return "[voice note received]"
    if message.get("documentMessage"):
        return f"[document received] {caption('documentMessage')}".strip()
    return ""


def parse_inbound_message(payload: Any) -> InboundMessage:
    """חילוץ ההודעה מ-payload של Evolution API (עם או בלי עטיפת data)"""
    if not isinstance(payload, dict):
        payload = {}
    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    key = data.get("key") if isinstance(data.get("key"), dict) else {}

    remote_jid = (
        _str(key.get("remoteJid"))
        or _str(data.get("from"))
        or _str(data.get("sender"))
        or _str(data.get("remoteJid"))
    ).strip()
    participant = (_str(key.get("participant")) or _str(data.get("participant"))).strip()
    is_group = remote_jid.endswith(GROUP_JID_SUFFIX)

    sender = PhoneNumberValidator.from_jid(participant if is_group else remote_jid)
    # לקבוצה עונים לקבוצה עצמה; בשיחה ישירה למספר
    reply_to = remote_jid if is_group else (PhoneNumberValidator.from_jid(remote_jid) or sender)

    text = TextSanitizer.sanitize(extract_text(data))
    media_note = extract_media_note(data)

    return InboundMessage(
        text=text,
        media_note=media_note,
        remote_jid=remote_jid,
        participant=participant,
        is_group=is_group,
        sender=sender,
        reply_to=reply_to,
        from_me=bool(key.get("fromMe") or data.get("fromMe")),
    )


# ==================== Sender roles ====================


@dataclass(frozen=True)
class Ignored:
    reason: str


@dataclass(frozen=True)
class LandlordSender:
    phone: str


@dataclass(frozen=True)
class TenantSender:
    tenant: Tenant


@dataclass(frozen=True)
class ContractorSender:
    contractor: Contractor


SenderRole = Union[Ignored, LandlordSender, TenantSender, ContractorSender]


@dataclass(frozen=True)
class SenderDirectory:
    """
    תוצאות החיפוש בספרייה עבור השולח.

    is_landlord מחושב מול LANDLORD_WHATSAPP_NUMBERS; tenant ו-contractor
    נטענים מהמסד לפני הסיווג.
    """
    is_landlord: Callable[[str], bool]
    tenant: Optional[Tenant] = None
    contractor: Optional[Contractor] = None


def classify_sender(message: InboundMessage, directory: SenderDirectory) -> SenderRole:
    """
    סדר עדיפויות:
    1. אין תוכן → no_text
    2. fromMe שלא מבעל דירה → from_me; הד של "AI Assistance:" → from_me_ai_echo
    3. בעל דירה בשיחה ישירה
    4. אין שולח מזוהה → no_group_participant / no_sender
    5. דייר רשום
    6. קבלן רשום
    7. לא מוכר → unknown_sender
    """
    if not message.content:
        return Ignored("no_text")

    landlord = bool(message.sender) and directory.is_landlord(message.sender)

    if message.from_me:
        if not landlord:
            return Ignored("from_me")
        if message.text.startswith(AI_ASSISTANCE_PREFIX):
            return Ignored("from_me_ai_echo")

    if landlord and not message.is_group:
        return LandlordSender(phone=message.sender)

    if not message.sender:
        return Ignored("no_group_participant" if message.is_group else "no_sender")

    if directory.tenant is not None:
        return TenantSender(tenant=directory.tenant)
    if directory.contractor is not None:
        return ContractorSender(contractor=directory.contractor)
    return Ignored("unknown_sender")
