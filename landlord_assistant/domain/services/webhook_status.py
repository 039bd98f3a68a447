"""
Webhook ack model and last-status snapshot
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    """תשובת ה-webhook — אותו מבנה לכל תוצאה"""

    ok: bool = True
    routed: Optional[str] = None
    ignored: Optional[str] = None
    warning: Optional[str] = None
    llm_invoked: bool = False
    auto_reply_sent: bool = False
    auto_reply_reason: Optional[str] = None
    delay_ms: Optional[int] = None


class WebhookStatus(WebhookAck):
    received_at: datetime = Field(default_factory=datetime.utcnow)
    sender: Optional[str] = None  # ממוסך
    is_group: bool = False
    is_landlord: bool = False


_last_status: Optional[WebhookStatus] = None


def set_webhook_status(
    ack: WebhookAck,
    *,
    sender: Optional[str] = None,
    is_group: bool = False,
    is_landlord: bool = False,
) -> WebhookStatus:
    global _last_status
    _last_status = WebhookStatus(
        **ack.model_dump(),
        sender=sender,
        is_group=is_group,
        is_landlord=is_landlord,
    )
    return _last_status


def get_webhook_status() -> Optional[WebhookStatus]:
    return _last_status


def reset_webhook_status() -> None:
    global _last_status
    _last_status = None
