"""
Global auto-reply settings

ערכי ברירת המחדל מגיעים מה-env (AUTO_REPLY_*) וניתנים לדריסה בזמן ריצה
דרך טבלת app_settings. ערך שמור לא תקין או שלילי נופל חזרה לברירת המחדל;
אפס הוא ערך חוקי.
"""
import math
from dataclasses import dataclass
from typing import Optional

from landlord_assistant.core.config import settings
from landlord_assistant.core.logging import get_logger
from landlord_assistant.domain.services.repository import ConversationRepository

logger = get_logger(__name__)

KEY_ENABLED = "global_auto_reply_enabled"
KEY_DELAY_MINUTES = "global_auto_reply_delay_minutes"
KEY_COOLDOWN_MINUTES = "global_auto_reply_cooldown_minutes"

# תקרות לערכים שנקבעים דרך נקודת הניהול
MAX_DELAY_MINUTES = 120.0
MAX_COOLDOWN_MINUTES = 240.0

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class AutoReplySettings:
    enabled: bool
    delay_minutes: float
    cooldown_minutes: float

    @property
    def delay_seconds(self) -> float:
        return self.delay_minutes * 60

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_minutes * 60

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "delay_minutes": self.delay_minutes,
            "cooldown_minutes": self.cooldown_minutes,
        }


def parse_bool_setting(raw: Optional[str], default: bool) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


def parse_minutes_setting(
    raw: Optional[str], default: float, maximum: Optional[float] = None
) -> float:
    """ערך שלילי, inf או NaN נופל לברירת המחדל; ערך מעל התקרה נחתך אליה"""
    if raw is None:
        return default
    try:
        minutes = float(raw)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(minutes) or minutes < 0:
        return default
    if maximum is not None:
        minutes = min(minutes, maximum)
    return minutes


def default_auto_reply_settings() -> AutoReplySettings:
    return AutoReplySettings(
        enabled=settings.AUTO_REPLY_ENABLED,
        delay_minutes=settings.AUTO_REPLY_DELAY_MINUTES,
        cooldown_minutes=settings.AUTO_REPLY_COOLDOWN_MINUTES,
    )


async def load_auto_reply_settings(repo: ConversationRepository) -> AutoReplySettings:
    """ההגדרות בתוקף: שורות app_settings מעל ברירות המחדל"""
    defaults = default_auto_reply_settings()
    return AutoReplySettings(
        enabled=parse_bool_setting(await repo.get_setting(KEY_ENABLED), defaults.enabled),
        delay_minutes=parse_minutes_setting(
            await repo.get_setting(KEY_DELAY_MINUTES), defaults.delay_minutes, MAX_DELAY_MINUTES
        ),
        cooldown_minutes=parse_minutes_setting(
            await repo.get_setting(KEY_COOLDOWN_MINUTES), defaults.cooldown_minutes, MAX_COOLDOWN_MINUTES
        ),
    )


async def save_auto_reply_settings(
    repo: ConversationRepository,
    *,
    enabled: Optional[bool] = None,
    delay_minutes: Optional[float] = None,
    cooldown_minutes: Optional[float] = None,
) -> AutoReplySettings:
    """עדכון חלקי — שדה None לא נוגעים בו"""
    if enabled is not None:
        await repo.set_setting(KEY_ENABLED, "true" if enabled else "false")
    if delay_minutes is not None:
        await repo.set_setting(KEY_DELAY_MINUTES, str(delay_minutes))
    if cooldown_minutes is not None:
        await repo.set_setting(KEY_COOLDOWN_MINUTES, str(cooldown_minutes))

    current = await load_auto_reply_settings(repo)
    logger.info("Auto-reply settings updated", extra_data=current.to_dict())
    return current
