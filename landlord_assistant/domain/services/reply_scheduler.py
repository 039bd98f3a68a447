"""
Reply Scheduler - debounce and cooldown for tenant auto-replies

הודעות דייר שמגיעות ברצף נאספות ל-bucket אחד לכל דייר. כל הודעה חדשה
מאפסת את הטיימר (ההודעה האחרונה קובעת). כשהטיימר פג ה-bucket נשלף,
ההודעות מחוברות לפי סדר ההגעה, ומחזור תשובה אחד רץ על הטקסט המאוחד.

הודעה דחופה (חומרה high/critical או מילת מפתח קריטית) מקבלת השהיה 0
ומטופלת מיד. תשובה אוטומטית לא נשלחת לפני last_reply + cooldown.

State:
    PendingReplyStore  - buckets פתוחים (בזיכרון התהליך)
    CooldownStore      - זמן התשובה האחרונה לכל דייר (זיכרון או Redis)
    DebounceWindow     - כל הטיפול בטיימרים של ה-event loop
"""
import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from redis.exceptions import RedisError

from landlord_assistant.autopilot.states import BYPASS_SEVERITIES
from landlord_assistant.core.config import settings
from landlord_assistant.core.logging import get_logger, set_correlation_id
from landlord_assistant.core.redis_client import get_redis

logger = get_logger(__name__)

CRITICAL_KEYWORDS = (
    "fire",
    "water leak",
    "gas leak",
    "gas",
    "no power",
    "no heat",
    "flood",
    "smoke",
)

BATCH_SEPARATOR = "\n---\n"

# תקרה להשהיה אחת, גם כשהגדרה שגויה מבקשת יותר
MAX_DELAY_SECONDS = 24 * 60 * 60

FlushHandler = Callable[["PendingBucket", str], Awaitable[None]]


def contains_critical_keyword(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in CRITICAL_KEYWORDS)


def is_bypass(severity: Optional[str], text: Optional[str]) -> bool:
    """הודעה שמדלגת על ההשהיה וה-cooldown"""
    return str(severity or "").lower() in BYPASS_SEVERITIES or contains_critical_keyword(text)


def compute_delay_ms(
    *,
    severity: Optional[str],
    text: Optional[str],
    now: float,
    last_reply_at: Optional[float],
    delay_seconds: float,
    cooldown_seconds: float,
) -> int:
    """
    השהיה (ms) עד שמותר לענות להודעה.

    max(now + delay, last_reply + cooldown) - now, בין 0 ל-MAX_DELAY_SECONDS.
    """
    if is_bypass(severity, text):
        return 0
    target = now + max(0.0, delay_seconds)
    if last_reply_at is not None:
        target = max(target, last_reply_at + max(0.0, cooldown_seconds))
    wait_seconds = target - now
    if not math.isfinite(wait_seconds) or wait_seconds > MAX_DELAY_SECONDS:
        wait_seconds = MAX_DELAY_SECONDS
    return max(0, int(round(wait_seconds * 1000)))


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# ==================== Timers ====================


@dataclass
class WindowHandle:
    key: str
    callback: Optional[Callable[[str], Awaitable[None]]] = None
    timer: Optional[asyncio.TimerHandle] = None
    deadline: Optional[float] = None


class DebounceWindow:
    """
    טיימר אחד לכל מפתח מעל loop.call_later.

    extend מבטל את הטיימר הקיים ומתזמן מחדש, כך שאף פעם אין יותר מטיימר
    חי אחד ל-handle. כשהטיימר פג ה-callback רץ כ-task נפרד.
    """

    def __init__(self) -> None:
        self._handles: dict[str, WindowHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def open(self, key: str) -> WindowHandle:
        handle = self._handles.get(key)
        if handle is None:
            handle = WindowHandle(key=key)
            self._handles[key] = handle
        return handle

    def on_fire(self, handle: WindowHandle, callback: Callable[[str], Awaitable[None]]) -> None:
        handle.callback = callback

    def extend(self, handle: WindowHandle, delay_seconds: float) -> None:
        if handle.timer is not None:
            handle.timer.cancel()
        loop = asyncio.get_running_loop()
        delay_seconds = max(0.0, delay_seconds)
        handle.deadline = loop.time() + delay_seconds
        handle.timer = loop.call_later(delay_seconds, self._fire, handle)
        self._handles[handle.key] = handle

    def cancel(self, handle: WindowHandle) -> None:
        if handle.timer is not None:
            handle.timer.cancel()
            handle.timer = None
        if self._handles.get(handle.key) is handle:
            del self._handles[handle.key]

    def remaining(self, handle: WindowHandle) -> float:
        if handle.deadline is None:
            return 0.0
        return max(0.0, handle.deadline - asyncio.get_running_loop().time())

    def _fire(self, handle: WindowHandle) -> None:
        handle.timer = None
        if self._handles.get(handle.key) is handle:
            del self._handles[handle.key]
        if handle.callback is None:
            return
        task = asyncio.ensure_future(handle.callback(handle.key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def shutdown(self) -> None:
        for handle in list(self._handles.values()):
            self.cancel(handle)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def drain(self) -> None:
        """המתנה לכל ה-flush שכבר רצים"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# ==================== Stores ====================


@dataclass
class PendingBucket:
    """הודעות דייר שממתינות לתשובה אחת"""
    key: str
    tenant_id: Optional[int]
    reply_to: str
    is_group: bool = False
    opened_at: float = 0.0
    messages: list[dict[str, Any]] = field(default_factory=list)
    handle: Optional[WindowHandle] = None
    # cooldown שהיה בתוקף בזמן ההוספה האחרונה
    cooldown_seconds: float = 0.0

    @property
    def combined_text(self) -> str:
        return BATCH_SEPARATOR.join(m["content"] for m in self.messages).strip()

    @property
    def has_media(self) -> bool:
        return any(m.get("media") for m in self.messages)


class PendingReplyStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[PendingBucket]:
        ...

    @abstractmethod
    def put(self, bucket: PendingBucket) -> None:
        ...

    @abstractmethod
    def pop(self, key: str) -> Optional[PendingBucket]:
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        ...


class InMemoryPendingReplyStore(PendingReplyStore):
    def __init__(self) -> None:
        self._buckets: dict[str, PendingBucket] = {}

    def get(self, key: str) -> Optional[PendingBucket]:
        return self._buckets.get(key)

    def put(self, bucket: PendingBucket) -> None:
        self._buckets[bucket.key] = bucket

    def pop(self, key: str) -> Optional[PendingBucket]:
        return self._buckets.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._buckets)


class CooldownStore(ABC):
    """זמן (epoch seconds) שבו נשלחה התשובה האוטומטית האחרונה לכל דייר"""

    @abstractmethod
    async def get_last_reply(self, key: str) -> Optional[float]:
        ...

    @abstractmethod
    async def set_last_reply(self, key: str, at: float) -> None:
        ...

    @abstractmethod
    async def clear(self, key: str) -> None:
        ...


class InMemoryCooldownStore(CooldownStore):
    """תהליך יחיד; הפעלה מחדש מאפסת את ה-cooldown"""

    def __init__(self) -> None:
        self._last: dict[str, float] = {}

    async def get_last_reply(self, key: str) -> Optional[float]:
        return self._last.get(key)

    async def set_last_reply(self, key: str, at: float) -> None:
        self._last[key] = at

    async def clear(self, key: str) -> None:
        self._last.pop(key, None)


class RedisCooldownStore(CooldownStore):
    """
    מאגר משותף לכמה מופעים.

    כשל Redis לא עוצר את הזרימה: נרשמת אזהרה ו-get מחזיר None
    (כלומר אין cooldown ידוע).
    """

    KEY_PREFIX = "landlord_assistant:last_auto_reply:"
    TTL_SECONDS = 7 * 24 * 3600

    def __init__(self, redis_factory: Callable[[], Awaitable[Any]] = get_redis) -> None:
        self._redis_factory = redis_factory

    async def get_last_reply(self, key: str) -> Optional[float]:
        try:
            redis = await self._redis_factory()
            raw = await redis.get(f"{self.KEY_PREFIX}{key}")
        except (RedisError, OSError) as e:
            logger.warning("Cooldown read failed", extra_data={"key": key, "error": str(e)})
            return None
        try:
            return float(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None

    async def set_last_reply(self, key: str, at: float) -> None:
        try:
            redis = await self._redis_factory()
            await redis.set(f"{self.KEY_PREFIX}{key}", str(at), ex=self.TTL_SECONDS)
        except (RedisError, OSError) as e:
            logger.warning("Cooldown write failed", extra_data={"key": key, "error": str(e)})

    async def clear(self, key: str) -> None:
        try:
            redis = await self._redis_factory()
            await redis.delete(f"{self.KEY_PREFIX}{key}")
        except (RedisError, OSError) as e:
            logger.warning("Cooldown clear failed", extra_data={"key": key, "error": str(e)})


def create_cooldown_store(kind: Optional[str] = None) -> CooldownStore:
    kind = kind or settings.COOLDOWN_STORE
    if kind == "redis":
        return RedisCooldownStore()
    return InMemoryCooldownStore()


# ==================== Scheduler ====================


class ReplyScheduler:
    """
    Per-tenant debounce and cooldown.

    ה-flush_handler מקבל את ה-bucket שנשלף ואת הטקסט המאוחד ומריץ את מחזור
    התשובה המלא (בדרך כלל tenant_reply_service.flush_pending_bucket).
    """

    def __init__(
        self,
        flush_handler: Optional[FlushHandler] = None,
        *,
        pending_store: Optional[PendingReplyStore] = None,
        cooldown_store: Optional[CooldownStore] = None,
        window: Optional[DebounceWindow] = None,
        clock: Callable[[], float] = time.time,
        max_wait_minutes: Optional[float] = None,
    ) -> None:
        self._flush_handler = flush_handler
        self.pending = pending_store or InMemoryPendingReplyStore()
        self.cooldowns = cooldown_store or create_cooldown_store()
        self.window = window or DebounceWindow()
        self._clock = clock
        self._max_wait_seconds = 60 * (
            settings.AUTO_REPLY_MAX_WAIT_MINUTES if max_wait_minutes is None else max_wait_minutes
        )

    def set_flush_handler(self, handler: FlushHandler) -> None:
        self._flush_handler = handler

    def now(self) -> float:
        return self._clock()

    # ── cooldown ──

    async def last_reply_at(self, key: str) -> Optional[float]:
        return await self.cooldowns.get_last_reply(key)

    async def record_reply_sent(self, key: str, at: Optional[float] = None) -> None:
        await self.cooldowns.set_last_reply(key, self.now() if at is None else at)

    async def compute_delay_ms(
        self,
        key: str,
        *,
        severity: Optional[str],
        text: Optional[str],
        delay_seconds: float,
        cooldown_seconds: float,
    ) -> int:
        return compute_delay_ms(
            severity=severity,
            text=text,
            now=self.now(),
            last_reply_at=await self.last_reply_at(key),
            delay_seconds=delay_seconds,
            cooldown_seconds=cooldown_seconds,
        )

    # ── buckets ──

    def get_bucket(self, key: str) -> Optional[PendingBucket]:
        return self.pending.get(key)

    def pending_keys(self) -> list[str]:
        return self.pending.keys()

    def enqueue(
        self,
        *,
        key: str,
        tenant_id: Optional[int],
        content: str,
        reply_to: str,
        delay_ms: int,
        is_group: bool = False,
        media: bool = False,
        cooldown_seconds: float = 0.0,
    ) -> PendingBucket:
        """
        הוספת הודעה ל-bucket של הדייר ואיפוס הטיימר ל-delay_ms.

        אם AUTO_REPLY_MAX_WAIT_MINUTES > 0, האיפוס לא יחרוג מ-opened_at + max_wait.
        """
        now = self.now()
        bucket = self.pending.get(key)
        if bucket is None:
            bucket = PendingBucket(
                key=key,
                tenant_id=tenant_id,
                reply_to=reply_to,
                is_group=is_group,
                opened_at=now,
            )
            bucket.handle = self.window.open(key)
            self.window.on_fire(bucket.handle, self._flush)
            self.pending.put(bucket)

        bucket.messages.append({"content": content, "at": _iso(now), "media": media})
        bucket.reply_to = reply_to or bucket.reply_to
        bucket.is_group = is_group
        bucket.cooldown_seconds = cooldown_seconds

        delay_seconds = max(0, delay_ms) / 1000
        if self._max_wait_seconds > 0:
            cap = bucket.opened_at + self._max_wait_seconds - now
            delay_seconds = min(delay_seconds, max(0.0, cap))

        self.window.extend(bucket.handle, delay_seconds)

        logger.info(
            "Tenant message queued for reply",
            extra_data={
                "tenant_id": tenant_id,
                "bucket_size": len(bucket.messages),
                "delay_seconds": round(delay_seconds, 3),
            },
        )
        return bucket

    def cancel(self, key: str) -> bool:
        """ביטול bucket ממתין, כולל הטיימר שלו"""
        bucket = self.pending.pop(key)
        if bucket is None:
            return False
        if bucket.handle is not None:
            self.window.cancel(bucket.handle)
        logger.info(
            "Pending reply cancelled",
            extra_data={"tenant_id": bucket.tenant_id, "messages": len(bucket.messages)},
        )
        return True

    async def _flush(self, key: str) -> None:
        # שליפה לפני כל await: הודעה שתגיע עכשיו תפתח bucket חדש
        bucket = self.pending.pop(key)
        if bucket is None:
            return
        if bucket.handle is not None:
            self.window.cancel(bucket.handle)

        set_correlation_id()

        last = await self.last_reply_at(key)
        if last is not None and bucket.cooldown_seconds > 0:
            remaining = last + bucket.cooldown_seconds - self.now()
            if remaining > 0:
                if self.pending.get(key) is None:
                    bucket.handle = self.window.open(key)
                    self.window.on_fire(bucket.handle, self._flush)
                    self.pending.put(bucket)
                    self.window.extend(bucket.handle, remaining)
                    logger.info(
                        "Pending reply deferred by cooldown",
                        extra_data={
                            "tenant_id": bucket.tenant_id,
                            "remaining_seconds": round(remaining, 3),
                        },
                    )
                    return
                # bucket חדש נפתח בינתיים: מצרפים אליו את ההודעות הישנות לפי הסדר
                newer = self.pending.get(key)
                newer.messages = [*bucket.messages, *newer.messages]
                newer.opened_at = min(newer.opened_at, bucket.opened_at)
                return

        if self._flush_handler is None:
            logger.warning("No flush handler registered", extra_data={"tenant_id": bucket.tenant_id})
            return

        combined = bucket.combined_text
        logger.info(
            "Flushing pending tenant messages",
            extra_data={"tenant_id": bucket.tenant_id, "messages": len(bucket.messages)},
        )
        try:
            await self._flush_handler(bucket, combined)
        except Exception as e:
            logger.error(
                "Pending reply flush failed",
                extra_data={"tenant_id": bucket.tenant_id, "error": str(e)},
                exc_info=True,
            )

    async def flush_now(self, key: str) -> None:
        """הרצת ה-flush מיד (ביטול הטיימר)"""
        await self._flush(key)

    async def shutdown(self) -> None:
        for key in self.pending.keys():
            self.pending.pop(key)
        await self.window.shutdown()
        logger.info("Reply scheduler stopped")


_scheduler: Optional[ReplyScheduler] = None


def get_reply_scheduler() -> ReplyScheduler:
    """Scheduler singleton, wired to the tenant reply cycle"""
    global _scheduler
    if _scheduler is None:
        from landlord_assistant.domain.services.tenant_reply_service import flush_pending_bucket

        _scheduler = ReplyScheduler(flush_pending_bucket)
    return _scheduler


def reset_reply_scheduler() -> None:
    """איפוס ה-singleton — לבדיקות. טיימרים חיים לא מבוטלים כאן"""
    global _scheduler
    _scheduler = None
