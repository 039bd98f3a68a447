"""
Agent Service - triage, drafting and landlord advice on top of the LLM client

כל פעולה בונה prompt, קוראת ל-Gemini ומפרשת את התשובה.
כשהמודל לא מוגדר או נכשל מוחזר ערך ברירת מחדל דטרמיניסטי: הזרימה שקוראת
לכאן לא נעצרת בגלל מודל שפה.
"""
import json
import re
import threading
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from landlord_assistant.autopilot.states import Severity
from landlord_assistant.core.exceptions import CircuitBreakerOpenError, LLMError
from landlord_assistant.core.logging import get_logger
from landlord_assistant.domain.services.landlord_intent import LandlordIntent, heuristic_intent
from landlord_assistant.domain.services.llm_client import BaseLLMClient, get_llm_client

logger = get_logger(__name__)

# סימון טיוטה שלא נוצרה כי אין מודל מוגדר: נחשב "אין טיוטה עדיין"
LLM_NOT_CONFIGURED = "llm_not_configured"

ADVISOR_FALLBACK_REPLY = "I’m here. Ask anything about the issue, approvals, or next steps."

CONVERSATION_CONTEXT_ENTRIES = 10

_JSON_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class Classification(BaseModel):
    severity: str = Severity.NORMAL.value
    category: str = "general"
    urgency_hours: int = 72


class TriageResult(BaseModel):
    """תוצאת סיווג הודעת דייר"""

    summary: str
    classification: Classification = Field(default_factory=Classification)
    recommended_actions: list[str] = Field(default_factory=list)
    data_requests: list[str] = Field(default_factory=list)
    source: Literal["llm", "fallback"] = "llm"

    @property
    def severity(self) -> str:
        return self.classification.severity


class DraftResult(BaseModel):
    """טיוטת תשובה לדייר"""

    draft: str = ""
    source: Literal["initial", "refine", "advisor"] = "initial"
    generated_at: str = Field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
    notes: Optional[str] = None
    instructions: Optional[str] = None

    @property
    def has_content(self) -> bool:
        return bool(self.draft.strip()) and self.notes != LLM_NOT_CONFIGURED


class AdvisorSuggestion(BaseModel):
    analysis: str = ""
    reply: str = ""
    notes: Optional[str] = None


def extract_json(text: Optional[str]) -> Optional[dict[str, Any]]:
    """JSON מתוך תשובת מודל; סובלני לגדר ```json. None אם אין אובייקט תקין"""
    if not text:
        return None
    cleaned = _JSON_FENCE_RE.sub("", text.strip()).strip()
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        # לפעמים המודל עוטף את ה-JSON בטקסט חופשי
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            return None
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except ValueError:
            return None
    return parsed if isinstance(parsed, dict) else None


def format_conversation_log(
    chat_log: Optional[list[dict[str, Any]]],
    limit: int = CONVERSATION_CONTEXT_ENTRIES,
) -> str:
    """"<ISO> | ROLE: text" לכל אחת מ-limit הרשומות האחרונות"""
    if not chat_log:
        return ""
    lines = []
    for entry in chat_log[-limit:]:
        content = str(entry.get("content") or "").strip()
        if not content:
            continue
        role = str(entry.get("role") or "unknown").upper()
        lines.append(f"{entry.get('created_at') or ''} | {role}: {content}")
    return "\n".join(lines)


def _section(title: str, body: Any) -> str:
    if isinstance(body, (dict, list)):
        body = json.dumps(body, indent=2, ensure_ascii=False)
    return f"--- {title} ---\n{body}"


def _fallback_triage(message: str) -> TriageResult:
    return TriageResult(
        summary=message,
        classification=Classification(),
        recommended_actions=["Manual review"],
        data_requests=[],
        source="fallback",
    )


class AgentService:
    """Landlord-side language model operations"""

    def __init__(self, client: Optional[BaseLLMClient] = None):
        self._client = client

    @property
    def client(self) -> BaseLLMClient:
        return self._client or get_llm_client()

    @property
    def is_configured(self) -> bool:
        return self.client.is_configured

    async def _generate(self, operation: str, prompt: str, **kwargs) -> Optional[str]:
        """קריאה למודל; כשל נרשם ומוחזר None"""
        try:
            return await self.client.generate(prompt, **kwargs)
        except (LLMError, CircuitBreakerOpenError) as e:
            logger.warning(
                f"LLM call failed during {operation}",
                extra_data={"operation": operation, "error": e.message},
            )
            return None

    # ==================== Triage ====================

    async def triage_maintenance(self, message: str) -> TriageResult:
        """סיווג חומרה וקטגוריה; לעולם לא זורק"""
        if not self.is_configured:
            return _fallback_triage(message)

        prompt = "\n\n".join([
            "You are a landlord maintenance triage agent. Return JSON only.",
            "Classify the tenant's issue by urgency and trade.",
            "Output fields: summary (string), classification {severity: critical|high|normal|low, "
            "category, urgency_hours}, recommended_actions (array), data_requests (array).",
            "Keep summary short and factual.",
            _section("TENANT MESSAGE", message),
        ])
        raw = await self._generate("triage_maintenance", prompt, temperature=0.1, json_output=True)
        parsed = extract_json(raw)
        if parsed is None:
            return _fallback_triage(message)

        raw_class = parsed.get("classification")
        raw_class = raw_class if isinstance(raw_class, dict) else {}
        severity = Severity.parse(raw_class.get("severity"), Severity.NORMAL)
        try:
            urgency = int(raw_class.get("urgency_hours", raw_class.get("urgencyHours", 72)))
        except (TypeError, ValueError):
            urgency = 72

        return TriageResult(
            summary=str(parsed.get("summary") or message),
            classification=Classification(
                severity=severity.value,
                category=str(raw_class.get("category") or "general"),
                urgency_hours=urgency,
            ),
            recommended_actions=[str(a) for a in parsed.get("recommended_actions") or []],
            data_requests=[str(d) for d in parsed.get("data_requests") or []],
        )

    # ==================== Drafting ====================

    async def draft_tenant_reply(
        self,
        tenant_message: str,
        triage: Optional[TriageResult] = None,
        chat_log: Optional[list[dict[str, Any]]] = None,
        landlord_reply: Optional[str] = None,
        utility_check: Optional[dict[str, Any]] = None,
    ) -> DraftResult:
        if not self.is_configured:
            return DraftResult(draft="", source="initial", notes=LLM_NOT_CONFIGURED)

        conversation = format_conversation_log(chat_log)
        position = (landlord_reply or "").strip()
        prompt = "\n\n".join(filter(None, [
            "You are the landlord-side assistant. Draft a casual reply for the tenant.",
            "Keep it short and conversational (1-3 tight paragraphs). "
            "Skip subject lines, headings, or bullet points entirely.",
            "Confirm you've seen the message, outline the next concrete step with timing, "
            "and stay neutral about fault.",
            "Reference prior tenant or landlord notes so it feels like part of the ongoing chat.",
            _section("TRIAGE", triage.model_dump() if triage else {}),
            _section("UTILITY CHECK", utility_check) if utility_check else "",
            _section("CONVERSATION CONTEXT", conversation) if conversation else "",
            _section("LAST LANDLORD POSITION", position) if position else "",
            _section("TENANT MESSAGE", tenant_message),
        ]))
        text = await self._generate("draft_tenant_reply", prompt)
        return DraftResult(draft=(text or "").strip(), source="initial")

    async def refine_draft(
        self,
        instructions: str,
        base_draft: Optional[str],
        triage: Optional[dict[str, Any]] = None,
        tenant_message: str = "",
        chat_log: Optional[list[dict[str, Any]]] = None,
        landlord_reply: Optional[str] = None,
    ) -> DraftResult:
        """שכתוב טיוטה קיימת לפי הוראות בעל הדירה"""
        instructions = (instructions or "").strip()
        base = (base_draft or "").strip()

        if not instructions:
            return DraftResult(draft=base, source="refine", notes="missing_instructions")
        if not base:
            return DraftResult(
                draft="", source="refine", notes="missing_base_draft", instructions=instructions,
            )
        if not self.is_configured:
            return DraftResult(
                draft=base, source="refine", notes=LLM_NOT_CONFIGURED, instructions=instructions,
            )

        conversation = format_conversation_log(chat_log)
        position = (landlord_reply or "").strip()
        prompt = "\n\n".join(filter(None, [
            "You are the landlord's assistant. Rewrite the draft per the landlord's instructions "
            "with an easygoing, human tone.",
            "Skip headings, subject lines, or bullets; keep it to short sentences or quick paragraphs.",
            "Work the triage next steps into the prose and keep it liability-neutral.",
            _section("TRIAGE", triage or {}),
            _section("TENANT MESSAGE", tenant_message),
            _section("CONVERSATION CONTEXT", conversation) if conversation else "",
            _section("LAST LANDLORD POSITION", position) if position else "",
            _section("CURRENT DRAFT", base),
            _section("LANDLORD INSTRUCTIONS", instructions),
        ]))
        text = await self._generate("refine_draft", prompt)
        return DraftResult(draft=(text or "").strip() or base, source="refine", instructions=instructions)

    # ==================== Landlord assistance ====================

    async def advisor_suggest(
        self,
        instructions: str,
        base_draft: Optional[str] = None,
        triage: Optional[dict[str, Any]] = None,
        tenant_message: str = "",
        chat_log: Optional[list[dict[str, Any]]] = None,
    ) -> AdvisorSuggestion:
        """
        ניתוח קצר + הודעה מוכנה לדייר.

        המודל מתבקש להחזיר JSON עם analysis ו-reply. אם ה-reply עצמו נראה
        כמו JSON (מודל שעטף פעמיים) הוא מפוענח שוב.
        """
        instructions = (instructions or "").strip()
        if not instructions:
            return AdvisorSuggestion(reply=ADVISOR_FALLBACK_REPLY, notes="missing_instructions")
        if not self.is_configured:
            return AdvisorSuggestion(reply=ADVISOR_FALLBACK_REPLY, notes=LLM_NOT_CONFIGURED)

        conversation = format_conversation_log(chat_log)
        base = (base_draft or "").strip()
        prompt = "\n\n".join(filter(None, [
            "You are the landlord's assistant coach. Return strict JSON with keys analysis and reply.",
            "analysis: 1-3 short sentences explaining what's missing, risky, or how to improve the tone.",
            "reply: a friendly, ready-to-send tenant message. 2-4 sentences, no headings or sign-offs.",
            _section("TRIAGE", triage) if triage else "",
            _section("TENANT MESSAGE", tenant_message) if tenant_message else "",
            _section("CONVERSATION CONTEXT", conversation) if conversation else "",
            _section("CURRENT DRAFT", base) if base else "",
            _section("LANDLORD REQUEST", instructions),
        ]))
        raw = await self._generate("advisor_suggest", prompt, json_output=True)
        if not raw:
            return AdvisorSuggestion(reply=ADVISOR_FALLBACK_REPLY, notes="llm_failed")

        parsed = extract_json(raw) or {}
        analysis = str(parsed.get("analysis") or "").strip()
        reply = parsed.get("reply") or parsed.get("draft") or ""
        reply = str(reply).strip()

        nested = extract_json(reply) if reply.startswith(("{", "```")) else None
        if nested:
            analysis = analysis or str(nested.get("analysis") or "").strip()
            reply = str(nested.get("reply") or "").strip()

        if not parsed:
            # תשובה חופשית: משמשת כתשובה עצמה
            reply = raw.strip()

        return AdvisorSuggestion(analysis=analysis, reply=reply or ADVISOR_FALLBACK_REPLY)

    async def classify_landlord_intent(self, text: str) -> LandlordIntent:
        """האם בעל הדירה מבקש טיוטה לדייר, והאם הוא מאשר שליחה"""
        if not self.is_configured:
            return heuristic_intent(text)

        prompt = "\n\n".join([
            "You classify a landlord's WhatsApp message to their maintenance assistant. "
            "Return JSON only with boolean keys wants_draft and approves.",
            "wants_draft: the landlord asks for a message to send or forward to the tenant.",
            "approves: the landlord approves sending the current draft to the tenant.",
            _section("LANDLORD MESSAGE", text),
        ])
        parsed = extract_json(
            await self._generate("classify_landlord_intent", prompt, temperature=0.0, json_output=True)
        )
        if parsed is None or not isinstance(parsed.get("wants_draft"), bool):
            return heuristic_intent(text)

        return LandlordIntent(
            wants_draft=parsed["wants_draft"],
            approves=bool(parsed.get("approves")),
            source="llm",
        )

    async def generate_reminder_message(
        self, reminder_type: str, style: str, due_label: str = "today"
    ) -> Optional[str]:
        """נוסח תזכורת לדיירים; None כשאין מודל או שהקריאה נכשלה"""
        if not self.is_configured:
            return None

        prompt = "\n\n".join([
            "You write a landlord's WhatsApp reminder to tenants. Return the message text only.",
            "One or two sentences, friendly and clear, no headings or sign-offs.",
            f"Reminder type: {reminder_type} payment.",
            f"Tone: {style}.",
            f"Due: {due_label}.",
        ])
        text = await self._generate("generate_reminder_message", prompt, temperature=0.6)
        return (text or "").strip() or None


_agent_service: Optional[AgentService] = None
_agent_lock = threading.Lock()


def get_agent_service() -> AgentService:
    global _agent_service
    if _agent_service is None:
        with _agent_lock:
            if _agent_service is None:
                _agent_service = AgentService()
    return _agent_service


def reset_agent_service() -> None:
    global _agent_service
    with _agent_lock:
        _agent_service = None
