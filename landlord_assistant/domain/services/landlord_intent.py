"""
Landlord intent heuristics

Used when no language model is configured or the intent call fails.
"""
import re
from dataclasses import dataclass

DRAFT_REQUEST_RE = re.compile(
    r"(draft|tenant\s*reply|tenant\s*message|forward|send to tenant|ok to send|approve|push)",
    re.IGNORECASE,
)
APPROVAL_RE = re.compile(r"(approve|approved|send it|ok to send)", re.IGNORECASE)


@dataclass(frozen=True)
class LandlordIntent:
    wants_draft: bool
    approves: bool
    source: str = "heuristic"


def heuristic_intent(text: str | None) -> LandlordIntent:
    text = text or ""
    return LandlordIntent(
        wants_draft=bool(DRAFT_REQUEST_RE.search(text)),
        approves=bool(APPROVAL_RE.search(text)),
    )
