"""
Cheap lexical checks on a user reply.

These run before (or instead of) intent classification, so they only
recognise short, unambiguous replies and leave everything else to the
language service.
"""
import re
from dataclasses import dataclass
from typing import Optional

AFFIRMATIVE = (
    "yes", "yeah", "yep", "yup", "sure", "ok", "okay", "fine",
    "confirm", "confirmed", "approve", "approved", "accept", "agreed",
    "do it", "please do", "go ahead", "sounds good", "proceed",
    "correct", "looks good", "that's right", "log it", "save it",
    "y", "ye", "ya", "yea",
)

DECLINE = (
    "no", "nope", "nah", "cancel", "stop", "never mind", "nevermind",
    "don't", "dont", "forget it", "skip", "abort", "n",
)

CLOSING = (
    "thanks", "thank you", "thx", "ty", "cheers", "great thanks",
    "thanks!", "perfect thanks", "awesome thanks",
)

# Words that mark a reply as a fresh request rather than an answer to a question
TOPIC_SWITCH_PATTERNS = (
    r"\b(i|just)\s+(ate|had|drank)\b",
    r"\blog\s+(a|an|my|some|\d)",
    r"\bhow (many|much)\b.*\b(calories|protein|carbs|fat)\b",
    r"\b(set|change|update)\s+my\s+\w*\s*goal",
    r"\bwhat('s| is| are)\b.*\b(in|my)\b",
    r"\bsave (a|my|this) (new )?recipe\b",
)

_TRAILING = re.compile(r"[\s.!?,]+$")


def _clean(text: str) -> str:
    return _TRAILING.sub("", (text or "").lower().strip())


def _starts_with_any(text: str, phrases) -> bool:
    for phrase in phrases:
        if text == phrase or text.startswith(f"{phrase} ") or text.startswith(f"{phrase},"):
            return True
    return False


def is_affirmative(text: str) -> bool:
    cleaned = _clean(text)
    if not cleaned or is_decline(cleaned):
        return False
    return _starts_with_any(cleaned, AFFIRMATIVE)


def is_decline(text: str) -> bool:
    cleaned = _clean(text)
    return bool(cleaned) and _starts_with_any(cleaned, DECLINE)


def is_closing_remark(text: str) -> bool:
    return _clean(text) in CLOSING


def looks_like_topic_switch(text: str) -> bool:
    cleaned = _clean(text)
    return any(re.search(p, cleaned) for p in TOPIC_SWITCH_PATTERNS)


@dataclass
class UiToken:
    """A button press from the chat UI, e.g. ``Confirm update id:3f2a``."""
    action: str                      # "confirm" or "cancel"
    choice: Optional[str] = None
    portion: Optional[str] = None
    proposal_id: Optional[str] = None


_UI_TOKEN = re.compile(r"^(confirm|cancel)\b(.*)$", re.IGNORECASE)
_UI_ID = re.compile(r"\bid:(\S+)")
_UI_PORTION = re.compile(r"\bportion:(.+?)(?=\s+id:|$)")


def parse_ui_token(text: str) -> Optional[UiToken]:
    match = _UI_TOKEN.match((text or "").strip())
    if not match:
        return None
    action, rest = match.group(1).lower(), match.group(2)

    proposal_id = None
    id_match = _UI_ID.search(rest)
    if id_match:
        proposal_id = id_match.group(1)
        rest = rest[:id_match.start()] + rest[id_match.end():]

    portion = None
    portion_match = _UI_PORTION.search(rest)
    if portion_match:
        portion = portion_match.group(1).strip()
        rest = rest[:portion_match.start()] + rest[portion_match.end():]

    choice = rest.strip() or None
    # Free text that merely starts with "confirm" is not a button press
    if choice and len(choice.split()) > 2:
        return None
    return UiToken(action=action, choice=choice.lower() if choice else None,
                   portion=portion, proposal_id=proposal_id)
