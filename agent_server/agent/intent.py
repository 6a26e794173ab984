"""
Intent classification.

The model is asked for a JSON classification first. When it is unavailable
or returns something unusable, a keyword/regex classifier decides. Entity
extraction (date, time, phone, doctor, patient name) always runs
deterministically so the planner can detect missing information.
"""
import logging
import re
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..llm import ChatModel, ask_json
from ..models import ChatMessage

logger = logging.getLogger(__name__)


class IntentKind(str, Enum):
    BOOK_APPOINTMENT = "book_appointment"
    CHECK_AVAILABILITY = "check_availability"
    QUERY_INFORMATION = "query_information"
    CREATE_NOTE = "create_note"
    GENERAL_CONVERSATION = "general_conversation"
    REQUEST_HUMAN = "request_human"
    CONFIRM_ACTION = "confirm_action"


SUGGESTED_TOOLS = {
    IntentKind.BOOK_APPOINTMENT: ["check_availability", "append_booking_row"],
    IntentKind.CHECK_AVAILABILITY: ["check_availability"],
    IntentKind.QUERY_INFORMATION: ["query_google_sheet"],
    IntentKind.CREATE_NOTE: ["create_note"],
    IntentKind.GENERAL_CONVERSATION: [],
    IntentKind.REQUEST_HUMAN: [],
    IntentKind.CONFIRM_ACTION: [],
}


class IntentEntities(BaseModel):
    date: Optional[str] = None
    time: Optional[str] = None
    phone: Optional[str] = None
    doctor: Optional[str] = None
    patient_name: Optional[str] = None

    def merged(self, other: "IntentEntities") -> "IntentEntities":
        """Fill gaps in self from other."""
        values = self.model_dump()
        for key, value in other.model_dump().items():
            if not values.get(key) and value:
                values[key] = value
        return IntentEntities(**values)


class ExtractedIntent(BaseModel):
    intent: IntentKind
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    entities: IntentEntities = Field(default_factory=IntentEntities)
    requires_tools: bool = False
    suggested_tools: List[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value):
        try:
            return min(max(float(value), 0.0), 1.0)
        except (TypeError, ValueError):
            return 0.5


_DATE_PATTERNS = [
    r"\b\d{4}-\d{1,2}-\d{1,2}\b",
    r"\b\d{1,2}/\d{1,2}/\d{4}\b",
    r"\b(?:today|tomorrow)\b",
    r"\b(?:next\s+|this\s+)?(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
    r"\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2}(?:st|nd|rd|th)?(?:,?\s+\d{4})?\b",
    r"\b\d{1,2}(?:st|nd|rd|th)?\s+(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*(?:\s+\d{4})?\b",
]
_TIME_PATTERN = r"\b(\d{1,2}:\d{2}\s*(?:am|pm)?|\d{1,2}\s*(?:am|pm))\b"
_PHONE_PATTERN = r"\+?\d[\d\-\s().]{6,}\d"
_DOCTOR_PATTERN = r"\b(?:dr\.?|doctor)\s+([a-z][a-z'\-]+)"
_NAME_PATTERN = r"\b(?i:my name is|name is|i am|i'm|for)\s+(?!Dr\b|Doctor\b)([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"

_HUMAN_PATTERN = (
    r"\b(human|real person|someone real|staff member|receptionist|operator|live agent|"
    r"talk to (?:a |an )?(?:person|agent|someone))\b"
)
_CONFIRM_PATTERN = (
    r"^\s*(yes|yeah|yep|sure|ok|okay|confirm|confirmed|correct|go ahead|please do|do it|"
    r"sounds good|that's right|that works)\b[\s\w,.!']{0,40}$"
)
_BOOK_PATTERN = r"\b(book|booking|schedule|appointment|reserve|make an appointment|reschedule)\b"
_AVAILABILITY_PATTERN = r"\b(availab\w*|free slots?|open slots?|any slots?|free time|openings?)\b"
_INFO_PATTERN = r"\b(price|prices|cost|how much|hours|open|opening|address|located|doctors?|services?|insurance)\b"
_NOTE_PATTERN = r"\b(make a note|take a note|note that|remember that|write down)\b"


def extract_entities(message: str) -> IntentEntities:
    """Regex extraction; the date is removed before searching for a phone number."""
    text = message or ""
    lower = text.lower()

    date = None
    for pattern in _DATE_PATTERNS:
        match = re.search(pattern, lower)
        if match:
            date = text[match.start():match.end()].strip()
            lower = lower[:match.start()] + " " * (match.end() - match.start()) + lower[match.end():]
            break

    time_match = re.search(_TIME_PATTERN, lower)
    time = time_match.group(1).strip() if time_match else None
    if time_match:
        lower = lower[:time_match.start()] + " " * (time_match.end() - time_match.start()) + lower[time_match.end():]

    phone_match = re.search(_PHONE_PATTERN, lower)
    phone = phone_match.group(0).strip() if phone_match else None

    doctor_match = re.search(_DOCTOR_PATTERN, lower)
    doctor = doctor_match.group(1).capitalize() if doctor_match else None

    name_match = re.search(_NAME_PATTERN, text)
    patient_name = name_match.group(1) if name_match else None

    return IntentEntities(date=date, time=time, phone=phone, doctor=doctor, patient_name=patient_name)


def classify_heuristic(message: str) -> ExtractedIntent:
    """Keyword classifier. Order: human, confirm, book, availability, info, note, general."""
    lower = (message or "").lower()
    entities = extract_entities(message)

    if re.search(_HUMAN_PATTERN, lower):
        kind, confidence = IntentKind.REQUEST_HUMAN, 0.9
    elif re.search(_CONFIRM_PATTERN, lower):
        kind, confidence = IntentKind.CONFIRM_ACTION, 0.8
    elif re.search(_BOOK_PATTERN, lower):
        kind, confidence = IntentKind.BOOK_APPOINTMENT, 0.7
    elif re.search(_AVAILABILITY_PATTERN, lower):
        kind, confidence = IntentKind.CHECK_AVAILABILITY, 0.7
    elif re.search(_INFO_PATTERN, lower):
        kind, confidence = IntentKind.QUERY_INFORMATION, 0.6
    elif re.search(_NOTE_PATTERN, lower):
        kind, confidence = IntentKind.CREATE_NOTE, 0.6
    else:
        kind, confidence = IntentKind.GENERAL_CONVERSATION, 0.5

    tools = list(SUGGESTED_TOOLS[kind])
    if kind == IntentKind.BOOK_APPOINTMENT and not re.search(_AVAILABILITY_PATTERN, lower) and "check" not in lower:
        # A plain booking request goes straight to the write step.
        tools = ["append_booking_row"]
    return ExtractedIntent(
        intent=kind,
        confidence=confidence,
        entities=entities,
        requires_tools=bool(tools),
        suggested_tools=tools,
    )


INTENT_PROMPT = """Classify the user's latest message for a clinic booking assistant.
Reply with JSON only:
{"intent": "book_appointment" | "check_availability" | "query_information" | "create_note" |
           "general_conversation" | "request_human" | "confirm_action",
 "confidence": 0.0-1.0,
 "entities": {"date": null, "time": null, "phone": null, "doctor": null, "patient_name": null},
 "requires_tools": true | false,
 "suggested_tools": ["check_availability", "append_booking_row", ...]}
Use confirm_action only when the user agrees to something the assistant just proposed."""


class IntentClassifier:
    """Model-first intent classifier with a deterministic fallback."""

    def __init__(self, model: Optional[ChatModel] = None):
        self.model = model

    async def classify(self, message: str, history: Sequence[ChatMessage] = ()) -> ExtractedIntent:
        heuristic = classify_heuristic(message)
        # Handoff requests never wait on the model.
        if heuristic.intent == IntentKind.REQUEST_HUMAN or self.model is None:
            return heuristic

        recent = "\n".join(f"{m.role}: {m.content}" for m in list(history)[-4:])
        prompt = f"Recent conversation:\n{recent}\n\nLatest message:\n{message}" if recent else message
        parsed = await ask_json(self.model, INTENT_PROMPT, prompt)
        if parsed is None:
            return heuristic
        try:
            intent = ExtractedIntent.model_validate(parsed)
        except ValidationError as e:
            logger.warning(f"Intent output failed validation, using keyword classifier: {e}")
            return heuristic

        # Regex entities fill whatever the model left out.
        intent.entities = intent.entities.merged(heuristic.entities)
        if not intent.suggested_tools:
            intent.suggested_tools = list(SUGGESTED_TOOLS[intent.intent])
        intent.requires_tools = intent.requires_tools or bool(intent.suggested_tools)
        logger.debug(f"Intent {intent.intent.value} ({intent.confidence:.2f})")
        return intent
