"""
Reply guards: booking-claim check and handoff detection.
"""
import logging
import re
from typing import Sequence, Tuple

from ..models import ExecutionLogEntry
from ..tools.schemas import BOOKING_WRITE_TOOLS

logger = logging.getLogger(__name__)

HANDOFF_MARKER = "[HANDOFF]"

HANDOFF_MESSAGE = (
    "Of course. I'm connecting you with a member of our team now; "
    "someone will pick up this conversation shortly."
)

_BOOKING_NOUN = r"(appointment|booking|reservation|visit)"
_CLAIM_VERB = r"(confirmed|scheduled|reserved|booked|set|secured|locked in)"
# Words within one sentence; titles and decimals do not end it.
_GAP = r"(?:[^.!?\n]|(?<=Dr)\.|(?<=Mr)\.|(?<=Ms)\.|(?<=Mrs)\.|(?<=\d)\.){0,80}?"

# A few words may sit between the noun and the verb ("appointment with Dr. Lee is confirmed").
_BOOKING_CLAIM = re.compile(
    r"|".join([
        r"\b(you're|you are|you've been|you have been|i've|i have|we've|we have|i|we)\s+"
        r"(now\s+|all\s+|successfully\s+|just\s+)?booked\b",
        r"\bbooked you\b",
        rf"\b{_BOOKING_NOUN}\s+confirmed\b",
        rf"\b{_BOOKING_NOUN}\b{_GAP}\b(is|are|was|has been|have been)\s+(now\s+|all\s+)?{_CLAIM_VERB}\b",
        rf"\b{_BOOKING_NOUN}'s\s+(now\s+|all\s+)?{_CLAIM_VERB}\b",
        rf"\b(confirmed|scheduled|reserved|secured|made|set up)\s+(your|the|an?|this)\s+([\w.-]+\s+){{0,3}}?{_BOOKING_NOUN}\b",
        r"\b(it|that|everything|this)('s| is)\s+(now\s+|all\s+)?confirmed\b",
        r"\byou('re| are)\s+(all\s+)?set\b",
        r"\ball set\b",
    ]),
    re.IGNORECASE,
)

# Stating an existing appointment; a sheet lookup this turn backs it as well.
_EXISTING_CLAIM = re.compile(
    rf"\byou(\s+now)?('ve| have)(\s+got)?\s+an?\s+{_BOOKING_NOUN}\b{_GAP}\b(on|at|for)\b",
    re.IGNORECASE,
)

_HANDOFF_PHRASES = re.compile(
    r"\b(connect(ing)? you (with|to)|transfer(ring)? you|hand(ing)? (you )?over|"
    r"speak (with|to) (a|an|our) (human|person|team|coordinator|agent|staff member|receptionist))\b",
    re.IGNORECASE,
)

UNVERIFIED_ATTEMPT_MESSAGE = (
    "I wasn't able to confirm your appointment in our system just yet. "
    "Let me double-check the details with you before we try again."
)
NO_ATTEMPT_MESSAGE = (
    "I haven't made any changes to your appointment yet. "
    "If you'd like me to go ahead, please share the date, time, doctor, your name and phone number."
)


def _plain(text: str) -> str:
    return (text or "").replace("’", "'")


def claims_booking(text: str) -> bool:
    text = _plain(text)
    return bool(_BOOKING_CLAIM.search(text) or _EXISTING_CLAIM.search(text))


def has_verified_booking(log: Sequence[ExecutionLogEntry]) -> bool:
    return any(
        e.tool_call.name in BOOKING_WRITE_TOOLS and e.result.success and e.result.verified
        for e in log
    )


def has_sheet_lookup(log: Sequence[ExecutionLogEntry]) -> bool:
    """True if this turn found the caller's appointment in the bookings sheet (not in notes)."""
    for e in log:
        if e.tool_call.name != "get_appointment_by_phone" or not e.result.success:
            continue
        data = e.result.data if isinstance(e.result.data, dict) else {}
        if data.get("found") and data.get("source") == "sheet":
            return True
    return False


def guard_booking_claims(text: str, log: Sequence[ExecutionLogEntry]) -> Tuple[str, bool]:
    """
    Replace a booking claim that has no verified booking behind it this turn.

    Returns:
        (text, replaced)
    """
    if not claims_booking(text) or has_verified_booking(log):
        return text, False
    if not _BOOKING_CLAIM.search(_plain(text)) and has_sheet_lookup(log):
        return text, False
    attempted = any(e.tool_call.name in BOOKING_WRITE_TOOLS for e in log)
    logger.warning("Reply claimed a booking without a verified write; replacing it")
    return (UNVERIFIED_ATTEMPT_MESSAGE if attempted else NO_ATTEMPT_MESSAGE), True


def detect_handoff(text: str) -> Tuple[str, bool]:
    """Strip the handoff marker; report whether the reply hands the user to a person."""
    text = text or ""
    if HANDOFF_MARKER in text:
        return text.replace(HANDOFF_MARKER, "").strip(), True
    return text, bool(_HANDOFF_PHRASES.search(text))
