"""
State Verifier: independent read-back of booking writes.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from .executor import ToolExecutor, normalize_time

logger = logging.getLogger(__name__)


def _same_text(found: Optional[str], wanted: Optional[str]) -> bool:
    return " ".join((found or "").split()).lower() == " ".join((wanted or "").split()).lower()


@dataclass
class VerificationResult:
    verified: bool
    reason: Optional[str] = None


class StateVerifier:
    """Re-reads the bookings sheet to confirm a write landed."""

    def __init__(self, executor: ToolExecutor):
        self.executor = executor

    async def verify_booking(
        self,
        phone: str,
        date: str,
        expected_id: str,
        expected_time: Optional[str] = None,
        expected_doctor: Optional[str] = None,
        expected_patient: Optional[str] = None,
    ) -> VerificationResult:
        """
        Verified only if a sheet row (never a note) exists for the phone and
        day behind ``expected_id`` and carries the written time, doctor and
        patient name (each checked when given).
        """
        result = await self.executor.get_appointment_by_phone(phone, date, include_notes=False)
        if not result.success:
            return VerificationResult(False, f"Read-back failed: {result.error}")

        data = result.data or {}
        if not data.get("found") or data.get("source") != "sheet":
            return VerificationResult(False, "Appointment not found on read-back")
        if expected_time:
            found_time = normalize_time(data.get("time")) or data.get("time")
            wanted_time = normalize_time(expected_time) or expected_time
            if found_time != wanted_time:
                return VerificationResult(False, f"Read-back time {found_time} does not match {wanted_time}")
        if expected_doctor and not _same_text(data.get("doctor"), expected_doctor):
            return VerificationResult(
                False, f"Read-back doctor {data.get('doctor')} does not match {expected_doctor}"
            )
        if expected_patient and not _same_text(data.get("patient_name"), expected_patient):
            return VerificationResult(
                False, f"Read-back patient {data.get('patient_name')} does not match {expected_patient}"
            )

        logger.info(f"Verified booking {expected_id}")
        return VerificationResult(True)
