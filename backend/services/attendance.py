"""
Check-in pipeline: turns a scanned session code plus the acting student
into either one attendance record or a rejection.

Checks run in a fixed order and the first failure decides the outcome:

    decode -> session lookup -> validity -> enrollment -> duplicate -> insert

Store failures are logged and propagate as `StoreError`; nothing is retried.
"""
import logging
from datetime import datetime
from typing import Literal, TypedDict

from backend.qr_codec import decode_session_code
from database import attendance as attendance_store
from database import enrollments as enrollment_store
from database import sessions as session_store
from database.attendance import AttendanceRecord, DuplicateAttendanceError
from database.db import StoreError, get_profile, utc_now
from database.sessions import AttendanceSessionWithSubject


logger = logging.getLogger(__name__)

RejectionCode = Literal[
    "INVALID_CODE",
    "SESSION_NOT_FOUND",
    "SESSION_EXPIRED",
    "NOT_ENROLLED",
    "DUPLICATE_ATTENDANCE",
]

REJECTION_MESSAGES: dict[RejectionCode, str] = {
    "INVALID_CODE": "Invalid QR code",
    "SESSION_NOT_FOUND": "Session not found",
    "SESSION_EXPIRED": "Session has expired",
    "NOT_ENROLLED": "Student is not enrolled in this subject",
    "DUPLICATE_ATTENDANCE": "Attendance already recorded for this session",
}


class AttendanceRejected(Exception):
    def __init__(self, reason: RejectionCode, message: str | None = None):
        self.reason = reason
        self.message = message or REJECTION_MESSAGES[reason]
        super().__init__(self.message)


class ValidationResult(TypedDict):
    valid: bool
    session: AttendanceSessionWithSubject | None
    reasons: list[str]
    codes: list[RejectionCode]
    time_remaining_minutes: int


class CheckInResult(TypedDict):
    record: AttendanceRecord
    student_name: str
    subject_name: str


def _resolve_session(code: str) -> AttendanceSessionWithSubject:
    decoded = decode_session_code(code)
    if not decoded["ok"]:
        raise AttendanceRejected("INVALID_CODE", decoded["message"])

    session = session_store.get_session_by_code(code.strip())
    if session is None:
        raise AttendanceRejected("SESSION_NOT_FOUND")
    return session


def validate_code(
    code: str,
    student_id: str,
    *,
    now: datetime | None = None,
) -> ValidationResult:
    """
    Dry run of the check-in gate, reporting every failing check.

    Decoding and session lookup short-circuit because nothing else can be
    checked without a session. The remaining checks are all evaluated.
    """
    current = now or utc_now()
    try:
        session = _resolve_session(code)
    except AttendanceRejected as exc:
        return {
            "valid": False,
            "session": None,
            "reasons": [exc.message],
            "codes": [exc.reason],
            "time_remaining_minutes": 0,
        }

    codes: list[RejectionCode] = []
    try:
        if not session_store.session_is_valid(session, now=current):
            codes.append("SESSION_EXPIRED")
        if not enrollment_store.is_enrolled(student_id, session["subject_id"]):
            codes.append("NOT_ENROLLED")
        if attendance_store.has_attended(session["id"], student_id):
            codes.append("DUPLICATE_ATTENDANCE")
    except StoreError:
        logger.exception("Store failure while validating code for student %s", student_id)
        raise

    if codes:
        return {
            "valid": False,
            "session": None,
            "reasons": [REJECTION_MESSAGES[c] for c in codes],
            "codes": codes,
            "time_remaining_minutes": 0,
        }

    return {
        "valid": True,
        "session": session,
        "reasons": [],
        "codes": [],
        "time_remaining_minutes": session_store.time_remaining_minutes(session, now=current),
    }


def record_attendance(
    code: str,
    student_id: str,
    *,
    ip_address: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    now: datetime | None = None,
) -> CheckInResult:
    """Run the ordered gate and persist exactly one record, or raise `AttendanceRejected`."""
    current = now or utc_now()
    try:
        try:
            session = _resolve_session(code)

            if not session_store.session_is_valid(session, now=current):
                raise AttendanceRejected("SESSION_EXPIRED")

            if not enrollment_store.is_enrolled(student_id, session["subject_id"]):
                raise AttendanceRejected("NOT_ENROLLED")

            if attendance_store.has_attended(session["id"], student_id):
                raise AttendanceRejected("DUPLICATE_ATTENDANCE")

            try:
                record = attendance_store.record_attendance(
                    session["id"],
                    student_id,
                    session["subject_id"],
                    ip_address=ip_address,
                    latitude=latitude,
                    longitude=longitude,
                    now=current,
                )
            except DuplicateAttendanceError as exc:
                raise AttendanceRejected("DUPLICATE_ATTENDANCE") from exc
        except AttendanceRejected as exc:
            logger.info("Check-in rejected for student %s: %s", student_id, exc.reason)
            raise
    except StoreError:
        logger.exception("Store failure while recording attendance for student %s", student_id)
        raise

    logger.info("Student %s checked in to session %s", student_id, session["id"])

    # record already committed
    try:
        profile = get_profile(student_id)
    except StoreError:
        logger.exception("Could not load profile %s after check-in", student_id)
        profile = None

    return {
        "record": record,
        "student_name": profile["full_name"] if profile else "Student",
        "subject_name": session["subject_name"] or "Subject",
    }
