import logging
from datetime import datetime
from typing import Literal

from backend.config import SESSION_DEFAULT_MINUTES, SESSION_DURATION_CHOICES
from database import sessions as session_store
from database.attendance import count_records_by_session
from database.db import NotFoundError, get_profile, teacher_owns_subject
from database.sessions import AttendanceSession


logger = logging.getLogger(__name__)

AccessErrorCode = Literal["UNAUTHORIZED", "NOT_OWNER"]


class SessionAccessError(Exception):
    def __init__(self, code: AccessErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class InvalidDurationError(ValueError):
    pass


def resolve_duration(duration_minutes: int | None) -> int:
    if duration_minutes is None:
        return SESSION_DEFAULT_MINUTES
    if duration_minutes not in SESSION_DURATION_CHOICES:
        allowed = ", ".join(str(m) for m in SESSION_DURATION_CHOICES)
        raise InvalidDurationError(f"duration_minutes must be one of: {allowed}")
    return duration_minutes


def _require_teacher(actor_id: str, message: str) -> None:
    profile = get_profile(actor_id)
    if profile is None or profile["role"] != "teacher":
        raise SessionAccessError("UNAUTHORIZED", message)


def open_session(
    teacher_id: str,
    subject_id: str,
    duration_minutes: int | None = None,
    *,
    now: datetime | None = None,
) -> AttendanceSession:
    _require_teacher(teacher_id, "Only teachers can create sessions")
    duration = resolve_duration(duration_minutes)

    if not teacher_owns_subject(teacher_id, subject_id):
        raise SessionAccessError("NOT_OWNER", "Subject not found or unauthorized")

    try:
        return session_store.create_session(subject_id, duration, now=now)
    except NotFoundError as exc:
        # subject deleted between the ownership check and the insert
        raise SessionAccessError("NOT_OWNER", "Subject not found or unauthorized") from exc


def get_owned_session(teacher_id: str, session_id: str) -> AttendanceSession:
    session = session_store.get_session(session_id)
    if session is None or not teacher_owns_subject(teacher_id, session["subject_id"]):
        raise SessionAccessError("NOT_OWNER", "Session not found or unauthorized")
    return session


def close_session(
    teacher_id: str,
    session_id: str,
    *,
    now: datetime | None = None,
) -> AttendanceSession:
    _require_teacher(teacher_id, "Only teachers can modify sessions")
    get_owned_session(teacher_id, session_id)
    session_store.end_session(session_id, now=now)

    session = session_store.get_session(session_id)
    if session is None:
        raise SessionAccessError("NOT_OWNER", "Session not found or unauthorized")
    return session


def describe_session(session: AttendanceSession, *, now: datetime | None = None) -> dict:
    return {
        **session,
        "is_valid": session_store.session_is_valid(session, now=now),
        "attendance_count": count_records_by_session(session["id"]),
        "time_remaining_minutes": session_store.time_remaining_minutes(session, now=now),
    }
