import logging
import math
import sqlite3
from datetime import datetime, timedelta
from typing import Literal, TypedDict

from backend.qr_codec import encode_session_code, generate_session_id
from database.db import (
    NotFoundError,
    from_db_time,
    to_db_time,
    transaction,
    utc_now,
)


logger = logging.getLogger(__name__)

SessionStatus = Literal["active", "closed"]

_SESSION_COLUMNS = """
    s.id, s.subject_id, s.teacher_id, s.qr_code, s.status, s.created_at, s.expires_at
"""


class AttendanceSession(TypedDict):
    id: str
    subject_id: str
    teacher_id: str
    qr_code: str
    status: SessionStatus
    created_at: str
    expires_at: str


class AttendanceSessionWithSubject(AttendanceSession):
    subject_name: str | None
    subject_code: str | None


def _session_from_row(row: sqlite3.Row) -> AttendanceSession:
    return {
        "id": row["id"],
        "subject_id": row["subject_id"],
        "teacher_id": row["teacher_id"],
        "qr_code": row["qr_code"],
        "status": row["status"],
        "created_at": row["created_at"],
        "expires_at": row["expires_at"],
    }


def _session_with_subject_from_row(row: sqlite3.Row) -> AttendanceSessionWithSubject:
    return {
        **_session_from_row(row),
        "subject_name": row["subject_name"],
        "subject_code": row["subject_code"],
    }


def create_session(
    subject_id: str,
    duration_minutes: int,
    *,
    now: datetime | None = None,
) -> AttendanceSession:
    """
    Open a new attendance session for a subject.

    Any session of the same subject still marked active is closed first. The
    close and the insert share one write transaction, so two concurrent
    creations for a subject are serialized by the store's writer lock.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")

    created = now or utc_now()
    expires = created + timedelta(minutes=duration_minutes)

    with transaction(immediate=True) as conn:
        subject = conn.execute(
            "SELECT teacher_id FROM subjects WHERE id = ?",
            (subject_id,),
        ).fetchone()
        if not subject:
            raise NotFoundError(f"Subject {subject_id} not found")
        teacher_id = subject["teacher_id"]

        closed = conn.execute(
            """
            UPDATE attendance_sessions
            SET status = 'closed'
            WHERE subject_id = ? AND status = 'active'
            """,
            (subject_id,),
        ).rowcount

        session_id = generate_session_id()
        while conn.execute(
            "SELECT 1 FROM attendance_sessions WHERE id = ?", (session_id,)
        ).fetchone():
            session_id = generate_session_id()

        session: AttendanceSession = {
            "id": session_id,
            "subject_id": subject_id,
            "teacher_id": teacher_id,
            "qr_code": encode_session_code(
                session_id,
                subject_id,
                teacher_id,
                int(created.timestamp() * 1000),
            ),
            "status": "active",
            "created_at": to_db_time(created),
            "expires_at": to_db_time(expires),
        }
        conn.execute(
            """
            INSERT INTO attendance_sessions (
                id, subject_id, teacher_id, qr_code, status, created_at, expires_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session["id"],
                session["subject_id"],
                session["teacher_id"],
                session["qr_code"],
                session["status"],
                session["created_at"],
                session["expires_at"],
            ),
        )

    if closed:
        logger.info("Closed %d prior active session(s) for subject %s", closed, subject_id)
    logger.info(
        "Opened session %s for subject %s until %s",
        session["id"],
        subject_id,
        session["expires_at"],
    )
    return session


def get_session_by_code(qr_code: str) -> AttendanceSessionWithSubject | None:
    with transaction() as conn:
        row = conn.execute(
            f"""
            SELECT {_SESSION_COLUMNS}, sub.name AS subject_name, sub.code AS subject_code
            FROM attendance_sessions s
            LEFT JOIN subjects sub ON sub.id = s.subject_id
            WHERE s.qr_code = ?
            """,
            (qr_code,),
        ).fetchone()
    return _session_with_subject_from_row(row) if row else None


def get_session(session_id: str) -> AttendanceSession | None:
    with transaction() as conn:
        row = conn.execute(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM attendance_sessions s
            WHERE s.id = ?
            """,
            (session_id,),
        ).fetchone()
    return _session_from_row(row) if row else None


def end_session(session_id: str, *, now: datetime | None = None) -> bool:
    """Close a session and pull its expiry forward to `now` if still in the future."""
    ended_at = to_db_time(now or utc_now())
    with transaction() as conn:
        cur = conn.execute(
            """
            UPDATE attendance_sessions
            SET status = 'closed',
                expires_at = MIN(expires_at, ?)
            WHERE id = ?
            """,
            (ended_at, session_id),
        )
        updated = cur.rowcount > 0
    if updated:
        logger.info("Ended session %s", session_id)
    return updated


def session_is_valid(session: AttendanceSession, *, now: datetime | None = None) -> bool:
    current = now or utc_now()
    return session["status"] == "active" and current < from_db_time(session["expires_at"])


def is_valid(session_id: str, *, now: datetime | None = None) -> bool:
    session = get_session(session_id)
    if session is None:
        return False
    return session_is_valid(session, now=now)


def time_remaining_minutes(session: AttendanceSession, *, now: datetime | None = None) -> int:
    if not session_is_valid(session, now=now):
        return 0
    remaining = from_db_time(session["expires_at"]) - (now or utc_now())
    return max(0, math.ceil(remaining.total_seconds() / 60))


def list_sessions_by_subject(
    subject_id: str,
    *,
    include_expired: bool = False,
    now: datetime | None = None,
) -> list[AttendanceSession]:
    clauses = ["s.subject_id = ?"]
    params: list[str] = [subject_id]
    if not include_expired:
        clauses.append("s.status = 'active' AND s.expires_at > ?")
        params.append(to_db_time(now or utc_now()))

    with transaction() as conn:
        rows = conn.execute(
            f"""
            SELECT {_SESSION_COLUMNS}
            FROM attendance_sessions s
            WHERE {" AND ".join(clauses)}
            ORDER BY s.created_at DESC
            """,
            tuple(params),
        ).fetchall()
    return [_session_from_row(r) for r in rows]


def list_sessions_by_teacher(
    teacher_id: str,
    *,
    subject_id: str | None = None,
    include_expired: bool = False,
    now: datetime | None = None,
) -> list[AttendanceSessionWithSubject]:
    clauses = ["sub.teacher_id = ?"]
    params: list[str] = [teacher_id]
    if subject_id:
        clauses.append("s.subject_id = ?")
        params.append(subject_id)
    if not include_expired:
        clauses.append("s.status = 'active' AND s.expires_at > ?")
        params.append(to_db_time(now or utc_now()))

    with transaction() as conn:
        rows = conn.execute(
            f"""
            SELECT {_SESSION_COLUMNS}, sub.name AS subject_name, sub.code AS subject_code
            FROM attendance_sessions s
            JOIN subjects sub ON sub.id = s.subject_id
            WHERE {" AND ".join(clauses)}
            ORDER BY s.created_at DESC
            """,
            tuple(params),
        ).fetchall()
    return [_session_with_subject_from_row(r) for r in rows]
