import logging
import sqlite3
from datetime import datetime
from typing import TypedDict

from database.db import (
    ConstraintViolation,
    new_id,
    to_db_time,
    transaction,
    utc_now,
)


logger = logging.getLogger(__name__)

_RECORD_COLUMNS = """
    r.id, r.session_id, r.student_id, r.subject_id, r.checked_in_at,
    r.ip_address, r.latitude, r.longitude
"""


class DuplicateAttendanceError(Exception):
    def __init__(self, session_id: str, student_id: str):
        super().__init__("Attendance already recorded for this session")
        self.session_id = session_id
        self.student_id = student_id


class AttendanceRecord(TypedDict):
    id: str
    session_id: str
    student_id: str
    subject_id: str
    checked_in_at: str
    ip_address: str | None
    latitude: float | None
    longitude: float | None


class AttendanceRecordDetail(AttendanceRecord):
    subject_name: str
    subject_code: str
    student_name: str
    student_email: str


def _record_from_row(row: sqlite3.Row) -> AttendanceRecord:
    return {
        "id": row["id"],
        "session_id": row["session_id"],
        "student_id": row["student_id"],
        "subject_id": row["subject_id"],
        "checked_in_at": row["checked_in_at"],
        "ip_address": row["ip_address"],
        "latitude": row["latitude"],
        "longitude": row["longitude"],
    }


def _detail_from_row(row: sqlite3.Row) -> AttendanceRecordDetail:
    return {
        **_record_from_row(row),
        "subject_name": row["subject_name"],
        "subject_code": row["subject_code"],
        "student_name": row["student_name"],
        "student_email": row["student_email"],
    }


def has_attended(session_id: str, student_id: str) -> bool:
    with transaction() as conn:
        row = conn.execute(
            """
            SELECT 1
            FROM attendance_records
            WHERE session_id = ? AND student_id = ?
            """,
            (session_id, student_id),
        ).fetchone()
    return row is not None


def record_attendance(
    session_id: str,
    student_id: str,
    subject_id: str,
    *,
    ip_address: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    now: datetime | None = None,
) -> AttendanceRecord:
    """
    Insert one check-in for (session, student).

    The pre-insert `has_attended` check only narrows the race window; the
    UNIQUE(session_id, student_id) constraint decides, and its violation is
    reported as `DuplicateAttendanceError`.
    """
    if has_attended(session_id, student_id):
        raise DuplicateAttendanceError(session_id, student_id)

    record: AttendanceRecord = {
        "id": new_id(),
        "session_id": session_id,
        "student_id": student_id,
        "subject_id": subject_id,
        "checked_in_at": to_db_time(now or utc_now()),
        "ip_address": ip_address,
        "latitude": latitude,
        "longitude": longitude,
    }
    try:
        with transaction() as conn:
            conn.execute(
                """
                INSERT INTO attendance_records (
                    id, session_id, student_id, subject_id, checked_in_at,
                    ip_address, latitude, longitude
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record["id"],
                    record["session_id"],
                    record["student_id"],
                    record["subject_id"],
                    record["checked_in_at"],
                    record["ip_address"],
                    record["latitude"],
                    record["longitude"],
                ),
            )
    except ConstraintViolation as exc:
        if exc.is_unique:
            raise DuplicateAttendanceError(session_id, student_id) from exc
        raise
    return record


def list_records_by_student(
    student_id: str,
    *,
    subject_id: str | None = None,
    session_id: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
) -> list[AttendanceRecordDetail]:
    return _list_records(
        student_id=student_id,
        subject_id=subject_id,
        session_id=session_id,
        from_date=from_date,
        to_date=to_date,
    )


def list_records_by_teacher(
    teacher_id: str,
    *,
    subject_id: str | None = None,
    session_id: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
) -> list[AttendanceRecordDetail]:
    """Records for subjects owned by `teacher_id`; dates are inclusive YYYY-MM-DD."""
    return _list_records(
        teacher_id=teacher_id,
        subject_id=subject_id,
        session_id=session_id,
        from_date=from_date,
        to_date=to_date,
    )


def list_records_by_session(session_id: str) -> list[AttendanceRecordDetail]:
    return _list_records(session_id=session_id)


def count_records_by_session(session_id: str) -> int:
    with transaction() as conn:
        row = conn.execute(
            "SELECT COUNT(*) FROM attendance_records WHERE session_id = ?",
            (session_id,),
        ).fetchone()
    return int(row[0])


def _list_records(
    *,
    student_id: str | None = None,
    teacher_id: str | None = None,
    subject_id: str | None = None,
    session_id: str | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
) -> list[AttendanceRecordDetail]:
    clauses: list[str] = []
    params: list[str] = []

    if student_id:
        clauses.append("r.student_id = ?")
        params.append(student_id)
    if teacher_id:
        clauses.append("s.teacher_id = ?")
        params.append(teacher_id)
    if subject_id:
        clauses.append("r.subject_id = ?")
        params.append(subject_id)
    if session_id:
        clauses.append("r.session_id = ?")
        params.append(session_id)
    if from_date:
        clauses.append("substr(r.checked_in_at, 1, 10) >= ?")
        params.append(from_date)
    if to_date:
        clauses.append("substr(r.checked_in_at, 1, 10) <= ?")
        params.append(to_date)

    where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    with transaction() as conn:
        rows = conn.execute(
            f"""
            SELECT {_RECORD_COLUMNS},
                   s.name AS subject_name, s.code AS subject_code,
                   p.full_name AS student_name, p.email AS student_email
            FROM attendance_records r
            JOIN subjects s ON s.id = r.subject_id
            JOIN profiles p ON p.id = r.student_id
            {where_sql}
            ORDER BY r.checked_in_at DESC, r.rowid DESC
            """,
            tuple(params),
        ).fetchall()
    return [_detail_from_row(r) for r in rows]
