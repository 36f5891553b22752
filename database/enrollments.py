import logging
import sqlite3
from typing import TypedDict

from database.db import (
    ConstraintViolation,
    get_profile_by_email,
    new_id,
    to_db_time,
    transaction,
    utc_now,
)


logger = logging.getLogger(__name__)


class AlreadyEnrolledError(Exception):
    def __init__(self, student_id: str, subject_id: str):
        super().__init__("Student is already enrolled in this subject")
        self.student_id = student_id
        self.subject_id = subject_id


class StudentNotFoundError(LookupError):
    def __init__(self, email: str):
        super().__init__("Student not found with this email")
        self.email = email


class Enrollment(TypedDict):
    id: str
    student_id: str
    subject_id: str
    enrolled_at: str


class EnrollmentWithSubject(Enrollment):
    subject_name: str
    subject_code: str
    subject_schedule: str | None
    teacher_id: str


class EnrollmentWithStudent(Enrollment):
    student_name: str
    student_email: str


def _enrollment_from_row(row: sqlite3.Row) -> Enrollment:
    return {
        "id": row["id"],
        "student_id": row["student_id"],
        "subject_id": row["subject_id"],
        "enrolled_at": row["enrolled_at"],
    }


def get_enrollment(student_id: str, subject_id: str) -> Enrollment | None:
    with transaction() as conn:
        row = conn.execute(
            """
            SELECT id, student_id, subject_id, enrolled_at
            FROM enrollments
            WHERE student_id = ? AND subject_id = ?
            """,
            (student_id, subject_id),
        ).fetchone()
    return _enrollment_from_row(row) if row else None


def get_enrollment_by_id(enrollment_id: str) -> Enrollment | None:
    with transaction() as conn:
        row = conn.execute(
            """
            SELECT id, student_id, subject_id, enrolled_at
            FROM enrollments
            WHERE id = ?
            """,
            (enrollment_id,),
        ).fetchone()
    return _enrollment_from_row(row) if row else None


def is_enrolled(student_id: str, subject_id: str) -> bool:
    return get_enrollment(student_id, subject_id) is not None


def enroll(student_id: str, subject_id: str) -> Enrollment:
    enrollment: Enrollment = {
        "id": new_id(),
        "student_id": student_id,
        "subject_id": subject_id,
        "enrolled_at": to_db_time(utc_now()),
    }
    try:
        with transaction() as conn:
            existing = conn.execute(
                "SELECT 1 FROM enrollments WHERE student_id = ? AND subject_id = ?",
                (student_id, subject_id),
            ).fetchone()
            if existing:
                raise AlreadyEnrolledError(student_id, subject_id)

            conn.execute(
                """
                INSERT INTO enrollments (id, student_id, subject_id, enrolled_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    enrollment["id"],
                    enrollment["student_id"],
                    enrollment["subject_id"],
                    enrollment["enrolled_at"],
                ),
            )
    except ConstraintViolation as exc:
        if exc.is_unique:
            raise AlreadyEnrolledError(student_id, subject_id) from exc
        raise

    logger.info("Enrolled student %s in subject %s", student_id, subject_id)
    return enrollment


def enroll_by_email(email: str, subject_id: str) -> Enrollment:
    profile = get_profile_by_email(email)
    if profile is None or profile["role"] != "student":
        raise StudentNotFoundError(email)
    return enroll(profile["id"], subject_id)


def unenroll(enrollment_id: str) -> bool:
    with transaction() as conn:
        cur = conn.execute("DELETE FROM enrollments WHERE id = ?", (enrollment_id,))
        removed = cur.rowcount > 0
    if removed:
        logger.info("Removed enrollment %s", enrollment_id)
    return removed


def list_enrollments_by_student(student_id: str) -> list[EnrollmentWithSubject]:
    with transaction() as conn:
        rows = conn.execute(
            """
            SELECT e.id, e.student_id, e.subject_id, e.enrolled_at,
                   s.name AS subject_name, s.code AS subject_code,
                   s.schedule AS subject_schedule, s.teacher_id
            FROM enrollments e
            JOIN subjects s ON s.id = e.subject_id
            WHERE e.student_id = ?
            ORDER BY e.enrolled_at DESC, e.rowid DESC
            """,
            (student_id,),
        ).fetchall()
    return [
        {
            **_enrollment_from_row(r),
            "subject_name": r["subject_name"],
            "subject_code": r["subject_code"],
            "subject_schedule": r["subject_schedule"],
            "teacher_id": r["teacher_id"],
        }
        for r in rows
    ]


def list_enrollments_by_subject(subject_id: str) -> list[EnrollmentWithStudent]:
    with transaction() as conn:
        rows = conn.execute(
            """
            SELECT e.id, e.student_id, e.subject_id, e.enrolled_at,
                   p.full_name AS student_name, p.email AS student_email
            FROM enrollments e
            JOIN profiles p ON p.id = e.student_id
            WHERE e.subject_id = ?
            ORDER BY e.enrolled_at ASC, e.rowid ASC
            """,
            (subject_id,),
        ).fetchall()
    return [
        {
            **_enrollment_from_row(r),
            "student_name": r["student_name"],
            "student_email": r["student_email"],
        }
        for r in rows
    ]
