from datetime import datetime, timedelta, timezone

import pytest

import database.db as db
from backend.qr_codec import decode_session_code
from database import attendance as attendance_store
from database import enrollments as enrollment_store
from database import sessions as session_store
from database.attendance import DuplicateAttendanceError
from database.enrollments import AlreadyEnrolledError, StudentNotFoundError

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_profiles_and_credentials(test_db):
    profile = db.create_profile("Ada@Example.edu", "s3cret", "Ada Lovelace", "student")
    assert profile["email"] == "ada@example.edu"

    assert db.get_role(profile["id"]) == "student"
    assert db.verify_credentials("ADA@example.edu", "s3cret")["id"] == profile["id"]
    assert db.verify_credentials("ada@example.edu", "wrong") is None

    with pytest.raises(db.ConstraintViolation):
        db.create_profile("ada@example.edu", "other", "Ada Again", "teacher")

    with pytest.raises(db.NotFoundError):
        db.get_role("missing")


def test_subject_ownership_and_update(teacher, student, subject):
    assert db.teacher_owns_subject(teacher["id"], subject["id"]) is True
    assert db.teacher_owns_subject(student["id"], subject["id"]) is False
    assert db.count_subjects(teacher["id"]) == 1

    updated = db.update_subject(subject["id"], name="Advanced Algorithms")
    assert updated["name"] == "Advanced Algorithms"
    assert updated["code"] == "CS201"

    listed = db.list_all_subjects()
    assert listed[0]["teacher_name"] == "Tess Teacher"


def test_create_session_sets_code_and_expiry(teacher, subject):
    session = session_store.create_session(subject["id"], 30, now=T0)

    assert session["id"].startswith("SESS_")
    assert session["status"] == "active"
    assert db.from_db_time(session["expires_at"]) == T0 + timedelta(minutes=30)
    assert db.from_db_time(session["created_at"]) == T0

    decoded = decode_session_code(session["qr_code"])
    assert decoded["ok"] is True
    assert decoded["data"].session_id == session["id"]
    assert decoded["data"].subject_id == subject["id"]
    assert decoded["data"].teacher_id == teacher["id"]

    found = session_store.get_session_by_code(session["qr_code"])
    assert found["id"] == session["id"]
    assert found["subject_name"] == "Algorithms"
    assert session_store.get_session(session["id"])["qr_code"] == session["qr_code"]


def test_create_session_closes_prior_active_session(subject):
    first = session_store.create_session(subject["id"], 30, now=T0)
    second = session_store.create_session(subject["id"], 15, now=T0 + timedelta(minutes=1))

    assert session_store.get_session(first["id"])["status"] == "closed"
    assert session_store.get_session(second["id"])["status"] == "active"

    active = session_store.list_sessions_by_subject(subject["id"], now=T0 + timedelta(minutes=2))
    assert [s["id"] for s in active] == [second["id"]]

    everything = session_store.list_sessions_by_subject(
        subject["id"], include_expired=True, now=T0 + timedelta(minutes=2)
    )
    assert {s["id"] for s in everything} == {first["id"], second["id"]}


def test_create_session_for_unknown_subject(test_db):
    with pytest.raises(db.NotFoundError):
        session_store.create_session("no-such-subject", 30)


def test_validity_boundary(subject):
    session = session_store.create_session(subject["id"], 10, now=T0)
    expires = T0 + timedelta(minutes=10)

    assert session_store.is_valid(session["id"], now=expires - timedelta(microseconds=1))
    assert not session_store.is_valid(session["id"], now=expires)
    assert not session_store.is_valid("SESS_missing", now=T0)

    assert session_store.time_remaining_minutes(session, now=T0 + timedelta(seconds=30)) == 10
    assert session_store.time_remaining_minutes(session, now=expires) == 0


def test_end_session_closes_and_expires(subject):
    session = session_store.create_session(subject["id"], 30, now=T0)
    ended_at = T0 + timedelta(minutes=5)

    assert session_store.end_session(session["id"], now=ended_at) is True
    ended = session_store.get_session(session["id"])
    assert ended["status"] == "closed"
    assert db.from_db_time(ended["expires_at"]) == ended_at
    assert not session_store.is_valid(session["id"], now=ended_at - timedelta(minutes=1))

    assert session_store.end_session("SESS_missing") is False


def test_list_sessions_by_teacher(teacher, subject):
    other_subject = db.create_subject(teacher["id"], "Databases", "CS301")
    session_store.create_session(subject["id"], 30, now=T0)
    session_store.create_session(other_subject["id"], 30, now=T0 + timedelta(seconds=1))

    rows = session_store.list_sessions_by_teacher(teacher["id"], now=T0 + timedelta(minutes=1))
    assert [r["subject_code"] for r in rows] == ["CS301", "CS201"]

    rows = session_store.list_sessions_by_teacher(
        teacher["id"], subject_id=subject["id"], now=T0 + timedelta(minutes=1)
    )
    assert [r["subject_id"] for r in rows] == [subject["id"]]

    assert session_store.list_sessions_by_teacher(teacher["id"], now=T0 + timedelta(hours=1)) == []


def test_enroll_is_unique(student, subject):
    enrollment = enrollment_store.enroll(student["id"], subject["id"])
    assert enrollment_store.is_enrolled(student["id"], subject["id"])

    with pytest.raises(AlreadyEnrolledError):
        enrollment_store.enroll(student["id"], subject["id"])

    assert db.count_rows("enrollments", subject_id=subject["id"]) == 1
    assert enrollment_store.get_enrollment_by_id(enrollment["id"]) == enrollment


def test_enroll_by_email(teacher, student, subject):
    enrollment = enrollment_store.enroll_by_email("STUDENT@example.edu", subject["id"])
    assert enrollment["student_id"] == student["id"]

    with pytest.raises(StudentNotFoundError):
        enrollment_store.enroll_by_email("nobody@example.edu", subject["id"])

    # teachers cannot be enrolled as students
    with pytest.raises(StudentNotFoundError):
        enrollment_store.enroll_by_email(teacher["email"], subject["id"])


def test_unenroll_and_listings(teacher, student, other_student, subject):
    first = enrollment_store.enroll(student["id"], subject["id"])
    enrollment_store.enroll(other_student["id"], subject["id"])

    by_subject = enrollment_store.list_enrollments_by_subject(subject["id"])
    assert [e["student_name"] for e in by_subject] == ["Sam Student", "Olive Other"]

    by_student = enrollment_store.list_enrollments_by_student(student["id"])
    assert by_student[0]["subject_code"] == "CS201"
    assert by_student[0]["teacher_id"] == teacher["id"]

    assert enrollment_store.unenroll(first["id"]) is True
    assert enrollment_store.unenroll(first["id"]) is False
    assert not enrollment_store.is_enrolled(student["id"], subject["id"])


def test_record_attendance_once_per_session(student, subject):
    session = session_store.create_session(subject["id"], 30, now=T0)

    record = attendance_store.record_attendance(
        session["id"],
        student["id"],
        subject["id"],
        ip_address="10.0.0.8",
        latitude=14.6,
        longitude=121.0,
        now=T0 + timedelta(minutes=1),
    )
    assert record["ip_address"] == "10.0.0.8"
    assert attendance_store.has_attended(session["id"], student["id"])

    with pytest.raises(DuplicateAttendanceError):
        attendance_store.record_attendance(session["id"], student["id"], subject["id"])
    assert attendance_store.count_records_by_session(session["id"]) == 1


def test_unique_constraint_decides_when_precheck_misses(monkeypatch, student, subject):
    session = session_store.create_session(subject["id"], 30, now=T0)
    monkeypatch.setattr(attendance_store, "has_attended", lambda *_args: False)

    attendance_store.record_attendance(session["id"], student["id"], subject["id"])
    with pytest.raises(DuplicateAttendanceError):
        attendance_store.record_attendance(session["id"], student["id"], subject["id"])

    assert db.count_rows("attendance_records", session_id=session["id"]) == 1


def test_record_listings_and_date_filters(teacher, student, other_student, subject):
    session = session_store.create_session(subject["id"], 30, now=T0)
    attendance_store.record_attendance(
        session["id"], student["id"], subject["id"], now=T0 + timedelta(minutes=1)
    )
    attendance_store.record_attendance(
        session["id"], other_student["id"], subject["id"], now=T0 + timedelta(minutes=2)
    )

    by_session = attendance_store.list_records_by_session(session["id"])
    assert [r["student_name"] for r in by_session] == ["Olive Other", "Sam Student"]

    mine = attendance_store.list_records_by_student(student["id"])
    assert len(mine) == 1
    assert mine[0]["subject_name"] == "Algorithms"

    day = T0.date().isoformat()
    assert len(attendance_store.list_records_by_teacher(teacher["id"], from_date=day, to_date=day)) == 2
    assert attendance_store.list_records_by_teacher(teacher["id"], from_date="2026-03-03") == []
    assert attendance_store.list_records_by_teacher(teacher["id"], to_date="2026-03-01") == []
    assert attendance_store.list_records_by_teacher(student["id"]) == []


def test_deleting_subject_cascades(student, subject):
    enrollment_store.enroll(student["id"], subject["id"])
    session = session_store.create_session(subject["id"], 30, now=T0)
    attendance_store.record_attendance(session["id"], student["id"], subject["id"])

    assert db.delete_subject(subject["id"]) is True

    assert db.get_subject(subject["id"]) is None
    assert db.count_rows("enrollments", subject_id=subject["id"]) == 0
    assert db.count_rows("attendance_sessions", subject_id=subject["id"]) == 0
    assert db.count_rows("attendance_records", subject_id=subject["id"]) == 0
    assert db.count_rows("attendance_records", session_id=session["id"]) == 0
