import hashlib
import hmac
import logging
import secrets
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Literal, TypedDict

from backend.config import DB_PATH


logger = logging.getLogger(__name__)

PASSWORD_HASH_ALGO = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 120_000

Role = Literal["teacher", "student"]
ROLES: tuple[Role, ...] = ("teacher", "student")


class StoreError(Exception):
    """The data store failed or refused an operation."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConstraintViolation(StoreError):
    """A uniqueness or foreign-key constraint rejected a write."""

    @property
    def is_unique(self) -> bool:
        return "UNIQUE constraint failed" in self.message


class NotFoundError(LookupError):
    pass


class Profile(TypedDict):
    id: str
    email: str
    full_name: str
    role: Role
    created_at: str


class Subject(TypedDict):
    id: str
    name: str
    code: str
    schedule: str | None
    description: str | None
    teacher_id: str
    created_at: str


class SubjectWithTeacher(Subject):
    teacher_name: str | None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id() -> str:
    return str(uuid.uuid4())


def _hash_password(password: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGO}${PASSWORD_HASH_ITERATIONS}${salt_value}${digest}"


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, rounds_text, salt_value, expected_digest = password_hash.split("$", 3)
        rounds = int(rounds_text)
    except (ValueError, TypeError):
        return False

    if algo != PASSWORD_HASH_ALGO or rounds <= 0:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    # cascades from subjects depend on this
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction(*, immediate: bool = False) -> Iterator[sqlite3.Connection]:
    """
    Yield a connection and commit when the block exits cleanly.

    Driver errors are re-raised as `StoreError` (integrity failures as
    `ConstraintViolation`); any exception rolls the transaction back.
    `immediate=True` takes the write lock up front.
    """
    try:
        conn = connect_db()
    except sqlite3.Error as exc:
        raise StoreError(str(exc)) from exc

    try:
        if immediate:
            conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except sqlite3.IntegrityError as exc:
        conn.rollback()
        raise ConstraintViolation(str(exc)) from exc
    except sqlite3.Error as exc:
        conn.rollback()
        raise StoreError(str(exc)) from exc
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def create_tables():
    with transaction() as conn:
        cursor = conn.cursor()

        cursor.execute("""
        CREATE TABLE IF NOT EXISTS profiles (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE COLLATE NOCASE,
            full_name TEXT NOT NULL,
            role TEXT NOT NULL CHECK (role IN ('teacher', 'student')),
            password_hash TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """)

        cursor.execute("""
        CREATE TABLE IF NOT EXISTS subjects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            code TEXT NOT NULL,
            schedule TEXT,
            description TEXT,
            teacher_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (teacher_id) REFERENCES profiles(id) ON DELETE CASCADE
        )
        """)

        cursor.execute("""
        CREATE TABLE IF NOT EXISTS enrollments (
            id TEXT PRIMARY KEY,
            student_id TEXT NOT NULL,
            subject_id TEXT NOT NULL,
            enrolled_at TEXT NOT NULL,
            FOREIGN KEY (student_id) REFERENCES profiles(id) ON DELETE CASCADE,
            FOREIGN KEY (subject_id) REFERENCES subjects(id) ON DELETE CASCADE,
            UNIQUE(student_id, subject_id)
        )
        """)

        cursor.execute("""
        CREATE TABLE IF NOT EXISTS attendance_sessions (
            id TEXT PRIMARY KEY,                      -- SESS_xxxxxxxx
            subject_id TEXT NOT NULL,
            teacher_id TEXT NOT NULL,
            qr_code TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'closed')),
            created_at TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            FOREIGN KEY (subject_id) REFERENCES subjects(id) ON DELETE CASCADE,
            FOREIGN KEY (teacher_id) REFERENCES profiles(id) ON DELETE CASCADE
        )
        """)

        cursor.execute("""
        CREATE TABLE IF NOT EXISTS attendance_records (
            id TEXT PRIMARY KEY,
            session_id TEXT NOT NULL,
            student_id TEXT NOT NULL,
            subject_id TEXT NOT NULL,
            checked_in_at TEXT NOT NULL,
            ip_address TEXT,
            latitude REAL,
            longitude REAL,
            FOREIGN KEY (session_id) REFERENCES attendance_sessions(id) ON DELETE CASCADE,
            FOREIGN KEY (student_id) REFERENCES profiles(id) ON DELETE CASCADE,
            FOREIGN KEY (subject_id) REFERENCES subjects(id) ON DELETE CASCADE,
            UNIQUE(session_id, student_id)
        )
        """)

        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_subjects_teacher ON subjects(teacher_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_enrollments_subject ON enrollments(subject_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_sessions_subject_status "
            "ON attendance_sessions(subject_id, status)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_records_student ON attendance_records(student_id)"
        )
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_records_subject ON attendance_records(subject_id)"
        )


# -----------------------------
# Profiles
# -----------------------------
def _profile_from_row(row: sqlite3.Row) -> Profile:
    return {
        "id": row["id"],
        "email": row["email"],
        "full_name": row["full_name"],
        "role": row["role"],
        "created_at": row["created_at"],
    }


def create_profile(email: str, password: str, full_name: str, role: Role) -> Profile:
    clean_email = email.strip().lower()
    clean_name = full_name.strip()
    if not clean_email or not password or not clean_name:
        raise ValueError("Email, password, and full name are required.")
    if role not in ROLES:
        raise ValueError(f"Unsupported role: {role}")

    profile: Profile = {
        "id": new_id(),
        "email": clean_email,
        "full_name": clean_name,
        "role": role,
        "created_at": to_db_time(utc_now()),
    }
    with transaction() as conn:
        conn.execute(
            """
            INSERT INTO profiles (id, email, full_name, role, password_hash, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                profile["id"],
                profile["email"],
                profile["full_name"],
                profile["role"],
                _hash_password(password),
                profile["created_at"],
            ),
        )
    return profile


def get_profile(profile_id: str) -> Profile | None:
    with transaction() as conn:
        row = conn.execute(
            """
            SELECT id, email, full_name, role, created_at
            FROM profiles
            WHERE id = ?
            """,
            (profile_id,),
        ).fetchone()
    return _profile_from_row(row) if row else None


def get_profile_by_email(email: str) -> Profile | None:
    with transaction() as conn:
        row = conn.execute(
            """
            SELECT id, email, full_name, role, created_at
            FROM profiles
            WHERE email = ? COLLATE NOCASE
            """,
            (email.strip(),),
        ).fetchone()
    return _profile_from_row(row) if row else None


def get_role(profile_id: str) -> Role:
    profile = get_profile(profile_id)
    if profile is None:
        raise NotFoundError(f"Profile {profile_id} not found")
    return profile["role"]


def verify_credentials(email: str, password: str) -> Profile | None:
    clean_email = email.strip()
    if not clean_email or not password:
        return None

    with transaction() as conn:
        row = conn.execute(
            """
            SELECT id, email, full_name, role, created_at, password_hash
            FROM profiles
            WHERE email = ? COLLATE NOCASE
            """,
            (clean_email,),
        ).fetchone()

    if not row:
        return None
    if not _verify_password(password, row["password_hash"]):
        return None
    return _profile_from_row(row)


# -----------------------------
# Subjects
# -----------------------------
def _subject_from_row(row: sqlite3.Row) -> Subject:
    return {
        "id": row["id"],
        "name": row["name"],
        "code": row["code"],
        "schedule": row["schedule"],
        "description": row["description"],
        "teacher_id": row["teacher_id"],
        "created_at": row["created_at"],
    }


def create_subject(
    teacher_id: str,
    name: str,
    code: str,
    *,
    schedule: str | None = None,
    description: str | None = None,
) -> Subject:
    subject: Subject = {
        "id": new_id(),
        "name": name.strip(),
        "code": code.strip(),
        "schedule": schedule or None,
        "description": description or None,
        "teacher_id": teacher_id,
        "created_at": to_db_time(utc_now()),
    }
    with transaction() as conn:
        conn.execute(
            """
            INSERT INTO subjects (id, name, code, schedule, description, teacher_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                subject["id"],
                subject["name"],
                subject["code"],
                subject["schedule"],
                subject["description"],
                subject["teacher_id"],
                subject["created_at"],
            ),
        )
    return subject


def get_subject(subject_id: str) -> Subject | None:
    with transaction() as conn:
        row = conn.execute(
            """
            SELECT id, name, code, schedule, description, teacher_id, created_at
            FROM subjects
            WHERE id = ?
            """,
            (subject_id,),
        ).fetchone()
    return _subject_from_row(row) if row else None


def list_subjects_by_teacher(teacher_id: str) -> list[Subject]:
    with transaction() as conn:
        rows = conn.execute(
            """
            SELECT id, name, code, schedule, description, teacher_id, created_at
            FROM subjects
            WHERE teacher_id = ?
            ORDER BY created_at DESC
            """,
            (teacher_id,),
        ).fetchall()
    return [_subject_from_row(r) for r in rows]


def list_all_subjects() -> list[SubjectWithTeacher]:
    with transaction() as conn:
        rows = conn.execute(
            """
            SELECT s.id, s.name, s.code, s.schedule, s.description, s.teacher_id,
                   s.created_at, p.full_name AS teacher_name
            FROM subjects s
            LEFT JOIN profiles p ON p.id = s.teacher_id
            ORDER BY s.name ASC
            """
        ).fetchall()
    return [{**_subject_from_row(r), "teacher_name": r["teacher_name"]} for r in rows]


def update_subject(
    subject_id: str,
    *,
    name: str | None = None,
    code: str | None = None,
    schedule: str | None = None,
    description: str | None = None,
) -> Subject | None:
    changes = {
        "name": name.strip() if name is not None else None,
        "code": code.strip() if code is not None else None,
        "schedule": schedule,
        "description": description,
    }
    assignments = {col: value for col, value in changes.items() if value is not None}

    if assignments:
        set_clause = ", ".join(f"{col} = ?" for col in assignments)
        with transaction() as conn:
            conn.execute(
                f"UPDATE subjects SET {set_clause} WHERE id = ?",
                (*assignments.values(), subject_id),
            )
    return get_subject(subject_id)


def delete_subject(subject_id: str) -> bool:
    """Delete a subject; enrollments, sessions and records go with it."""
    with transaction() as conn:
        cur = conn.execute("DELETE FROM subjects WHERE id = ?", (subject_id,))
        deleted = cur.rowcount > 0
    if deleted:
        logger.info("Deleted subject %s and its dependent rows", subject_id)
    return deleted


def teacher_owns_subject(teacher_id: str, subject_id: str) -> bool:
    with transaction() as conn:
        row = conn.execute(
            """
            SELECT 1
            FROM subjects
            WHERE id = ? AND teacher_id = ?
            """,
            (subject_id, teacher_id),
        ).fetchone()
    return row is not None


def count_subjects(teacher_id: str) -> int:
    with transaction() as conn:
        row = conn.execute(
            "SELECT COUNT(*) FROM subjects WHERE teacher_id = ?",
            (teacher_id,),
        ).fetchone()
    return int(row[0])


def count_rows(table: str, **filters: str) -> int:
    if table not in {
        "profiles",
        "subjects",
        "enrollments",
        "attendance_sessions",
        "attendance_records",
    }:
        raise ValueError(f"Unknown table: {table}")
    where = " AND ".join(f"{col} = ?" for col in filters) or "1 = 1"
    with transaction() as conn:
        row = conn.execute(
            f"SELECT COUNT(*) FROM {table} WHERE {where}",
            tuple(filters.values()),
        ).fetchone()
    return int(row[0])
