"""
Session code format carried inside attendance QR images.

    sessionId|subjectId|teacherId|timestamp

`sessionId` is `SESS_` followed by a non-empty suffix, `subjectId` and
`teacherId` are canonical UUID strings, and `timestamp` is the creation
time in epoch milliseconds. Decoding never raises; callers branch on the
returned result.
"""
import re
import secrets
import string
import time
from typing import Literal, NamedTuple, TypedDict

SESSION_ID_PREFIX = "SESS_"
SESSION_ID_SUFFIX_LENGTH = 8
FIELD_SEPARATOR = "|"
FIELD_COUNT = 4

_BASE36 = string.digits + string.ascii_lowercase
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
# ASCII digits, bounded length
_INTEGER_RE = re.compile(r"-?[0-9]{1,19}")

DecodeError = Literal["INVALID_FORMAT", "INVALID_TIMESTAMP", "SCHEMA_VIOLATION"]


class SessionCode(NamedTuple):
    session_id: str
    subject_id: str
    teacher_id: str
    timestamp: int


class DecodeResult(TypedDict):
    ok: bool
    data: SessionCode | None
    error: DecodeError | None
    message: str


def generate_session_id() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(SESSION_ID_SUFFIX_LENGTH))
    return f"{SESSION_ID_PREFIX}{suffix}"


def current_timestamp_ms() -> int:
    return int(time.time() * 1000)


def encode_session_code(
    session_id: str,
    subject_id: str,
    teacher_id: str,
    timestamp: int | None = None,
) -> str:
    stamp = current_timestamp_ms() if timestamp is None else int(timestamp)
    return FIELD_SEPARATOR.join((session_id, subject_id, teacher_id, str(stamp)))


def is_session_id(value: str) -> bool:
    return value.startswith(SESSION_ID_PREFIX) and len(value) > len(SESSION_ID_PREFIX)


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value))


def _failure(error: DecodeError, message: str) -> DecodeResult:
    return {"ok": False, "data": None, "error": error, "message": message}


def decode_session_code(text: str | None) -> DecodeResult:
    if not isinstance(text, str):
        return _failure("INVALID_FORMAT", "QR code is empty.")

    parts = text.strip().split(FIELD_SEPARATOR)
    if len(parts) != FIELD_COUNT:
        return _failure(
            "INVALID_FORMAT",
            f"Invalid QR format: expected {FIELD_COUNT} parts separated by {FIELD_SEPARATOR}",
        )

    session_id, subject_id, teacher_id, timestamp_text = parts
    if not _INTEGER_RE.fullmatch(timestamp_text):
        return _failure("INVALID_TIMESTAMP", "Invalid timestamp in QR code")

    problems = []
    if not is_session_id(session_id):
        problems.append(f"sessionId must start with {SESSION_ID_PREFIX}")
    if not is_uuid(subject_id):
        problems.append("subjectId must be a UUID")
    if not is_uuid(teacher_id):
        problems.append("teacherId must be a UUID")
    if problems:
        return _failure("SCHEMA_VIOLATION", "Invalid QR data: " + "; ".join(problems))

    return {
        "ok": True,
        "data": SessionCode(session_id, subject_id, teacher_id, int(timestamp_text)),
        "error": None,
        "message": "",
    }
