import re

from backend.qr_codec import (
    SessionCode,
    decode_session_code,
    encode_session_code,
    generate_session_id,
)

SUBJECT_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"
TEACHER_ID = "7c9e6679-7425-40de-944b-e07fc1f90ae7"


def test_generated_session_id_shape():
    session_id = generate_session_id()
    assert re.fullmatch(r"SESS_[0-9a-z]{8}", session_id)


def test_encode_formats_fields_in_order():
    code = encode_session_code("SESS_abc12345", SUBJECT_ID, TEACHER_ID, 1699460640000)
    assert code == f"SESS_abc12345|{SUBJECT_ID}|{TEACHER_ID}|1699460640000"


def test_decode_returns_encoded_fields():
    fields = SessionCode("SESS_abc12345", SUBJECT_ID, TEACHER_ID, 1699460640000)
    result = decode_session_code(encode_session_code(*fields))
    assert result["ok"] is True
    assert result["error"] is None
    assert result["data"] == fields


def test_decode_tolerates_surrounding_whitespace():
    code = encode_session_code("SESS_x", SUBJECT_ID, TEACHER_ID, 5)
    result = decode_session_code(f"  {code}\n")
    assert result["ok"] is True
    assert result["data"].session_id == "SESS_x"


def test_decode_rejects_wrong_field_count():
    for text in ("", "SESS_abc", f"SESS_abc|{SUBJECT_ID}|{TEACHER_ID}", "a|b|c|1|2"):
        result = decode_session_code(text)
        assert result["ok"] is False
        assert result["error"] == "INVALID_FORMAT"
        assert result["data"] is None


def test_decode_rejects_compact_hyphenated_codes():
    result = decode_session_code(f"{SUBJECT_ID}-1699460640000-k3j2h1")
    assert result["error"] == "INVALID_FORMAT"


def test_decode_rejects_non_integer_timestamp():
    for stamp in ("soon", "12.5", "", "1_000", "12abc"):
        result = decode_session_code(f"SESS_abc|{SUBJECT_ID}|{TEACHER_ID}|{stamp}")
        assert result["ok"] is False
        assert result["error"] == "INVALID_TIMESTAMP"


def test_decode_rejects_bad_session_prefix():
    result = decode_session_code(f"SESSION1|{SUBJECT_ID}|{TEACHER_ID}|1")
    assert result["error"] == "SCHEMA_VIOLATION"
    assert "sessionId" in result["message"]

    result = decode_session_code(f"SESS_|{SUBJECT_ID}|{TEACHER_ID}|1")
    assert result["error"] == "SCHEMA_VIOLATION"


def test_decode_rejects_non_uuid_ids():
    result = decode_session_code(f"SESS_abc|not-a-uuid|{TEACHER_ID}|1")
    assert result["error"] == "SCHEMA_VIOLATION"
    assert "subjectId" in result["message"]

    result = decode_session_code(f"SESS_abc|{SUBJECT_ID}|{TEACHER_ID.replace('-', '')}|1")
    assert result["error"] == "SCHEMA_VIOLATION"
    assert "teacherId" in result["message"]


def test_timestamp_is_checked_before_field_shapes():
    result = decode_session_code("bad|bad|bad|bad")
    assert result["error"] == "INVALID_TIMESTAMP"


def test_decode_never_raises_on_non_string_input():
    result = decode_session_code(None)
    assert result["ok"] is False
    assert result["error"] == "INVALID_FORMAT"


def test_decode_rejects_oversized_timestamp():
    result = decode_session_code(f"SESS_abc|{SUBJECT_ID}|{TEACHER_ID}|{'1' * 5000}")
    assert result["ok"] is False
    assert result["error"] == "INVALID_TIMESTAMP"

    result = decode_session_code(f"SESS_abc|{SUBJECT_ID}|{TEACHER_ID}|{'9' * 19}")
    assert result["ok"] is True


def test_decode_rejects_non_ascii_digits():
    result = decode_session_code(f"SESS_abc|{SUBJECT_ID}|{TEACHER_ID}|١٢٣")
    assert result["error"] == "INVALID_TIMESTAMP"
