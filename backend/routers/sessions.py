from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.qr_image import render_qr_data_url
from backend.security import require_session, require_teacher
from backend.services.attendance import validate_code
from backend.services.sessions import (
    InvalidDurationError,
    SessionAccessError,
    close_session,
    describe_session,
    get_owned_session,
    open_session,
)
from database.sessions import list_sessions_by_teacher

router = APIRouter()


class SessionCreate(BaseModel):
    subject_id: str
    duration_minutes: int | None = None


class SessionUpdate(BaseModel):
    action: str


class CodeValidate(BaseModel):
    qr_code: str


def _access_error(exc: SessionAccessError) -> HTTPException:
    status = 403 if exc.code == "UNAUTHORIZED" else 404
    return HTTPException(status_code=status, detail=exc.message)


@router.post("/attendance-sessions")
def create_session(payload: SessionCreate, session: dict = Depends(require_session)):
    subject_id = payload.subject_id.strip()
    if not subject_id:
        raise HTTPException(status_code=400, detail="subject_id is required.")

    try:
        created = open_session(session["sub"], subject_id, payload.duration_minutes)
    except InvalidDurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except SessionAccessError as exc:
        raise _access_error(exc)

    return {
        "success": True,
        "session": {
            "id": created["id"],
            "subject_id": created["subject_id"],
            "qr_code": created["qr_code"],
            "qr_image": render_qr_data_url(created["qr_code"]),
            "expires_at": created["expires_at"],
            "status": created["status"],
        },
    }


@router.get("/attendance-sessions")
def sessions(
    subject_id: str | None = None,
    include_expired: bool = False,
    session: dict = Depends(require_teacher),
):
    rows = list_sessions_by_teacher(
        session["sub"],
        subject_id=subject_id,
        include_expired=include_expired,
    )
    return {"sessions": rows}


@router.post("/attendance-sessions/validate")
def validate(payload: CodeValidate, session: dict = Depends(require_session)):
    if not payload.qr_code.strip():
        raise HTTPException(status_code=400, detail="qr_code is required.")

    result = validate_code(payload.qr_code, session["sub"])
    if not result["valid"]:
        return {"valid": False, "reasons": result["reasons"], "codes": result["codes"]}
    return {
        "valid": True,
        "session": result["session"],
        "time_remaining_minutes": result["time_remaining_minutes"],
    }


@router.get("/attendance-sessions/{session_id}")
def session_detail(session_id: str, session: dict = Depends(require_teacher)):
    try:
        owned = get_owned_session(session["sub"], session_id)
    except SessionAccessError as exc:
        raise _access_error(exc)
    return {"session": describe_session(owned)}


@router.get("/attendance-sessions/{session_id}/qr")
def session_qr(session_id: str, session: dict = Depends(require_teacher)):
    try:
        owned = get_owned_session(session["sub"], session_id)
    except SessionAccessError as exc:
        raise _access_error(exc)
    return {
        "id": owned["id"],
        "qr_code": owned["qr_code"],
        "qr_image": render_qr_data_url(owned["qr_code"]),
    }


@router.patch("/attendance-sessions/{session_id}")
def update_session(session_id: str, payload: SessionUpdate, session: dict = Depends(require_session)):
    if payload.action != "end":
        raise HTTPException(status_code=400, detail="Invalid action. Supported: 'end'.")

    try:
        ended = close_session(session["sub"], session_id)
    except SessionAccessError as exc:
        raise _access_error(exc)

    return {"success": True, "message": "Session ended", "session": ended}
