from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend.security import require_session, require_student
from backend.services.attendance import AttendanceRejected, record_attendance
from database.attendance import list_records_by_student, list_records_by_teacher

router = APIRouter()
DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

REJECTION_STATUS = {
    "INVALID_CODE": 400,
    "SESSION_NOT_FOUND": 404,
    "SESSION_EXPIRED": 410,
    "NOT_ENROLLED": 403,
    "DUPLICATE_ATTENDANCE": 409,
}


class CheckIn(BaseModel):
    qr_code: str
    latitude: float | None = None
    longitude: float | None = None


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = (request.headers.get(header) or "").strip()
        if value:
            return value
    return request.client.host if request.client else None


@router.post("/attendance-records")
def check_in(payload: CheckIn, request: Request, session: dict = Depends(require_student)):
    if not payload.qr_code.strip():
        raise HTTPException(status_code=400, detail="qr_code is required.")

    try:
        result = record_attendance(
            payload.qr_code,
            session["sub"],
            ip_address=_client_ip(request),
            latitude=payload.latitude,
            longitude=payload.longitude,
        )
    except AttendanceRejected as exc:
        return JSONResponse(
            status_code=REJECTION_STATUS[exc.reason],
            content={"detail": exc.message, "reason": exc.reason},
        )

    return {
        "success": True,
        "message": "Attendance recorded successfully",
        "record": result["record"],
        "student_name": result["student_name"],
        "subject_name": result["subject_name"],
    }


@router.get("/attendance-records")
def attendance_records(
    subject_id: str | None = None,
    session_id: str | None = None,
    from_date: str | None = Query(default=None, pattern=DATE_PATTERN),
    to_date: str | None = Query(default=None, pattern=DATE_PATTERN),
    session: dict = Depends(require_session),
):
    if session["role"] == "student":
        rows = list_records_by_student(
            session["sub"],
            subject_id=subject_id,
            session_id=session_id,
            from_date=from_date,
            to_date=to_date,
        )
    else:
        rows = list_records_by_teacher(
            session["sub"],
            subject_id=subject_id,
            session_id=session_id,
            from_date=from_date,
            to_date=to_date,
        )
    return {"records": rows}
