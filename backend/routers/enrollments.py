from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import require_session
from database.db import get_profile, get_subject, teacher_owns_subject
from database.enrollments import (
    AlreadyEnrolledError,
    StudentNotFoundError,
    enroll,
    enroll_by_email,
    get_enrollment,
    get_enrollment_by_id,
    list_enrollments_by_student,
    list_enrollments_by_subject,
    unenroll,
)

router = APIRouter()


class EnrollmentCreate(BaseModel):
    subject_id: str
    student_id: str | None = None
    email: str | None = None


@router.get("/enrollments")
def enrollments(
    student_id: str | None = None,
    subject_id: str | None = None,
    session: dict = Depends(require_session),
):
    if student_id:
        if session["role"] == "student" and student_id != session["sub"]:
            raise HTTPException(status_code=403, detail="Students can only view their own enrollments.")
        return {"enrollments": list_enrollments_by_student(student_id)}

    if subject_id:
        if not teacher_owns_subject(session["sub"], subject_id):
            raise HTTPException(status_code=403, detail="You do not own this subject.")
        return {"enrollments": list_enrollments_by_subject(subject_id)}

    raise HTTPException(status_code=400, detail="student_id or subject_id parameter required.")


@router.post("/enrollments")
def create_enrollment(payload: EnrollmentCreate, session: dict = Depends(require_session)):
    subject_id = payload.subject_id.strip()
    email = (payload.email or "").strip()
    student_id = (payload.student_id or "").strip()

    if not subject_id:
        raise HTTPException(status_code=400, detail="subject_id is required.")
    if not student_id and not email:
        raise HTTPException(status_code=400, detail="Either student_id or email is required.")
    if not get_subject(subject_id):
        raise HTTPException(status_code=404, detail="Subject not found.")

    is_owner = session["role"] == "teacher" and teacher_owns_subject(session["sub"], subject_id)

    try:
        if email:
            if not is_owner:
                raise HTTPException(status_code=403, detail="Only the subject's teacher can enroll by email.")
            enrollment = enroll_by_email(email, subject_id)
        else:
            if student_id != session["sub"] and not is_owner:
                raise HTTPException(status_code=403, detail="Students can only enroll themselves.")
            profile = get_profile(student_id)
            if not profile or profile["role"] != "student":
                raise HTTPException(status_code=404, detail="Student not found.")
            enrollment = enroll(student_id, subject_id)
    except AlreadyEnrolledError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except StudentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    return {"enrollment": enrollment}


@router.get("/enrollments/check")
def check_enrollment(
    student_id: str,
    subject_id: str,
    _session: dict = Depends(require_session),
):
    enrollment = get_enrollment(student_id, subject_id)
    return {"is_enrolled": enrollment is not None, "enrollment": enrollment}


@router.delete("/enrollments/{enrollment_id}")
def delete_enrollment(enrollment_id: str, session: dict = Depends(require_session)):
    enrollment = get_enrollment_by_id(enrollment_id)
    allowed = enrollment is not None and (
        enrollment["student_id"] == session["sub"]
        or teacher_owns_subject(session["sub"], enrollment["subject_id"])
    )
    if not allowed:
        raise HTTPException(status_code=404, detail="Enrollment not found or unauthorized.")

    unenroll(enrollment_id)
    return {"success": True}
