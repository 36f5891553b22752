import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import require_session, require_teacher
from database.db import (
    StoreError,
    create_subject,
    delete_subject,
    get_subject,
    list_all_subjects,
    list_subjects_by_teacher,
    teacher_owns_subject,
    update_subject,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class SubjectCreate(BaseModel):
    name: str
    code: str
    schedule: str | None = None
    description: str | None = None


class SubjectUpdate(BaseModel):
    name: str | None = None
    code: str | None = None
    schedule: str | None = None
    description: str | None = None


def _owns_subject(teacher_id: str, subject_id: str) -> bool:
    try:
        return teacher_owns_subject(teacher_id, subject_id)
    except StoreError:
        logger.exception("Ownership lookup failed for subject %s", subject_id)
        return False


@router.get("/subjects")
def subjects(teacher_id: str | None = None, _session: dict = Depends(require_session)):
    if teacher_id:
        return {"subjects": list_subjects_by_teacher(teacher_id)}
    return {"subjects": list_all_subjects()}


@router.post("/subjects")
def create(payload: SubjectCreate, session: dict = Depends(require_teacher)):
    name = payload.name.strip()
    code = payload.code.strip()
    if not name or not code:
        raise HTTPException(status_code=400, detail="Name and code are required.")

    subject = create_subject(
        session["sub"],
        name,
        code,
        schedule=(payload.schedule or "").strip() or None,
        description=(payload.description or "").strip() or None,
    )
    return {"subject": subject}


@router.get("/subjects/{subject_id}")
def subject_detail(subject_id: str, _session: dict = Depends(require_session)):
    subject = get_subject(subject_id)
    if not subject:
        raise HTTPException(status_code=404, detail="Subject not found.")
    return {"subject": subject}


@router.patch("/subjects/{subject_id}")
def update(subject_id: str, payload: SubjectUpdate, session: dict = Depends(require_session)):
    if not _owns_subject(session["sub"], subject_id):
        raise HTTPException(status_code=403, detail="You do not own this subject.")

    if payload.name is not None and not payload.name.strip():
        raise HTTPException(status_code=400, detail="Name cannot be empty.")
    if payload.code is not None and not payload.code.strip():
        raise HTTPException(status_code=400, detail="Code cannot be empty.")

    subject = update_subject(
        subject_id,
        name=payload.name,
        code=payload.code,
        schedule=payload.schedule,
        description=payload.description,
    )
    return {"subject": subject}


@router.delete("/subjects/{subject_id}")
def delete(subject_id: str, session: dict = Depends(require_session)):
    if not _owns_subject(session["sub"], subject_id):
        raise HTTPException(status_code=403, detail="You do not own this subject.")

    delete_subject(subject_id)
    return {"success": True}
