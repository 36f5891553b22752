from fastapi import APIRouter, Depends, HTTPException

from backend.config import (
    DB_PATH,
    ENABLE_DEBUG_ENDPOINTS,
    SESSION_DEFAULT_MINUTES,
    SESSION_DURATION_CHOICES,
)
from backend.security import require_session

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(_session: dict = Depends(require_session)):
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH)}


@router.get("/config/sessions")
def session_config():
    return {
        "default_duration_minutes": SESSION_DEFAULT_MINUTES,
        "duration_choices": SESSION_DURATION_CHOICES,
    }
