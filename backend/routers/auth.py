import time

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import issue_session_token, require_session
from database.db import (
    ROLES,
    ConstraintViolation,
    create_profile,
    get_profile,
    verify_credentials,
)

router = APIRouter()


class RegisterRequest(BaseModel):
    email: str
    password: str
    full_name: str
    role: str


class LoginRequest(BaseModel):
    email: str
    password: str


def _redirect_path(role: str) -> str:
    return "/teacher" if role == "teacher" else "/student"


def _token_response(profile) -> dict:
    token, claims = issue_session_token(profile)
    now = int(time.time())
    return {
        "access_token": token,
        "token_type": "bearer",
        "user": {"id": profile["id"], "email": profile["email"]},
        "role": profile["role"],
        "redirect_path": _redirect_path(profile["role"]),
        "expires_at": claims["exp"],
        "expires_in": max(0, int(claims["exp"]) - now),
    }


@router.post("/auth/register")
def register(payload: RegisterRequest):
    email = payload.email.strip()
    full_name = payload.full_name.strip()
    role = payload.role.strip().lower()

    if not email or not payload.password or not full_name or not role:
        raise HTTPException(
            status_code=400,
            detail="Email, password, full name, and role are required.",
        )
    if role not in ROLES:
        raise HTTPException(status_code=400, detail="Role must be 'teacher' or 'student'.")

    try:
        profile = create_profile(email, payload.password, full_name, role)
    except ConstraintViolation:
        raise HTTPException(status_code=409, detail="Email already registered.")

    return {"profile": profile, **_token_response(profile)}


@router.post("/auth/login")
def login(payload: LoginRequest):
    email = payload.email.strip()
    if not email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required.")

    profile = verify_credentials(email, payload.password)
    if not profile:
        raise HTTPException(status_code=401, detail="Invalid email or password.")

    return _token_response(profile)


@router.get("/auth/me")
def auth_me(session: dict = Depends(require_session)):
    profile = get_profile(session["sub"])
    if not profile:
        raise HTTPException(status_code=401, detail="Not authenticated.")
    return {
        "user": {"id": profile["id"], "email": profile["email"]},
        "profile": profile,
        "expires_at": session.get("exp"),
        "issued_at": session.get("iat"),
    }
