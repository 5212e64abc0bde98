from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

from ..auth.deps import current_user
from ..auth.passwords import hash_password, verify_password
from ..auth.tokens import AuthUser, create_access_token
from ..db.dynamodb.errors import DdbConflict
from ..observability.logging import get_logger
from ..repositories import users_repo
from ..repositories.common import iso_in, now_iso, parse_iso
from ..responses import ok
from ..services import email_ses

router = APIRouter(tags=["auth"])
log = get_logger("auth")

VERIFICATION_TTL_MINUTES = 15


def _verification_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def _password_problem(password: str) -> str | None:
    if not re.search(r"[a-z]", password):
        return "Password must contain at least one lowercase letter"
    if not re.search(r"[A-Z]", password):
        return "Password must contain at least one uppercase letter"
    if not re.search(r"\d", password):
        return "Password must contain at least one number"
    return None


def _session(user: dict) -> dict:
    token = create_access_token(
        user_id=str(user.get("userId")),
        email=user.get("email"),
        role=str(user.get("role") or "free"),
    )
    verified = bool((user.get("emailVerification") or {}).get("isVerified"))
    return {
        "user": users_repo.normalize_user_for_api(user),
        "token": token,
        "requiresVerification": not verified,
    }


def _load(user: AuthUser) -> dict:
    item = users_repo.get_user_by_id(user.id)
    if not item:
        raise HTTPException(status_code=404, detail="User not found")
    return item


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    bio: str | None = Field(default=None, max_length=1000)
    avatar: str | None = Field(default=None, max_length=2048)


class VerifyEmailRequest(BaseModel):
    code: str | None = None


@router.post("/register", status_code=201)
def register(body: RegisterRequest, background_tasks: BackgroundTasks):
    problem = _password_problem(body.password)
    if problem:
        raise HTTPException(status_code=400, detail=problem)

    if users_repo.get_user_by_email(body.email):
        raise HTTPException(status_code=400, detail="User with this email already exists")

    code = _verification_code()
    try:
        user = users_repo.create_user(
            name=body.name,
            email=body.email,
            password_hash=hash_password(body.password),
            verification_code=code,
            verification_expires_at=iso_in(minutes=VERIFICATION_TTL_MINUTES),
        )
    except DdbConflict:
        raise HTTPException(status_code=400, detail="User with this email already exists")

    background_tasks.add_task(
        email_ses.send_email_safe,
        **email_ses.verification_email(to_email=str(user.get("email")), name=str(user.get("name")), code=code),
    )
    log.info("user_registered", user_id=user.get("userId"))
    return ok({**_session(user), "requiresVerification": True}, message="Registration successful")


@router.post("/login")
def login(body: LoginRequest):
    user = users_repo.get_user_by_email(body.email)
    if not user or not verify_password(body.password, user.get("passwordHash")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    users_repo.update_user(str(user.get("userId")), {"lastLoginAt": now_iso()})
    log.info("user_logged_in", user_id=user.get("userId"))
    return ok(_session(user), message="Login successful")


@router.get("/me")
def me(user: AuthUser = Depends(current_user)):
    return ok(users_repo.normalize_user_for_api(_load(user)))


def apply_profile_update(user_id: str, body: ProfileUpdateRequest) -> dict:
    fields: dict[str, object] = {}
    if body.name is not None:
        fields["name"] = body.name.strip()
    if body.bio is not None:
        fields["profile.bio"] = body.bio
    if body.avatar is not None:
        fields["profile.avatar"] = body.avatar
    if not fields:
        raise HTTPException(status_code=400, detail="No profile fields to update")
    updated = users_repo.update_user(user_id, fields)
    return users_repo.normalize_user_for_api(updated) or {}


@router.put("/profile")
def update_profile(body: ProfileUpdateRequest, user: AuthUser = Depends(current_user)):
    _load(user)
    return ok(apply_profile_update(user.id, body), message="Profile updated successfully")


@router.post("/verify-email")
def verify_email(body: VerifyEmailRequest, background_tasks: BackgroundTasks, user: AuthUser = Depends(current_user)):
    code = str(body.code or "").strip()
    if not code:
        raise HTTPException(status_code=400, detail="Verification code is required")

    item = _load(user)
    ev = item.get("emailVerification") or {}
    if ev.get("isVerified"):
        raise HTTPException(status_code=400, detail="Email is already verified")
    if not ev.get("code") or not secrets.compare_digest(str(ev.get("code")), code):
        raise HTTPException(status_code=400, detail="Invalid verification code")
    expires = parse_iso(ev.get("expiresAt"))
    if expires is None or expires < datetime.now(timezone.utc):
        raise HTTPException(status_code=400, detail="Verification code has expired. Please request a new one.")

    updated = users_repo.update_user(
        user.id,
        {"emailVerification": {"isVerified": True, "verifiedAt": now_iso(), "code": None, "expiresAt": None}},
    )
    background_tasks.add_task(
        email_ses.send_email_safe,
        **email_ses.welcome_email(to_email=str(item.get("email")), name=str(item.get("name"))),
    )
    log.info("email_verified", user_id=user.id)
    return ok({"user": users_repo.normalize_user_for_api(updated)}, message="Email verified successfully")


@router.post("/resend-verification")
def resend_verification(background_tasks: BackgroundTasks, user: AuthUser = Depends(current_user)):
    item = _load(user)
    if (item.get("emailVerification") or {}).get("isVerified"):
        raise HTTPException(status_code=400, detail="Email is already verified")

    code = _verification_code()
    users_repo.update_user(
        user.id,
        {
            "emailVerification": {
                "isVerified": False,
                "code": code,
                "expiresAt": iso_in(minutes=VERIFICATION_TTL_MINUTES),
            }
        },
    )
    background_tasks.add_task(
        email_ses.send_email_safe,
        **email_ses.verification_email(to_email=str(item.get("email")), name=str(item.get("name")), code=code),
    )
    return ok(message="Verification code sent")
