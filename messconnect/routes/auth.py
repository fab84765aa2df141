"""
Registration, login, email verification and password reset.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from messconnect.config import Settings, get_settings
from messconnect.dependencies import get_email_sender, get_kv_store
from messconnect.entities import (
    ResetTokenEntity,
    UserEntity,
    VerificationTokenEntity,
    now_ms,
    public_user,
)
from messconnect.errors import EntityExistsError, InvalidTokenError
from messconnect.kv import KeyValueStore
from messconnect.mailer import (
    EmailSender,
    reset_password_email,
    send_quietly,
    verification_email,
)
from messconnect.schemas import (
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenRequest,
    ok,
)
from messconnect.security import (
    create_access_token,
    hash_password,
    require_user,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


@router.post("/register")
def register(
    payload: RegisterRequest,
    store: KeyValueStore = Depends(get_kv_store),
    mailer: EmailSender = Depends(get_email_sender),
    settings: Settings = Depends(get_settings),
):
    try:
        user = UserEntity.create(
            store,
            {
                "id": payload.email,
                "name": payload.name,
                "email": payload.email,
                "phone": payload.phone,
                "passwordHash": hash_password(payload.password),
                "role": "student",
                "status": "pending",
                "verified": False,
                "createdAt": now_ms(),
            },
        )
    except EntityExistsError:
        raise HTTPException(status_code=400, detail="User with this email already exists.")

    token = VerificationTokenEntity.issue(
        store, user["id"], settings.verification_token_ttl_minutes
    )
    link = f"{settings.app_url}/verify-email?token={token['id']}"
    send_quietly(mailer, user["email"], "Verify your email", verification_email(user["name"], link))
    logger.info("Registered student %s", user["id"])
    return ok(public_user(user))


@router.post("/login")
def login(
    payload: LoginRequest,
    store: KeyValueStore = Depends(get_kv_store),
    settings: Settings = Depends(get_settings),
):
    user = UserEntity(store, payload.email).get_state_or_none()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found.")
    if not verify_password(payload.password, user.get("passwordHash", "")):
        raise HTTPException(status_code=400, detail="Invalid credentials.")
    if user["role"] == "student" and user["status"] != "approved":
        return ok({"status": user["status"]})
    return ok({**public_user(user), "token": create_access_token(user, settings)})


@router.get("/me")
def me(user: dict = Depends(require_user)):
    return ok(public_user(user))


@router.post("/verify-email")
def verify_email(payload: TokenRequest, store: KeyValueStore = Depends(get_kv_store)):
    try:
        token = VerificationTokenEntity(store, payload.token).consume()
    except InvalidTokenError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    user_entity = UserEntity(store, token["userId"])
    if not user_entity.exists():
        raise HTTPException(status_code=404, detail="User not found.")
    user = user_entity.patch({"verified": True})
    return ok(public_user(user))


@router.post("/forgot-password")
def forgot_password(
    payload: ForgotPasswordRequest,
    store: KeyValueStore = Depends(get_kv_store),
    mailer: EmailSender = Depends(get_email_sender),
    settings: Settings = Depends(get_settings),
):
    message = "If an account exists for this email, a reset link has been sent."
    user = UserEntity(store, payload.email).get_state_or_none()
    if user is None:
        return ok({"message": message})
    token = ResetTokenEntity.issue(store, user["id"], settings.reset_token_ttl_minutes)
    link = f"{settings.app_url}/reset-password?token={token['id']}"
    send_quietly(mailer, user["email"], "Reset your password", reset_password_email(user["name"], link))
    return ok({"message": message})


@router.post("/reset-password")
def reset_password(
    payload: ResetPasswordRequest, store: KeyValueStore = Depends(get_kv_store)
):
    try:
        token = ResetTokenEntity(store, payload.token).consume()
    except InvalidTokenError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    user_entity = UserEntity(store, token["userId"])
    if not user_entity.exists():
        raise HTTPException(status_code=404, detail="User not found.")
    user_entity.patch({"passwordHash": hash_password(payload.password)})
    logger.info("Password reset for %s", token["userId"])
    return ok({"message": "Password has been reset."})
