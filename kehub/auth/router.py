from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..db import get_db, transaction
from ..models.models import User, USER_ACTIVE
from ..schemas.auth import ChangePasswordRequest, LoginRequest
from ..services.audit import log_activity
from ..services.errors import AuthenticationError, ValidationError
from ..services.user_service import serialize_user
from .security import (
    create_access_token,
    get_current_user,
    get_password_hash,
    verify_password,
)
from ..logging import structlog


router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = structlog.get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@router.post("/login")
def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == payload.email, User.status == USER_ACTIVE).first()
    # unknown email and wrong password share one message
    if not user or not verify_password(payload.password, user.password_hash):
        logger.info("login_failed", email=payload.email)
        raise AuthenticationError(INVALID_CREDENTIALS)

    with transaction(db):
        user.last_login_at = datetime.utcnow()
        log_activity(db, user.id, "Login", "User logged in", ip_address=_client_ip(request))
    logger.info("login_succeeded", user_id=str(user.id), role=user.role)
    return {
        "success": True,
        "token": create_access_token(user),
        "user": serialize_user(user, with_details=False),
    }


@router.post("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    if not verify_password(payload.current_password, me.password_hash):
        raise ValidationError("Current password is incorrect")
    with transaction(db):
        me.password_hash = get_password_hash(payload.new_password)
        log_activity(db, me.id, "Password Change", "User changed password")
    return {"success": True, "message": "Password changed successfully"}


@router.get("/me")
def me(me: User = Depends(get_current_user)):
    return {"success": True, "data": serialize_user(me)}
