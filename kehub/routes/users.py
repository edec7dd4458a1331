import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import User, ROLE_ADMIN, ROLE_MANAGER
from ..schemas.users import PasswordReset, UserCreate, UserUpdate
from ..services import user_service


router = APIRouter(prefix="/api/users", tags=["users"])

admins = require_roles(ROLE_ADMIN)
managers = require_roles(ROLE_MANAGER, ROLE_ADMIN)


@router.get("")
def list_users(
    role: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    me: User = Depends(managers),
):
    users = user_service.list_users(db, role=role, status=status)
    return {"success": True, "data": [user_service.serialize_user(u) for u in users]}


@router.get("/electricians")
def list_electricians(db: Session = Depends(get_db), me: User = Depends(managers)):
    return {"success": True, "data": user_service.list_electricians(db)}


@router.get("/me")
def my_profile(me: User = Depends(get_current_user)):
    return {"success": True, "data": user_service.serialize_user(me)}


@router.get("/{user_id}")
def get_user(user_id: uuid.UUID, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    user = user_service.get_user(db, user_id)
    return {"success": True, "data": user_service.serialize_user(user)}


@router.post("", status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db), me: User = Depends(admins)):
    user = user_service.create_user(db, me, payload)
    return {"success": True, "message": "User created successfully", "userId": str(user.id)}


@router.put("/{user_id}")
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(admins),
):
    user = user_service.update_user(db, user_id, me, payload)
    return {"success": True, "message": "User updated successfully", "data": user_service.serialize_user(user)}


@router.delete("/{user_id}")
def delete_user(user_id: uuid.UUID, db: Session = Depends(get_db), me: User = Depends(admins)):
    user_service.delete_user(db, user_id, me)
    return {"success": True, "message": "User deleted successfully"}


@router.patch("/{user_id}/toggle-status")
def toggle_status(user_id: uuid.UUID, db: Session = Depends(get_db), me: User = Depends(admins)):
    new_status = user_service.toggle_user_status(db, user_id, me)
    return {"success": True, "message": f"User status changed to {new_status}", "status": new_status}


@router.post("/{user_id}/reset-password")
def reset_password(
    user_id: uuid.UUID,
    payload: PasswordReset,
    db: Session = Depends(get_db),
    me: User = Depends(admins),
):
    user_service.reset_password(db, user_id, me, payload.new_password)
    return {"success": True, "message": "Password reset successfully"}
