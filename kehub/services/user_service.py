"""
User administration service.

Owns the identity store: user accounts, electrician profiles and the
cascade that runs when an account is removed.
"""
import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash
from ..db import transaction
from ..logging import structlog
from ..models.models import (
    ActivityLog,
    ElectricianDetail,
    Notification,
    Task,
    TaskCompletion,
    TaskRating,
    User,
    ROLE_ADMIN,
    ROLE_ELECTRICIAN,
    TASK_IN_PROGRESS,
    USER_ACTIVE,
    USER_INACTIVE,
)
from ..schemas.users import UserCreate, UserUpdate
from .audit import log_activity
from .errors import (
    LastAdminProtected,
    NotFound,
    SelfDeleteForbidden,
    ValidationError,
)


logger = structlog.get_logger(__name__)

MIN_PASSWORD_LENGTH = 6


def ensure_electrician_detail(db: Session, electrician_id: uuid.UUID, *, lock: bool = False) -> ElectricianDetail:
    """Return the electrician's detail row, creating an empty one on first use."""
    query = db.query(ElectricianDetail).filter(ElectricianDetail.electrician_id == electrician_id)
    if lock:
        query = query.with_for_update()
    detail = query.first()
    if detail is None:
        detail = ElectricianDetail(
            electrician_id=electrician_id,
            rating=0.0,
            total_tasks_completed=0,
            join_date=date.today(),
        )
        db.add(detail)
        db.flush()
    return detail


def serialize_user(user: User, *, with_details: bool = True) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "phone": user.phone,
        "role": user.role,
        "employee_code": user.employee_code,
        "status": user.status,
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "last_login": user.last_login_at.isoformat() if user.last_login_at else None,
    }
    if with_details:
        detail = user.electrician_detail
        data.update({
            "skills": detail.skills if detail else None,
            "certifications": detail.certifications if detail else None,
            "rating": detail.rating if detail else None,
            "total_tasks_completed": detail.total_tasks_completed if detail else None,
            "join_date": detail.join_date.isoformat() if detail and detail.join_date else None,
        })
    return data


def _get_user(db: Session, user_id: uuid.UUID, *, lock: bool = False) -> User:
    query = db.query(User).filter(User.id == user_id)
    if lock:
        query = query.with_for_update()
    user = query.first()
    if not user:
        raise NotFound("User not found")
    return user


def _active_admin_count(db: Session) -> int:
    return (
        db.query(func.count(User.id))
        .filter(User.role == ROLE_ADMIN, User.status == USER_ACTIVE)
        .scalar()
        or 0
    )


def _guard_last_admin(db: Session, user: User, new_status: str) -> None:
    if user.role == ROLE_ADMIN and user.status == USER_ACTIVE and new_status != USER_ACTIVE:
        if _active_admin_count(db) <= 1:
            raise LastAdminProtected("Cannot deactivate the last admin user")


def list_users(db: Session, *, role: Optional[str] = None, status: Optional[str] = None) -> List[User]:
    query = db.query(User)
    if role:
        query = query.filter(User.role == role)
    if status:
        query = query.filter(User.status == status)
    return query.order_by(User.created_at.desc()).all()


def get_user(db: Session, user_id: uuid.UUID) -> User:
    return _get_user(db, user_id)


def list_electricians(db: Session) -> List[Dict[str, Any]]:
    """Active electricians, best rated first, with their current workload."""
    in_progress = (
        select(Task.assigned_to, func.count(Task.id).label("current_tasks"))
        .where(Task.status == TASK_IN_PROGRESS)
        .group_by(Task.assigned_to)
        .subquery()
    )
    rows = (
        db.query(User, ElectricianDetail, in_progress.c.current_tasks)
        .outerjoin(ElectricianDetail, ElectricianDetail.electrician_id == User.id)
        .outerjoin(in_progress, in_progress.c.assigned_to == User.id)
        .filter(User.role == ROLE_ELECTRICIAN, User.status == USER_ACTIVE)
        .order_by(func.coalesce(ElectricianDetail.rating, 0).desc(), User.full_name.asc())
        .all()
    )
    return [
        {
            "id": str(user.id),
            "full_name": user.full_name,
            "phone": user.phone,
            "employee_code": user.employee_code,
            "status": user.status,
            "skills": detail.skills if detail else None,
            "rating": detail.rating if detail else 0.0,
            "total_tasks_completed": detail.total_tasks_completed if detail else 0,
            "current_tasks": current or 0,
        }
        for user, detail, current in rows
    ]


def create_user(db: Session, actor: User, payload: UserCreate) -> User:
    with transaction(db):
        existing = (
            db.query(User)
            .filter(or_(User.email == payload.email, User.username == payload.username))
            .first()
        )
        if existing:
            raise ValidationError("Email or username already exists")
        if payload.employee_code:
            if db.query(User).filter(User.employee_code == payload.employee_code).first():
                raise ValidationError("Employee code already exists")

        user = User(
            username=payload.username,
            email=payload.email,
            password_hash=get_password_hash(payload.password),
            full_name=payload.full_name,
            phone=payload.phone,
            role=payload.role,
            employee_code=payload.employee_code,
            status=USER_ACTIVE,
        )
        db.add(user)
        db.flush()

        if user.role == ROLE_ELECTRICIAN:
            db.add(ElectricianDetail(
                electrician_id=user.id,
                skills=payload.skills,
                certifications=payload.certifications,
                rating=0.0,
                total_tasks_completed=0,
                join_date=date.today(),
            ))

        log_activity(db, actor.id, "Create User", f"Created new {user.role}: {user.full_name}")
    logger.info("user_created", user_id=str(user.id), role=user.role, actor_id=str(actor.id))
    return user


def update_user(db: Session, user_id: uuid.UUID, actor: User, payload: UserUpdate) -> User:
    with transaction(db):
        user = _get_user(db, user_id, lock=True)
        _guard_last_admin(db, user, payload.status)

        user.full_name = payload.full_name
        user.phone = payload.phone or ""
        user.status = payload.status

        if user.role == ROLE_ELECTRICIAN:
            detail = ensure_electrician_detail(db, user.id)
            detail.skills = payload.skills or ""
            detail.certifications = payload.certifications or ""

        log_activity(db, actor.id, "Update User", f"Updated user: {user.full_name}")
    return user


def toggle_user_status(db: Session, user_id: uuid.UUID, actor: User) -> str:
    with transaction(db):
        user = _get_user(db, user_id, lock=True)
        new_status = USER_INACTIVE if user.status == USER_ACTIVE else USER_ACTIVE
        _guard_last_admin(db, user, new_status)
        user.status = new_status
        verb = "activated" if new_status == USER_ACTIVE else "deactivated"
        log_activity(db, actor.id, "User Status Update", f"User {user.full_name} {verb}")
    logger.info("user_status_changed", user_id=str(user_id), status=new_status, actor_id=str(actor.id))
    return new_status


def reset_password(db: Session, user_id: uuid.UUID, actor: User, new_password: str) -> None:
    if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long")
    with transaction(db):
        user = _get_user(db, user_id)
        user.password_hash = get_password_hash(new_password)
        log_activity(db, actor.id, "Password Reset", f"Reset password for user: {user.full_name}")


def delete_user(db: Session, user_id: uuid.UUID, actor: User) -> None:
    """
    Delete an account and everything that hangs off it.

    Tasks survive: they are unassigned, and tasks the user created move to
    the first remaining Admin. Completions and ratings of tasks assigned to
    the user are removed. Any other row still pointing at the user (issues
    they reported or resolved) makes the delete fail as ReferentialConflict.
    """
    if user_id == actor.id:
        raise SelfDeleteForbidden()

    with transaction(db, conflict_message="Cannot delete user. User has associated records in the system."):
        user = _get_user(db, user_id, lock=True)
        if user.role == ROLE_ADMIN and user.status == USER_ACTIVE and _active_admin_count(db) <= 1:
            raise LastAdminProtected()

        full_name, role = user.full_name, user.role

        if role == ROLE_ELECTRICIAN:
            db.query(ElectricianDetail).filter(
                ElectricianDetail.electrician_id == user_id
            ).delete(synchronize_session=False)

        db.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)

        assigned_tasks = select(Task.id).where(Task.assigned_to == user_id)
        db.query(TaskCompletion).filter(
            TaskCompletion.task_id.in_(assigned_tasks)
        ).delete(synchronize_session=False)
        db.query(TaskRating).filter(
            TaskRating.task_id.in_(assigned_tasks)
        ).delete(synchronize_session=False)

        db.query(Task).filter(Task.assigned_to == user_id).update(
            {Task.assigned_to: None, Task.updated_at: datetime.utcnow()}, synchronize_session=False
        )

        replacement = (
            db.query(User)
            .filter(User.role == ROLE_ADMIN, User.id != user_id)
            .order_by(User.created_at.asc())
            .first()
        )
        if replacement:
            db.query(Task).filter(Task.created_by == user_id).update(
                {Task.created_by: replacement.id}, synchronize_session=False
            )

        db.query(ActivityLog).filter(ActivityLog.user_id == user_id).delete(synchronize_session=False)
        db.query(User).filter(User.id == user_id).delete(synchronize_session=False)
        db.expunge(user)

        log_activity(db, actor.id, "Delete User", f"Deleted user: {full_name}")
    logger.info("user_deleted", user_id=str(user_id), role=role, actor_id=str(actor.id))
