"""
Notification service.
In-app notices raised by task and issue events.
"""
import uuid
from typing import Optional, List, Dict, Any, Iterable

from sqlalchemy.orm import Session

from ..models.models import Notification, User, ROLE_MANAGER, USER_ACTIVE


def create_notification(
    db: Session,
    user_id: uuid.UUID,
    type: str,
    title: str,
    message: str,
) -> Notification:
    """
    Create a notification record in the caller's unit of work.

    Args:
        db: Database session
        user_id: Recipient
        type: Notification type (task|issue)
        title: Short title
        message: Body text

    Returns:
        Created Notification object
    """
    notification = Notification(user_id=user_id, type=type, title=title, message=message)
    db.add(notification)
    db.flush()
    return notification


def active_manager_ids(db: Session) -> List[uuid.UUID]:
    rows = (
        db.query(User.id)
        .filter(User.role == ROLE_MANAGER, User.status == USER_ACTIVE)
        .all()
    )
    return [r[0] for r in rows]


def notify_users(
    db: Session,
    user_ids: Iterable[uuid.UUID],
    type: str,
    title: str,
    message: str,
) -> List[Notification]:
    """Notify each distinct recipient once, preserving order."""
    seen = set()
    created = []
    for user_id in user_ids:
        if user_id is None or user_id in seen:
            continue
        seen.add(user_id)
        created.append(create_notification(db, user_id, type, title, message))
    return created


def notify_active_managers(
    db: Session,
    type: str,
    title: str,
    message: str,
    exclude: Optional[Iterable[uuid.UUID]] = None,
) -> List[Notification]:
    excluded = set(exclude or [])
    recipients = [mid for mid in active_manager_ids(db) if mid not in excluded]
    return notify_users(db, recipients, type, title, message)


def _serialize_notification(n: Notification) -> Dict[str, Any]:
    return {
        "id": str(n.id),
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "is_read": n.is_read,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def list_notifications(db: Session, user: User, limit: int = 10, unread_only: bool = False) -> List[Dict[str, Any]]:
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    rows = query.order_by(Notification.created_at.desc()).limit(limit).all()
    return [_serialize_notification(n) for n in rows]


def mark_notification_read(db: Session, user: User, notification_id: uuid.UUID) -> bool:
    """Mark one of the user's notifications as read; other users' rows are never touched."""
    count = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return bool(count)
