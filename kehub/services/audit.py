"""
Activity logging service.
Append-only audit trail of significant actions.
"""
import uuid
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..logging import structlog
from ..models.models import ActivityLog, User, ROLE_ADMIN


logger = structlog.get_logger(__name__)


def log_activity(
    db: Session,
    user_id: uuid.UUID,
    action: str,
    description: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> ActivityLog:
    """
    Add an activity log entry to the caller's unit of work.

    The row is flushed but not committed: it lands or rolls back together with
    the action it records.

    Args:
        db: Database session
        user_id: User who performed the action
        action: Short action label (e.g. "Task Status Update")
        description: Free-text description
        ip_address: Client IP, when known

    Returns:
        Created ActivityLog object
    """
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        description=description,
        ip_address=ip_address,
    )
    db.add(entry)
    db.flush()
    return entry


def _serialize_activity(entry: ActivityLog, include_user: bool) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": str(entry.id),
        "action": entry.action,
        "description": entry.description,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
    if include_user:
        data["user_name"] = entry.user.full_name if entry.user else None
        data["user_role"] = entry.user.role if entry.user else None
    return data


def recent_activities(db: Session, viewer: User, limit: int = 20) -> List[Dict[str, Any]]:
    """
    Latest activity for the dashboard feed.

    Admins see the whole system, everyone else only their own entries.
    A failing query degrades to an empty feed.
    """
    is_admin = viewer.role == ROLE_ADMIN
    try:
        query = db.query(ActivityLog)
        if is_admin:
            query = query.join(User, ActivityLog.user_id == User.id)
        else:
            query = query.filter(ActivityLog.user_id == viewer.id)
        rows = query.order_by(ActivityLog.created_at.desc()).limit(limit).all()
    except SQLAlchemyError as e:
        logger.error("activities_query_failed", error=str(e), viewer_id=str(viewer.id))
        db.rollback()
        return []
    return [_serialize_activity(r, include_user=is_admin) for r in rows]
