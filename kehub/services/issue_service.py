"""
Issue reporting service.

open -> in_progress -> resolved; resolved is terminal.
"""
import uuid
from datetime import datetime, time
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import transaction
from ..logging import structlog
from ..models.models import (
    Issue,
    Task,
    User,
    ISSUE_IN_PROGRESS,
    ISSUE_OPEN,
    ISSUE_PRIORITIES,
    ISSUE_RESOLVED,
    ISSUE_STATUSES,
    ROLE_ADMIN,
    ROLE_ELECTRICIAN,
    ROLE_MANAGER,
)
from ..schemas.issues import IssueCreate, IssueFilters
from .audit import log_activity
from .errors import (
    Forbidden,
    InvalidStatus,
    InvalidTask,
    NotFound,
    TerminalStateConflict,
    ValidationError,
)
from .notifications import create_notification, notify_active_managers


logger = structlog.get_logger(__name__)

DEFAULT_PRIORITY = "normal"
RESOLUTION_SEPARATOR = "\n\nRESOLUTION: "


def serialize_issue(issue: Issue) -> Dict[str, Any]:
    task = issue.task
    return {
        "id": str(issue.id),
        "task_id": str(issue.task_id),
        "task_code": task.task_code if task else None,
        "task_title": task.title if task else None,
        "reported_by": str(issue.reported_by),
        "reported_by_name": issue.reporter.full_name if issue.reporter else None,
        "issue_type": issue.issue_type,
        "description": issue.description,
        "priority": issue.priority,
        "status": issue.status,
        "requested_action": issue.requested_action,
        "resolved_by": str(issue.resolved_by) if issue.resolved_by else None,
        "resolved_by_name": issue.resolver.full_name if issue.resolver else None,
        "resolved_at": issue.resolved_at.isoformat() if issue.resolved_at else None,
        "created_at": issue.created_at.isoformat() if issue.created_at else None,
        "updated_at": issue.updated_at.isoformat() if issue.updated_at else None,
    }


def _is_manager(user: User) -> bool:
    return user.role in (ROLE_MANAGER, ROLE_ADMIN)


def create_issue(db: Session, reporter: User, payload: IssueCreate) -> Issue:
    if reporter.role != ROLE_ELECTRICIAN:
        raise Forbidden("Only electricians can report issues")
    priority = payload.priority or DEFAULT_PRIORITY
    if priority not in ISSUE_PRIORITIES:
        raise ValidationError(f"Priority must be one of: {', '.join(ISSUE_PRIORITIES)}")

    with transaction(db):
        task = (
            db.query(Task)
            .filter(Task.id == payload.task_id, Task.assigned_to == reporter.id)
            .first()
        )
        if not task:
            raise InvalidTask()

        issue = Issue(
            task_id=task.id,
            reported_by=reporter.id,
            issue_type=payload.issue_type,
            description=payload.description,
            priority=priority,
            status=ISSUE_OPEN,
            requested_action=payload.requested_action,
        )
        db.add(issue)
        db.flush()

        message = f"{reporter.full_name} reported a {priority} issue on task #{task.task_code}: {payload.issue_type}"
        create_notification(db, task.created_by, "issue", "New Issue Reported", message)
        notify_active_managers(db, "issue", "New Issue Reported", message, exclude=[task.created_by])
        log_activity(db, reporter.id, "Report Issue", f"Reported issue on task {task.task_code}")
    logger.info("issue_created", issue_id=str(issue.id), task_id=str(task.id), priority=priority)
    return issue


def update_issue_status(
    db: Session,
    issue_id: uuid.UUID,
    actor: User,
    new_status: str,
    resolution_notes: Optional[str] = None,
) -> Issue:
    if not _is_manager(actor):
        raise Forbidden("Only managers and admins can update issues")

    with transaction(db):
        issue = db.query(Issue).filter(Issue.id == issue_id).with_for_update().first()
        if not issue:
            raise NotFound("Issue not found")
        if new_status not in ISSUE_STATUSES:
            raise InvalidStatus(f"Status must be one of: {', '.join(ISSUE_STATUSES)}")
        if issue.status == ISSUE_RESOLVED:
            raise TerminalStateConflict("Issue is already resolved")

        issue.status = new_status
        if new_status == ISSUE_RESOLVED:
            issue.resolved_at = datetime.utcnow()
            issue.resolved_by = actor.id
            notes = (resolution_notes or "").strip()
            if notes:
                issue.description = f"{issue.description}{RESOLUTION_SEPARATOR}{notes}"
            create_notification(
                db, issue.reported_by, "issue", "Issue Resolved",
                f"Your reported issue ({issue.issue_type}) has been resolved",
            )

        log_activity(db, actor.id, "Issue Status Update", f"Issue {issue.id} marked {new_status}")
    logger.info("issue_status_changed", issue_id=str(issue_id), status=new_status, actor_id=str(actor.id))
    return issue


def get_issue(db: Session, issue_id: uuid.UUID, viewer: User) -> Issue:
    issue = db.query(Issue).filter(Issue.id == issue_id).first()
    if not issue:
        raise NotFound("Issue not found")
    if not _is_manager(viewer) and issue.reported_by != viewer.id:
        raise Forbidden("You can only view issues you reported")
    return issue


def list_issues(db: Session, viewer: User, filters: Optional[IssueFilters] = None) -> List[Issue]:
    if not _is_manager(viewer):
        raise Forbidden("Only managers and admins can list issues")
    filters = filters or IssueFilters()
    query = db.query(Issue)
    if filters.status:
        query = query.filter(Issue.status == filters.status)
    if filters.priority:
        query = query.filter(Issue.priority == filters.priority)
    if filters.start_date:
        query = query.filter(Issue.created_at >= datetime.combine(filters.start_date, time.min))
    if filters.end_date:
        query = query.filter(Issue.created_at <= datetime.combine(filters.end_date, time.max))
    return query.order_by(Issue.created_at.desc()).all()


def issue_stats(db: Session, viewer: User) -> Dict[str, int]:
    if not _is_manager(viewer):
        raise Forbidden("Only managers and admins can view issue statistics")
    counts = dict(db.query(Issue.status, func.count(Issue.id)).group_by(Issue.status).all())
    urgent = (
        db.query(func.count(Issue.id))
        .filter(Issue.priority.in_(("urgent", "emergency")), Issue.status != ISSUE_RESOLVED)
        .scalar()
        or 0
    )
    return {
        "total": sum(counts.values()),
        "open": counts.get(ISSUE_OPEN, 0),
        "in_progress": counts.get(ISSUE_IN_PROGRESS, 0),
        "resolved": counts.get(ISSUE_RESOLVED, 0),
        "urgent_unresolved": urgent,
    }
