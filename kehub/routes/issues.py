import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import User, ROLE_ADMIN, ROLE_ELECTRICIAN, ROLE_MANAGER
from ..schemas.issues import IssueCreate, IssueFilters, IssueStatusUpdate
from ..services import issue_service


router = APIRouter(prefix="/api/issues", tags=["issues"])

managers = require_roles(ROLE_MANAGER, ROLE_ADMIN)


@router.get("")
def list_issues(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    me: User = Depends(managers),
):
    filters = IssueFilters(status=status, priority=priority, start_date=start_date, end_date=end_date)
    issues = issue_service.list_issues(db, me, filters)
    return {"success": True, "data": [issue_service.serialize_issue(i) for i in issues]}


@router.get("/stats")
def issue_stats(db: Session = Depends(get_db), me: User = Depends(managers)):
    return {"success": True, "data": issue_service.issue_stats(db, me)}


@router.get("/{issue_id}")
def get_issue(issue_id: uuid.UUID, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    issue = issue_service.get_issue(db, issue_id, me)
    return {"success": True, "data": issue_service.serialize_issue(issue)}


@router.post("", status_code=201)
def create_issue(
    payload: IssueCreate,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles(ROLE_ELECTRICIAN)),
):
    issue = issue_service.create_issue(db, me, payload)
    return {"success": True, "message": "Issue reported successfully", "issueId": str(issue.id)}


@router.patch("/{issue_id}/status")
def update_issue_status(
    issue_id: uuid.UUID,
    payload: IssueStatusUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(managers),
):
    issue_service.update_issue_status(db, issue_id, me, payload.status, payload.resolution_notes)
    return {"success": True, "message": "Issue status updated successfully"}
