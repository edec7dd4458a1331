import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import User, ROLE_ADMIN, ROLE_MANAGER
from ..schemas.reports import ReportRequest
from ..services import audit, notifications, reporting


router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/stats")
def stats(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return {"success": True, "data": reporting.dashboard_stats(db, me)}


@router.get("/activities")
def activities(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return {"success": True, "data": audit.recent_activities(db, me)}


@router.get("/notifications")
def list_notifications(
    unread_only: bool = False,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    return {"success": True, "data": notifications.list_notifications(db, me, unread_only=unread_only)}


@router.patch("/notifications/{notification_id}/read")
def mark_read(notification_id: uuid.UUID, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    notifications.mark_notification_read(db, me, notification_id)
    return {"success": True, "message": "Notification marked as read"}


@router.post("/reports")
def generate_report(
    payload: ReportRequest,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles(ROLE_MANAGER, ROLE_ADMIN)),
):
    data = reporting.generate_report(db, me, payload.report_type, payload.start_date, payload.end_date)
    return {"success": True, "data": data}
