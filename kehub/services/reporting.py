"""
Dashboard statistics and generated reports.

Aggregates are computed from ORM rows so they behave the same on SQLite and
PostgreSQL.
"""
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..logging import structlog
from ..models.models import (
    Report,
    Task,
    User,
    ROLE_ADMIN,
    ROLE_ELECTRICIAN,
    ROLE_MANAGER,
    TASK_ASSIGNED,
    TASK_COMPLETED,
    TASK_IN_PROGRESS,
    TASK_PENDING,
    USER_ACTIVE,
    USER_INACTIVE,
)
from .errors import Forbidden, ValidationError


logger = structlog.get_logger(__name__)

REPORT_USER_PERFORMANCE = "user_performance"
REPORT_TYPES = (REPORT_USER_PERFORMANCE,)

PERFORMANCE_LABELS = (
    (4.5, "Excellent"),
    (4.0, "Very Good"),
    (3.5, "Good"),
    (3.0, "Satisfactory"),
)


def _count_by(db: Session, column, *criteria) -> Dict[Any, int]:
    query = db.query(column, func.count(column))
    if criteria:
        query = query.filter(*criteria)
    return dict(query.group_by(column).all())


def _start_of_today() -> datetime:
    return datetime.combine(datetime.utcnow().date(), time.min)


def dashboard_stats(db: Session, viewer: User) -> Dict[str, int]:
    if viewer.role == ROLE_ADMIN:
        by_status = _count_by(db, User.status)
        by_role = _count_by(db, User.role)
        tasks = _count_by(db, Task.status)
        return {
            "totalUsers": sum(by_status.values()),
            "activeUsers": by_status.get(USER_ACTIVE, 0),
            "inactiveUsers": by_status.get(USER_INACTIVE, 0),
            "totalAdmins": by_role.get(ROLE_ADMIN, 0),
            "totalManagers": by_role.get(ROLE_MANAGER, 0),
            "totalElectricians": by_role.get(ROLE_ELECTRICIAN, 0),
            "totalTasks": sum(tasks.values()),
            "completedTasks": tasks.get(TASK_COMPLETED, 0),
            "pendingTasks": tasks.get(TASK_PENDING, 0),
        }

    if viewer.role == ROLE_MANAGER:
        tasks = _count_by(db, Task.status, Task.created_by == viewer.id)
        available = (
            db.query(func.count(User.id))
            .filter(User.role == ROLE_ELECTRICIAN, User.status == USER_ACTIVE)
            .scalar()
        )
        today = (
            db.query(func.count(Task.id))
            .filter(Task.created_by == viewer.id, Task.created_at >= _start_of_today())
            .scalar()
        )
        return {
            "totalTasks": sum(tasks.values()),
            "pendingTasks": tasks.get(TASK_PENDING, 0),
            "assignedTasks": tasks.get(TASK_ASSIGNED, 0),
            "inProgressTasks": tasks.get(TASK_IN_PROGRESS, 0),
            "completedTasks": tasks.get(TASK_COMPLETED, 0),
            "availableElectricians": available or 0,
            "todayTasks": today or 0,
        }

    tasks = _count_by(db, Task.status, Task.assigned_to == viewer.id)
    today = _count_by(db, Task.status, Task.assigned_to == viewer.id, Task.scheduled_date == date.today())
    return {
        "totalTasks": sum(tasks.values()),
        "assignedTasks": tasks.get(TASK_ASSIGNED, 0),
        "inProgressTasks": tasks.get(TASK_IN_PROGRESS, 0),
        "completedTasks": tasks.get(TASK_COMPLETED, 0),
        "todayTasks": sum(today.values()),
        "todayCompleted": today.get(TASK_COMPLETED, 0),
    }


def performance_label(task_count: int, avg_rating: Optional[float]) -> str:
    if task_count == 0:
        return "No Tasks"
    if avg_rating is None:
        return "No Ratings"
    for threshold, label in PERFORMANCE_LABELS:
        if avg_rating >= threshold:
            return label
    return "Needs Improvement"


def _completion_hours(task: Task) -> Optional[float]:
    if task.status != TASK_COMPLETED:
        return None
    if task.actual_start_time and task.actual_end_time:
        start, end = task.actual_start_time, task.actual_end_time
    else:
        start, end = task.created_at, task.updated_at
    if not start or not end:
        return None
    return (end - start).total_seconds() / 3600.0


def _mean(values: List[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def _user_performance(db: Session, start_date: Optional[date], end_date: Optional[date]) -> Dict[str, Any]:
    electricians = (
        db.query(User)
        .filter(User.role == ROLE_ELECTRICIAN, User.status == USER_ACTIVE)
        .order_by(User.full_name.asc())
        .all()
    )
    task_query = db.query(Task).filter(Task.assigned_to.in_([e.id for e in electricians]))
    if start_date:
        task_query = task_query.filter(Task.created_at >= datetime.combine(start_date, time.min))
    if end_date:
        task_query = task_query.filter(Task.created_at <= datetime.combine(end_date, time.max))
    tasks_by_user: Dict[Any, List[Task]] = {}
    for task in task_query.all():
        tasks_by_user.setdefault(task.assigned_to, []).append(task)

    performance = []
    all_ratings: List[int] = []
    best_name, best_score = None, None
    for electrician in electricians:
        tasks = tasks_by_user.get(electrician.id, [])
        completed = [t for t in tasks if t.status == TASK_COMPLETED]
        ratings = [t.rating.rating for t in tasks if t.rating is not None]
        hours = [h for h in (_completion_hours(t) for t in completed) if h is not None]
        avg_rating = _mean(ratings)
        avg_hours = _mean(hours)
        all_ratings.extend(ratings)

        performance.append({
            "id": str(electrician.id),
            "full_name": electrician.full_name,
            "employee_code": electrician.employee_code,
            "total_tasks": len(tasks),
            "completed_tasks": len(completed),
            "avg_completion_time": round(avg_hours, 2) if avg_hours is not None else None,
            "avg_rating": round(avg_rating, 2) if avg_rating is not None else None,
            "performance_rating": performance_label(len(tasks), avg_rating),
        })

        if tasks:
            score = len(completed) * (avg_rating if avg_rating is not None else 1)
            if best_score is None or score > best_score:
                best_name, best_score = electrician.full_name, score

    overall = _mean(all_ratings)
    return {
        "performance": performance,
        "summary": {
            "total_electricians": len(electricians),
            "total_tasks_assigned": sum(p["total_tasks"] for p in performance),
            "total_completed": sum(p["completed_tasks"] for p in performance),
            "overall_avg_rating": round(overall, 2) if overall is not None else None,
            "best_performer": best_name or "N/A",
        },
        "report_date": datetime.utcnow().isoformat(),
    }


def _record_report(db: Session, viewer: User, report_type: str, parameters: Dict[str, Any]) -> None:
    """Write the report log in its own session; a failure here never reaches the caller."""
    log_db = Session(bind=db.get_bind())
    try:
        log_db.add(Report(report_type=report_type, generated_by=viewer.id, parameters=parameters))
        log_db.commit()
    except SQLAlchemyError as e:
        log_db.rollback()
        logger.warning("report_log_failed", report_type=report_type, error=str(e))
    finally:
        log_db.close()


def generate_report(
    db: Session,
    viewer: User,
    report_type: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Dict[str, Any]:
    if report_type not in REPORT_TYPES:
        raise ValidationError("Invalid report type")
    if viewer.role not in (ROLE_MANAGER, ROLE_ADMIN):
        raise Forbidden("Unauthorized to generate this report")

    data = _user_performance(db, start_date, end_date)
    _record_report(db, viewer, report_type, {
        "start_date": start_date.isoformat() if start_date else None,
        "end_date": end_date.isoformat() if end_date else None,
    })
    logger.info("report_generated", report_type=report_type, viewer_id=str(viewer.id))
    return data
