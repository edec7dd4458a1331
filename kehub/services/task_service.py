"""
Task lifecycle service.

Pending -> Assigned -> In Progress -> Completed | Cancelled. Completed and
Cancelled are terminal. Every write runs as one unit of work together with
the notifications and activity entries it raises.
"""
import secrets
import uuid
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import transaction
from ..logging import structlog
from ..models.models import (
    Customer,
    Issue,
    Task,
    TaskCompletion,
    TaskMaterial,
    TaskRating,
    User,
    ROLE_ADMIN,
    ROLE_ELECTRICIAN,
    ROLE_MANAGER,
    TASK_ASSIGNED,
    TASK_CANCELLED,
    TASK_COMPLETED,
    TASK_IN_PROGRESS,
    TASK_PENDING,
    TASK_STATUSES,
    TERMINAL_TASK_STATUSES,
    USER_ACTIVE,
)
from ..schemas.tasks import MaterialInput, TaskComplete, TaskCreate, TaskUpdate
from .audit import log_activity
from .errors import (
    Forbidden,
    InvalidAssignee,
    InvalidRating,
    InvalidStatus,
    NotFound,
    TerminalStateConflict,
    ValidationError,
)
from .notifications import create_notification, notify_active_managers
from .user_service import ensure_electrician_detail


logger = structlog.get_logger(__name__)


def generate_task_code(now: Optional[datetime] = None) -> str:
    """T + UTC timestamp (YYMMDDHHMMSS) + 4 random hex chars; the column is unique."""
    now = now or datetime.utcnow()
    return f"T{now:%y%m%d%H%M%S}{secrets.token_hex(2).upper()}"


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_task(task: Task, *, include_details: bool = False) -> Dict[str, Any]:
    customer = task.customer
    data: Dict[str, Any] = {
        "id": str(task.id),
        "task_code": task.task_code,
        "title": task.title,
        "description": task.description,
        "priority": task.priority,
        "status": task.status,
        "scheduled_date": _iso(task.scheduled_date),
        "scheduled_time_start": _iso(task.scheduled_time_start),
        "scheduled_time_end": _iso(task.scheduled_time_end),
        "estimated_hours": task.estimated_hours,
        "actual_start_time": _iso(task.actual_start_time),
        "actual_end_time": _iso(task.actual_end_time),
        "customer_id": str(task.customer_id) if task.customer_id else None,
        "customer_name": customer.name if customer else None,
        "customer_phone": customer.phone if customer else None,
        "customer_address": customer.address if customer else None,
        "assigned_to": str(task.assigned_to) if task.assigned_to else None,
        "electrician_name": task.assignee.full_name if task.assignee else None,
        "created_by": str(task.created_by) if task.created_by else None,
        "created_by_name": task.creator.full_name if task.creator else None,
        "created_at": _iso(task.created_at),
        "updated_at": _iso(task.updated_at),
        "rating": task.rating.rating if task.rating else None,
    }
    if include_details:
        completion = task.completion
        data["customer_email"] = customer.email if customer else None
        data["materials"] = [
            {"id": str(m.id), "material_name": m.material_name, "quantity": m.quantity}
            for m in task.materials
        ]
        data["completion"] = {
            "completion_notes": completion.completion_notes,
            "materials_used": completion.materials_used,
            "additional_charges": completion.additional_charges,
            "completed_at": _iso(completion.completed_at),
        } if completion else None
        data["feedback"] = task.rating.feedback if task.rating else None
    return data


def _get_task(db: Session, task_id: uuid.UUID, *, lock: bool = False) -> Task:
    query = db.query(Task).filter(Task.id == task_id)
    if lock:
        query = query.with_for_update()
    task = query.first()
    if not task:
        raise NotFound("Task not found")
    return task


def _resolve_customer(db: Session, *, name: str, phone: str, address=None, email=None) -> Customer:
    customer = db.query(Customer).filter(Customer.phone == phone).first()
    if customer:
        return customer
    customer = Customer(name=name, phone=phone, address=address, email=email)
    db.add(customer)
    db.flush()
    return customer


def _add_materials(db: Session, task_id: uuid.UUID, materials: Optional[Iterable[MaterialInput]]) -> None:
    for material in materials or []:
        db.add(TaskMaterial(
            task_id=task_id,
            material_name=material.name,
            quantity=material.quantity or 1,
        ))


def _stamp_status(task: Task, new_status: str, now: datetime) -> None:
    task.status = new_status
    if new_status == TASK_IN_PROGRESS:
        task.actual_start_time = now
    elif new_status == TASK_COMPLETED:
        task.actual_end_time = now


def _ensure_can_touch(task: Task, actor: User) -> None:
    if actor.role == ROLE_ELECTRICIAN and task.assigned_to != actor.id:
        raise Forbidden("You can only modify tasks assigned to you")


def list_tasks(
    db: Session,
    viewer: User,
    *,
    status: Optional[str] = None,
    scheduled_date: Optional[date] = None,
    electrician_id: Optional[uuid.UUID] = None,
) -> List[Task]:
    query = db.query(Task)
    if viewer.role == ROLE_ELECTRICIAN:
        query = query.filter(Task.assigned_to == viewer.id)
    elif electrician_id:
        query = query.filter(Task.assigned_to == electrician_id)
    if status:
        query = query.filter(Task.status == status)
    if scheduled_date:
        query = query.filter(Task.scheduled_date == scheduled_date)
    return query.order_by(Task.scheduled_date.desc(), Task.created_at.desc()).all()


def get_task(db: Session, task_id: uuid.UUID, viewer: User) -> Task:
    task = _get_task(db, task_id)
    if viewer.role == ROLE_ELECTRICIAN and task.assigned_to != viewer.id:
        raise Forbidden("You do not have access to this task")
    return task


def create_task(db: Session, creator: User, payload: TaskCreate) -> Task:
    with transaction(db):
        customer = _resolve_customer(
            db,
            name=payload.customer_name,
            phone=payload.customer_phone,
            address=payload.customer_address,
            email=payload.customer_email,
        )
        task = Task(
            task_code=generate_task_code(),
            title=payload.title,
            description=payload.description,
            customer_id=customer.id,
            priority=payload.priority,
            created_by=creator.id,
            status=TASK_PENDING,
            assigned_to=None,
            scheduled_date=payload.scheduled_date,
            scheduled_time_start=payload.scheduled_time_start,
            scheduled_time_end=payload.scheduled_time_end,
            estimated_hours=payload.estimated_hours,
        )
        db.add(task)
        db.flush()
        _add_materials(db, task.id, payload.materials)

        notify_active_managers(
            db, "task", "New Task Created",
            f'New task "{task.title}" has been created and needs assignment',
        )
        log_activity(db, creator.id, "Create Task", f"Created task {task.task_code}: {task.title}")
    logger.info("task_created", task_id=str(task.id), task_code=task.task_code, creator_id=str(creator.id))
    return task


def assign_task(db: Session, task_id: uuid.UUID, electrician_id: uuid.UUID, actor: User) -> Task:
    with transaction(db):
        electrician = (
            db.query(User)
            .filter(
                User.id == electrician_id,
                User.role == ROLE_ELECTRICIAN,
                User.status == USER_ACTIVE,
            )
            .with_for_update()
            .first()
        )
        if not electrician:
            raise InvalidAssignee()

        task = _get_task(db, task_id, lock=True)
        if task.status in TERMINAL_TASK_STATUSES:
            raise TerminalStateConflict(f"Cannot assign a {task.status.lower()} task")

        task.assigned_to = electrician.id
        task.status = TASK_ASSIGNED
        create_notification(
            db, electrician.id, "task", "New Task Assigned",
            f"You have been assigned a new task #{task.task_code}",
        )
        log_activity(
            db, actor.id, "Assign Task",
            f"Assigned task {task.task_code} to {electrician.full_name}",
        )
    logger.info("task_assigned", task_id=str(task_id), electrician_id=str(electrician_id), actor_id=str(actor.id))
    return task


def update_task_status(db: Session, task_id: uuid.UUID, new_status: str, actor: User) -> Task:
    if new_status not in TASK_STATUSES:
        raise InvalidStatus(f"Status must be one of: {', '.join(TASK_STATUSES)}")

    with transaction(db):
        task = _get_task(db, task_id, lock=True)
        _ensure_can_touch(task, actor)
        if task.status in TERMINAL_TASK_STATUSES:
            raise TerminalStateConflict(f"Task is already {task.status.lower()}")

        previous = task.status
        if new_status != previous:
            _stamp_status(task, new_status, datetime.utcnow())
        log_activity(
            db, actor.id, "Task Status Update",
            f"Task {task.task_code} status changed from {previous} to {new_status}",
        )
    logger.info("task_status_changed", task_id=str(task_id), status=new_status, actor_id=str(actor.id))
    return task


def complete_task(db: Session, task_id: uuid.UUID, actor: User, payload: TaskComplete) -> Task:
    """
    Mark a task Completed and upsert its completion record.

    The assignee's completion counter only moves when the completion row is
    created, so re-submitting a completion corrects it without double counting.
    """
    with transaction(db):
        task = _get_task(db, task_id, lock=True)
        if actor.role == ROLE_ELECTRICIAN and task.assigned_to != actor.id:
            raise Forbidden("Task is not assigned to you")
        if task.status == TASK_CANCELLED:
            raise TerminalStateConflict("Cancelled tasks cannot be completed")

        now = datetime.utcnow()
        task.status = TASK_COMPLETED
        task.actual_end_time = now

        completion = db.query(TaskCompletion).filter(TaskCompletion.task_id == task.id).first()
        created = completion is None
        if created:
            completion = TaskCompletion(task_id=task.id)
            db.add(completion)
        completion.completion_notes = payload.completion_notes
        completion.materials_used = payload.materials_used
        completion.additional_charges = payload.additional_charges or 0.0
        completion.completed_at = now

        if actor.role == ROLE_ELECTRICIAN and created:
            detail = ensure_electrician_detail(db, actor.id, lock=True)
            detail.total_tasks_completed = (detail.total_tasks_completed or 0) + 1

        log_activity(db, actor.id, "Complete Task", f"Completed task {task.task_code}")
    logger.info("task_completed", task_id=str(task_id), actor_id=str(actor.id), first_completion=created)
    return task


def _patch_customer(db: Session, task: Task, payload: TaskUpdate) -> None:
    supplied = {
        "name": payload.customer_name,
        "phone": payload.customer_phone,
        "address": payload.customer_address,
        "email": payload.customer_email,
    }
    supplied = {k: v for k, v in supplied.items() if v is not None}
    if not supplied:
        return

    if task.customer_id is None:
        if "phone" in supplied and "name" in supplied:
            customer = _resolve_customer(db, **supplied)
            task.customer_id = customer.id
        return

    customer = db.query(Customer).filter(Customer.id == task.customer_id).first()
    if customer is None:
        return
    new_phone = supplied.get("phone")
    if new_phone and new_phone != customer.phone:
        clash = db.query(Customer).filter(Customer.phone == new_phone, Customer.id != customer.id).first()
        if clash:
            raise ValidationError("Another customer already uses this phone number")
    for field, value in supplied.items():
        setattr(customer, field, value)


def update_task(db: Session, task_id: uuid.UUID, actor: User, payload: TaskUpdate) -> Task:
    if payload.status is not None and payload.status not in TASK_STATUSES:
        raise InvalidStatus(f"Status must be one of: {', '.join(TASK_STATUSES)}")

    with transaction(db):
        task = _get_task(db, task_id, lock=True)
        if task.status in TERMINAL_TASK_STATUSES:
            raise TerminalStateConflict(f"Cannot update a {task.status.lower()} task")

        _patch_customer(db, task, payload)

        task.title = payload.title
        task.description = payload.description
        task.priority = payload.priority
        task.scheduled_date = payload.scheduled_date
        task.scheduled_time_start = payload.scheduled_time_start
        task.scheduled_time_end = payload.scheduled_time_end
        task.estimated_hours = payload.estimated_hours

        if payload.status is not None and payload.status != task.status:
            if payload.status == TASK_PENDING and task.assigned_to is not None:
                previous_assignee = task.assigned_to
                task.assigned_to = None
                create_notification(
                    db, previous_assignee, "task", "Task Unassigned",
                    f"You have been unassigned from task #{task.task_code}",
                )
            _stamp_status(task, payload.status, datetime.utcnow())

        if payload.materials is not None:
            db.query(TaskMaterial).filter(TaskMaterial.task_id == task.id).delete(synchronize_session=False)
            _add_materials(db, task.id, payload.materials)

        log_activity(db, actor.id, "Update Task", f"Updated task {task.task_code}")
    logger.info("task_updated", task_id=str(task_id), actor_id=str(actor.id))
    return task


def delete_task(db: Session, task_id: uuid.UUID, actor: User) -> None:
    if actor.role not in (ROLE_MANAGER, ROLE_ADMIN):
        raise Forbidden("Only managers and admins can delete tasks")

    with transaction(db):
        task = _get_task(db, task_id, lock=True)
        if task.status in TERMINAL_TASK_STATUSES:
            raise TerminalStateConflict(f"Cannot delete a {task.status.lower()} task")

        task_code, title = task.task_code, task.title
        for model in (TaskRating, TaskCompletion, TaskMaterial, Issue):
            db.query(model).filter(model.task_id == task_id).delete(synchronize_session=False)
        db.query(Task).filter(Task.id == task_id).delete(synchronize_session=False)
        db.expunge(task)

        log_activity(db, actor.id, "Delete Task", f"Deleted task {task_code}: {title}")
    logger.info("task_deleted", task_id=str(task_id), actor_id=str(actor.id))


def add_task_rating(
    db: Session,
    task_id: uuid.UUID,
    rating: Any,
    feedback: Optional[str],
    actor: User,
) -> Dict[str, Any]:
    """
    Upsert the task's rating and recompute the assignee's average from
    every rating on tasks assigned to them.
    """
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidRating()

    with transaction(db):
        task = _get_task(db, task_id)
        now = datetime.utcnow()
        existing = db.query(TaskRating).filter(TaskRating.task_id == task.id).first()
        if existing:
            existing.rating = rating
            existing.feedback = feedback
            existing.updated_at = now
        else:
            db.add(TaskRating(task_id=task.id, rating=rating, feedback=feedback, created_at=now, updated_at=now))
        db.flush()

        electrician_rating = None
        if task.assigned_to is not None:
            detail = ensure_electrician_detail(db, task.assigned_to, lock=True)
            average = (
                db.query(func.avg(TaskRating.rating))
                .join(Task, TaskRating.task_id == Task.id)
                .filter(Task.assigned_to == task.assigned_to)
                .scalar()
            )
            detail.rating = float(average) if average is not None else 0.0
            electrician_rating = detail.rating

        log_activity(db, actor.id, "Rate Task", f"Rated task {task.task_code}: {rating}/5")
    logger.info("task_rated", task_id=str(task_id), rating=rating, actor_id=str(actor.id))
    return {"task_id": str(task_id), "rating": rating, "electrician_rating": electrician_rating}
