import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import User, ROLE_ADMIN, ROLE_ELECTRICIAN, ROLE_MANAGER
from ..schemas.tasks import (
    TaskAssign,
    TaskComplete,
    TaskCreate,
    TaskRatingInput,
    TaskStatusUpdate,
    TaskUpdate,
)
from ..services import task_service


router = APIRouter(prefix="/api/tasks", tags=["tasks"])

managers = require_roles(ROLE_MANAGER, ROLE_ADMIN)


@router.get("")
def list_tasks(
    status: Optional[str] = None,
    scheduled_date: Optional[date] = Query(default=None, alias="date"),
    electrician_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    tasks = task_service.list_tasks(
        db, me, status=status, scheduled_date=scheduled_date, electrician_id=electrician_id
    )
    return {"success": True, "data": [task_service.serialize_task(t) for t in tasks]}


@router.get("/{task_id}")
def get_task(task_id: uuid.UUID, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    task = task_service.get_task(db, task_id, me)
    return {"success": True, "data": task_service.serialize_task(task, include_details=True)}


@router.post("", status_code=201)
def create_task(payload: TaskCreate, db: Session = Depends(get_db), me: User = Depends(managers)):
    task = task_service.create_task(db, me, payload)
    return {
        "success": True,
        "message": "Task created successfully",
        "taskId": str(task.id),
        "taskCode": task.task_code,
    }


@router.put("/{task_id}")
def update_task(
    task_id: uuid.UUID,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(managers),
):
    task = task_service.update_task(db, task_id, me, payload)
    return {"success": True, "message": "Task updated successfully", "data": task_service.serialize_task(task)}


@router.patch("/{task_id}/assign")
def assign_task(
    task_id: uuid.UUID,
    payload: TaskAssign,
    db: Session = Depends(get_db),
    me: User = Depends(managers),
):
    task_service.assign_task(db, task_id, payload.electrician_id, me)
    return {"success": True, "message": "Task assigned successfully"}


@router.patch("/{task_id}/status")
def update_task_status(
    task_id: uuid.UUID,
    payload: TaskStatusUpdate,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    task_service.update_task_status(db, task_id, payload.status, me)
    return {"success": True, "message": "Task status updated successfully"}


@router.post("/{task_id}/complete")
def complete_task(
    task_id: uuid.UUID,
    payload: TaskComplete,
    db: Session = Depends(get_db),
    me: User = Depends(require_roles(ROLE_ELECTRICIAN)),
):
    task_service.complete_task(db, task_id, me, payload)
    return {"success": True, "message": "Task completed successfully"}


@router.post("/{task_id}/rating")
def rate_task(
    task_id: uuid.UUID,
    payload: TaskRatingInput,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_user),
):
    result = task_service.add_task_rating(db, task_id, payload.rating, payload.feedback, me)
    return {"success": True, "message": "Rating added successfully", "data": result}


@router.delete("/{task_id}")
def delete_task(task_id: uuid.UUID, db: Session = Depends(get_db), me: User = Depends(managers)):
    task_service.delete_task(db, task_id, me)
    return {"success": True, "message": "Task deleted successfully"}
