import uuid
from datetime import date, time
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator

from ..models.models import TASK_PRIORITIES


class MaterialInput(BaseModel):
    name: str
    quantity: Optional[int] = None

    @field_validator('name')
    @classmethod
    def name_required(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("Material name is required")
        return v


class TaskFields(BaseModel):
    title: str
    description: Optional[str] = None
    priority: str
    scheduled_date: date
    scheduled_time_start: Optional[time] = None
    scheduled_time_end: Optional[time] = None
    estimated_hours: float
    materials: Optional[List[MaterialInput]] = None

    @field_validator('title')
    @classmethod
    def title_required(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @field_validator('description', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('priority')
    @classmethod
    def valid_priority(cls, v):
        if v not in TASK_PRIORITIES:
            raise ValueError(f"Priority must be one of {', '.join(TASK_PRIORITIES)}")
        return v


class TaskCreate(TaskFields):
    customer_name: str
    customer_phone: str
    customer_address: Optional[str] = None
    customer_email: Optional[str] = None

    @field_validator('customer_phone')
    @classmethod
    def phone_required(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("Customer phone is required")
        return v


class TaskUpdate(TaskFields):
    # customer fields coalesce: only supplied values overwrite
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    customer_email: Optional[str] = None
    status: Optional[str] = None

    @field_validator('customer_name', 'customer_phone', 'customer_address', 'customer_email', mode='before')
    @classmethod
    def blank_customer_field(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class TaskAssign(BaseModel):
    electrician_id: uuid.UUID


class TaskStatusUpdate(BaseModel):
    status: str


class TaskComplete(BaseModel):
    completion_notes: Optional[str] = None
    materials_used: Optional[str] = None
    additional_charges: Optional[float] = Field(default=0, ge=0)


class TaskRatingInput(BaseModel):
    rating: int
    feedback: Optional[str] = None
