import uuid
from datetime import date
from typing import Optional
from pydantic import BaseModel, field_validator


class IssueCreate(BaseModel):
    task_id: uuid.UUID
    issue_type: str
    description: str
    priority: Optional[str] = None
    requested_action: Optional[str] = None

    @field_validator('issue_type', 'description')
    @classmethod
    def required_text(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("Field is required")
        return v

    @field_validator('priority', 'requested_action', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class IssueStatusUpdate(BaseModel):
    status: str
    resolution_notes: Optional[str] = None


class IssueFilters(BaseModel):
    status: Optional[str] = None
    priority: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
