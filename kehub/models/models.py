import uuid
from datetime import datetime, date, time
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Time,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    JSON,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


ROLE_ADMIN = "Admin"
ROLE_MANAGER = "Manager"
ROLE_ELECTRICIAN = "Electrician"
ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_ELECTRICIAN)

USER_ACTIVE = "Active"
USER_INACTIVE = "Inactive"
USER_STATUSES = (USER_ACTIVE, USER_INACTIVE)

TASK_PRIORITIES = ("High", "Medium", "Low")

TASK_PENDING = "Pending"
TASK_ASSIGNED = "Assigned"
TASK_IN_PROGRESS = "In Progress"
TASK_COMPLETED = "Completed"
TASK_CANCELLED = "Cancelled"
TASK_STATUSES = (TASK_PENDING, TASK_ASSIGNED, TASK_IN_PROGRESS, TASK_COMPLETED, TASK_CANCELLED)
TERMINAL_TASK_STATUSES = frozenset({TASK_COMPLETED, TASK_CANCELLED})

ISSUE_PRIORITIES = ("normal", "urgent", "emergency")
ISSUE_OPEN = "open"
ISSUE_IN_PROGRESS = "in_progress"
ISSUE_RESOLVED = "resolved"
ISSUE_STATUSES = (ISSUE_OPEN, ISSUE_IN_PROGRESS, ISSUE_RESOLVED)


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = uuid_pk()
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # Admin|Manager|Electrician
    # employee_code lives on users only; electrician_details does not duplicate it
    employee_code: Mapped[Optional[str]] = mapped_column(String(50), unique=True)
    status: Mapped[str] = mapped_column(String(20), default=USER_ACTIVE, nullable=False, index=True)  # Active|Inactive
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    electrician_detail = relationship("ElectricianDetail", back_populates="user", uselist=False)

    @property
    def is_active(self) -> bool:
        return self.status == USER_ACTIVE


class ElectricianDetail(Base):
    __tablename__ = "electrician_details"

    electrician_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), primary_key=True
    )
    skills: Mapped[Optional[str]] = mapped_column(Text)
    certifications: Mapped[Optional[str]] = mapped_column(Text)
    rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)  # mean of all ratings on assigned tasks
    total_tasks_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    join_date: Mapped[Optional[date]] = mapped_column(Date, default=date.today)

    user = relationship("User", back_populates="electrician_detail")


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(String(500))
    email: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[uuid.UUID] = uuid_pk()
    task_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("customers.id"), index=True)
    assigned_to: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), index=True)
    created_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(20), default="Medium", nullable=False)  # High|Medium|Low
    status: Mapped[str] = mapped_column(String(20), default=TASK_PENDING, nullable=False, index=True)
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date, index=True)
    scheduled_time_start: Mapped[Optional[time]] = mapped_column(Time)
    scheduled_time_end: Mapped[Optional[time]] = mapped_column(Time)
    estimated_hours: Mapped[Optional[float]] = mapped_column(Float)
    actual_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    actual_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("Customer")
    assignee = relationship("User", foreign_keys=[assigned_to])
    creator = relationship("User", foreign_keys=[created_by])
    materials = relationship("TaskMaterial", order_by="TaskMaterial.material_name")
    completion = relationship("TaskCompletion", uselist=False)
    rating = relationship("TaskRating", uselist=False)


class TaskMaterial(Base):
    __tablename__ = "task_materials"

    id: Mapped[uuid.UUID] = uuid_pk()
    task_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("tasks.id"), nullable=False, index=True)
    material_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class TaskCompletion(Base):
    __tablename__ = "task_completions"

    id: Mapped[uuid.UUID] = uuid_pk()
    task_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("tasks.id"), unique=True, nullable=False)
    completion_notes: Mapped[Optional[str]] = mapped_column(Text)
    materials_used: Mapped[Optional[str]] = mapped_column(Text)
    additional_charges: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class TaskRating(Base):
    __tablename__ = "task_ratings"

    id: Mapped[uuid.UUID] = uuid_pk()
    task_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("tasks.id"), unique=True, nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)  # 1..5
    feedback: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Issue(Base):
    __tablename__ = "issues"

    id: Mapped[uuid.UUID] = uuid_pk()
    task_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("tasks.id"), nullable=False, index=True)
    reported_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    issue_type: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(20), default="normal", nullable=False)  # normal|urgent|emergency
    status: Mapped[str] = mapped_column(String(20), default=ISSUE_OPEN, nullable=False, index=True)  # open|in_progress|resolved
    requested_action: Mapped[Optional[str]] = mapped_column(Text)
    resolved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    task = relationship("Task")
    reporter = relationship("User", foreign_keys=[reported_by])
    resolver = relationship("User", foreign_keys=[resolved_by])


class Notification(Base):
    """Per-user notices raised by task and issue events"""
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # task|issue
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_notifications_user_read', 'user_id', 'is_read'),
    )


class ActivityLog(Base):
    """Append-only audit trail of significant actions"""
    __tablename__ = "activity_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    user = relationship("User")

    __table_args__ = (
        Index('idx_activity_user_created', 'user_id', 'created_at'),
    )


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[uuid.UUID] = uuid_pk()
    report_type: Mapped[str] = mapped_column(String(50), nullable=False)
    generated_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True
    )
    parameters: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
