"""
Module: campaign_kernel.models.notification
Responsibility: In-app notifications and assigned tasks written by the
    workflow engine.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from campaign_kernel.db.base import TenantBase, UUIDString


class Notification(TenantBase):
    """
    One notification for one recipient.

    ``cleared_at`` is set when the workflow withdraws a notification (for
    example pending admin-approval notices after a rejection); cleared
    notifications stay for audit but are no longer pending.
    """

    __tablename__ = "notifications"

    __table_args__ = (
        Index("idx_notification_entity_type", "entity_id", "type"),
        Index("idx_notification_user_read", "user_id", "is_read"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    # "metadata" is reserved on declarative classes.
    payload: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cleared_at: Mapped[datetime | None] = mapped_column(nullable=True)


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"


OPEN_TASK_STATUSES = (TaskStatus.OPEN.value, TaskStatus.IN_PROGRESS.value)


class Task(TenantBase):
    __tablename__ = "tasks"

    __table_args__ = (
        Index("idx_task_entity_type_status", "entity_id", "task_type", "status"),
    )

    assigned_to_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    task_type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=TaskPriority.MEDIUM.value,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskStatus.OPEN.value,
    )
    due_date: Mapped[datetime] = mapped_column(nullable=False)
    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
