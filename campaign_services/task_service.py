"""TaskService -- workflow-assigned tasks."""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from campaign_kernel.domain.clock import Clock
from campaign_kernel.logging_config import get_logger
from campaign_kernel.models import OPEN_TASK_STATUSES, Task, TaskPriority, TaskStatus, User

logger = get_logger("services.task")

DEFAULT_DUE_IN_DAYS = 7


class TaskService:
    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def find_open_task(
        self,
        tenant_id: UUID,
        entity_id: UUID,
        task_type: str,
    ) -> Task | None:
        return self._session.scalars(
            select(Task).where(
                Task.organization_id == tenant_id,
                Task.entity_id == entity_id,
                Task.task_type == task_type,
                Task.status.in_(OPEN_TASK_STATUSES),
            )
        ).first()

    def pick_assignee(self, tenant_id: UUID, role: str) -> UUID | None:
        """First active user holding ``role``, oldest account first."""
        return self._session.scalars(
            select(User.id)
            .where(
                User.organization_id == tenant_id,
                User.role == role,
                User.is_active.is_(True),
            )
            .order_by(User.created_at, User.email)
        ).first()

    def create_task(
        self,
        tenant_id: UUID,
        *,
        assigned_to_id: UUID,
        entity_type: str,
        entity_id: UUID,
        task_type: str,
        title: str,
        description: str | None = None,
        priority: str = TaskPriority.MEDIUM.value,
        due_in_days: int = DEFAULT_DUE_IN_DAYS,
        created_by_id: UUID | None = None,
    ) -> Task:
        task = Task(
            organization_id=tenant_id,
            assigned_to_id=assigned_to_id,
            entity_type=entity_type,
            entity_id=entity_id,
            task_type=task_type,
            title=title,
            description=description,
            priority=TaskPriority(priority).value,
            status=TaskStatus.OPEN.value,
            due_date=self._clock.now() + timedelta(days=due_in_days),
            created_by_id=created_by_id,
        )
        self._session.add(task)
        self._session.flush()
        logger.info(
            "task_created",
            extra={
                "task_id": str(task.id),
                "task_type": task_type,
                "assigned_to_id": str(assigned_to_id),
                "priority": task.priority,
            },
        )
        return task
