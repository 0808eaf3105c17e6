"""
Task Domain Service - pure domain layer
=======================================
No sessions, no commits, no logging. Only task status rules:

- status values are validated against TaskStatus
- entering ``completed`` stamps completed_at / completed_by
- leaving ``completed`` clears both
- completing a task with incomplete prerequisites needs an explicit override
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional

from exceptions import IncompletePrerequisites, InvalidStatus


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class PlanStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class HistoryAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    REORDERED = "reordered"
    DELETED = "deleted"


@dataclass
class TaskStatusChanged:
    """Domain event - emitted when a task's status actually changes"""
    task_id: str
    plan_id: str
    phase_id: str
    from_status: str
    to_status: str
    actor: Optional[str]
    override_prerequisites: bool
    timestamp: datetime


def parse_task_status(value) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise InvalidStatus(value, [status.value for status in TaskStatus]) from None


def parse_plan_status(value) -> PlanStatus:
    try:
        return PlanStatus(value)
    except ValueError:
        raise InvalidStatus(value, [status.value for status in PlanStatus]) from None


class TaskDomainService:
    """
    Pure status logic for plan tasks.

    Does NOT:
    - flush or commit
    - touch the dependency table (callers pass the incomplete prerequisites in)
    - log
    """

    def check_prerequisites(
        self,
        task,
        new_status: TaskStatus,
        incomplete_prerequisites: List[dict],
        override_prerequisites: bool = False
    ) -> None:
        """Raise IncompletePrerequisites unless completion is allowed."""
        if new_status != TaskStatus.COMPLETED:
            return
        if not incomplete_prerequisites or override_prerequisites:
            return
        raise IncompletePrerequisites(task.id, incomplete_prerequisites)

    def apply_status(
        self,
        task,
        new_status: TaskStatus,
        actor: Optional[str],
        now: datetime,
        override_prerequisites: bool = False
    ) -> Optional[TaskStatusChanged]:
        """
        Move ``task`` to ``new_status``. Returns the event, or None when the
        status is unchanged.
        """
        from_status = task.status
        if from_status == new_status.value:
            return None

        task.status = new_status.value

        if new_status == TaskStatus.COMPLETED:
            task.completed_at = now
            task.completed_by = actor
        elif from_status == TaskStatus.COMPLETED.value:
            task.completed_at = None
            task.completed_by = None

        return TaskStatusChanged(
            task_id=str(task.id),
            plan_id=str(task.plan_id),
            phase_id=str(task.phase_id),
            from_status=from_status,
            to_status=new_status.value,
            actor=actor,
            override_prerequisites=override_prerequisites,
            timestamp=now,
        )

    def history_action(self, event: Optional[TaskStatusChanged]) -> HistoryAction:
        if event is None:
            return HistoryAction.UPDATED
        if event.to_status == TaskStatus.COMPLETED.value:
            return HistoryAction.COMPLETED
        if event.to_status == TaskStatus.SKIPPED.value:
            return HistoryAction.SKIPPED
        return HistoryAction.UPDATED

    def snapshot(self, task) -> dict:
        """JSON-safe view of a task for the history trail"""
        return {
            "title": task.title,
            "description": task.description,
            "estimated_time": task.estimated_time,
            "resources": list(task.resources or []),
            "order": task.order,
            "status": task.status,
            "phase_id": str(task.phase_id),
            "assignee_id": task.assignee_id,
            "is_custom": task.is_custom,
            "completed_at": task.completed_at.isoformat() if task.completed_at else None,
            "completed_by": task.completed_by,
        }


# Singleton instance
task_domain_service = TaskDomainService()
