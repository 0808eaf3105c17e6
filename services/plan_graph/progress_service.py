"""
Progress Calculator
===================

Derives phase and plan completion from task state, persists the aggregates
and keeps the append-only snapshot trail.

``on_task_status_changed`` runs under the plan lock (``uow.lock_plan``) so
snapshot sequence numbers follow the order of the mutations. Callers that
change task status take the lock before writing.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from domain.progress_math import (
    average_task_hours,
    count_statuses,
    ensure_percentage,
    estimate_completion,
    overall_completion,
    parse_duration_days,
    percent,
    phase_completion,
    round_half_up,
    velocity_per_week,
)
from domain.task_domain_service import PlanStatus, TaskStatus
from exceptions import CrossPlanReference, InvalidField
from logging_config import get_logger
from models import ActionPlan, PlanPhase, PlanTask, ProgressSnapshot, as_utc, utcnow
from plan_access import require_phase, require_plan, require_task
from plan_config import PROGRESS_HISTORY_MAX_LIMIT, VELOCITY_WINDOW_DAYS

logger = get_logger(__name__)

_OPEN_STATUSES = (TaskStatus.NOT_STARTED.value, TaskStatus.IN_PROGRESS.value)


@dataclass
class PlanProgressState:
    """Completion of one plan, computed from a single read of its tasks"""
    phases: List[PlanPhase]
    tasks: List[PlanTask]
    phase_completion: Dict[object, int] = field(default_factory=dict)
    overall_completion: int = 0

    def tasks_in(self, phase_id) -> List[PlanTask]:
        return [task for task in self.tasks if task.phase_id == phase_id]


class ProgressService:
    """Completion aggregates, snapshots and dashboard metrics"""

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    async def recompute_phase_completion(self, uow, phase_id) -> int:
        """Recompute and persist one phase's completion percentage."""
        phase = await require_phase(uow, phase_id)
        tasks = await uow.tasks.list_for_phase(uow.session, phase_id)

        value = ensure_percentage(phase_completion(task.status for task in tasks), "phase_completion")
        if phase.completion_percentage != value:
            phase.completion_percentage = value
            await uow.session.flush()
        return value

    async def recompute_overall_completion(self, uow, plan_id) -> int:
        """Recompute every phase of the plan and the plan's mean completion."""
        plan = await require_plan(uow, plan_id)
        state = await self.refresh_aggregates(uow, plan)
        return state.overall_completion

    async def compute_state(self, uow, plan_id) -> PlanProgressState:
        phases = await uow.phases.list_for_plan(uow.session, plan_id)
        tasks = await uow.tasks.list_for_plan(uow.session, plan_id)

        state = PlanProgressState(phases=phases, tasks=tasks)
        for phase in phases:
            state.phase_completion[phase.id] = phase_completion(
                task.status for task in state.tasks_in(phase.id)
            )
        state.overall_completion = overall_completion(state.phase_completion.values())
        return state

    async def refresh_aggregates(self, uow, plan: ActionPlan) -> PlanProgressState:
        """Compute and persist phase and plan percentages, no snapshot."""
        state = await self.compute_state(uow, plan.id)

        for phase in state.phases:
            value = ensure_percentage(state.phase_completion[phase.id], "phase_completion")
            if phase.completion_percentage != value:
                phase.completion_percentage = value

        overall = ensure_percentage(state.overall_completion, "overall_completion")
        if plan.completion_percentage != overall:
            plan.completion_percentage = overall

        await uow.session.flush()
        return state

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    async def on_task_status_changed(
        self,
        uow,
        plan_id,
        task_id,
        changed_at: Optional[datetime] = None
    ) -> ProgressSnapshot:
        """
        Recompute the task's phase, then the plan, and append a snapshot.

        Takes the plan lock (re-entrant within one unit of work), so direct
        callers get contiguous sequence numbers too. The snapshot timestamp
        never goes backwards relative to the previous snapshot of the same plan.
        """
        await uow.lock_plan(plan_id)
        task = await require_task(uow, task_id)
        if task.plan_id != plan_id:
            raise CrossPlanReference(
                "Task does not belong to this plan",
                {"task_id": str(task_id), "plan_id": str(plan_id)},
            )

        await self.recompute_phase_completion(uow, task.phase_id)
        plan = await require_plan(uow, plan_id)
        state = await self.refresh_aggregates(uow, plan)

        counts = count_statuses(task.status for task in state.tasks)
        created_at = changed_at or utcnow()
        previous = await uow.snapshots.list_for_plan(uow.session, plan_id, limit=1, newest_first=True)
        if previous and as_utc(previous[0].created_at) > as_utc(created_at):
            created_at = as_utc(previous[0].created_at)

        snapshot = ProgressSnapshot(
            plan_id=plan_id,
            sequence=await uow.snapshots.next_sequence(uow.session, plan_id),
            completed_task_ids=[
                str(task.id) for task in state.tasks if task.status == TaskStatus.COMPLETED.value
            ],
            phase_completion={
                str(phase_id): value for phase_id, value in state.phase_completion.items()
            },
            overall_completion=state.overall_completion,
            total_tasks=counts["total"],
            completed_tasks=counts["completed"],
            in_progress_tasks=counts["in_progress"],
            skipped_tasks=counts["skipped"],
            created_at=created_at,
        )
        await uow.snapshots.append(uow.session, snapshot)

        logger.info(
            "progress_snapshot_appended",
            plan_id=str(plan_id),
            task_id=str(task_id),
            sequence=snapshot.sequence,
            overall_completion=snapshot.overall_completion,
        )
        return snapshot

    async def get_progress_history(
        self,
        uow,
        plan_id,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
        newest_first: bool = False
    ) -> List[ProgressSnapshot]:
        """Snapshots oldest to newest unless ``newest_first``; ``limit`` keeps the most recent ones."""
        if limit is not None and not 1 <= limit <= PROGRESS_HISTORY_MAX_LIMIT:
            raise InvalidField("limit", f"must be between 1 and {PROGRESS_HISTORY_MAX_LIMIT}", limit)

        await require_plan(uow, plan_id, user_id)
        return await uow.snapshots.list_for_plan(
            uow.session, plan_id, limit=limit, newest_first=newest_first
        )

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    async def calculate_progress(
        self,
        uow,
        plan_id,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> dict:
        plan = await require_plan(uow, plan_id, user_id)
        state = await self.compute_state(uow, plan.id)
        return self._metrics(plan, state, now or utcnow())

    def _metrics(self, plan: ActionPlan, state: PlanProgressState, now: datetime) -> dict:
        counts = count_statuses(task.status for task in state.tasks)
        completed = [
            task for task in state.tasks
            if task.status == TaskStatus.COMPLETED.value and task.completed_at is not None
        ]
        velocity = velocity_per_week(
            (as_utc(task.completed_at) for task in completed), now, VELOCITY_WINDOW_DAYS
        )
        remaining = counts["not_started"] + counts["in_progress"]

        return {
            "plan_id": plan.id,
            "total_tasks": counts["total"],
            "completed_tasks": counts["completed"],
            "in_progress_tasks": counts["in_progress"],
            "skipped_tasks": counts["skipped"],
            "not_started_tasks": counts["not_started"],
            "completion_percentage": state.overall_completion,
            "current_phase": self._current_phase(state),
            "velocity": velocity,
            "average_task_time": average_task_hours(
                (as_utc(task.created_at), as_utc(task.completed_at)) for task in completed
            ),
            "estimated_completion": estimate_completion(remaining, velocity, now),
        }

    def _current_phase(self, state: PlanProgressState) -> Optional[str]:
        """First phase in order that still has open work, else the last phase."""
        for phase in state.phases:
            if any(task.status in _OPEN_STATUSES for task in state.tasks_in(phase.id)):
                return phase.name
        return state.phases[-1].name if state.phases else None

    async def identify_slow_phases(
        self,
        uow,
        plan_id,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> List[dict]:
        """Phases still open or running past their estimated duration."""
        plan = await require_plan(uow, plan_id, user_id)
        state = await self.compute_state(uow, plan.id)
        now = now or utcnow()

        slow = []
        for phase in state.phases:
            tasks = state.tasks_in(phase.id)
            if not tasks:
                continue

            started = min(as_utc(task.created_at) for task in tasks)
            finished = [
                as_utc(task.completed_at) for task in tasks
                if task.status == TaskStatus.COMPLETED.value and task.completed_at is not None
            ]
            ended = max(finished) if finished else now
            actual_days = math.ceil((ended - started).total_seconds() / 86400)

            estimated_days = parse_duration_days(phase.estimated_duration)
            is_overdue = estimated_days is not None and actual_days > estimated_days
            has_open_tasks = any(task.status in _OPEN_STATUSES for task in tasks)

            if is_overdue or has_open_tasks:
                slow.append({
                    "phase_id": phase.id,
                    "phase_name": phase.name,
                    "estimated_duration": phase.estimated_duration,
                    "actual_duration_days": actual_days,
                    "is_overdue": is_overdue,
                })
        return slow

    async def get_user_progress_summary(
        self,
        uow,
        user_id: str,
        now: Optional[datetime] = None
    ) -> dict:
        """Rollup across the user's active plans for the dashboard."""
        now = now or utcnow()
        plans = await uow.plans.list_for_user(uow.session, user_id, status=PlanStatus.ACTIVE.value)

        rollups = []
        velocities = []
        total_tasks = 0
        completed_tasks = 0

        for plan in plans:
            state = await self.compute_state(uow, plan.id)
            metrics = self._metrics(plan, state, now)

            total_tasks += metrics["total_tasks"]
            completed_tasks += metrics["completed_tasks"]
            velocities.append(metrics["velocity"])
            rollups.append({
                "plan_id": plan.id,
                "title": plan.title,
                "completion_percentage": state.overall_completion,
                "total_tasks": metrics["total_tasks"],
                "completed_tasks": metrics["completed_tasks"],
            })

        return {
            "user_id": user_id,
            "active_plans": len(plans),
            "total_tasks": total_tasks,
            "completed_tasks": completed_tasks,
            "overall_completion_percentage": percent(completed_tasks, total_tasks),
            "average_velocity": round_half_up(sum(velocities) / len(velocities), 1) if velocities else 0.0,
            "plans": rollups,
        }


# Singleton instance
progress_service = ProgressService()
