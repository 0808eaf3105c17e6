"""
Plan Service - plan and phase lifecycle
=======================================

Application layer over the unit of work: every method takes an open
``uow`` as its first argument and never commits itself.

Deletes cascade explicitly (edges, tasks, phases, snapshots, history) so the
graph invariants hold without relying on database cascades.
"""
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from domain.progress_math import count_statuses
from domain.task_domain_service import PlanStatus, parse_plan_status
from exceptions import BasePlanException, PlanAlreadyExists, PlanNotFound
from logging_config import get_logger
from models import ActionPlan, PlanPhase, utcnow
from plan_access import require_locked_plan, require_phase, require_plan
from progress_service import progress_service
from schemas import PhaseCreate, PlanCreate, PlanUpdate

logger = get_logger(__name__)


class PlanService:

    async def create_plan(self, uow, user_id: str, data: PlanCreate) -> ActionPlan:
        existing = await uow.plans.get_by_analysis(uow.session, data.analysis_id, user_id)
        if existing is not None:
            raise PlanAlreadyExists(existing.id, data.analysis_id)

        plan = ActionPlan(
            user_id=user_id,
            analysis_id=data.analysis_id,
            title=data.title,
            description=data.description,
            status=PlanStatus.ACTIVE.value,
            completion_percentage=0,
        )
        try:
            await uow.plans.save(uow.session, plan)
        except IntegrityError as e:
            # Lost the race for (user_id, analysis_id) to a concurrent create
            await uow.session.rollback()
            existing = await uow.plans.get_by_analysis(uow.session, data.analysis_id, user_id)
            if existing is not None:
                raise PlanAlreadyExists(existing.id, data.analysis_id)
            raise BasePlanException(
                message="Database integrity error",
                details={"original_error": str(e.orig)},
            )

        logger.info("plan_created", plan_id=str(plan.id), user_id=user_id, analysis_id=data.analysis_id)
        return plan

    async def get_plan(self, uow, plan_id, user_id: Optional[str] = None) -> ActionPlan:
        return await require_plan(uow, plan_id, user_id)

    async def get_plan_by_analysis(self, uow, analysis_id: str, user_id: str) -> ActionPlan:
        plan = await uow.plans.get_by_analysis(uow.session, analysis_id, user_id)
        if plan is None:
            raise PlanNotFound(analysis_id=analysis_id)
        return plan

    async def list_user_plans(self, uow, user_id: str, status: Optional[str] = None) -> List[ActionPlan]:
        if status is not None:
            status = parse_plan_status(status).value
        return await uow.plans.list_for_user(uow.session, user_id, status=status)

    async def update_plan(
        self,
        uow,
        plan_id,
        data: PlanUpdate,
        user_id: Optional[str] = None
    ) -> ActionPlan:
        """Completing a plan stamps completed_at; any other status clears it."""
        new_status = parse_plan_status(data.status) if data.status is not None else None
        plan = await require_locked_plan(uow, plan_id, user_id)

        if data.title is not None:
            plan.title = data.title
        if data.description is not None:
            plan.description = data.description
        if new_status is not None and new_status.value != plan.status:
            plan.status = new_status.value
            plan.completed_at = utcnow() if new_status == PlanStatus.COMPLETED else None

        await uow.session.flush()
        logger.info("plan_updated", plan_id=str(plan.id), status=plan.status)
        return plan

    async def delete_plan(self, uow, plan_id, user_id: Optional[str] = None) -> None:
        plan = await require_locked_plan(uow, plan_id, user_id)

        await uow.dependencies.delete_for_plan(uow.session, plan.id)
        await uow.snapshots.delete_for_plan(uow.session, plan.id)
        await uow.audit.delete_for_plan(uow.session, plan.id)
        await uow.tasks.delete_for_plan(uow.session, plan.id)
        await uow.phases.delete_for_plan(uow.session, plan.id)
        await uow.plans.delete(uow.session, plan)

        logger.info("plan_deleted", plan_id=str(plan_id))

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def create_phase(
        self,
        uow,
        plan_id,
        data: PhaseCreate,
        user_id: Optional[str] = None
    ) -> PlanPhase:
        plan = await require_locked_plan(uow, plan_id, user_id)

        phase = PlanPhase(
            plan_id=plan.id,
            name=data.name,
            description=data.description,
            order=data.order,
            estimated_duration=data.estimated_duration,
            is_custom=data.is_custom,
            completion_percentage=0,
        )
        await uow.phases.save(uow.session, phase)

        # An empty phase counts as 0% and pulls the mean down
        await progress_service.refresh_aggregates(uow, plan)

        logger.info("phase_created", plan_id=str(plan.id), phase_id=str(phase.id), order=phase.order)
        return phase

    async def list_phases(self, uow, plan_id, user_id: Optional[str] = None) -> List[PlanPhase]:
        await require_plan(uow, plan_id, user_id)
        return await uow.phases.list_for_plan(uow.session, plan_id)

    async def delete_phase(self, uow, phase_id, user_id: Optional[str] = None) -> None:
        phase = await require_phase(uow, phase_id, user_id=user_id)
        plan_id = phase.plan_id

        plan = await require_locked_plan(uow, plan_id, user_id)
        phase = await require_phase(uow, phase_id, plan_id=plan_id)

        tasks = await uow.tasks.list_for_phase(uow.session, phase.id)
        task_ids = [task.id for task in tasks]
        removed_edges = await uow.dependencies.delete_for_tasks(uow.session, task_ids)
        await uow.tasks.delete_for_phase(uow.session, phase.id)
        await uow.phases.delete(uow.session, phase)

        await progress_service.refresh_aggregates(uow, plan)

        logger.info(
            "phase_deleted",
            plan_id=str(plan_id),
            phase_id=str(phase_id),
            tasks_removed=len(task_ids),
            dependencies_removed=removed_edges,
        )

    # -------------------------------------------------------------------------
    # Read models
    # -------------------------------------------------------------------------

    async def get_plan_with_details(self, uow, plan_id, user_id: Optional[str] = None) -> dict:
        """
        Plan with phases in order, each with its tasks in order, plus the
        plan's active dependency edges.
        """
        plan = await require_plan(uow, plan_id, user_id)
        phases = await uow.phases.list_for_plan(uow.session, plan.id)
        tasks = await uow.tasks.list_for_plan(uow.session, plan.id)
        dependencies = await uow.dependencies.list_active_for_plan(uow.session, plan.id)

        return {
            "plan": plan,
            "phases": [
                {"phase": phase, "tasks": [task for task in tasks if task.phase_id == phase.id]}
                for phase in phases
            ],
            "dependencies": dependencies,
        }

    async def get_plan_statistics(self, uow, plan_id, user_id: Optional[str] = None) -> dict:
        plan = await require_plan(uow, plan_id, user_id)
        state = await progress_service.compute_state(uow, plan.id)
        counts = count_statuses(task.status for task in state.tasks)

        return {
            "plan_id": plan.id,
            "total_phases": len(state.phases),
            "total_tasks": counts["total"],
            "not_started_tasks": counts["not_started"],
            "in_progress_tasks": counts["in_progress"],
            "completed_tasks": counts["completed"],
            "skipped_tasks": counts["skipped"],
            "completion_percentage": state.overall_completion,
        }


# Singleton instance
plan_service = PlanService()
