"""
Lookups with ownership scoping.

A plan that belongs to another user is reported exactly like a missing one,
so callers cannot probe for foreign ids.
"""
from typing import Optional

from exceptions import PhaseNotFound, PlanNotFound, TaskNotFound
from models import ActionPlan, PlanPhase, PlanTask


def _owned(plan: Optional[ActionPlan], user_id: Optional[str]) -> bool:
    return plan is not None and (user_id is None or plan.user_id == user_id)


async def require_plan(uow, plan_id, user_id: Optional[str] = None) -> ActionPlan:
    plan = await uow.plans.get(uow.session, plan_id)
    if not _owned(plan, user_id):
        raise PlanNotFound(plan_id)
    return plan


async def require_locked_plan(uow, plan_id, user_id: Optional[str] = None) -> ActionPlan:
    """Take the plan's writer lock, then resolve it."""
    plan = await uow.lock_plan(plan_id)
    if not _owned(plan, user_id):
        raise PlanNotFound(plan_id)
    return plan


async def require_phase(uow, phase_id, plan_id=None, user_id: Optional[str] = None) -> PlanPhase:
    phase = await uow.phases.get(uow.session, phase_id)
    if phase is None or (plan_id is not None and phase.plan_id != plan_id):
        raise PhaseNotFound(phase_id, plan_id)
    if user_id is not None:
        plan = await uow.plans.get(uow.session, phase.plan_id)
        if not _owned(plan, user_id):
            raise PhaseNotFound(phase_id, plan_id)
    return phase


async def require_task(uow, task_id, user_id: Optional[str] = None) -> PlanTask:
    task = await uow.tasks.get(uow.session, task_id)
    if task is None:
        raise TaskNotFound(task_id)
    if user_id is not None:
        plan = await uow.plans.get(uow.session, task.plan_id)
        if not _owned(plan, user_id):
            raise TaskNotFound(task_id)
    return task
