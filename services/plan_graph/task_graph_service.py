"""
Task Graph Service - the plan's task graph store
================================================

ARCHITECTURE:
- Domain Layer: domain/dependency_graph.py, domain/task_domain_service.py
- Application Layer: this module, orchestration without transaction control
- Infrastructure: infrastructure/uow.py owns the transaction and plan locks

Every mutation resolves the owning plan, takes the plan lock and re-reads
what it touches under that lock. Cycle check and edge insert, status change
and snapshot append each happen inside one lock + transaction.
"""
from typing import Dict, List, Optional
from uuid import UUID

from domain.dependency_graph import DependencyValidation, find_cycle_path, validate_dependency
from domain.task_domain_service import (
    HistoryAction,
    TaskStatus,
    parse_task_status,
    task_domain_service,
)
from exceptions import (
    CircularDependency,
    CrossPlanReference,
    DependencyNotFound,
    DuplicateDependency,
    InvalidField,
    InvalidReorder,
    SelfDependency,
    TaskNotFound,
)
from logging_config import get_logger
from models import PlanTask, TaskDependency, TaskHistory, utcnow
from plan_access import require_locked_plan, require_phase, require_plan, require_task
from plan_config import TASK_HISTORY_DEFAULT_LIMIT
from progress_service import progress_service
from schemas import TaskCreate, TaskUpdate

logger = get_logger(__name__)

# Fields whose edit turns a template task into a custom one
_CONTENT_FIELDS = ("title", "description", "estimated_time", "resources")


class TaskGraphService:
    """
    Application Layer Orchestrator for tasks and dependency edges.

    Transactions are owned by the caller's UnitOfWork.
    """

    def __init__(self):
        self._domain = task_domain_service
        self._progress = progress_service

    # =========================================================================
    # Tasks
    # =========================================================================

    async def create_task(
        self,
        uow,
        plan_id,
        data: TaskCreate,
        user_id: Optional[str] = None
    ) -> PlanTask:
        """New user-added task, ``not_started``, in a phase of ``plan_id``."""
        plan = await require_locked_plan(uow, plan_id, user_id)
        phase = await require_phase(uow, data.phase_id, plan_id=plan.id)

        task = PlanTask(
            plan_id=plan.id,
            phase_id=phase.id,
            title=data.title,
            description=data.description,
            estimated_time=data.estimated_time,
            resources=list(data.resources),
            order=data.order,
            assignee_id=data.assignee_id,
            status=TaskStatus.NOT_STARTED.value,
            is_custom=True,
        )
        await uow.tasks.save(uow.session, task)

        await uow.audit.record_task_event(
            uow.session,
            plan_id=plan.id,
            task_id=task.id,
            action=HistoryAction.CREATED.value,
            new_state=self._domain.snapshot(task),
            user_id=user_id,
        )
        await self._progress.refresh_aggregates(uow, plan)

        logger.info("task_created", plan_id=str(plan.id), phase_id=str(phase.id), task_id=str(task.id))
        return task

    async def get_task(self, uow, task_id, user_id: Optional[str] = None) -> PlanTask:
        return await require_task(uow, task_id, user_id)

    async def list_tasks(
        self,
        uow,
        plan_id,
        user_id: Optional[str] = None,
        status: Optional[str] = None
    ) -> List[PlanTask]:
        """Tasks of the plan ordered by phase order, then task order."""
        if status is not None:
            status = parse_task_status(status).value
        await require_plan(uow, plan_id, user_id)
        return await uow.tasks.list_for_plan(uow.session, plan_id, status=status)

    async def update_task(
        self,
        uow,
        task_id,
        data: TaskUpdate,
        acting_user_id: Optional[str] = None
    ) -> PlanTask:
        """
        Update task fields and/or status.

        Completing a task with incomplete prerequisites raises
        IncompletePrerequisites unless ``data.override_prerequisites`` is set.
        A status change appends a progress snapshot in the same transaction.
        """
        new_status = parse_task_status(data.status) if data.status is not None else None

        task = await require_task(uow, task_id, acting_user_id)
        plan_id = task.plan_id
        await require_locked_plan(uow, plan_id, acting_user_id)
        task = await require_task(uow, task_id)

        previous_state = self._domain.snapshot(task)

        incomplete = []
        if new_status == TaskStatus.COMPLETED and task.status != TaskStatus.COMPLETED.value:
            incomplete = [
                {"id": str(prerequisite.id), "title": prerequisite.title, "status": prerequisite.status}
                for prerequisite in await self._incomplete_prerequisites(uow, task.id)
            ]
            if incomplete and not data.override_prerequisites:
                logger.warning(
                    "task_completion_blocked",
                    task_id=str(task.id),
                    plan_id=str(plan_id),
                    incomplete_prerequisites=[item["id"] for item in incomplete],
                )
            self._domain.check_prerequisites(task, new_status, incomplete, data.override_prerequisites)

        content_changed = False
        for field in _CONTENT_FIELDS + ("assignee_id",):
            value = getattr(data, field)
            if value is None or value == getattr(task, field):
                continue
            setattr(task, field, list(value) if field == "resources" else value)
            if field in _CONTENT_FIELDS:
                content_changed = True

        if content_changed and not task.is_custom:
            task.is_custom = True

        event = None
        if new_status is not None:
            event = self._domain.apply_status(
                task,
                new_status,
                actor=acting_user_id,
                now=utcnow(),
                override_prerequisites=bool(incomplete) and data.override_prerequisites,
            )

        new_state = self._domain.snapshot(task)
        if new_state == previous_state:
            return task

        await uow.tasks.update(uow.session, task)
        await uow.audit.record_task_event(
            uow.session,
            plan_id=plan_id,
            task_id=task.id,
            action=self._domain.history_action(event).value,
            previous_state=previous_state,
            new_state=new_state,
            user_id=acting_user_id,
            override_prerequisites=event.override_prerequisites if event else False,
        )

        if event is not None:
            await uow.audit.log_transition(event)
            await self._progress.on_task_status_changed(
                uow, plan_id, task.id, changed_at=event.timestamp
            )

        return task

    async def delete_task(self, uow, task_id, user_id: Optional[str] = None) -> None:
        """Delete the task and every dependency edge touching it."""
        task = await require_task(uow, task_id, user_id)
        plan_id = task.plan_id
        plan = await require_locked_plan(uow, plan_id, user_id)
        task = await require_task(uow, task_id)

        await uow.audit.record_task_event(
            uow.session,
            plan_id=plan_id,
            task_id=task.id,
            action=HistoryAction.DELETED.value,
            previous_state=self._domain.snapshot(task),
            user_id=user_id,
        )

        removed_edges = await uow.dependencies.delete_for_tasks(uow.session, [task.id])
        await uow.tasks.delete(uow.session, task)
        await self._progress.refresh_aggregates(uow, plan)

        logger.info(
            "task_deleted",
            plan_id=str(plan_id),
            task_id=str(task_id),
            dependencies_removed=removed_edges,
        )

    async def reorder_tasks(
        self,
        uow,
        plan_id,
        phase_id,
        task_ids: List[UUID],
        user_id: Optional[str] = None
    ) -> List[PlanTask]:
        """
        Give ``task_ids`` the order indices 0..n-1 in the supplied order.
        Tasks of the phase that are not listed keep their index.
        """
        if not task_ids:
            raise InvalidReorder("At least one task id is required", {"phase_id": str(phase_id)})
        if len(set(task_ids)) != len(task_ids):
            raise InvalidReorder(
                "Task ids must not repeat",
                {"phase_id": str(phase_id), "task_ids": [str(task_id) for task_id in task_ids]},
            )

        plan = await require_locked_plan(uow, plan_id, user_id)
        phase = await require_phase(uow, phase_id, plan_id=plan.id)

        tasks_by_id = {task.id: task for task in await uow.tasks.list_for_phase(uow.session, phase.id)}
        for task_id in task_ids:
            if task_id not in tasks_by_id:
                raise InvalidReorder(
                    f"Task {task_id} does not belong to phase {phase_id}",
                    {"task_id": str(task_id), "phase_id": str(phase_id)},
                )

        reordered = []
        for index, task_id in enumerate(task_ids):
            task = tasks_by_id[task_id]
            if task.order != index:
                await uow.audit.record_task_event(
                    uow.session,
                    plan_id=plan.id,
                    task_id=task.id,
                    action=HistoryAction.REORDERED.value,
                    previous_state={"order": task.order},
                    new_state={"order": index},
                    user_id=user_id,
                )
                task.order = index
            reordered.append(task)

        await uow.session.flush()
        logger.info("tasks_reordered", plan_id=str(plan.id), phase_id=str(phase_id), count=len(task_ids))
        return reordered

    async def get_task_history(
        self,
        uow,
        task_id,
        user_id: Optional[str] = None,
        limit: int = TASK_HISTORY_DEFAULT_LIMIT
    ) -> List[TaskHistory]:
        """Newest first. History of a deleted task stays readable."""
        if limit < 1:
            raise InvalidField("limit", "must be positive", limit)

        entries = await uow.audit.list_for_task(uow.session, task_id, limit)
        if not entries:
            await require_task(uow, task_id, user_id)
            return []

        await require_plan(uow, entries[0].plan_id, user_id)
        return entries

    # =========================================================================
    # Dependencies
    # =========================================================================

    async def add_dependency(
        self,
        uow,
        task_id,
        prerequisite_task_id,
        user_id: Optional[str] = None
    ) -> TaskDependency:
        """
        Make ``prerequisite_task_id`` a prerequisite of ``task_id``.

        Rejected before anything is written when the edge is a self-loop,
        crosses plans, duplicates an active edge or would close a cycle.
        """
        if task_id == prerequisite_task_id:
            logger.warning("dependency_rejected", reason="self_reference", task_id=str(task_id))
            raise SelfDependency(task_id)

        plan_id = await self._shared_plan_id(uow, task_id, prerequisite_task_id, user_id)
        await require_locked_plan(uow, plan_id, user_id)
        task = await require_task(uow, task_id)
        prerequisite = await require_task(uow, prerequisite_task_id)
        self._ensure_same_plan(task, prerequisite)

        existing = await uow.dependencies.get_active_between(uow.session, task.id, prerequisite.id)
        if existing is not None:
            raise DuplicateDependency(task.id, prerequisite.id, existing.id)

        edges = await uow.dependencies.list_active_for_plan(uow.session, plan_id)
        cycle_path = find_cycle_path(
            ((edge.prerequisite_task_id, edge.task_id) for edge in edges),
            prerequisite.id,
            task.id,
        )
        if cycle_path:
            logger.warning(
                "dependency_rejected",
                reason="circular_dependency",
                task_id=str(task.id),
                prerequisite_task_id=str(prerequisite.id),
                cycle_path=[str(node) for node in cycle_path],
            )
            raise CircularDependency(task.id, prerequisite.id, cycle_path)

        dependency = TaskDependency(
            plan_id=plan_id,
            task_id=task.id,
            prerequisite_task_id=prerequisite.id,
        )
        await uow.dependencies.save(uow.session, dependency)

        logger.info(
            "dependency_added",
            plan_id=str(plan_id),
            dependency_id=str(dependency.id),
            task_id=str(task.id),
            prerequisite_task_id=str(prerequisite.id),
        )
        return dependency

    async def validate_dependency(
        self,
        uow,
        task_id,
        prerequisite_task_id,
        user_id: Optional[str] = None
    ) -> DependencyValidation:
        """Pre-flight for add_dependency. Reads only; unknown tasks are NotFound."""
        if task_id == prerequisite_task_id:
            return validate_dependency((), prerequisite_task_id, task_id)

        task = await require_task(uow, task_id, user_id)
        prerequisite = await require_task(uow, prerequisite_task_id, user_id)

        if task.plan_id != prerequisite.plan_id:
            return DependencyValidation(
                is_valid=False,
                errors=["Tasks must belong to the same plan"],
            )

        existing = await uow.dependencies.get_active_between(uow.session, task.id, prerequisite.id)
        if existing is not None:
            return DependencyValidation(is_valid=False, errors=["Dependency already exists"])

        edges = await uow.dependencies.list_active_for_plan(uow.session, task.plan_id)
        return validate_dependency(
            [(edge.prerequisite_task_id, edge.task_id) for edge in edges],
            prerequisite.id,
            task.id,
        )

    async def remove_dependency(self, uow, dependency_id, user_id: Optional[str] = None) -> None:
        """
        Soft-remove an edge. Removing an already removed edge is a no-op;
        an id that never existed raises DependencyNotFound.
        """
        dependency = await uow.dependencies.get(uow.session, dependency_id)
        if dependency is None:
            raise DependencyNotFound(dependency_id)
        plan_id = dependency.plan_id

        await require_locked_plan(uow, plan_id, user_id)
        dependency = await uow.dependencies.get(uow.session, dependency_id)
        if dependency is None:
            raise DependencyNotFound(dependency_id)

        if dependency.removed_at is not None:
            logger.debug("dependency_already_removed", dependency_id=str(dependency_id))
            return

        dependency.removed_at = utcnow()
        await uow.dependencies.update(uow.session, dependency)

        logger.info(
            "dependency_removed",
            plan_id=str(plan_id),
            dependency_id=str(dependency_id),
            task_id=str(dependency.task_id),
            prerequisite_task_id=str(dependency.prerequisite_task_id),
        )

    async def get_dependencies(self, uow, task_id, user_id: Optional[str] = None) -> Dict[str, List[UUID]]:
        task = await require_task(uow, task_id, user_id)
        prerequisites = await uow.dependencies.list_prerequisites(uow.session, task.id)
        dependents = await uow.dependencies.list_dependents(uow.session, task.id)
        return {
            "prerequisites": [edge.prerequisite_task_id for edge in prerequisites],
            "dependents": [edge.task_id for edge in dependents],
        }

    async def get_incomplete_prerequisites(
        self,
        uow,
        task_id,
        user_id: Optional[str] = None
    ) -> List[PlanTask]:
        """Prerequisites not yet ``completed``; skipped ones count as incomplete."""
        task = await require_task(uow, task_id, user_id)
        return await self._incomplete_prerequisites(uow, task.id)

    async def get_plan_dependencies(
        self,
        uow,
        plan_id,
        user_id: Optional[str] = None
    ) -> Dict[UUID, Dict[str, List[UUID]]]:
        """task id -> {prerequisites, dependents} for every task of the plan"""
        await require_plan(uow, plan_id, user_id)
        tasks = await uow.tasks.list_for_plan(uow.session, plan_id)
        edges = await uow.dependencies.list_active_for_plan(uow.session, plan_id)

        graph = {task.id: {"prerequisites": [], "dependents": []} for task in tasks}
        for edge in edges:
            graph[edge.task_id]["prerequisites"].append(edge.prerequisite_task_id)
            graph[edge.prerequisite_task_id]["dependents"].append(edge.task_id)
        return graph

    async def get_ready_tasks(self, uow, plan_id, user_id: Optional[str] = None) -> List[PlanTask]:
        """``not_started`` tasks whose prerequisites are all completed."""
        await require_plan(uow, plan_id, user_id)
        tasks = await uow.tasks.list_for_plan(uow.session, plan_id)
        edges = await uow.dependencies.list_active_for_plan(uow.session, plan_id)

        status_by_id = {task.id: task.status for task in tasks}
        blocked = {
            edge.task_id for edge in edges
            if status_by_id.get(edge.prerequisite_task_id) != TaskStatus.COMPLETED.value
        }
        return [
            task for task in tasks
            if task.status == TaskStatus.NOT_STARTED.value and task.id not in blocked
        ]

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _incomplete_prerequisites(self, uow, task_id) -> List[PlanTask]:
        edges = await uow.dependencies.list_prerequisites(uow.session, task_id)
        prerequisites = await uow.tasks.get_many(
            uow.session, [edge.prerequisite_task_id for edge in edges]
        )
        by_id = {task.id: task for task in prerequisites}
        return [
            by_id[edge.prerequisite_task_id] for edge in edges
            if edge.prerequisite_task_id in by_id
            and by_id[edge.prerequisite_task_id].status != TaskStatus.COMPLETED.value
        ]

    async def _shared_plan_id(self, uow, task_id, prerequisite_task_id, user_id):
        task = await require_task(uow, task_id, user_id)
        prerequisite = await require_task(uow, prerequisite_task_id, user_id)
        self._ensure_same_plan(task, prerequisite)
        return task.plan_id

    def _ensure_same_plan(self, task: PlanTask, prerequisite: PlanTask) -> None:
        if task.plan_id != prerequisite.plan_id:
            logger.warning(
                "dependency_rejected",
                reason="different_plans",
                task_id=str(task.id),
                prerequisite_task_id=str(prerequisite.id),
            )
            raise CrossPlanReference(
                "Tasks must belong to the same plan",
                {
                    "task_id": str(task.id),
                    "prerequisite_task_id": str(prerequisite.id),
                    "task_plan_id": str(task.plan_id),
                    "prerequisite_plan_id": str(prerequisite.plan_id),
                },
            )


# Singleton instance
task_graph_service = TaskGraphService()
