"""
Unit of Work + Repositories + Audit Logger - Infrastructure Layer
=================================================================

Every mutating plan operation runs inside one UnitOfWork:

    async with provider() as uow:
        await uow.lock_plan(plan_id)
        ...

Commit on clean exit, rollback on exception, then the plan locks taken by
the unit of work are released. Repositories are stateless and take the
session as their first argument.
"""
import asyncio
import weakref
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from logging_config import get_logger, log_task_transition
from models import (
    ActionPlan,
    PlanPhase,
    PlanTask,
    ProgressSnapshot,
    TaskDependency,
    TaskHistory,
)

logger = get_logger(__name__)


class PlanLockRegistry:
    """
    One asyncio.Lock per plan id, shared by all units of work of a provider.

    Locks are held weakly: once no unit of work references a plan's lock it
    is dropped from the registry.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, plan_id) -> asyncio.Lock:
        """Lock for ``plan_id``; a UUID and its string form share one lock."""
        key = as_plan_key(plan_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


def as_plan_key(plan_id) -> UUID:
    return plan_id if isinstance(plan_id, UUID) else UUID(str(plan_id))


class PlanRepository:
    """Repository for ActionPlan"""

    async def get(self, session, plan_id) -> Optional[ActionPlan]:
        result = await session.execute(select(ActionPlan).where(ActionPlan.id == plan_id))
        return result.scalar_one_or_none()

    async def get_for_update(self, session, plan_id) -> Optional[ActionPlan]:
        """SELECT ... FOR UPDATE, refreshing any stale identity-map copy"""
        stmt = (
            select(ActionPlan)
            .where(ActionPlan.id == plan_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_analysis(self, session, analysis_id: str, user_id: str) -> Optional[ActionPlan]:
        stmt = select(ActionPlan).where(
            ActionPlan.analysis_id == analysis_id,
            ActionPlan.user_id == user_id,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(self, session, user_id: str, status: Optional[str] = None) -> List[ActionPlan]:
        stmt = select(ActionPlan).where(ActionPlan.user_id == user_id)
        if status is not None:
            stmt = stmt.where(ActionPlan.status == status)
        stmt = stmt.order_by(ActionPlan.updated_at.desc(), ActionPlan.created_at.desc())
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def save(self, session, plan) -> None:
        session.add(plan)
        await session.flush()

    async def delete(self, session, plan) -> None:
        await session.delete(plan)
        await session.flush()


class PhaseRepository:
    """Repository for PlanPhase"""

    async def get(self, session, phase_id) -> Optional[PlanPhase]:
        result = await session.execute(select(PlanPhase).where(PlanPhase.id == phase_id))
        return result.scalar_one_or_none()

    async def list_for_plan(self, session, plan_id) -> List[PlanPhase]:
        stmt = (
            select(PlanPhase)
            .where(PlanPhase.plan_id == plan_id)
            .order_by(PlanPhase.order, PlanPhase.created_at)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def save(self, session, phase) -> None:
        session.add(phase)
        await session.flush()

    async def delete_for_plan(self, session, plan_id) -> None:
        await session.execute(delete(PlanPhase).where(PlanPhase.plan_id == plan_id))

    async def delete(self, session, phase) -> None:
        await session.delete(phase)
        await session.flush()


class TaskRepository:
    """Repository for PlanTask"""

    async def get(self, session, task_id) -> Optional[PlanTask]:
        result = await session.execute(select(PlanTask).where(PlanTask.id == task_id))
        return result.scalar_one_or_none()

    async def get_many(self, session, task_ids) -> List[PlanTask]:
        if not task_ids:
            return []
        result = await session.execute(select(PlanTask).where(PlanTask.id.in_(list(task_ids))))
        return list(result.scalars().all())

    async def list_for_plan(self, session, plan_id, status: Optional[str] = None) -> List[PlanTask]:
        """Tasks ordered by phase order, then task order"""
        stmt = (
            select(PlanTask)
            .join(PlanPhase, PlanPhase.id == PlanTask.phase_id)
            .where(PlanTask.plan_id == plan_id)
        )
        if status is not None:
            stmt = stmt.where(PlanTask.status == status)
        stmt = stmt.order_by(PlanPhase.order, PlanPhase.created_at, PlanTask.order, PlanTask.created_at)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_phase(self, session, phase_id) -> List[PlanTask]:
        stmt = (
            select(PlanTask)
            .where(PlanTask.phase_id == phase_id)
            .order_by(PlanTask.order, PlanTask.created_at)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def save(self, session, task) -> None:
        session.add(task)
        await session.flush()

    async def update(self, session, task) -> None:
        await session.flush()

    async def delete(self, session, task) -> None:
        await session.delete(task)
        await session.flush()

    async def delete_for_phase(self, session, phase_id) -> None:
        await session.execute(delete(PlanTask).where(PlanTask.phase_id == phase_id))

    async def delete_for_plan(self, session, plan_id) -> None:
        await session.execute(delete(PlanTask).where(PlanTask.plan_id == plan_id))


class DependencyRepository:
    """Repository for TaskDependency edges. ``active`` means not soft-removed."""

    async def get(self, session, dependency_id) -> Optional[TaskDependency]:
        result = await session.execute(select(TaskDependency).where(TaskDependency.id == dependency_id))
        return result.scalar_one_or_none()

    async def get_active_between(self, session, task_id, prerequisite_task_id) -> Optional[TaskDependency]:
        stmt = select(TaskDependency).where(
            TaskDependency.task_id == task_id,
            TaskDependency.prerequisite_task_id == prerequisite_task_id,
            TaskDependency.removed_at.is_(None),
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def list_active_for_plan(self, session, plan_id) -> List[TaskDependency]:
        stmt = (
            select(TaskDependency)
            .where(TaskDependency.plan_id == plan_id, TaskDependency.removed_at.is_(None))
            .order_by(TaskDependency.created_at)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_prerequisites(self, session, task_id) -> List[TaskDependency]:
        """Active edges where ``task_id`` is the dependent"""
        stmt = (
            select(TaskDependency)
            .where(TaskDependency.task_id == task_id, TaskDependency.removed_at.is_(None))
            .order_by(TaskDependency.created_at)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def list_dependents(self, session, task_id) -> List[TaskDependency]:
        """Active edges where ``task_id`` is the prerequisite"""
        stmt = (
            select(TaskDependency)
            .where(TaskDependency.prerequisite_task_id == task_id, TaskDependency.removed_at.is_(None))
            .order_by(TaskDependency.created_at)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def save(self, session, dependency) -> None:
        session.add(dependency)
        await session.flush()

    async def update(self, session, dependency) -> None:
        await session.flush()

    async def delete_for_tasks(self, session, task_ids) -> int:
        """Hard delete every edge (active or removed) touching ``task_ids``"""
        task_ids = list(task_ids)
        if not task_ids:
            return 0
        stmt = delete(TaskDependency).where(
            TaskDependency.task_id.in_(task_ids) | TaskDependency.prerequisite_task_id.in_(task_ids)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    async def delete_for_plan(self, session, plan_id) -> None:
        await session.execute(delete(TaskDependency).where(TaskDependency.plan_id == plan_id))


class SnapshotRepository:
    """Append-only store of ProgressSnapshot rows"""

    async def next_sequence(self, session, plan_id) -> int:
        stmt = select(func.max(ProgressSnapshot.sequence)).where(ProgressSnapshot.plan_id == plan_id)
        current = (await session.execute(stmt)).scalar()
        return (current or 0) + 1

    async def append(self, session, snapshot) -> None:
        session.add(snapshot)
        await session.flush()

    async def list_for_plan(
        self,
        session,
        plan_id,
        limit: Optional[int] = None,
        newest_first: bool = False
    ) -> List[ProgressSnapshot]:
        """
        Snapshots in mutation order. With ``limit``, only the most recent
        ``limit`` entries are returned, in the requested direction.
        """
        stmt = (
            select(ProgressSnapshot)
            .where(ProgressSnapshot.plan_id == plan_id)
            .order_by(ProgressSnapshot.sequence.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        snapshots = list(result.scalars().all())
        if not newest_first:
            snapshots.reverse()
        return snapshots

    async def delete_for_plan(self, session, plan_id) -> None:
        await session.execute(delete(ProgressSnapshot).where(ProgressSnapshot.plan_id == plan_id))


class AuditLogger:
    """Task history trail, written inside the caller's transaction"""

    async def record_task_event(
        self,
        session,
        plan_id,
        task_id,
        action: str,
        previous_state: Optional[dict] = None,
        new_state: Optional[dict] = None,
        user_id: Optional[str] = None,
        override_prerequisites: bool = False
    ) -> TaskHistory:
        entry = TaskHistory(
            plan_id=plan_id,
            task_id=task_id,
            action=action,
            previous_state=previous_state,
            new_state=new_state,
            user_id=user_id,
            override_prerequisites=override_prerequisites,
        )
        session.add(entry)
        await session.flush()
        return entry

    async def log_transition(self, event) -> None:
        """Structured log line for a task status change"""
        log_task_transition(
            task_id=event.task_id,
            plan_id=event.plan_id,
            from_status=event.from_status,
            to_status=event.to_status,
            actor=event.actor,
            override_prerequisites=event.override_prerequisites,
        )

    async def list_for_task(self, session, task_id, limit: int) -> List[TaskHistory]:
        stmt = (
            select(TaskHistory)
            .where(TaskHistory.task_id == task_id)
            .order_by(TaskHistory.created_at.desc())
            .limit(limit)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def delete_for_plan(self, session, plan_id) -> None:
        await session.execute(delete(TaskHistory).where(TaskHistory.plan_id == plan_id))


class UnitOfWork:
    """
    Thin Unit of Work: one session, one transaction, plus per-plan locks.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            plan = await uow.lock_plan(plan_id)
            task = await uow.tasks.get(uow.session, task_id)
    """

    plans = PlanRepository()
    phases = PhaseRepository()
    tasks = TaskRepository()
    dependencies = DependencyRepository()
    snapshots = SnapshotRepository()
    audit = AuditLogger()

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_registry: Optional[PlanLockRegistry] = None
    ):
        self._session_factory = session_factory
        self._lock_registry = lock_registry or PlanLockRegistry()
        self._session: AsyncSession | None = None
        self._held_locks: Dict[UUID, asyncio.Lock] = {}

    async def __aenter__(self) -> "UnitOfWork":
        self._session = self._session_factory()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Commit or rollback, close, then release plan locks"""
        try:
            if self._session:
                if exc_type is None:
                    await self._session.commit()
                else:
                    await self._session.rollback()
        finally:
            try:
                if self._session:
                    await self._session.close()
                    self._session = None
            finally:
                self._release_locks()

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError(
                "Session not available. Use 'async with UnitOfWork() as uow:' pattern."
            )
        return self._session

    async def lock_plan(self, plan_id: UUID) -> Optional[ActionPlan]:
        """
        Become the single writer for ``plan_id`` until this unit of work ends.

        Must run before any write. Reads done earlier in this unit of work are
        discarded (their objects expire) so nothing computed under the lock
        can be based on state from before it was acquired. Returns the plan
        row re-read with SELECT ... FOR UPDATE, or None if it does not exist.
        """
        session = self.session
        plan_id = as_plan_key(plan_id)

        if plan_id not in self._held_locks:
            if session.new or session.dirty or session.deleted:
                raise RuntimeError("lock_plan() must be called before any pending writes")
            if session.in_transaction():
                await session.rollback()

            lock = self._lock_registry.get(plan_id)
            await lock.acquire()
            self._held_locks[plan_id] = lock
            logger.debug("plan_lock_acquired", plan_id=str(plan_id))

        return await self.plans.get_for_update(session, plan_id)

    def _release_locks(self) -> None:
        for plan_id, lock in self._held_locks.items():
            lock.release()
            logger.debug("plan_lock_released", plan_id=str(plan_id))
        self._held_locks = {}


class UoWProvider:
    """
    Callable producing UnitOfWork instances that share one lock registry.

    Every writer of the same database inside this process must go through
    the same provider for the per-plan locks to serialize them.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._factory = session_factory
        self._lock_registry = PlanLockRegistry()

    def __call__(self) -> UnitOfWork:
        return UnitOfWork(self._factory, self._lock_registry)

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._factory


def create_uow_provider(session_factory: async_sessionmaker[AsyncSession] | None = None) -> UoWProvider:
    """
    Factory for a UoW provider.

    Usage in FastAPI:
        get_uow = create_uow_provider()

        async with get_uow() as uow:
            await uow.tasks.get(uow.session, task_id)
    """
    if session_factory is None:
        from database import AsyncSessionLocal
        session_factory = AsyncSessionLocal

    return UoWProvider(session_factory)
