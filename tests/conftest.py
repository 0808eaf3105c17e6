"""
Pytest Configuration and Fixtures

Every test gets a fresh in-memory SQLite database (aiosqlite) with the plan
graph tables created, a unit-of-work provider bound to it and a factory for
seeding plans.
"""
import os
import sys
from dataclasses import dataclass, field
from typing import List

import pytest
import pytest_asyncio

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Add services/plan_graph to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'services', 'plan_graph'))

from database import Base, build_engine, build_session_factory  # noqa: E402
from infrastructure.uow import create_uow_provider  # noqa: E402
from plan_service import plan_service  # noqa: E402
from schemas import PhaseCreate, PlanCreate, TaskCreate  # noqa: E402
from task_graph_service import task_graph_service  # noqa: E402
import models  # noqa: E402,F401


@dataclass
class SeededPlan:
    plan_id: object
    user_id: str
    phase_ids: List[object] = field(default_factory=list)
    # task_ids[i] are the tasks of phase_ids[i], in order
    task_ids: List[List[object]] = field(default_factory=list)

    @property
    def all_task_ids(self) -> List[object]:
        return [task_id for phase_tasks in self.task_ids for task_id in phase_tasks]


async def _create_tables(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await _create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def file_engine(tmp_path):
    """File-backed database: separate connections, real concurrent sessions."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'plans.db'}")
    await _create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def uow_provider(engine):
    return create_uow_provider(build_session_factory(engine))


@pytest.fixture
def file_uow_provider(file_engine):
    return create_uow_provider(build_session_factory(file_engine))


async def seed_plan(provider, tasks_per_phase=(2, 2), user_id="user-1", analysis_id="analysis-1") -> SeededPlan:
    async with provider() as uow:
        plan = await plan_service.create_plan(
            uow, user_id, PlanCreate(analysis_id=analysis_id, title="Launch plan")
        )
    seeded = SeededPlan(plan_id=plan.id, user_id=user_id)

    for phase_index, task_count in enumerate(tasks_per_phase):
        async with provider() as uow:
            phase = await plan_service.create_phase(
                uow, plan.id, PhaseCreate(name=f"Phase {phase_index + 1}", order=phase_index)
            )
        seeded.phase_ids.append(phase.id)

        phase_tasks = []
        for task_index in range(task_count):
            async with provider() as uow:
                task = await task_graph_service.create_task(
                    uow,
                    plan.id,
                    TaskCreate(
                        phase_id=phase.id,
                        title=f"Task {phase_index + 1}.{task_index + 1}",
                        order=task_index,
                    ),
                )
            phase_tasks.append(task.id)
        seeded.task_ids.append(phase_tasks)

    return seeded


@pytest.fixture
def plan_factory(uow_provider):
    async def make(tasks_per_phase=(2, 2), user_id="user-1", analysis_id="analysis-1") -> SeededPlan:
        return await seed_plan(uow_provider, tasks_per_phase, user_id, analysis_id)
    return make


@pytest.fixture
def file_plan_factory(file_uow_provider):
    async def make(tasks_per_phase=(2, 2), user_id="user-1", analysis_id="analysis-1") -> SeededPlan:
        return await seed_plan(file_uow_provider, tasks_per_phase, user_id, analysis_id)
    return make
