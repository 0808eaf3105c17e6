"""
CONCURRENCY TESTS

Concurrent writers on one plan, each in its own unit of work on a
file-backed database so sessions really interleave.
"""
import asyncio

import pytest

from domain.dependency_graph import has_cycle
from exceptions import CircularDependency
from progress_service import progress_service
from schemas import TaskUpdate
from task_graph_service import task_graph_service

pytestmark = pytest.mark.asyncio(loop_scope="function")


class TestConcurrentDependencies:

    async def test_opposite_edges_race(self, file_uow_provider, file_plan_factory):
        """
        SCENARIO: A->B and B->A submitted at the same time

        EXPECTED: exactly one is stored, the other is a circular dependency
        """
        seeded = await file_plan_factory(tasks_per_phase=(2,))
        task_a, task_b = seeded.task_ids[0]

        async def add(task_id, prerequisite_id):
            async with file_uow_provider() as uow:
                return await task_graph_service.add_dependency(uow, task_id, prerequisite_id)

        results = await asyncio.gather(
            add(task_a, task_b),
            add(task_b, task_a),
            return_exceptions=True,
        )

        errors = [result for result in results if isinstance(result, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], CircularDependency)

        async with file_uow_provider() as uow:
            edges = await uow.dependencies.list_active_for_plan(uow.session, seeded.plan_id)
        assert len(edges) == 1

    async def test_chain_race_stays_acyclic(self, file_uow_provider, file_plan_factory):
        """
        SCENARIO: every ordered pair of four tasks submitted concurrently

        EXPECTED: whatever subset is accepted forms no cycle
        """
        seeded = await file_plan_factory(tasks_per_phase=(4,))
        task_ids = seeded.task_ids[0]

        async def add(task_id, prerequisite_id):
            async with file_uow_provider() as uow:
                return await task_graph_service.add_dependency(uow, task_id, prerequisite_id)

        pairs = [(a, b) for a in task_ids for b in task_ids if a != b]
        results = await asyncio.gather(*(add(a, b) for a, b in pairs), return_exceptions=True)

        assert all(
            isinstance(result, CircularDependency) for result in results if isinstance(result, Exception)
        )
        async with file_uow_provider() as uow:
            edges = await uow.dependencies.list_active_for_plan(uow.session, seeded.plan_id)
        assert edges
        assert not has_cycle((edge.prerequisite_task_id, edge.task_id) for edge in edges)


class TestConcurrentStatusUpdates:

    async def test_snapshots_are_contiguous(self, file_uow_provider, file_plan_factory):
        """
        SCENARIO: five tasks completed concurrently

        EXPECTED: five snapshots with sequence 1..5, each seeing one more completion
        """
        seeded = await file_plan_factory(tasks_per_phase=(5,))

        async def complete(task_id):
            async with file_uow_provider() as uow:
                await task_graph_service.update_task(uow, task_id, TaskUpdate(status="completed"))

        await asyncio.gather(*(complete(task_id) for task_id in seeded.all_task_ids))

        async with file_uow_provider() as uow:
            history = await progress_service.get_progress_history(uow, seeded.plan_id)
            overall = await progress_service.recompute_overall_completion(uow, seeded.plan_id)

        assert [snapshot.sequence for snapshot in history] == [1, 2, 3, 4, 5]
        assert [snapshot.completed_tasks for snapshot in history] == [1, 2, 3, 4, 5]
        assert [snapshot.overall_completion for snapshot in history] == [20, 40, 60, 80, 100]
        timestamps = [snapshot.created_at for snapshot in history]
        assert timestamps == sorted(timestamps)
        assert overall == 100

    async def test_direct_status_change_calls_are_serialized(self, file_uow_provider, file_plan_factory):
        """
        SCENARIO: on_task_status_changed called concurrently, each in its own unit of work

        EXPECTED: every call appends a snapshot, sequences 1..3 with no gaps
        """
        seeded = await file_plan_factory(tasks_per_phase=(3,))

        async def record(task_id):
            async with file_uow_provider() as uow:
                return await progress_service.on_task_status_changed(uow, seeded.plan_id, task_id)

        results = await asyncio.gather(
            *(record(task_id) for task_id in seeded.all_task_ids),
            return_exceptions=True,
        )

        assert not [result for result in results if isinstance(result, Exception)]
        async with file_uow_provider() as uow:
            history = await progress_service.get_progress_history(uow, seeded.plan_id)
        assert [snapshot.sequence for snapshot in history] == [1, 2, 3]
