"""
PLAN LOCK TESTS

Per-plan writer locks: keying in the registry and re-entrancy inside one
unit of work.
"""
import asyncio
import uuid

import pytest

from infrastructure.uow import PlanLockRegistry


class TestPlanLockRegistry:

    def test_uuid_and_string_share_a_lock(self):
        registry = PlanLockRegistry()
        plan_id = uuid.uuid4()

        lock = registry.get(plan_id)

        assert registry.get(str(plan_id)) is lock
        assert registry.get(str(plan_id).upper()) is lock

    def test_distinct_plans_get_distinct_locks(self):
        registry = PlanLockRegistry()

        first = registry.get(uuid.uuid4())
        second = registry.get(uuid.uuid4())

        assert first is not second

    def test_malformed_id_is_rejected(self):
        with pytest.raises(ValueError):
            PlanLockRegistry().get("not-a-plan-id")


@pytest.mark.asyncio(loop_scope="function")
async def test_lock_plan_accepts_string_id_reentrantly(uow_provider, plan_factory):
    """
    SCENARIO: lock_plan called with the string id, then with the UUID, in one unit of work

    EXPECTED: the second call reuses the held lock instead of waiting on it
    """
    seeded = await plan_factory(tasks_per_phase=())

    async with uow_provider() as uow:
        plan = await uow.lock_plan(str(seeded.plan_id))
        again = await asyncio.wait_for(uow.lock_plan(seeded.plan_id), timeout=2)

    assert plan.id == seeded.plan_id
    assert again.id == seeded.plan_id
