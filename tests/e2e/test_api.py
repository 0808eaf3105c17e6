"""
E2E API TESTS

HTTP surface of the plan graph service, driven in-process through
httpx.ASGITransport against an in-memory database.
"""
import httpx
import pytest
import pytest_asyncio

from api.dependencies import get_uow_provider
from main import create_app

pytestmark = pytest.mark.asyncio(loop_scope="function")

API = "/api/v1"
USER = {"X-User-Id": "user-1"}


@pytest_asyncio.fixture
async def client(uow_provider):
    app = create_app(use_lifespan=False, export_requests_per_minute=3)
    app.dependency_overrides[get_uow_provider] = lambda: uow_provider
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def create_plan_with_tasks(client, task_titles=("Design", "Build")):
    response = await client.post(
        f"{API}/plans", json={"analysis_id": "analysis-1", "title": "Launch"}, headers=USER
    )
    assert response.status_code == 201
    plan_id = response.json()["id"]

    response = await client.post(
        f"{API}/plans/{plan_id}/phases", json={"name": "Phase 1", "order": 0}, headers=USER
    )
    assert response.status_code == 201
    phase_id = response.json()["id"]

    task_ids = []
    for order, title in enumerate(task_titles):
        response = await client.post(
            f"{API}/plans/{plan_id}/tasks",
            json={"phase_id": phase_id, "title": title, "order": order},
            headers=USER,
        )
        assert response.status_code == 201
        task_ids.append(response.json()["id"])
    return plan_id, phase_id, task_ids


class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAuthentication:

    async def test_missing_user_header(self, client):
        response = await client.get(f"{API}/plans")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    async def test_foreign_plan_is_not_found(self, client):
        plan_id, _, _ = await create_plan_with_tasks(client)

        response = await client.get(f"{API}/plans/{plan_id}", headers={"X-User-Id": "user-2"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "PLAN_NOT_FOUND"

    async def test_summary_for_another_user_is_forbidden(self, client):
        response = await client.get(f"{API}/users/user-2/progress/summary", headers=USER)
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"


class TestPlanFlow:

    async def test_dependency_gate_and_progress(self, client):
        """
        SCENARIO: Build depends on Design; complete Build first, then in order

        EXPECTED: 422 with incomplete prerequisites, then 50% and 100%
        """
        plan_id, phase_id, (design, build) = await create_plan_with_tasks(client)

        response = await client.post(
            f"{API}/tasks/{build}/dependencies", json={"prerequisite_task_id": design}, headers=USER
        )
        assert response.status_code == 201
        assert response.json()["prerequisite_task_id"] == design

        response = await client.patch(f"{API}/tasks/{build}", json={"status": "completed"}, headers=USER)
        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "TASK_INCOMPLETE_PREREQUISITES"
        assert [item["id"] for item in error["details"]["incomplete_prerequisites"]] == [design]

        response = await client.patch(f"{API}/tasks/{design}", json={"status": "completed"}, headers=USER)
        assert response.status_code == 200
        assert response.json()["completed_by"] == "user-1"

        response = await client.get(f"{API}/plans/{plan_id}", headers=USER)
        details = response.json()
        assert details["completion_percentage"] == 50
        assert details["phases"][0]["completion_percentage"] == 50
        assert [task["id"] for task in details["phases"][0]["tasks"]] == [design, build]

        await client.patch(f"{API}/tasks/{build}", json={"status": "completed"}, headers=USER)

        response = await client.get(f"{API}/plans/{plan_id}/progress/history", headers=USER)
        assert [snapshot["overall_completion"] for snapshot in response.json()] == [50, 100]

        response = await client.get(
            f"{API}/plans/{plan_id}/progress/history", params={"limit": 1, "order": "desc"}, headers=USER
        )
        assert [snapshot["sequence"] for snapshot in response.json()] == [2]

    async def test_cycle_is_rejected_with_path(self, client):
        _, _, (first, second) = await create_plan_with_tasks(client)

        await client.post(
            f"{API}/tasks/{second}/dependencies", json={"prerequisite_task_id": first}, headers=USER
        )
        response = await client.post(
            f"{API}/tasks/{first}/dependencies", json={"prerequisite_task_id": second}, headers=USER
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "DEP_CIRCULAR_DEPENDENCY"
        assert error["details"]["cycle_path"][0] == second
        assert error["details"]["cycle_path"][-1] == second

        response = await client.post(
            f"{API}/tasks/{first}/dependencies/validate", json={"prerequisite_task_id": second}, headers=USER
        )
        assert response.status_code == 200
        assert response.json()["is_valid"] is False

    async def test_duplicate_dependency_conflicts(self, client):
        _, _, (first, second) = await create_plan_with_tasks(client)
        payload = {"prerequisite_task_id": first}

        await client.post(f"{API}/tasks/{second}/dependencies", json=payload, headers=USER)
        response = await client.post(f"{API}/tasks/{second}/dependencies", json=payload, headers=USER)

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DEP_ALREADY_EXISTS"

    async def test_remove_dependency(self, client):
        _, _, (first, second) = await create_plan_with_tasks(client)
        response = await client.post(
            f"{API}/tasks/{second}/dependencies", json={"prerequisite_task_id": first}, headers=USER
        )
        dependency_id = response.json()["id"]

        response = await client.delete(f"{API}/dependencies/{dependency_id}", headers=USER)
        assert response.status_code == 200
        assert response.json()["status"] == "removed"

        response = await client.get(f"{API}/tasks/{second}/dependencies", headers=USER)
        assert response.json()["prerequisites"] == []

    async def test_unknown_task(self, client):
        response = await client.get(f"{API}/tasks/00000000-0000-0000-0000-000000000000", headers=USER)
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "TASK_NOT_FOUND"

    async def test_invalid_status(self, client):
        _, _, (first, _) = await create_plan_with_tasks(client)
        response = await client.patch(f"{API}/tasks/{first}", json={"status": "done"}, headers=USER)
        assert response.status_code == 422

    async def test_duplicate_plan_conflicts(self, client):
        await create_plan_with_tasks(client)
        response = await client.post(
            f"{API}/plans", json={"analysis_id": "analysis-1", "title": "Again"}, headers=USER
        )
        assert response.status_code == 409


class TestExport:

    async def test_csv_download(self, client):
        plan_id, _, _ = await create_plan_with_tasks(client)

        response = await client.post(f"{API}/plans/{plan_id}/export", json={"format": "csv"}, headers=USER)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert f"action-plan-{plan_id}.csv" in response.headers["content-disposition"]
        assert response.text.splitlines()[0].startswith("Phase,Phase Order,Task")

    async def test_export_rate_limit(self, client):
        plan_id, _, _ = await create_plan_with_tasks(client)

        for _ in range(3):
            response = await client.post(
                f"{API}/plans/{plan_id}/export", json={"format": "json"}, headers=USER
            )
            assert response.status_code == 200

        response = await client.post(f"{API}/plans/{plan_id}/export", json={"format": "json"}, headers=USER)
        assert response.status_code == 429
        assert response.headers["retry-after"] == "60"
        assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"

        response = await client.get(f"{API}/plans/{plan_id}/statistics", headers=USER)
        assert response.status_code == 200
