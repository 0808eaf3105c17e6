"""
EXPORT TESTS

CSV, JSON and Markdown renderings of a plan, with status filters.
"""
import csv
import io
import json

import pytest

from exceptions import PlanNotFound, UnsupportedExportFormat
from export_service import CSV_HEADER, export_service
from schemas import TaskUpdate
from task_graph_service import task_graph_service

pytestmark = pytest.mark.asyncio(loop_scope="function")


async def seeded_with_progress(uow_provider, plan_factory):
    """Phase 1: completed + in_progress; phase 2: skipped + not_started."""
    seeded = await plan_factory(tasks_per_phase=(2, 2))
    for task_id, status in (
        (seeded.task_ids[0][0], "completed"),
        (seeded.task_ids[0][1], "in_progress"),
        (seeded.task_ids[1][0], "skipped"),
    ):
        async with uow_provider() as uow:
            await task_graph_service.update_task(uow, task_id, TaskUpdate(status=status))
    return seeded


async def export(uow_provider, plan_id, export_format, **kwargs):
    async with uow_provider() as uow:
        return await export_service.export_plan(uow, plan_id, export_format, **kwargs)


class TestCsvExport:

    async def test_header_and_rows(self, uow_provider, plan_factory):
        seeded = await seeded_with_progress(uow_provider, plan_factory)

        result = await export(uow_provider, seeded.plan_id, "csv")
        rows = list(csv.reader(io.StringIO(result.content)))

        assert result.media_type == "text/csv"
        assert result.filename == f"action-plan-{seeded.plan_id}.csv"
        assert rows[0] == CSV_HEADER
        assert [row[2] for row in rows[1:]] == ["Task 1.1", "Task 1.2", "Task 2.1", "Task 2.2"]
        assert [row[5] for row in rows[1:]] == ["completed", "in_progress", "skipped", "not_started"]
        assert rows[1][0] == "Phase 1"
        assert rows[1][9] != ""
        assert rows[2][9] == ""

    async def test_filters_completed_and_skipped(self, uow_provider, plan_factory):
        seeded = await seeded_with_progress(uow_provider, plan_factory)

        result = await export(
            uow_provider, seeded.plan_id, "csv", include_completed=False, include_skipped=False
        )
        rows = list(csv.reader(io.StringIO(result.content)))

        assert [row[2] for row in rows[1:]] == ["Task 1.2", "Task 2.2"]


class TestJsonExport:

    async def test_structure(self, uow_provider, plan_factory):
        seeded = await seeded_with_progress(uow_provider, plan_factory)
        async with uow_provider() as uow:
            await task_graph_service.add_dependency(uow, seeded.task_ids[1][1], seeded.task_ids[0][0])

        result = await export(uow_provider, seeded.plan_id, "json")
        payload = json.loads(result.content)

        assert result.media_type == "application/json"
        assert payload["export_metadata"]["export_format"] == "json"
        assert payload["plan"]["id"] == str(seeded.plan_id)
        assert [phase["name"] for phase in payload["phases"]] == ["Phase 1", "Phase 2"]
        assert payload["statistics"] == {
            "total_phases": 2,
            "total_tasks": 4,
            "completed_tasks": 1,
            "in_progress_tasks": 1,
            "not_started_tasks": 1,
            "skipped_tasks": 1,
            "completion_percentage": 25,
        }
        assert payload["dependencies"] == [
            {
                "id": payload["dependencies"][0]["id"],
                "task_id": str(seeded.task_ids[1][1]),
                "prerequisite_task_id": str(seeded.task_ids[0][0]),
            }
        ]

    async def test_statistics_follow_filters(self, uow_provider, plan_factory):
        """
        SCENARIO: completed tasks excluded; an edge points at a completed task

        EXPECTED: statistics count only exported tasks, the dangling edge is dropped
        """
        seeded = await seeded_with_progress(uow_provider, plan_factory)
        async with uow_provider() as uow:
            await task_graph_service.add_dependency(uow, seeded.task_ids[1][1], seeded.task_ids[0][0])

        result = await export(uow_provider, seeded.plan_id, "json", include_completed=False)
        payload = json.loads(result.content)

        assert payload["statistics"]["total_tasks"] == 3
        assert payload["statistics"]["completed_tasks"] == 0
        assert payload["export_metadata"]["include_completed"] is False
        assert payload["dependencies"] == []


class TestMarkdownExport:

    async def test_checklist(self, uow_provider, plan_factory):
        seeded = await seeded_with_progress(uow_provider, plan_factory)

        result = await export(uow_provider, seeded.plan_id, "markdown")
        lines = result.content.splitlines()

        assert result.filename.endswith(".md")
        assert lines[0] == "# Launch plan"
        assert "## Phase 1" in lines
        assert "- [x] Task 1.1 _(custom)_" in lines
        assert "- [ ] Task 1.2 _(in progress)_ _(custom)_" in lines
        assert "- [ ] Task 2.1 _(skipped)_ _(custom)_" in lines
        assert "**Progress:** 1/4 tasks completed (25%)" in lines
        assert "**Phase Progress:** 1/2 tasks (50%)" in lines


class TestExportErrors:

    async def test_unknown_format(self, uow_provider, plan_factory):
        seeded = await plan_factory(tasks_per_phase=(1,))
        with pytest.raises(UnsupportedExportFormat):
            await export(uow_provider, seeded.plan_id, "pdf")

    async def test_foreign_plan(self, uow_provider, plan_factory):
        seeded = await plan_factory(tasks_per_phase=(1,))
        with pytest.raises(PlanNotFound):
            await export(uow_provider, seeded.plan_id, "csv", user_id="intruder")
