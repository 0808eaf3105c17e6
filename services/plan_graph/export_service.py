"""
Plan Export Service

Assembles an action plan into CSV, JSON or Markdown. Filtering by status
happens once, while the export data is built, so every renderer and every
statistic it prints sees the same task set.
"""
import csv
import io
import json
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from domain.progress_math import count_statuses, percent
from domain.task_domain_service import TaskStatus
from exceptions import UnsupportedExportFormat
from logging_config import get_logger
from models import as_utc, utcnow
from plan_config import EXPORT_FILE_EXTENSIONS, EXPORT_FORMATS, EXPORT_MEDIA_TYPES
from plan_service import plan_service

logger = get_logger(__name__)

CSV_HEADER = [
    "Phase",
    "Phase Order",
    "Task",
    "Task Order",
    "Description",
    "Status",
    "Estimated Time",
    "Resources",
    "Assignee ID",
    "Completed At",
    "Completed By",
    "Is Custom",
]


@dataclass
class ExportData:
    plan: object
    phases: List[dict]          # [{"phase": PlanPhase, "tasks": [PlanTask]}]
    dependencies: List[object]  # edges whose endpoints both survived filtering
    include_completed: bool
    include_skipped: bool
    exported_at: datetime

    @property
    def tasks(self) -> list:
        return [task for entry in self.phases for task in entry["tasks"]]

    def statistics(self) -> dict:
        counts = count_statuses(task.status for task in self.tasks)
        return {
            "total_phases": len(self.phases),
            "total_tasks": counts["total"],
            "completed_tasks": counts["completed"],
            "in_progress_tasks": counts["in_progress"],
            "not_started_tasks": counts["not_started"],
            "skipped_tasks": counts["skipped"],
            "completion_percentage": percent(counts["completed"], counts["total"]),
        }


@dataclass
class ExportResult:
    content: str
    media_type: str
    filename: str


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return as_utc(moment).isoformat() if moment else None


def _date(moment: Optional[datetime]) -> str:
    return as_utc(moment).strftime("%Y-%m-%d") if moment else ""


def render_csv(data: ExportData) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)

    for entry in data.phases:
        phase = entry["phase"]
        for task in entry["tasks"]:
            writer.writerow([
                phase.name,
                phase.order,
                task.title,
                task.order,
                task.description or "",
                task.status,
                task.estimated_time or "",
                "; ".join(task.resources or []),
                task.assignee_id or "",
                _iso(task.completed_at) or "",
                task.completed_by or "",
                "Yes" if task.is_custom else "No",
            ])

    return buffer.getvalue()


def render_json(data: ExportData) -> str:
    plan = data.plan
    payload = {
        "export_metadata": {
            "export_date": data.exported_at.isoformat(),
            "export_format": "json",
            "version": "1.0",
            "include_completed": data.include_completed,
            "include_skipped": data.include_skipped,
        },
        "plan": {
            "id": str(plan.id),
            "title": plan.title,
            "description": plan.description,
            "status": plan.status,
            "completion_percentage": plan.completion_percentage,
            "created_at": _iso(plan.created_at),
            "updated_at": _iso(plan.updated_at),
            "completed_at": _iso(plan.completed_at),
        },
        "statistics": data.statistics(),
        "phases": [
            {
                "id": str(entry["phase"].id),
                "name": entry["phase"].name,
                "description": entry["phase"].description,
                "order": entry["phase"].order,
                "estimated_duration": entry["phase"].estimated_duration,
                "is_custom": entry["phase"].is_custom,
                "tasks": [
                    {
                        "id": str(task.id),
                        "title": task.title,
                        "description": task.description,
                        "order": task.order,
                        "status": task.status,
                        "estimated_time": task.estimated_time,
                        "resources": list(task.resources or []),
                        "is_custom": task.is_custom,
                        "assignee_id": task.assignee_id,
                        "completed_at": _iso(task.completed_at),
                        "completed_by": task.completed_by,
                        "created_at": _iso(task.created_at),
                        "updated_at": _iso(task.updated_at),
                    }
                    for task in entry["tasks"]
                ],
            }
            for entry in data.phases
        ],
        "dependencies": [
            {
                "id": str(edge.id),
                "task_id": str(edge.task_id),
                "prerequisite_task_id": str(edge.prerequisite_task_id),
            }
            for edge in data.dependencies
        ],
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def render_markdown(data: ExportData) -> str:
    plan = data.plan
    stats = data.statistics()
    lines = [f"# {plan.title}", ""]

    if plan.description:
        lines += [plan.description, ""]

    lines += [
        f"**Status:** {plan.status}",
        f"**Progress:** {stats['completed_tasks']}/{stats['total_tasks']} tasks completed "
        f"({stats['completion_percentage']}%)",
        f"**Created:** {_date(plan.created_at)}",
        f"**Last Updated:** {_date(plan.updated_at)}",
        "",
        "---",
        "",
    ]

    for entry in data.phases:
        phase, tasks = entry["phase"], entry["tasks"]
        lines += [f"## {phase.name}", ""]
        if phase.description:
            lines += [phase.description, ""]
        if phase.estimated_duration:
            lines += [f"**Estimated Duration:** {phase.estimated_duration}", ""]

        phase_completed = sum(1 for task in tasks if task.status == TaskStatus.COMPLETED.value)
        lines += [
            f"**Phase Progress:** {phase_completed}/{len(tasks)} tasks "
            f"({percent(phase_completed, len(tasks))}%)",
            "",
        ]

        for task in tasks:
            checkbox = "[x]" if task.status == TaskStatus.COMPLETED.value else "[ ]"
            line = f"- {checkbox} {task.title}"
            if task.status == TaskStatus.IN_PROGRESS.value:
                line += " _(in progress)_"
            elif task.status == TaskStatus.SKIPPED.value:
                line += " _(skipped)_"
            if task.is_custom:
                line += " _(custom)_"
            lines.append(line)

            if task.description:
                lines.append(f"  - **Description:** {task.description}")
            if task.estimated_time:
                lines.append(f"  - **Estimated Time:** {task.estimated_time}")
            if task.resources:
                lines.append(f"  - **Resources:** {', '.join(task.resources)}")
            if task.completed_at:
                lines.append(f"  - **Completed:** {_date(task.completed_at)}")
            lines.append("")

        lines.append("")

    lines += [
        "---",
        "",
        f"*Exported on {data.exported_at.strftime('%Y-%m-%d')}*",
        "",
    ]
    return "\n".join(lines)


RENDERERS = {
    "csv": render_csv,
    "json": render_json,
    "markdown": render_markdown,
}


class ExportService:

    async def build_export_data(
        self,
        uow,
        plan_id,
        include_completed: bool = True,
        include_skipped: bool = True,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ExportData:
        details = await plan_service.get_plan_with_details(uow, plan_id, user_id)

        def keep(task) -> bool:
            if not include_completed and task.status == TaskStatus.COMPLETED.value:
                return False
            if not include_skipped and task.status == TaskStatus.SKIPPED.value:
                return False
            return True

        phases = [
            {"phase": entry["phase"], "tasks": [task for task in entry["tasks"] if keep(task)]}
            for entry in details["phases"]
        ]
        kept_ids = {task.id for entry in phases for task in entry["tasks"]}

        return ExportData(
            plan=details["plan"],
            phases=phases,
            dependencies=[
                edge for edge in details["dependencies"]
                if edge.task_id in kept_ids and edge.prerequisite_task_id in kept_ids
            ],
            include_completed=include_completed,
            include_skipped=include_skipped,
            exported_at=now or utcnow(),
        )

    async def export_plan(
        self,
        uow,
        plan_id,
        export_format: str,
        include_completed: bool = True,
        include_skipped: bool = True,
        user_id: Optional[str] = None
    ) -> ExportResult:
        if export_format not in EXPORT_FORMATS:
            raise UnsupportedExportFormat(export_format, list(EXPORT_FORMATS))

        data = await self.build_export_data(
            uow, plan_id, include_completed, include_skipped, user_id
        )
        content = RENDERERS[export_format](data)

        logger.info(
            "plan_exported",
            plan_id=str(plan_id),
            format=export_format,
            tasks=len(data.tasks),
            include_completed=include_completed,
            include_skipped=include_skipped,
        )
        return ExportResult(
            content=content,
            media_type=EXPORT_MEDIA_TYPES[export_format],
            filename=f"action-plan-{plan_id}.{EXPORT_FILE_EXTENSIONS[export_format]}",
        )


# Singleton instance
export_service = ExportService()
