from datetime import datetime
from typing import Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from plan_config import (
    DESCRIPTION_MAX_LENGTH,
    ESTIMATED_TIME_MAX_LENGTH,
    PHASE_NAME_MAX_LENGTH,
    RESOURCE_URL_MAX_LENGTH,
    TITLE_MAX_LENGTH,
)


# =============================================================================
# Plans & phases
# =============================================================================

class PlanCreate(BaseModel):
    analysis_id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)


class PlanUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    status: Optional[str] = None  # checked against PlanStatus by the service


class PhaseCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=PHASE_NAME_MAX_LENGTH)
    order: int = Field(..., ge=0)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    estimated_duration: Optional[str] = Field(None, max_length=ESTIMATED_TIME_MAX_LENGTH)
    is_custom: bool = True


class PlanResponse(BaseModel):
    id: UUID
    user_id: str
    analysis_id: str
    title: str
    description: Optional[str] = None
    status: str
    completion_percentage: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PhaseResponse(BaseModel):
    id: UUID
    plan_id: UUID
    name: str
    description: Optional[str] = None
    order: int
    estimated_duration: Optional[str] = None
    is_custom: bool
    completion_percentage: int

    class Config:
        from_attributes = True


# =============================================================================
# Tasks
# =============================================================================

class TaskCreate(BaseModel):
    phase_id: UUID
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH)
    order: int = Field(..., ge=0)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    estimated_time: Optional[str] = Field(None, max_length=ESTIMATED_TIME_MAX_LENGTH)
    resources: List[str] = Field(default_factory=list)
    assignee_id: Optional[str] = Field(None, max_length=64)

    @field_validator("resources")
    @classmethod
    def check_resources(cls, value: List[str]) -> List[str]:
        for resource in value:
            if not resource or len(resource) > RESOURCE_URL_MAX_LENGTH:
                raise ValueError(f"resource links must be 1-{RESOURCE_URL_MAX_LENGTH} characters")
        return value


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(None, max_length=DESCRIPTION_MAX_LENGTH)
    estimated_time: Optional[str] = Field(None, max_length=ESTIMATED_TIME_MAX_LENGTH)
    resources: Optional[List[str]] = None
    assignee_id: Optional[str] = Field(None, max_length=64)
    status: Optional[str] = None  # checked against TaskStatus by the domain layer
    override_prerequisites: bool = False


class TaskReorder(BaseModel):
    phase_id: UUID
    task_ids: List[UUID] = Field(..., min_length=1)


class TaskResponse(BaseModel):
    id: UUID
    phase_id: UUID
    plan_id: UUID
    title: str
    description: Optional[str] = None
    estimated_time: Optional[str] = None
    resources: List[str] = []
    order: int
    status: str
    is_custom: bool
    assignee_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TaskHistoryResponse(BaseModel):
    id: UUID
    task_id: UUID
    action: str
    previous_state: Optional[dict] = None
    new_state: Optional[dict] = None
    user_id: Optional[str] = None
    override_prerequisites: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PhaseWithTasks(PhaseResponse):
    tasks: List[TaskResponse] = []


# =============================================================================
# Dependencies
# =============================================================================

class DependencyCreate(BaseModel):
    prerequisite_task_id: UUID


class DependencyResponse(BaseModel):
    id: UUID
    plan_id: UUID
    task_id: UUID
    prerequisite_task_id: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class DependencyValidationResponse(BaseModel):
    is_valid: bool
    errors: List[str] = []
    cycle_path: List[UUID] = []


class TaskDependenciesResponse(BaseModel):
    task_id: UUID
    prerequisites: List[UUID]
    dependents: List[UUID]


class PlanDetailsResponse(PlanResponse):
    phases: List[PhaseWithTasks] = []
    dependencies: List[DependencyResponse] = []


# =============================================================================
# Progress
# =============================================================================

class ProgressSnapshotResponse(BaseModel):
    id: UUID
    plan_id: UUID
    sequence: int
    completed_task_ids: List[UUID]
    phase_completion: Dict[str, int]
    overall_completion: int
    total_tasks: int
    completed_tasks: int
    in_progress_tasks: int
    skipped_tasks: int
    created_at: datetime

    class Config:
        from_attributes = True


class PlanStatistics(BaseModel):
    plan_id: UUID
    total_phases: int
    total_tasks: int
    not_started_tasks: int
    in_progress_tasks: int
    completed_tasks: int
    skipped_tasks: int
    completion_percentage: int


class ProgressMetrics(BaseModel):
    plan_id: UUID
    total_tasks: int
    completed_tasks: int
    in_progress_tasks: int
    skipped_tasks: int
    not_started_tasks: int
    completion_percentage: int
    current_phase: Optional[str] = None
    velocity: float
    average_task_time: int
    estimated_completion: Optional[datetime] = None


class SlowPhase(BaseModel):
    phase_id: UUID
    phase_name: str
    estimated_duration: Optional[str] = None
    actual_duration_days: int
    is_overdue: bool


class PlanProgressRollup(BaseModel):
    plan_id: UUID
    title: str
    completion_percentage: int
    total_tasks: int
    completed_tasks: int


class UserProgressSummary(BaseModel):
    user_id: str
    active_plans: int
    total_tasks: int
    completed_tasks: int
    overall_completion_percentage: int
    average_velocity: float
    plans: List[PlanProgressRollup] = []


# =============================================================================
# Export
# =============================================================================

class ExportRequest(BaseModel):
    format: Literal["csv", "json", "markdown"]
    include_completed: bool = True
    include_skipped: bool = True
