"""
Task and dependency endpoints.
"""
import uuid
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_acting_user, get_uow_provider
from plan_config import TASK_HISTORY_DEFAULT_LIMIT
from schemas import (
    DependencyCreate,
    DependencyResponse,
    DependencyValidationResponse,
    TaskCreate,
    TaskDependenciesResponse,
    TaskHistoryResponse,
    TaskReorder,
    TaskResponse,
    TaskUpdate,
)
from task_graph_service import task_graph_service

router = APIRouter(tags=["Tasks"])


@router.post("/plans/{plan_id}/tasks", response_model=TaskResponse, status_code=201)
async def create_task(
    plan_id: uuid.UUID,
    payload: TaskCreate,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        task = await task_graph_service.create_task(uow, plan_id, payload, user_id)
        return TaskResponse.model_validate(task)


@router.get("/plans/{plan_id}/tasks", response_model=List[TaskResponse])
async def list_tasks(
    plan_id: uuid.UUID,
    status: Optional[str] = None,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        tasks = await task_graph_service.list_tasks(uow, plan_id, user_id, status=status)
        return [TaskResponse.model_validate(task) for task in tasks]


@router.post("/plans/{plan_id}/tasks/reorder", response_model=List[TaskResponse])
async def reorder_tasks(
    plan_id: uuid.UUID,
    payload: TaskReorder,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        tasks = await task_graph_service.reorder_tasks(
            uow, plan_id, payload.phase_id, payload.task_ids, user_id
        )
        return [TaskResponse.model_validate(task) for task in tasks]


@router.get("/plans/{plan_id}/ready-tasks", response_model=List[TaskResponse])
async def get_ready_tasks(
    plan_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        tasks = await task_graph_service.get_ready_tasks(uow, plan_id, user_id)
        return [TaskResponse.model_validate(task) for task in tasks]


@router.get("/plans/{plan_id}/dependencies", response_model=Dict[uuid.UUID, TaskDependenciesResponse])
async def get_plan_dependencies(
    plan_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        graph = await task_graph_service.get_plan_dependencies(uow, plan_id, user_id)
    return {
        task_id: TaskDependenciesResponse(task_id=task_id, **links)
        for task_id, links in graph.items()
    }


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        task = await task_graph_service.get_task(uow, task_id, user_id)
        return TaskResponse.model_validate(task)


@router.patch("/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: uuid.UUID,
    payload: TaskUpdate,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        task = await task_graph_service.update_task(uow, task_id, payload, acting_user_id=user_id)
        return TaskResponse.model_validate(task)


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        await task_graph_service.delete_task(uow, task_id, user_id)
    return {"status": "deleted", "task_id": str(task_id)}


@router.get("/tasks/{task_id}/history", response_model=List[TaskHistoryResponse])
async def get_task_history(
    task_id: uuid.UUID,
    limit: int = Query(TASK_HISTORY_DEFAULT_LIMIT, ge=1, le=500),
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        entries = await task_graph_service.get_task_history(uow, task_id, user_id, limit=limit)
        return [TaskHistoryResponse.model_validate(entry) for entry in entries]


# =============================================================================
# Dependencies
# =============================================================================

@router.post("/tasks/{task_id}/dependencies", response_model=DependencyResponse, status_code=201)
async def add_dependency(
    task_id: uuid.UUID,
    payload: DependencyCreate,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        dependency = await task_graph_service.add_dependency(
            uow, task_id, payload.prerequisite_task_id, user_id
        )
        return DependencyResponse.model_validate(dependency)


@router.post("/tasks/{task_id}/dependencies/validate", response_model=DependencyValidationResponse)
async def validate_dependency(
    task_id: uuid.UUID,
    payload: DependencyCreate,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        result = await task_graph_service.validate_dependency(
            uow, task_id, payload.prerequisite_task_id, user_id
        )
    return DependencyValidationResponse(
        is_valid=result.is_valid,
        errors=result.errors,
        cycle_path=result.cycle_path,
    )


@router.get("/tasks/{task_id}/dependencies", response_model=TaskDependenciesResponse)
async def get_dependencies(
    task_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        links = await task_graph_service.get_dependencies(uow, task_id, user_id)
    return TaskDependenciesResponse(task_id=task_id, **links)


@router.get("/tasks/{task_id}/incomplete-prerequisites", response_model=List[TaskResponse])
async def get_incomplete_prerequisites(
    task_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        tasks = await task_graph_service.get_incomplete_prerequisites(uow, task_id, user_id)
        return [TaskResponse.model_validate(task) for task in tasks]


@router.delete("/dependencies/{dependency_id}")
async def remove_dependency(
    dependency_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        await task_graph_service.remove_dependency(uow, dependency_id, user_id)
    return {"status": "removed", "dependency_id": str(dependency_id)}
