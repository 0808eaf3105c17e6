"""
Plan, phase, statistics and export endpoints.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Response

from api.dependencies import get_acting_user, get_uow_provider
from export_service import export_service
from plan_service import plan_service
from schemas import (
    DependencyResponse,
    ExportRequest,
    PhaseCreate,
    PhaseResponse,
    PhaseWithTasks,
    PlanCreate,
    PlanDetailsResponse,
    PlanResponse,
    PlanStatistics,
    PlanUpdate,
    TaskResponse,
)

router = APIRouter(tags=["Plans"])


def details_response(details: dict) -> PlanDetailsResponse:
    plan = PlanResponse.model_validate(details["plan"])
    return PlanDetailsResponse(
        **plan.model_dump(),
        phases=[
            PhaseWithTasks(
                **PhaseResponse.model_validate(entry["phase"]).model_dump(),
                tasks=[TaskResponse.model_validate(task) for task in entry["tasks"]],
            )
            for entry in details["phases"]
        ],
        dependencies=[DependencyResponse.model_validate(edge) for edge in details["dependencies"]],
    )


@router.post("/plans", response_model=PlanResponse, status_code=201)
async def create_plan(
    payload: PlanCreate,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        plan = await plan_service.create_plan(uow, user_id, payload)
        return PlanResponse.model_validate(plan)


@router.get("/plans", response_model=List[PlanResponse])
async def list_plans(
    status: Optional[str] = None,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        plans = await plan_service.list_user_plans(uow, user_id, status=status)
        return [PlanResponse.model_validate(plan) for plan in plans]


@router.get("/plans/by-analysis/{analysis_id}", response_model=PlanDetailsResponse)
async def get_plan_by_analysis(
    analysis_id: str,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        plan = await plan_service.get_plan_by_analysis(uow, analysis_id, user_id)
        details = await plan_service.get_plan_with_details(uow, plan.id, user_id)
        return details_response(details)


@router.get("/plans/{plan_id}", response_model=PlanDetailsResponse)
async def get_plan(
    plan_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        details = await plan_service.get_plan_with_details(uow, plan_id, user_id)
        return details_response(details)


@router.patch("/plans/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: uuid.UUID,
    payload: PlanUpdate,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        plan = await plan_service.update_plan(uow, plan_id, payload, user_id)
        return PlanResponse.model_validate(plan)


@router.delete("/plans/{plan_id}")
async def delete_plan(
    plan_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        await plan_service.delete_plan(uow, plan_id, user_id)
    return {"status": "deleted", "plan_id": str(plan_id)}


@router.get("/plans/{plan_id}/statistics", response_model=PlanStatistics)
async def get_plan_statistics(
    plan_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        return await plan_service.get_plan_statistics(uow, plan_id, user_id)


# =============================================================================
# Phases
# =============================================================================

@router.post("/plans/{plan_id}/phases", response_model=PhaseResponse, status_code=201)
async def create_phase(
    plan_id: uuid.UUID,
    payload: PhaseCreate,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        phase = await plan_service.create_phase(uow, plan_id, payload, user_id)
        return PhaseResponse.model_validate(phase)


@router.get("/plans/{plan_id}/phases", response_model=List[PhaseResponse])
async def list_phases(
    plan_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        phases = await plan_service.list_phases(uow, plan_id, user_id)
        return [PhaseResponse.model_validate(phase) for phase in phases]


@router.delete("/phases/{phase_id}")
async def delete_phase(
    phase_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        await plan_service.delete_phase(uow, phase_id, user_id)
    return {"status": "deleted", "phase_id": str(phase_id)}


# =============================================================================
# Export
# =============================================================================

@router.post("/plans/{plan_id}/export")
async def export_plan(
    plan_id: uuid.UUID,
    payload: ExportRequest,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        result = await export_service.export_plan(
            uow,
            plan_id,
            payload.format,
            include_completed=payload.include_completed,
            include_skipped=payload.include_skipped,
            user_id=user_id,
        )
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )
