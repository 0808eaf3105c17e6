"""
Progress endpoints: metrics, snapshot history, slow phases, user dashboard.
"""
import uuid
from typing import List, Literal

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_acting_user, get_uow_provider
from exceptions import AccessDenied
from plan_config import PROGRESS_HISTORY_DEFAULT_LIMIT, PROGRESS_HISTORY_MAX_LIMIT
from progress_service import progress_service
from schemas import ProgressMetrics, ProgressSnapshotResponse, SlowPhase, UserProgressSummary

router = APIRouter(tags=["Progress"])


@router.get("/plans/{plan_id}/progress", response_model=ProgressMetrics)
async def get_progress(
    plan_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        return await progress_service.calculate_progress(uow, plan_id, user_id)


@router.get("/plans/{plan_id}/progress/history", response_model=List[ProgressSnapshotResponse])
async def get_progress_history(
    plan_id: uuid.UUID,
    limit: int = Query(PROGRESS_HISTORY_DEFAULT_LIMIT, ge=1, le=PROGRESS_HISTORY_MAX_LIMIT),
    order: Literal["asc", "desc"] = "asc",
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        snapshots = await progress_service.get_progress_history(
            uow, plan_id, user_id, limit=limit, newest_first=(order == "desc")
        )
        return [ProgressSnapshotResponse.model_validate(snapshot) for snapshot in snapshots]


@router.get("/plans/{plan_id}/progress/slow-phases", response_model=List[SlowPhase])
async def get_slow_phases(
    plan_id: uuid.UUID,
    user_id: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    async with provider() as uow:
        return await progress_service.identify_slow_phases(uow, plan_id, user_id)


@router.get("/users/{user_id}/progress/summary", response_model=UserProgressSummary)
async def get_user_progress_summary(
    user_id: str,
    acting_user: str = Depends(get_acting_user),
    provider=Depends(get_uow_provider)
):
    if user_id != acting_user:
        raise AccessDenied(acting_user, f"users/{user_id}/progress")

    async with provider() as uow:
        return await progress_service.get_user_progress_summary(uow, user_id)
