"""
Rituals API: definitions, steps, completions and analytics.
Every route is scoped to the authenticated user; ownership checks happen in
the services before any payload validation.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from ritual_engine.api.auth import get_current_user_id
from ritual_engine.api.deps import (
    get_analytics,
    get_completion_recorder,
    get_ritual_service,
)
from ritual_engine.schema.response import (
    AnalyticsSummary,
    APIResponse,
    DeleteAck,
    Page,
    RitualCompletionRead,
    RitualRead,
    RitualStepRead,
)
from ritual_engine.services import AnalyticsAggregator, CompletionRecorder, RitualService

router = APIRouter(prefix="/rituals", tags=["rituals"])


@router.post("", response_model=APIResponse[RitualRead])
async def create_ritual(
    body: Optional[Dict[str, Any]] = Body(None),
    user_id: str = Depends(get_current_user_id),
    service: RitualService = Depends(get_ritual_service),
):
    return APIResponse(data=await service.create(user_id, body))


@router.get("", response_model=APIResponse[Page[RitualRead]])
async def list_rituals(
    page: int = 1,
    limit: Optional[int] = None,
    category: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = Query(None, max_length=120),
    user_id: str = Depends(get_current_user_id),
    service: RitualService = Depends(get_ritual_service),
):
    result = await service.list(
        user_id, page, limit, category=category, is_active=is_active, search=search
    )
    return APIResponse(data=result)


@router.get("/{ritual_id}", response_model=APIResponse[RitualRead])
async def get_ritual(
    ritual_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RitualService = Depends(get_ritual_service),
):
    return APIResponse(data=await service.get(ritual_id, user_id))


@router.patch("/{ritual_id}", response_model=APIResponse[RitualRead])
async def update_ritual(
    ritual_id: str,
    body: Optional[Dict[str, Any]] = Body(None),
    user_id: str = Depends(get_current_user_id),
    service: RitualService = Depends(get_ritual_service),
):
    return APIResponse(data=await service.update(ritual_id, user_id, body))


@router.delete("/{ritual_id}", response_model=APIResponse[DeleteAck])
async def delete_ritual(
    ritual_id: str,
    purge: bool = False,
    user_id: str = Depends(get_current_user_id),
    service: RitualService = Depends(get_ritual_service),
):
    return APIResponse(data=await service.delete(ritual_id, user_id, purge=purge))


# ==========================================
# STEPS
# ==========================================

@router.post("/{ritual_id}/steps", response_model=APIResponse[RitualStepRead])
async def add_step(
    ritual_id: str,
    body: Optional[Dict[str, Any]] = Body(None),
    user_id: str = Depends(get_current_user_id),
    service: RitualService = Depends(get_ritual_service),
):
    return APIResponse(data=await service.add_step(ritual_id, user_id, body))


@router.patch("/{ritual_id}/steps/{step_id}", response_model=APIResponse[RitualStepRead])
async def update_step(
    ritual_id: str,
    step_id: str,
    body: Optional[Dict[str, Any]] = Body(None),
    user_id: str = Depends(get_current_user_id),
    service: RitualService = Depends(get_ritual_service),
):
    return APIResponse(data=await service.update_step(ritual_id, step_id, user_id, body))


@router.delete("/{ritual_id}/steps/{step_id}", response_model=APIResponse[DeleteAck])
async def remove_step(
    ritual_id: str,
    step_id: str,
    user_id: str = Depends(get_current_user_id),
    service: RitualService = Depends(get_ritual_service),
):
    return APIResponse(data=await service.remove_step(ritual_id, step_id, user_id))


# ==========================================
# COMPLETIONS & ANALYTICS
# ==========================================

@router.post("/{ritual_id}/complete", response_model=APIResponse[RitualCompletionRead])
async def complete_ritual(
    ritual_id: str,
    body: Optional[Dict[str, Any]] = Body(None),
    user_id: str = Depends(get_current_user_id),
    recorder: CompletionRecorder = Depends(get_completion_recorder),
):
    return APIResponse(data=await recorder.complete(ritual_id, user_id, body))


@router.get("/{ritual_id}/completions", response_model=APIResponse[Page[RitualCompletionRead]])
async def list_completions(
    ritual_id: str,
    page: int = 1,
    limit: Optional[int] = None,
    user_id: str = Depends(get_current_user_id),
    recorder: CompletionRecorder = Depends(get_completion_recorder),
):
    return APIResponse(data=await recorder.list_completions(ritual_id, user_id, page, limit))


@router.get("/{ritual_id}/analytics", response_model=APIResponse[AnalyticsSummary])
async def ritual_analytics(
    ritual_id: str,
    time_range: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    analytics: AnalyticsAggregator = Depends(get_analytics),
):
    return APIResponse(data=await analytics.analyze(ritual_id, user_id, time_range))
