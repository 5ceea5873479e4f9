"""
Templates API: browse public/own ritual templates and instantiate them.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends

from ritual_engine.api.auth import get_current_user_id
from ritual_engine.api.deps import get_template_service
from ritual_engine.schema.response import APIResponse, RitualRead, RitualTemplateRead
from ritual_engine.services import TemplateService

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("", response_model=APIResponse[List[RitualTemplateRead]])
async def list_templates(
    category: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    service: TemplateService = Depends(get_template_service),
):
    return APIResponse(data=await service.list_templates(user_id, category))


@router.post("", response_model=APIResponse[RitualTemplateRead])
async def create_template(
    body: Optional[Dict[str, Any]] = Body(None),
    user_id: str = Depends(get_current_user_id),
    service: TemplateService = Depends(get_template_service),
):
    return APIResponse(data=await service.create_template(user_id, body))


@router.post("/{template_id}/instantiate", response_model=APIResponse[RitualRead])
async def instantiate_template(
    template_id: str,
    body: Optional[Dict[str, Any]] = Body(None),
    user_id: str = Depends(get_current_user_id),
    service: TemplateService = Depends(get_template_service),
):
    return APIResponse(data=await service.instantiate(template_id, user_id, body))
