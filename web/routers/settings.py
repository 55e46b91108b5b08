"""Settings routes - read and save the settings file, clear completion tags"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from core.config import AppConfig, ConfigError
from core.starr_api import StarrApiError
from web.context import AppContext
from web.dependencies import get_context, get_instance_or_404
from web.models.settings import ClearTagsResponseModel

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
def get_settings(ctx: AppContext = Depends(get_context)):
    return ctx.config.to_dict()


@router.put("")
def save_settings(settings: Dict[str, Any] = Body(...), ctx: AppContext = Depends(get_context)):
    """
    Validate and save the full settings document, then re-activate schedules.

    An invalid cron expression does not block the save; that schedule stays
    disabled and is listed in errors.
    """
    try:
        config = AppConfig.from_dict(settings)
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    errors = ctx.update_config(config)
    logger.info("Settings saved")
    return {"success": True, "errors": errors}


@router.post("/clear-tags/{app_type}/{instance_id}", response_model=ClearTagsResponseModel)
def clear_tags(app_type: str, instance_id: str, ctx: AppContext = Depends(get_context)):
    """Remove the completion tag from every item this application tagged"""
    instance = get_instance_or_404(ctx, app_type, instance_id)
    if not instance.is_configured:
        raise HTTPException(status_code=400, detail="Instance is not configured")
    if not instance.tag_name:
        raise HTTPException(status_code=400, detail="Tag name not configured for this instance")

    try:
        cleared = ctx.executor.clear_tags(instance)
    except StarrApiError as e:
        logger.error(f"[{instance.display_name}] Failed to clear tags: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    if not cleared:
        message = "No tracked media found with this tag"
    else:
        message = f"Removed tag '{instance.tag_name}' from {len(cleared)} item(s)"
    return ClearTagsResponseModel(success=True, message=message, cleared=len(cleared))
