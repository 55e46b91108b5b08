"""Media library routes - cached listings and manual searches"""

from fastapi import APIRouter, Depends, HTTPException

from core.filters import FilterConfig
from web.context import AppContext
from web.dependencies import get_context, get_instance_or_404
from web.models.search import ManualSearchRequest, MediaLibraryResponseModel, RunResultModel

router = APIRouter()


@router.get("/{app_type}/{instance_id}", response_model=MediaLibraryResponseModel)
def get_media_library(
    app_type: str,
    instance_id: str,
    sync: bool = False,
    ctx: AppContext = Depends(get_context),
):
    """
    List an instance's items, filtered by the instance's own filters.

    Served from the local cache; pass sync=true to refresh it first. If a
    sync for this instance is already running, the current cache is returned.
    """
    instance = get_instance_or_404(ctx, app_type, instance_id)

    from_cache = True
    if sync:
        started, result = ctx.sync.sync_instance(instance)
        if started and not result.success:
            raise HTTPException(status_code=502, detail=result.error)
        from_cache = not started

    items = ctx.cache.read(instance, FilterConfig.from_instance(instance))
    return MediaLibraryResponseModel(
        app_type=instance.app_type,
        instance_id=instance.id,
        instance_name=instance.display_name,
        from_cache=from_cache,
        last_sync=ctx.cache.sync_status(instance)["last_sync"],
        total=len(items),
        items=[item.to_dict() for item in items],
    )


@router.delete("/{app_type}/{instance_id}")
def reset_media_library(app_type: str, instance_id: str, ctx: AppContext = Depends(get_context)):
    """Forget the cached library and tag records of an instance"""
    instance = get_instance_or_404(ctx, app_type, instance_id)
    ctx.cache.reset(instance)
    return {"success": True, "message": f"Cleared cached data for {instance.display_name}"}


@router.post("/search", response_model=RunResultModel)
def search_media(request: ManualSearchRequest, ctx: AppContext = Depends(get_context)):
    """Search and tag the selected items, bypassing filters and random selection"""
    if not request.media_ids:
        raise HTTPException(status_code=400, detail="No media ids given")
    instance = get_instance_or_404(ctx, request.app_type, request.instance_id)
    result = ctx.search.manual_search(instance, request.media_ids)
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error)
    return RunResultModel(**result.to_dict())
