"""Sync routes - refresh the local media library cache"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from web.context import AppContext
from web.dependencies import get_context, get_instance_or_404
from web.services.scheduler_service import SYNC_ALL_JOB_KEY, sync_job_key

router = APIRouter()


@router.post("/all")
def sync_all(ctx: AppContext = Depends(get_context)):
    """Sync every active instance"""
    started, results = ctx.sync.sync_all()
    if not started:
        return JSONResponse(
            status_code=409,
            content={"success": False, "message": "Sync already in progress"},
        )
    return {
        "success": all(r.success for r in results.values()),
        "results": {key: r.to_dict() for key, r in results.items()},
    }


@router.post("/{app_type}/{instance_id}")
def sync_instance(app_type: str, instance_id: str, ctx: AppContext = Depends(get_context)):
    """Sync a single instance"""
    instance = get_instance_or_404(ctx, app_type, instance_id)
    started, result = ctx.sync.sync_instance(instance)
    if not started:
        return JSONResponse(
            status_code=409,
            content={"success": False, "message": f"Sync already in progress for {instance.display_name}"},
        )
    return result.to_dict()


@router.get("/status")
def sync_status(ctx: AppContext = Depends(get_context)):
    """Sync job state and last sync per instance"""
    instances = {}
    for instance in ctx.config.instances():
        instances[instance.key] = {
            "instance_name": instance.display_name,
            "running": ctx.scheduler.is_running(sync_job_key(instance.app_type, instance.id)),
            **ctx.cache.sync_status(instance),
        }
    return {
        "sync": ctx.scheduler.get_state(SYNC_ALL_JOB_KEY),
        "instances": instances,
    }
