"""Search routes - run search cycles"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from web.context import AppContext
from web.dependencies import get_context, get_instance_or_404
from web.models.search import CycleResponseModel, RunResultModel
from web.services.run_history import RunHistoryEntry

router = APIRouter()


def _cycle_response(entry: RunHistoryEntry) -> CycleResponseModel:
    if entry.success:
        message = f"Searched {entry.total_searched} item(s)"
        if entry.skipped:
            message += f", skipped {len(entry.skipped)} busy instance(s)"
    else:
        message = "Search cycle failed"
    return CycleResponseModel(
        success=entry.success,
        message=message,
        results={key: RunResultModel(**r.to_dict()) for key, r in entry.results.items()},
        error=entry.error,
        skipped=entry.skipped,
        history_id=entry.id,
    )


def _already_running(message: str) -> JSONResponse:
    return JSONResponse(status_code=409, content={"success": False, "message": message})


@router.post("/run")
def run_search(ctx: AppContext = Depends(get_context)):
    """Run the global search cycle now and return one result per instance"""
    started, entry = ctx.run_global_now()
    if not started:
        return _already_running("Search cycle already in progress")
    return _cycle_response(entry)


@router.post("/run/preview")
def preview_search(ctx: AppContext = Depends(get_context)):
    """Show what the next global cycle would search, without searching"""
    results = ctx.search.preview()
    return {
        "success": all(r.success for r in results.values()),
        "results": {key: r.to_dict() for key, r in results.items()},
    }


@router.post("/run/{app_type}/{instance_id}")
def run_instance_search(app_type: str, instance_id: str, ctx: AppContext = Depends(get_context)):
    """Run one instance's search cycle now"""
    instance = get_instance_or_404(ctx, app_type, instance_id)
    started, entry = ctx.run_instance_now(instance)
    if not started:
        return _already_running(f"Search already in progress for {instance.display_name}")
    return _cycle_response(entry)
