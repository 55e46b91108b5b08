"""Stats routes - search totals"""

from fastapi import APIRouter, Depends, Query

from web.context import AppContext
from web.dependencies import get_context

router = APIRouter()


@router.get("")
def get_stats(ctx: AppContext = Depends(get_context)):
    return ctx.stats.get_stats()


@router.get("/recent")
def get_recent_searches(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=15, ge=1, le=1000),
    ctx: AppContext = Depends(get_context),
):
    """Recorded searches, newest first, one page at a time"""
    return ctx.stats.get_recent(page, page_size)


@router.post("/reset")
def reset_stats(ctx: AppContext = Depends(get_context)):
    ctx.stats.reset()
    return {"success": True, "message": "Stats reset"}
