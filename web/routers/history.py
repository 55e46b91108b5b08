"""History routes - search cycle log"""

from fastapi import APIRouter, Depends

from web.context import AppContext
from web.dependencies import get_context

router = APIRouter()


@router.get("")
def get_history(limit: int = 100, ctx: AppContext = Depends(get_context)):
    """Search cycles, newest first"""
    entries = ctx.history.get_recent(limit)
    return {
        "history": [entry.to_dict() for entry in entries],
        "total": ctx.history.total_count(),
    }


@router.post("/clear")
def clear_history(ctx: AppContext = Depends(get_context)):
    ctx.history.clear()
    return {"success": True, "message": "History cleared"}
