"""FastAPI dependencies - shared context and lookups"""

from fastapi import HTTPException, Request

from core.config import InstanceConfig, InstanceNotFoundError
from web.context import AppContext


def get_context(request: Request) -> AppContext:
    """Get the AppContext created by the application lifespan"""
    return request.app.state.context


def get_instance_or_404(ctx: AppContext, app_type: str, instance_id: str) -> InstanceConfig:
    """Look up a configured instance, raising 404 if it does not exist"""
    try:
        return ctx.config.get_instance(app_type, instance_id)
    except InstanceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
