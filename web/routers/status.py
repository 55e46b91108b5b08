"""Status routes - connectivity and scheduler state"""

from fastapi import APIRouter, Depends, HTTPException

from core.config import ConfigError
from web.context import AppContext
from web.dependencies import get_context
from web.models.search import CronValidationRequest
from web.services.scheduler_service import (
    GLOBAL_JOB_KEY,
    SYNC_ALL_JOB_KEY,
    instance_job_key,
    sync_job_key,
)

router = APIRouter()


@router.get("/status")
def detailed_status(ctx: AppContext = Depends(get_context)):
    """
    Per-instance connectivity plus scheduler and sync state.

    Connectivity is checked live against each enabled, configured instance.
    """
    applications = {}
    for instance in ctx.config.instances():
        connected = False
        if instance.enabled and instance.is_configured:
            connected = ctx.client_factory(instance).test_connection()
        applications[instance.key] = {
            "app_type": instance.app_type,
            "instance_id": instance.id,
            "name": instance.display_name,
            "enabled": instance.enabled,
            "configured": instance.is_configured,
            "connected": connected,
            "schedule": ctx.scheduler.get_state(instance_job_key(instance.app_type, instance.id)),
            "sync": ctx.scheduler.get_state(sync_job_key(instance.app_type, instance.id)),
        }

    return {
        "applications": applications,
        "scheduler": {
            **ctx.scheduler.get_state(GLOBAL_JOB_KEY),
            "unattended": ctx.config.scheduler.unattended,
        },
        "sync": ctx.scheduler.get_state(SYNC_ALL_JOB_KEY),
    }


@router.get("/api/health")
def health_check(ctx: AppContext = Depends(get_context)):
    """Health check for container monitoring"""
    return {
        "status": "healthy",
        "scheduler_running": ctx.scheduler.started,
        "search_running": ctx.scheduler.is_running(GLOBAL_JOB_KEY),
        "sync_running": ctx.scheduler.is_running(SYNC_ALL_JOB_KEY),
    }


@router.post("/scheduler/validate")
def validate_cron_expression(request: CronValidationRequest, ctx: AppContext = Depends(get_context)):
    """Validate a cron expression and preview its next runs"""
    return ctx.scheduler.validate(request.expression)


@router.post("/scheduler/reload")
def reload_config(ctx: AppContext = Depends(get_context)):
    """Reload the settings file and re-activate all schedules"""
    try:
        errors = ctx.reload_config()
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": not errors, "errors": errors}
