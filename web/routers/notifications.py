"""Notification routes - provider checks"""

import logging

import requests
from fastapi import APIRouter, Depends, HTTPException

from core.notifications import NotificationError
from web.context import AppContext
from web.dependencies import get_context
from web.models.settings import NotificationTestRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/test")
def send_test_notification(request: NotificationTestRequest, ctx: AppContext = Depends(get_context)):
    """Send a test message through one configured provider"""
    notifier = ctx.notifier_factory(ctx.config)
    try:
        notifier.send_test(request.method)
    except NotificationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except requests.RequestException as e:
        logger.error(f"Test notification via {request.method} failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to send test notification: {e}")
    return {"success": True}
