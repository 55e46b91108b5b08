"""Pydantic models for settings and notification requests"""

from pydantic import BaseModel


class NotificationTestRequest(BaseModel):
    """Provider to send a test notification through"""
    method: str


class ClearTagsResponseModel(BaseModel):
    """Result of removing the completion tag from tracked items"""
    success: bool
    message: str = ""
    cleared: int = 0
