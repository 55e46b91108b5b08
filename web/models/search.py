"""Pydantic models for search and media library requests"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field


class ManualSearchRequest(BaseModel):
    """Search a user-selected set of items on one instance"""
    app_type: str
    instance_id: str
    media_ids: List[int] = Field(default_factory=list)


class SearchItemModel(BaseModel):
    """An item included in a run"""
    id: int
    title: str


class RunResultModel(BaseModel):
    """Outcome of one instance's run"""
    success: bool
    searched: int = 0
    items: List[SearchItemModel] = []
    error: Optional[str] = None
    instance_name: str = ""
    app_type: str = ""
    instance_id: str = ""
    eligible: int = 0


class CycleResponseModel(BaseModel):
    """Response of a search cycle"""
    success: bool
    message: str = ""
    results: Dict[str, RunResultModel] = {}
    error: Optional[str] = None
    skipped: List[str] = []
    history_id: Optional[str] = None


class CronValidationRequest(BaseModel):
    """Cron expression to validate"""
    expression: str


class MediaLibraryResponseModel(BaseModel):
    """Cached media library listing for one instance"""
    app_type: str
    instance_id: str
    instance_name: str
    from_cache: bool = True
    last_sync: Optional[str] = None
    total: int = 0
    items: List[Dict[str, Any]] = []
