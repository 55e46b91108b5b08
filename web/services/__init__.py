"""Business logic services"""

from web.services.run_history import RunHistory, RunHistoryEntry
from web.services.scheduler_service import (
    SchedulerService,
    ScheduleState,
    CronTriggerFactory,
    InvalidScheduleError,
    GLOBAL_JOB_KEY,
    SYNC_ALL_JOB_KEY,
    instance_job_key,
    sync_job_key,
)
from web.services.search_service import SearchService
from web.services.sync_service import SyncService

__all__ = [
    "RunHistory",
    "RunHistoryEntry",
    "SchedulerService",
    "ScheduleState",
    "CronTriggerFactory",
    "InvalidScheduleError",
    "GLOBAL_JOB_KEY",
    "SYNC_ALL_JOB_KEY",
    "instance_job_key",
    "sync_job_key",
    "SearchService",
    "SyncService",
]
