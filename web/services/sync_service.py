"""Sync service - refreshes the local library cache from the remote applications"""

import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from core.config import AppConfig, InstanceConfig
from core.library_cache import LibraryCache, SyncResult
from core.starr_api import MediaLibraryClient
from web.services.scheduler_service import SYNC_ALL_JOB_KEY, SchedulerService, sync_job_key

logger = logging.getLogger(__name__)


class SyncService:
    """Runs LibraryCache.sync under the scheduler's overlap guard.

    Each instance has its own sync key; "sync all" holds its own key and
    then takes each instance key in turn, skipping instances already syncing.
    """

    def __init__(
        self,
        config_provider: Callable[[], AppConfig],
        cache: LibraryCache,
        scheduler: SchedulerService,
        client_factory: Callable[[InstanceConfig], MediaLibraryClient],
    ):
        self._config_provider = config_provider
        self._cache = cache
        self._scheduler = scheduler
        self._client_factory = client_factory
        self._initial_thread: Optional[threading.Thread] = None

    def sync_instance(self, instance: InstanceConfig) -> Tuple[bool, Optional[SyncResult]]:
        """Returns (started, result); started is False if this instance is already syncing."""
        key = sync_job_key(instance.app_type, instance.id)
        return self._scheduler.run_exclusive(key, self._sync_one, instance)

    def sync_all(self) -> Tuple[bool, Optional[Dict[str, SyncResult]]]:
        """Returns (started, results by instance key)."""
        return self._scheduler.run_exclusive(SYNC_ALL_JOB_KEY, self._sync_all_instances)

    def _sync_all_instances(self) -> Dict[str, SyncResult]:
        instances = self._config_provider().active_instances()
        logger.info(f"Syncing media libraries for {len(instances)} instance(s)")
        results = {}
        for instance in instances:
            started, result = self.sync_instance(instance)
            if not started:
                logger.info(f"[{instance.display_name}] Sync already running, skipped")
                continue
            results[instance.key] = result
        synced = sum(1 for r in results.values() if r.success)
        logger.info(f"Media library sync complete: {synced}/{len(instances)} succeeded")
        return results

    def _sync_one(self, instance: InstanceConfig) -> SyncResult:
        try:
            return self._cache.sync(instance, self._client_factory(instance))
        except Exception as e:
            logger.error(f"[{instance.display_name}] Media library sync failed: {e}")
            return SyncResult(
                instance_key=instance.key,
                instance_name=instance.display_name,
                success=False,
                error=str(e),
            )

    def start_initial_sync(self) -> None:
        """Sync every instance in a background thread"""
        if self._initial_thread and self._initial_thread.is_alive():
            return
        self._initial_thread = threading.Thread(
            target=self.sync_all,
            name="initial-sync",
            daemon=True,
        )
        self._initial_thread.start()
