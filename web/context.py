"""Application context - every service, constructed once at startup"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from core.config import AppConfig, ConfigManager, InstanceConfig
from core.executor import RunExecutor
from core.library_cache import LibraryCache
from core.notifications import Notifier
from core.starr_api import MediaLibraryClient, StarrClient
from core.stats import StatsService
from core.store import LibraryStore
from core.tagging import IdempotencyTagger
from web.services.run_history import RunHistory
from web.services.scheduler_service import (
    GLOBAL_JOB_KEY,
    SYNC_ALL_JOB_KEY,
    InvalidScheduleError,
    SchedulerService,
    instance_job_key,
)
from web.services.search_service import SearchService
from web.services.sync_service import SyncService

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Holds the services shared by the scheduler and the API routes."""
    config_manager: ConfigManager
    store: LibraryStore
    cache: LibraryCache
    tagger: IdempotencyTagger
    executor: RunExecutor
    stats: StatsService
    history: RunHistory
    scheduler: SchedulerService
    search: SearchService
    sync: SyncService
    client_factory: Callable[[InstanceConfig], MediaLibraryClient]
    notifier_factory: Callable[[AppConfig], Notifier]

    @property
    def config(self) -> AppConfig:
        return self.config_manager.config

    def apply_schedules(self) -> List[str]:
        """(Re)activate every schedule from the current config.

        An invalid expression disables that key and is reported in the
        returned list; other keys are still activated.
        """
        config = self.config
        self.executor.cache_max_age_seconds = config.tasks.run_cache_max_age_seconds
        errors = []

        def activate(key, name, enabled, expression, func):
            if not enabled:
                self.scheduler.unschedule(key, name)
                return
            try:
                self.scheduler.schedule(key, name, expression, func)
            except InvalidScheduleError as e:
                self.scheduler.unschedule(key, name)
                logger.error(f"Failed to activate schedule for {name}: {e}")
                errors.append(f"{name}: {e}")

        activate(
            GLOBAL_JOB_KEY, "Search cycle",
            config.scheduler.enabled, config.scheduler.schedule,
            lambda: self.search.run_global_cycle("global"),
        )
        activate(
            SYNC_ALL_JOB_KEY, "Media library sync",
            config.tasks.sync_enabled, config.tasks.sync_schedule,
            self.sync.sync_all,
        )
        for instance in config.instances():
            activate(
                instance_job_key(instance.app_type, instance.id),
                f"Search cycle ({instance.display_name})",
                instance.has_own_schedule and instance.enabled and instance.is_configured,
                instance.schedule,
                self._instance_job(instance.app_type, instance.id),
            )
        return errors

    def _instance_job(self, app_type: str, instance_id: str):
        def job():
            # Look the instance up at fire time so config reloads are honored
            instance = self.config.get_instance(app_type, instance_id)
            return self.search.run_instance_cycle(instance, "instance")
        return job

    def run_global_now(self):
        """Manual global cycle under the global job's overlap guard."""
        return self.scheduler.run_exclusive(GLOBAL_JOB_KEY, self.search.run_global_cycle, "manual")

    def run_instance_now(self, instance: InstanceConfig):
        """Manual run of one instance.

        Shares the instance key with the global cycle, so it is refused while
        the global cycle is working on this instance.
        """
        key = instance_job_key(instance.app_type, instance.id)
        return self.scheduler.run_exclusive(key, self.search.run_instance_cycle, instance, "manual")

    def update_config(self, config: AppConfig) -> List[str]:
        """Save new settings and re-activate schedules from them."""
        self.config_manager.save_config(config)
        return self.apply_schedules()

    def reload_config(self) -> List[str]:
        self.config_manager.load_config()
        return self.apply_schedules()

    def start(self) -> List[str]:
        self.store.initialize()
        self.scheduler.start()
        errors = self.apply_schedules()
        if self.config.tasks.sync_on_startup and self.config.active_instances():
            self.sync.start_initial_sync()
        return errors

    def stop(self) -> None:
        self.scheduler.stop()


def build_context(
    settings_file,
    data_dir,
    client_factory: Callable[[InstanceConfig], MediaLibraryClient] = StarrClient.for_instance,
    scheduler: Optional[SchedulerService] = None,
    load: bool = True,
    notifier_factory: Optional[Callable[[AppConfig], Notifier]] = None,
) -> AppContext:
    """Wire up all services for one application instance."""
    data_dir = Path(data_dir)
    config_manager = ConfigManager(str(settings_file))
    if load:
        config_manager.load_config()

    def config_provider() -> AppConfig:
        return config_manager.config

    store = LibraryStore(data_dir / "scoutarr.db")
    store.initialize()
    cache = LibraryCache(store)
    tagger = IdempotencyTagger(store)
    executor = RunExecutor(
        tagger,
        cache=cache,
        client_factory=client_factory,
        cache_max_age_seconds=config_manager.config.tasks.run_cache_max_age_seconds,
    )
    stats = StatsService(store)
    history = RunHistory(data_dir / "run_history.json")
    scheduler = scheduler or SchedulerService()
    notifier_factory = notifier_factory or (lambda config: Notifier(config.notifications))

    return AppContext(
        config_manager=config_manager,
        store=store,
        cache=cache,
        tagger=tagger,
        executor=executor,
        stats=stats,
        history=history,
        scheduler=scheduler,
        search=SearchService(
            config_provider, executor, stats, history,
            notifier_factory=notifier_factory, guard=scheduler,
        ),
        sync=SyncService(config_provider, cache, scheduler, client_factory),
        client_factory=client_factory,
        notifier_factory=notifier_factory,
    )
