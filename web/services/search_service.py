"""Search service - runs search cycles over configured instances"""

import logging
from typing import Callable, Dict, List, Optional

from core.config import AppConfig, InstanceConfig
from core.executor import RunExecutor, RunResult
from core.notifications import Notifier
from core.stats import StatsService
from web.services.run_history import RunHistory, RunHistoryEntry
from web.services.scheduler_service import SchedulerService, instance_job_key

logger = logging.getLogger(__name__)


class SearchService:
    """Drives RunExecutor for a set of instances and records the outcome.

    Every cycle, whatever its trigger, appends one history entry and sends
    notifications. Instances run one after another in configuration order;
    a failing instance never stops the others.

    An instance's run key (instance:{app}:{id}) is shared by its own cron
    job, the per-instance API trigger and the global cycle, so one instance
    is never in two selections at once. The global cycle skips an instance
    whose key is already running.
    """

    def __init__(
        self,
        config_provider: Callable[[], AppConfig],
        executor: RunExecutor,
        stats: StatsService,
        history: RunHistory,
        notifier_factory: Optional[Callable[[AppConfig], Notifier]] = None,
        guard: Optional[SchedulerService] = None,
    ):
        self._config_provider = config_provider
        self._executor = executor
        self._stats = stats
        self._history = history
        self._notifier_factory = notifier_factory or (lambda config: Notifier(config.notifications))
        self._guard = guard

    def global_instances(self) -> List[InstanceConfig]:
        """Active instances that are not driven by their own schedule."""
        return [i for i in self._config_provider().active_instances() if not i.has_own_schedule]

    def run_global_cycle(self, trigger: str = "global") -> RunHistoryEntry:
        instances = self.global_instances()
        logger.info(f"Starting search cycle ({trigger}) for {len(instances)} instance(s)")
        return self._run_cycle(instances, trigger, claim=True)

    def run_instance_cycle(self, instance: InstanceConfig, trigger: str = "instance") -> RunHistoryEntry:
        """Run one instance. The caller holds the instance's run key."""
        logger.info(f"Starting search cycle ({trigger}) for {instance.display_name}")
        return self._run_cycle([instance], trigger, claim=False)

    def preview(self) -> Dict[str, RunResult]:
        config = self._config_provider()
        return {
            i.key: self._executor.preview(i, unattended=config.is_unattended(i))
            for i in self.global_instances()
        }

    def manual_search(self, instance: InstanceConfig, media_ids: List[int]) -> RunResult:
        result = self._executor.search_items(instance, media_ids)
        if result.success and result.searched:
            self._stats.add_search(instance.app_type, instance.id, result.searched, result.items)
        return result

    def _run_one(self, instance: InstanceConfig, unattended: bool, claim: bool) -> Optional[RunResult]:
        """Run an instance, claiming its run key first when asked. None means it was busy."""
        if not claim or self._guard is None:
            return self._executor.run(instance, unattended=unattended)

        key = instance_job_key(instance.app_type, instance.id)
        started, result = self._guard.run_exclusive(key, self._executor.run, instance, unattended=unattended)
        if not started:
            logger.warning(f"[{instance.display_name}] Search already running, skipped in this cycle")
            return None
        return result

    def _run_cycle(self, instances: List[InstanceConfig], trigger: str, claim: bool) -> RunHistoryEntry:
        config = self._config_provider()
        results: Dict[str, RunResult] = {}
        skipped: List[str] = []
        for instance in instances:
            result = self._run_one(instance, config.is_unattended(instance), claim)
            if result is None:
                skipped.append(instance.key)
                continue
            results[instance.key] = result
            if result.success and result.searched:
                self._stats.add_search(instance.app_type, instance.id, result.searched, result.items)

        entry = RunHistoryEntry.from_results(results, trigger, skipped)
        self._history.record(entry)

        if entry.success:
            logger.info(f"Search cycle complete: {entry.total_searched} item(s) searched")
        else:
            logger.error(f"Search cycle failed: {entry.error}")

        self._notify(config, results, entry)
        return entry

    def _notify(self, config: AppConfig, results: Dict[str, RunResult], entry: RunHistoryEntry) -> None:
        notifier = self._notifier_factory(config)
        notifier.send(results, entry.success, entry.error)
