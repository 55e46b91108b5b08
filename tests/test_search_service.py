"""Tests for search cycles across several instances."""

import os
import random
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import AppConfig, SchedulerConfig
from core.executor import RunExecutor
from core.library_cache import LibraryCache
from core.starr_api import SONARR
from core.stats import StatsService
from core.tagging import IdempotencyTagger
from web.services.run_history import RunHistory
from web.services.scheduler_service import SchedulerService, instance_job_key
from web.services.search_service import SearchService
from conftest import FakeLibraryClient, make_item


@pytest.fixture
def clients():
    return {
        "radarr:main": FakeLibraryClient(items=[make_item(i) for i in range(1, 4)]),
        "sonarr:tv": FakeLibraryClient(strategy=SONARR, items=[make_item(i) for i in range(10, 12)]),
    }


@pytest.fixture
def app_config(instance, sonarr_instance):
    return AppConfig(applications={
        "radarr": [instance],
        "sonarr": [sonarr_instance],
        "lidarr": [],
        "readarr": [],
    })


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def service(store, tmp_path, clients, app_config, notifier):
    executor = RunExecutor(
        IdempotencyTagger(store),
        cache=LibraryCache(store),
        client_factory=lambda instance: clients[instance.key],
        rng=random.Random(1),
    )
    return SearchService(
        lambda: app_config,
        executor,
        StatsService(store),
        RunHistory(tmp_path / "run_history.json"),
        notifier_factory=lambda config: notifier,
    )


class TestGlobalCycle:
    def test_runs_every_instance(self, service, clients):
        entry = service.run_global_cycle()

        assert entry.success is True
        assert entry.trigger == "global"
        assert set(entry.results) == {"radarr:main", "sonarr:tv"}
        assert entry.results["radarr:main"].searched == 2
        assert entry.results["sonarr:tv"].searched == 2
        assert entry.total_searched == 4

    def test_failure_is_isolated(self, service, clients):
        clients["radarr:main"].fail_on = {"get_media"}
        entry = service.run_global_cycle()

        assert entry.success is True
        assert entry.error is None
        assert entry.results["radarr:main"].success is False
        assert entry.results["sonarr:tv"].searched == 2

    def test_all_failed(self, service, clients, notifier):
        for client in clients.values():
            client.fail_on = {"get_media"}
        entry = service.run_global_cycle()

        assert entry.success is False
        assert entry.error == "Radarr: get_media failed; Sonarr: get_media failed"
        notifier.send.assert_called_once()
        assert notifier.send.call_args.args[1] is False

    def test_history_and_stats_recorded(self, service, store):
        service.run_global_cycle("manual")
        service.run_global_cycle("global")

        history = service._history.get_recent()
        assert [e.trigger for e in history] == ["global", "manual"]
        stats = StatsService(store).get_stats()
        assert stats["total_searches"] == 5
        assert stats["searches_by_application"] == {"radarr": 3, "sonarr": 2}
        assert stats["searches_by_instance"]["radarr-main"] == 3

    def test_notifies_on_empty_cycle(self, service, notifier, clients):
        for client in clients.values():
            client.items = {}
        service.run_global_cycle()
        notifier.send.assert_called_once()
        assert notifier.send.call_args.args[1] is True

    def test_skips_instances_with_own_schedule(self, service, app_config, make_instance):
        app_config.applications["radarr"] = [make_instance(schedule="0 * * * *", schedule_enabled=True)]
        assert [i.key for i in service.global_instances()] == ["sonarr:tv"]

    def test_skips_disabled_instances(self, service, app_config, make_instance):
        app_config.applications["radarr"] = [make_instance(enabled=False)]
        entry = service.run_global_cycle()
        assert list(entry.results) == ["sonarr:tv"]


class TestUnattendedSetting:
    def test_inherited_from_scheduler(self, service, app_config, clients, instance):
        app_config.scheduler = SchedulerConfig(unattended=True)
        client = clients["radarr:main"]
        service.run_instance_cycle(instance)
        service.run_instance_cycle(instance)
        # third run finds everything tagged and resets
        entry = service.run_instance_cycle(instance)

        assert client.removed
        assert entry.results["radarr:main"].searched == 2

    def test_instance_override(self, service, app_config, clients, make_instance):
        app_config.scheduler = SchedulerConfig(unattended=True)
        instance = make_instance(count=None, unattended=False)
        service.run_instance_cycle(instance)
        entry = service.run_instance_cycle(instance)

        assert clients["radarr:main"].removed == []
        assert entry.results["radarr:main"].searched == 0


class TestPreviewAndManual:
    def test_preview(self, service, clients):
        results = service.preview()
        assert set(results) == {"radarr:main", "sonarr:tv"}
        assert all(client.searched == [] for client in clients.values())

    def test_manual_search_records_stats(self, service, store, instance):
        result = service.manual_search(instance, [1, 2])
        assert result.searched == 2
        assert StatsService(store).get_stats()["total_searches"] == 2
        assert service._history.total_count() == 0


class TestInstanceGuard:
    @pytest.fixture
    def guard(self, mock_apscheduler):
        return SchedulerService(scheduler=mock_apscheduler)

    @pytest.fixture
    def guarded(self, service, guard):
        service._guard = guard
        return service

    def test_global_cycle_skips_busy_instance(self, guarded, guard, clients):
        assert guard.try_begin(instance_job_key("radarr", "main"))
        entry = guarded.run_global_cycle()

        assert list(entry.results) == ["sonarr:tv"]
        assert entry.skipped == ["radarr:main"]
        assert clients["radarr:main"].get_media_calls == 0
        assert clients["sonarr:tv"].searched

    def test_global_cycle_releases_instance_keys(self, guarded, guard):
        guarded.run_global_cycle()
        assert guard.is_running(instance_job_key("radarr", "main")) is False
        assert guard.is_running(instance_job_key("sonarr", "tv")) is False
        assert guard.get_state(instance_job_key("radarr", "main"))["last_run"] is not None

    def test_instance_cycle_does_not_claim_its_own_key(self, guarded, guard, instance):
        # the caller already holds the key, as run_instance_now and cron ticks do
        key = instance_job_key("radarr", "main")
        assert guard.try_begin(key)
        entry = guarded.run_instance_cycle(instance)
        guard.finish(key)

        assert entry.skipped == []
        assert entry.results["radarr:main"].searched == 2
