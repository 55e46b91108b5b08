"""Tests for the scheduler service: activation, overlap guard, next-run tracking."""

import os
import sys
import threading
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from web.services.scheduler_service import (
    GLOBAL_JOB_KEY,
    CronTriggerFactory,
    InvalidScheduleError,
    SchedulerService,
    instance_job_key,
    sync_job_key,
)


NOW = datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc)


class HourlyTriggerFactory:
    """Fires on the next whole hour; 'bad' expressions are rejected."""

    def create(self, expression):
        if expression == "bad":
            raise InvalidScheduleError("bad expression")
        return expression

    def next_fire_time(self, trigger, now):
        return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


class Clock:
    def __init__(self):
        self.now = NOW

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def service(mock_apscheduler, clock):
    return SchedulerService(
        trigger_factory=HourlyTriggerFactory(),
        scheduler=mock_apscheduler,
        clock=clock,
    )


def test_job_keys():
    assert instance_job_key("radarr", "main") == "instance:radarr:main"
    assert sync_job_key("sonarr", "tv") == "sync:sonarr:tv"


class TestSchedule:
    def test_schedule_registers_job(self, service, mock_apscheduler):
        state = service.schedule(GLOBAL_JOB_KEY, "Global", "0 * * * *", lambda: None)

        assert state.enabled is True
        assert state.next_run == NOW + timedelta(hours=1)
        kwargs = mock_apscheduler.add_job.call_args.kwargs
        assert kwargs["id"] == GLOBAL_JOB_KEY
        assert kwargs["args"][0] == GLOBAL_JOB_KEY

    def test_invalid_expression_raises_and_keeps_previous(self, service, mock_apscheduler):
        service.schedule(GLOBAL_JOB_KEY, "Global", "0 * * * *", lambda: None)
        mock_apscheduler.add_job.reset_mock()

        with pytest.raises(InvalidScheduleError):
            service.schedule(GLOBAL_JOB_KEY, "Global", "bad", lambda: None)

        mock_apscheduler.add_job.assert_not_called()
        assert service.get_state(GLOBAL_JOB_KEY)["schedule"] == "0 * * * *"

    def test_reschedule_replaces_job(self, service, mock_apscheduler):
        mock_apscheduler.get_job.return_value = object()
        service.schedule(GLOBAL_JOB_KEY, "Global", "0 * * * *", lambda: None)
        mock_apscheduler.remove_job.assert_called_once_with(GLOBAL_JOB_KEY)

    def test_unschedule(self, service):
        service.schedule(GLOBAL_JOB_KEY, "Global", "0 * * * *", lambda: None)
        state = service.unschedule(GLOBAL_JOB_KEY)
        assert state.enabled is False
        assert state.next_run is None
        assert service.get_state(GLOBAL_JOB_KEY)["status"] == "disabled"

    def test_validate(self, service):
        result = service.validate("0 * * * *", count=2)
        assert result["valid"] is True
        assert len(result["next_runs"]) == 2

        result = service.validate("bad")
        assert result == {"valid": False, "message": "bad expression", "next_runs": []}

    def test_start_and_stop(self, service, mock_apscheduler):
        service.start()
        service.start()
        assert mock_apscheduler.start.call_count == 1
        service.stop()
        mock_apscheduler.shutdown.assert_called_once_with(wait=False)
        assert service.started is False


class TestOverlapGuard:
    def test_try_begin_and_finish(self, service):
        assert service.try_begin("k") is True
        assert service.try_begin("k") is False
        assert service.is_running("k")
        service.finish("k")
        assert not service.is_running("k")
        assert service.try_begin("k") is True

    def test_keys_are_independent(self, service):
        assert service.try_begin(GLOBAL_JOB_KEY)
        assert service.try_begin(instance_job_key("radarr", "main"))

    def test_concurrent_trigger_is_dropped(self, service):
        release = threading.Event()
        entered = threading.Event()
        calls = []

        def job():
            calls.append(1)
            entered.set()
            release.wait(5)
            return "done"

        results = {}
        worker = threading.Thread(target=lambda: results.setdefault("first", service.run_exclusive("k", job)))
        worker.start()
        assert entered.wait(5)

        assert service.run_exclusive("k", job) == (False, None)
        release.set()
        worker.join(5)

        assert results["first"] == (True, "done")
        assert len(calls) == 1
        assert service.run_exclusive("k", lambda: "again") == (True, "again")

    def test_failure_releases_key(self, service):
        def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            service.run_exclusive("k", boom)
        assert not service.is_running("k")

    def test_fire_swallows_job_errors(self, service):
        def boom():
            raise RuntimeError("boom")

        service._fire("k", boom)
        assert service.get_state("k")["last_run"] == NOW.isoformat()

    def test_finish_recomputes_next_run(self, service, clock):
        service.schedule(GLOBAL_JOB_KEY, "Global", "0 * * * *", lambda: None)
        clock.now = NOW + timedelta(hours=3, minutes=20)
        service.run_exclusive(GLOBAL_JOB_KEY, lambda: None)

        state = service.get_state(GLOBAL_JOB_KEY)
        assert state["next_run"] == (NOW + timedelta(hours=4)).isoformat()
        assert state["status"] == "idle"

    def test_get_states_by_prefix(self, service):
        service.try_begin(sync_job_key("radarr", "main"))
        service.try_begin(GLOBAL_JOB_KEY)
        states = service.get_states("sync:")
        assert [s["key"] for s in states] == ["sync:radarr:main"]
        assert states[0]["status"] == "running"


class TestCronTriggerFactory:
    def test_next_fire_time(self):
        factory = CronTriggerFactory()
        trigger = factory.create("0 12 * * *")
        assert factory.next_fire_time(trigger, NOW) == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("expression", ["", "every day", "0 25 * * *"])
    def test_invalid(self, expression):
        with pytest.raises(InvalidScheduleError):
            CronTriggerFactory().create(expression)
