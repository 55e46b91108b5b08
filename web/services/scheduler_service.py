"""Scheduler service - cron-driven jobs with a per-key overlap guard"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

GLOBAL_JOB_KEY = "global"
SYNC_ALL_JOB_KEY = "sync:all"


def instance_job_key(app_type: str, instance_id: str) -> str:
    return f"instance:{app_type}:{instance_id}"


def sync_job_key(app_type: str, instance_id: str) -> str:
    return f"sync:{app_type}:{instance_id}"


class InvalidScheduleError(ValueError):
    """Raised when a cron expression cannot be activated."""


class TriggerFactory(Protocol):
    """Turns cron expressions into triggers and answers "when does it fire next"."""

    def create(self, expression: str) -> Any: ...

    def next_fire_time(self, trigger: Any, now: datetime) -> Optional[datetime]: ...


class CronTriggerFactory:
    """APScheduler-backed TriggerFactory for standard 5-field cron expressions."""

    def __init__(self, timezone_name: str = "UTC"):
        self.timezone_name = timezone_name

    def create(self, expression: str) -> CronTrigger:
        try:
            return CronTrigger.from_crontab(expression, timezone=self.timezone_name)
        except (ValueError, TypeError) as e:
            raise InvalidScheduleError(f"Invalid cron expression '{expression}': {e}") from e

    def next_fire_time(self, trigger: CronTrigger, now: datetime) -> Optional[datetime]:
        return trigger.get_next_fire_time(None, now)


@dataclass
class ScheduleState:
    """Runtime state of one job key"""
    key: str
    name: str = ""
    expression: str = ""
    enabled: bool = False
    running: bool = False
    next_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    trigger: Any = None

    @property
    def status(self) -> str:
        if self.running:
            return "running"
        return "idle" if self.enabled else "disabled"

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "enabled": self.enabled,
            "running": self.running,
            "status": self.status,
            "schedule": self.expression or None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
        }


class SchedulerService:
    """Runs jobs on cron schedules and guarantees at most one execution per key.

    A trigger that arrives while its key is running is dropped, not queued.
    Manual triggers (API calls) and cron ticks share the same guard.
    """

    def __init__(
        self,
        trigger_factory: Optional[TriggerFactory] = None,
        scheduler=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._triggers = trigger_factory or CronTriggerFactory()
        self._scheduler = scheduler or BackgroundScheduler(
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance at a time
                'misfire_grace_time': 60 * 60,  # 1 hour grace time for missed jobs
            },
            timezone="UTC",
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._states: Dict[str, ScheduleState] = {}
        self._lock = threading.Lock()
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self):
        """Start the scheduler"""
        if self._started:
            return
        self._scheduler.start()
        self._started = True
        logger.info("Scheduler service started")

    def stop(self):
        """Stop the scheduler"""
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler service stopped")

    def _state(self, key: str, name: str = "") -> ScheduleState:
        state = self._states.get(key)
        if state is None:
            state = ScheduleState(key=key, name=name or key)
            self._states[key] = state
        elif name:
            state.name = name
        return state

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def schedule(self, key: str, name: str, expression: str, func: Callable[[], Any]) -> ScheduleState:
        """Activate a cron schedule for key.

        Raises InvalidScheduleError for a malformed expression; the key's
        previous schedule is left untouched in that case.
        """
        trigger = self._triggers.create(expression)

        if self._scheduler.get_job(key):
            self._scheduler.remove_job(key)
        self._scheduler.add_job(
            self._fire,
            trigger=trigger,
            args=[key, func],
            id=key,
            name=name,
            replace_existing=True,
        )

        with self._lock:
            state = self._state(key, name)
            state.expression = expression
            state.enabled = True
            state.trigger = trigger
            state.next_run = self._triggers.next_fire_time(trigger, self._clock())

        logger.info(f"Schedule enabled for {name}: cron {expression}")
        if state.next_run:
            logger.info(f"Next run of {name}: {state.next_run.strftime('%Y-%m-%d %H:%M:%S %Z')}")
        return state

    def unschedule(self, key: str, name: str = "") -> ScheduleState:
        """Disable a key's schedule. A run already in progress completes."""
        if self._scheduler.get_job(key):
            self._scheduler.remove_job(key)
        with self._lock:
            state = self._state(key, name)
            state.enabled = False
            state.trigger = None
            state.next_run = None
        return state

    def validate(self, expression: str, count: int = 3) -> Dict[str, Any]:
        """Check a cron expression and list its next few fire times."""
        try:
            trigger = self._triggers.create(expression)
        except InvalidScheduleError as e:
            return {"valid": False, "message": str(e), "next_runs": []}

        next_runs = []
        base = self._clock()
        for _ in range(count):
            next_time = self._triggers.next_fire_time(trigger, base)
            if not next_time:
                break
            next_runs.append(next_time.isoformat())
            base = next_time + timedelta(seconds=1)
        return {"valid": True, "message": "Valid cron expression", "next_runs": next_runs}

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def try_begin(self, key: str) -> bool:
        """Idle -> Running. Returns False if the key is already running."""
        with self._lock:
            state = self._state(key)
            if state.running:
                logger.info(f"Skipping {state.name}: already running")
                return False
            state.running = True
            return True

    def finish(self, key: str) -> None:
        """Running -> Idle, recomputing the next fire time."""
        with self._lock:
            state = self._state(key)
            state.running = False
            state.last_run = self._clock()
            if state.enabled and state.trigger is not None:
                state.next_run = self._triggers.next_fire_time(state.trigger, state.last_run)

    def run_exclusive(self, key: str, func: Callable[..., Any], *args, **kwargs) -> Tuple[bool, Any]:
        """Run func under key's overlap guard.

        Returns (started, result). started is False when the call was dropped
        because the key was already running.
        """
        if not self.try_begin(key):
            return False, None
        try:
            return True, func(*args, **kwargs)
        finally:
            self.finish(key)

    def _fire(self, key: str, func: Callable[[], Any]) -> None:
        """Entry point for cron ticks"""
        try:
            self.run_exclusive(key, func)
        except Exception as e:
            logger.error(f"Scheduled job {key} failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def is_running(self, key: str) -> bool:
        with self._lock:
            state = self._states.get(key)
            return bool(state and state.running)

    def get_state(self, key: str) -> dict:
        with self._lock:
            return self._state(key).to_dict()

    def get_states(self, prefix: str = "") -> List[dict]:
        with self._lock:
            return [s.to_dict() for k, s in sorted(self._states.items()) if k.startswith(prefix)]
