"""
Configuration management for Scoutarr.
Handles loading, validation, and saving of the settings file.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.media import normalize_status

APP_TYPES = ("radarr", "sonarr", "lidarr", "readarr")

# Per-application key used for the status filter in the settings file
STATUS_FIELDS = {
    "radarr": "movieStatus",
    "sonarr": "seriesStatus",
    "lidarr": "artistStatus",
    "readarr": "authorStatus",
}

# Status values each application reports, in normalized form
STATUS_CHOICES = {
    "radarr": ("tba", "announced", "in cinemas", "released", "deleted"),
    "sonarr": ("continuing", "upcoming", "ended", "deleted"),
    "lidarr": ("continuing", "ended"),
    "readarr": ("continuing", "ended"),
}

# Sentinel counts meaning "search every eligible item"
COUNT_ALL_VALUES = ("max", "all")

DEFAULT_TAG_NAME = "upgradinatorr"
DEFAULT_SCHEDULE = "0 */6 * * *"


class ConfigError(ValueError):
    """Raised when the settings file contains invalid values."""


class InstanceNotFoundError(LookupError):
    """Raised when an app type / instance id pair is not configured."""

    def __init__(self, app_type: str, instance_id: str):
        super().__init__(f"Instance not found: {app_type}/{instance_id}")
        self.app_type = app_type
        self.instance_id = instance_id


def _pick(data: dict, *keys, default=None):
    """Return the first present key, accepting snake_case and camelCase spellings."""
    for key in keys:
        if key in data:
            return data[key]
    return default


def parse_count(value) -> Optional[int]:
    """Parse an instance count. Returns None for the "search all" sentinel."""
    if value is None:
        return None
    if isinstance(value, str):
        if value.strip().lower() in COUNT_ALL_VALUES:
            return None
        try:
            value = int(value)
        except ValueError:
            raise ConfigError(f"Invalid count: {value!r} (expected a number or 'max')")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"Invalid count: {value!r} (expected a number or 'max')")
    if value < 0:
        raise ConfigError(f"Invalid count: {value} (must not be negative)")
    return value


@dataclass(frozen=True)
class InstanceConfig:
    """One configured connection to a media library manager."""
    app_type: str
    id: str
    name: str = ""
    url: str = ""
    api_key: str = ""
    count: Optional[int] = 5  # None = all eligible items
    tag_name: str = DEFAULT_TAG_NAME
    ignore_tag: str = ""
    monitored: Optional[bool] = True
    quality_profile_name: str = ""
    status: str = ""
    enabled: bool = True
    schedule: str = ""
    schedule_enabled: bool = False
    unattended: Optional[bool] = None  # None = inherit scheduler setting

    @property
    def key(self) -> str:
        return f"{self.app_type}:{self.id}"

    @property
    def display_name(self) -> str:
        return self.name or f"{self.app_type.capitalize()} {self.id}"

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.api_key)

    @property
    def has_own_schedule(self) -> bool:
        return self.schedule_enabled and bool(self.schedule)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "apiKey": self.api_key,
            "count": "max" if self.count is None else self.count,
            "tagName": self.tag_name,
            "ignoreTag": self.ignore_tag,
            "monitored": self.monitored,
            "qualityProfileName": self.quality_profile_name,
            STATUS_FIELDS[self.app_type]: self.status,
            "enabled": self.enabled,
            "schedule": self.schedule,
            "scheduleEnabled": self.schedule_enabled,
            "unattended": self.unattended,
        }

    @classmethod
    def from_dict(cls, app_type: str, data: dict) -> "InstanceConfig":
        if app_type not in APP_TYPES:
            raise ConfigError(f"Unknown application type: {app_type}")
        instance_id = data.get("id")
        if instance_id is None or str(instance_id).strip() == "":
            raise ConfigError(f"{app_type} instance is missing an id")

        status = _pick(data, "status", STATUS_FIELDS[app_type], default="") or ""
        if status == "any":
            status = ""
        if status and normalize_status(status) not in STATUS_CHOICES[app_type]:
            raise ConfigError(
                f"Invalid {app_type} status: {status!r} "
                f"(expected one of: any, {', '.join(STATUS_CHOICES[app_type])})"
            )
        monitored = data.get("monitored", True)
        unattended = data.get("unattended")

        return cls(
            app_type=app_type,
            id=str(instance_id),
            name=data.get("name", "") or "",
            url=(data.get("url", "") or "").rstrip("/"),
            api_key=_pick(data, "api_key", "apiKey", default="") or "",
            count=parse_count(data.get("count", 5)),
            tag_name=_pick(data, "tag_name", "tagName", default=DEFAULT_TAG_NAME) or DEFAULT_TAG_NAME,
            ignore_tag=_pick(data, "ignore_tag", "ignoreTag", default="") or "",
            monitored=None if monitored is None else bool(monitored),
            quality_profile_name=_pick(data, "quality_profile_name", "qualityProfileName", default="") or "",
            status=status,
            enabled=bool(data.get("enabled", True)),
            schedule=data.get("schedule", "") or "",
            schedule_enabled=bool(_pick(data, "schedule_enabled", "scheduleEnabled", default=False)),
            unattended=None if unattended is None else bool(unattended),
        )


@dataclass
class SchedulerConfig:
    """Global search cycle schedule."""
    enabled: bool = False
    schedule: str = DEFAULT_SCHEDULE
    unattended: bool = False

    def to_dict(self) -> dict:
        return {
            "enabled": self.enabled,
            "schedule": self.schedule,
            "unattended": self.unattended,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SchedulerConfig":
        return cls(
            enabled=bool(data.get("enabled", False)),
            schedule=data.get("schedule", DEFAULT_SCHEDULE) or DEFAULT_SCHEDULE,
            unattended=bool(data.get("unattended", False)),
        )


@dataclass
class TasksConfig:
    """Background task settings (library sync)."""
    sync_schedule: str = DEFAULT_SCHEDULE
    sync_enabled: bool = True
    sync_on_startup: bool = True
    run_cache_max_age_seconds: int = 0  # 0 = always fetch live for runs

    def to_dict(self) -> dict:
        return {
            "syncSchedule": self.sync_schedule,
            "syncEnabled": self.sync_enabled,
            "syncOnStartup": self.sync_on_startup,
            "runCacheMaxAgeSeconds": self.run_cache_max_age_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TasksConfig":
        return cls(
            sync_schedule=_pick(data, "sync_schedule", "syncSchedule", default=DEFAULT_SCHEDULE) or DEFAULT_SCHEDULE,
            sync_enabled=bool(_pick(data, "sync_enabled", "syncEnabled", default=True)),
            sync_on_startup=bool(_pick(data, "sync_on_startup", "syncOnStartup", default=True)),
            run_cache_max_age_seconds=int(
                _pick(data, "run_cache_max_age_seconds", "runCacheMaxAgeSeconds", default=0) or 0
            ),
        )


@dataclass
class NotificationConfig:
    """Configuration for outbound notifications."""
    discord_webhook: str = ""
    notifiarr_passthrough_webhook: str = ""
    notifiarr_passthrough_discord_channel_id: str = ""
    pushover_user_key: str = ""
    pushover_api_token: str = ""

    def to_dict(self) -> dict:
        return {
            "discordWebhook": self.discord_webhook,
            "notifiarrPassthroughWebhook": self.notifiarr_passthrough_webhook,
            "notifiarrPassthroughDiscordChannelId": self.notifiarr_passthrough_discord_channel_id,
            "pushoverUserKey": self.pushover_user_key,
            "pushoverApiToken": self.pushover_api_token,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NotificationConfig":
        return cls(
            discord_webhook=_pick(data, "discord_webhook", "discordWebhook", default="") or "",
            notifiarr_passthrough_webhook=_pick(
                data, "notifiarr_passthrough_webhook", "notifiarrPassthroughWebhook", default=""
            ) or "",
            notifiarr_passthrough_discord_channel_id=str(_pick(
                data, "notifiarr_passthrough_discord_channel_id", "notifiarrPassthroughDiscordChannelId", default=""
            ) or ""),
            pushover_user_key=_pick(data, "pushover_user_key", "pushoverUserKey", default="") or "",
            pushover_api_token=_pick(data, "pushover_api_token", "pushoverApiToken", default="") or "",
        )


@dataclass
class AppConfig:
    """Complete application configuration."""
    applications: Dict[str, List[InstanceConfig]] = field(
        default_factory=lambda: {app_type: [] for app_type in APP_TYPES}
    )
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    tasks: TasksConfig = field(default_factory=TasksConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    log_level: str = "info"

    def instances(self) -> List[InstanceConfig]:
        """All instances in configuration order (app type order, then list order)."""
        result = []
        for app_type in APP_TYPES:
            result.extend(self.applications.get(app_type, []))
        return result

    def active_instances(self) -> List[InstanceConfig]:
        """Enabled instances that have a URL and API key."""
        return [i for i in self.instances() if i.enabled and i.is_configured]

    def get_instance(self, app_type: str, instance_id: str) -> InstanceConfig:
        for instance in self.applications.get(app_type, []):
            if instance.id == str(instance_id):
                return instance
        raise InstanceNotFoundError(app_type, instance_id)

    def is_unattended(self, instance: InstanceConfig) -> bool:
        if instance.unattended is not None:
            return instance.unattended
        return self.scheduler.unattended

    def to_dict(self) -> dict:
        return {
            "applications": {
                app_type: [i.to_dict() for i in self.applications.get(app_type, [])]
                for app_type in APP_TYPES
            },
            "scheduler": self.scheduler.to_dict(),
            "tasks": self.tasks.to_dict(),
            "notifications": self.notifications.to_dict(),
            "logLevel": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AppConfig":
        raw_apps = data.get("applications", {}) or {}
        unknown = set(raw_apps) - set(APP_TYPES)
        if unknown:
            raise ConfigError(f"Unknown application type(s): {', '.join(sorted(unknown))}")

        applications = {}
        for app_type in APP_TYPES:
            entries = raw_apps.get(app_type, []) or []
            if not isinstance(entries, list):
                raise ConfigError(f"applications.{app_type} must be a list")
            instances = [InstanceConfig.from_dict(app_type, entry) for entry in entries]
            seen = set()
            for instance in instances:
                if instance.id in seen:
                    raise ConfigError(f"Duplicate {app_type} instance id: {instance.id}")
                seen.add(instance.id)
            applications[app_type] = instances

        return cls(
            applications=applications,
            scheduler=SchedulerConfig.from_dict(data.get("scheduler", {}) or {}),
            tasks=TasksConfig.from_dict(data.get("tasks", {}) or {}),
            notifications=NotificationConfig.from_dict(data.get("notifications", {}) or {}),
            log_level=_pick(data, "log_level", "logLevel", default="info") or "info",
        )


class ConfigManager:
    """Manages application configuration loading and validation."""

    def __init__(self, config_file: str):
        self.config_file = Path(config_file)
        self.settings_data: Dict[str, Any] = {}
        self.config = AppConfig()

    def load_config(self) -> AppConfig:
        """Load configuration from file and validate.

        A missing settings file yields the default configuration so a fresh
        install can start and be configured afterwards. Cron expressions are
        not checked here; a bad one only disables its own schedule when the
        scheduler activates it.
        """
        logging.debug(f"Loading configuration from: {self.config_file}")

        if not self.config_file.exists():
            logging.warning(f"Settings file not found: {self.config_file}, using defaults")
            self.settings_data = {}
            self.config = AppConfig()
            return self.config

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                self.settings_data = json.load(f)
        except json.JSONDecodeError as e:
            logging.error(f"Invalid JSON in settings file: {type(e).__name__}: {e}")
            raise ConfigError(f"Invalid JSON in settings file: {e}")

        if not isinstance(self.settings_data, dict):
            raise ConfigError("Settings file must contain a JSON object")

        self.config = AppConfig.from_dict(self.settings_data)

        logging.debug(
            f"Configuration loaded: {len(self.config.instances())} instance(s), "
            f"scheduler {'enabled' if self.config.scheduler.enabled else 'disabled'}"
        )
        return self.config

    def save_config(self, config: Optional[AppConfig] = None) -> None:
        """Atomic save: write to temp file then replace."""
        if config is not None:
            self.config = config
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.config_file.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.config.to_dict(), f, indent=2)
            os.replace(tmp_path, str(self.config_file))
        except Exception:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logging.debug(f"Configuration saved to: {self.config_file}")
