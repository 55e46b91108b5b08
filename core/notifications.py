"""
Outbound notifications for completed search cycles.
Supports Discord webhooks, Notifiarr passthrough and Pushover.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional

import requests

from core.config import NotificationConfig
from core.executor import RunResult

logger = logging.getLogger(__name__)

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"
NOTIFY_TIMEOUT = 10
MAX_LISTED_TITLES = 5

COLOR_SUCCESS = 0x00FF00
COLOR_FAILURE = 0xFF0000

PROVIDERS = ("discord", "notifiarr", "pushover")

TITLE_COMPLETED = "Scoutarr Search Completed"
TITLE_FAILED = "Scoutarr Search Failed"
TITLE_TEST = "Scoutarr Test Notification"
TEST_MESSAGE = "Notifications from Scoutarr are working."


class NotificationError(Exception):
    """A notification provider is unknown or not configured."""


def _total_searched(results: Mapping[str, RunResult]) -> int:
    return sum(r.searched for r in results.values())


def _searched_results(results: Mapping[str, RunResult]):
    return [r for r in results.values() if r.success and r.searched > 0]


class Notifier:
    """Sends a cycle summary to every configured provider.

    Delivery is best-effort: a failing provider is logged and the others are
    still attempted.
    """

    def __init__(self, config: NotificationConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()

    @property
    def providers(self) -> List[str]:
        """Names of the providers that have everything they need to send."""
        configured = {
            "discord": bool(self.config.discord_webhook),
            "notifiarr": bool(self.config.notifiarr_passthrough_webhook),
            "pushover": bool(self.config.pushover_user_key and self.config.pushover_api_token),
        }
        return [name for name in PROVIDERS if configured[name]]

    def send(self, results: Mapping[str, RunResult], success: bool, error: Optional[str] = None) -> Dict[str, bool]:
        """Notify all providers. Returns provider name -> delivered."""
        outcome = {}
        for name in self.providers:
            try:
                getattr(self, f"_send_{name}")(results, success, error)
                outcome[name] = True
            except requests.RequestException as e:
                logger.error(f"Failed to send {name} notification: {e}")
                outcome[name] = False

        if outcome:
            sent = sum(1 for ok in outcome.values() if ok)
            logger.info(f"Notifications sent: {sent}/{len(outcome)}")
        return outcome

    def send_test(self, method: str) -> None:
        """Send a fixed test message through one provider.

        Raises NotificationError for an unknown or unconfigured provider;
        delivery errors propagate as requests exceptions.
        """
        if method not in PROVIDERS:
            raise NotificationError(f"Invalid method '{method}'. Must be one of: {', '.join(PROVIDERS)}")
        if method not in self.providers:
            raise NotificationError(f"{method} notifications are not configured")
        getattr(self, f"_post_{method}")(TITLE_TEST, TEST_MESSAGE, True)
        logger.info(f"Test notification sent via {method}")

    def _post(self, url: str, **kwargs) -> None:
        response = self._session.post(url, timeout=NOTIFY_TIMEOUT, **kwargs)
        response.raise_for_status()

    # ------------------------------------------------------------------
    # Cycle summaries
    # ------------------------------------------------------------------

    def _send_discord(self, results, success, error):
        if error:
            description = f"Search failed: {error}"
        elif _total_searched(results) == 0:
            description = "No items were searched"
        else:
            lines = []
            for result in _searched_results(results):
                titles = [item["title"] for item in result.items[:MAX_LISTED_TITLES]]
                more = len(result.items) - MAX_LISTED_TITLES
                suffix = f" (+{more} more)" if more > 0 else ""
                lines.append(f"**{result.instance_name}**: {result.searched} item(s) - {', '.join(titles)}{suffix}")
            description = "\n".join(lines)
        self._post_discord(TITLE_COMPLETED if success else TITLE_FAILED, description, success)

    def _send_notifiarr(self, results, success, error):
        if error:
            message = f"Scoutarr search failed: {error}"
        elif _total_searched(results) == 0:
            message = "Scoutarr: No items were searched"
        else:
            lines = [f"{r.instance_name}: {r.searched} item(s)" for r in _searched_results(results)]
            message = "Scoutarr search completed:\n" + "\n".join(lines)
        self._post_notifiarr(TITLE_COMPLETED if success else TITLE_FAILED, message, success)

    def _send_pushover(self, results, success, error):
        if error:
            message = f"Search failed: {error}"
        elif _total_searched(results) == 0:
            message = "No items were searched"
        else:
            message = "\n".join(f"{r.instance_name}: {r.searched} item(s)" for r in _searched_results(results))
        self._post_pushover(TITLE_COMPLETED if success else TITLE_FAILED, message, success)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def _post_discord(self, title: str, description: str, success: bool) -> None:
        embed = {
            "title": title,
            "description": description,
            "color": COLOR_SUCCESS if success else COLOR_FAILURE,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self._post(self.config.discord_webhook, json={"embeds": [embed]})

    def _post_notifiarr(self, title: str, message: str, success: bool) -> None:
        payload = {
            "event": "scoutarr",
            "title": title,
            "message": message,
        }
        if self.config.notifiarr_passthrough_discord_channel_id:
            payload["channel"] = self.config.notifiarr_passthrough_discord_channel_id
        self._post(self.config.notifiarr_passthrough_webhook, json=payload)

    def _post_pushover(self, title: str, message: str, success: bool) -> None:
        self._post(PUSHOVER_URL, data={
            "token": self.config.pushover_api_token,
            "user": self.config.pushover_user_key,
            "title": title,
            "message": message,
            "priority": 0 if success else 1,
        })
