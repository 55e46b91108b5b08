"""Shared test fixtures for the Scoutarr test suite."""

import json
import os
import sys
from dataclasses import replace
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import InstanceConfig
from core.media import MediaFile, MediaItem
from core.starr_api import RADARR, StarrApiError
from core.store import LibraryStore


# ============================================================================
# Fake media library client
# ============================================================================

class FakeLibraryClient:
    """In-memory stand-in for a remote media library manager.

    Tag mutations change the stored items, so a re-fetch sees them like the
    real remote would.
    """

    def __init__(self, strategy=RADARR, items=None, tags=None, profiles=None, file_scores=None, file_dates=None):
        self.strategy = strategy
        self.items: Dict[int, MediaItem] = {item.id: item for item in items or []}
        self.tags: Dict[int, str] = dict(tags or {})
        self.profiles: Dict[int, str] = dict(profiles or {1: "HD-1080p", 2: "Ultra-HD"})
        self.file_scores: Dict[int, int] = dict(file_scores or {})
        self.file_dates: Dict[int, str] = dict(file_dates or {})
        self.searched: List[List[int]] = []
        self.added: List[tuple] = []
        self.removed: List[tuple] = []
        self.file_calls: List[List[int]] = []
        self.fail_on = set()
        self.fail_file_batches = set()
        self.get_media_calls = 0

    def _check(self, name):
        if name in self.fail_on:
            raise StarrApiError(f"{name} failed", status_code=500, endpoint=name)

    def get_media(self):
        self._check("get_media")
        self.get_media_calls += 1
        return [self.items[key] for key in sorted(self.items)]

    def get_quality_profiles(self):
        self._check("get_quality_profiles")
        return dict(self.profiles)

    def get_tags(self):
        self._check("get_tags")
        return dict(self.tags)

    def find_tag_id(self, name):
        return next((tid for tid, label in self.tags.items() if label == name), None)

    def find_quality_profile_id(self, name):
        return next((pid for pid, pname in self.profiles.items() if pname == name), None)

    def get_or_create_tag(self, name):
        self._check("get_or_create_tag")
        tag_id = self.find_tag_id(name)
        if tag_id is None:
            tag_id = max(self.tags, default=0) + 1
            self.tags[tag_id] = name
        return tag_id

    def add_tag(self, media_ids, tag_id):
        self._check("add_tag")
        self.added.append((list(media_ids), tag_id))
        for media_id in (m for m in media_ids if m in self.items):
            self.items[media_id] = self.items[media_id].with_tag(tag_id, self.tags[tag_id])

    def remove_tag(self, media_ids, tag_id):
        self._check("remove_tag")
        self.removed.append((list(media_ids), tag_id))
        for media_id in (m for m in media_ids if m in self.items):
            self.items[media_id] = self.items[media_id].without_tag(tag_id, self.tags[tag_id])

    def search(self, media_ids):
        self._check("search")
        self.searched.append(list(media_ids))

    def get_file_details(self, file_ids):
        index = len(self.file_calls)
        self.file_calls.append(list(file_ids))
        if index in self.fail_file_batches:
            raise StarrApiError("batch failed", status_code=500, endpoint=self.strategy.file_endpoint)
        return {
            fid: MediaFile(id=fid, date_added=self.file_dates.get(fid), score=self.file_scores.get(fid))
            for fid in file_ids
            if fid in self.file_scores or fid in self.file_dates
        }

    def test_connection(self):
        return "test_connection" not in self.fail_on

    def tagged_ids(self, tag_id):
        return {item.id for item in self.items.values() if tag_id in item.tag_ids}


def make_item(
    media_id: int,
    title: Optional[str] = None,
    monitored: bool = True,
    tags=(),
    profile_id: int = 1,
    status: str = "released",
    file_id: Optional[int] = None,
    date_added: Optional[str] = None,
    score: Optional[int] = None,
) -> MediaItem:
    """Build a movie item through the same parser the client uses."""
    payload = {
        "id": media_id,
        "title": title or f"Movie {media_id}",
        "monitored": monitored,
        "tags": list(tags),
        "qualityProfileId": profile_id,
        "status": status,
        "added": "2024-01-01T00:00:00Z",
    }
    if file_id is not None:
        movie_file = {"id": file_id, "dateAdded": date_added or "2024-02-01T00:00:00Z"}
        if score is not None:
            movie_file["customFormatScore"] = score
        payload["movieFile"] = movie_file
    return MediaItem.from_api(payload)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store(tmp_path):
    """Initialized SQLite store in a temp directory."""
    s = LibraryStore(tmp_path / "scoutarr.db")
    s.initialize()
    return s


@pytest.fixture
def instance():
    """A Radarr instance with a completion tag and no other filters."""
    return InstanceConfig(
        app_type="radarr",
        id="main",
        name="Radarr",
        url="http://radarr:7878",
        api_key="a" * 32,
        count=2,
        tag_name="done",
        monitored=True,
    )


@pytest.fixture
def sonarr_instance():
    return InstanceConfig(
        app_type="sonarr",
        id="tv",
        name="Sonarr",
        url="http://sonarr:8989",
        api_key="b" * 32,
        count=None,
        tag_name="done",
        monitored=True,
    )


@pytest.fixture
def fake_client():
    return FakeLibraryClient()


@pytest.fixture
def make_instance(instance):
    """Factory for instance variants: make_instance(count=None, unattended=True)."""
    def _make(**changes):
        return replace(instance, **changes)
    return _make


@pytest.fixture
def settings_file(tmp_path):
    """Settings file with one Radarr and one Sonarr instance."""
    path = tmp_path / "scoutarr_settings.json"
    settings = {
        "applications": {
            "radarr": [{
                "id": "main",
                "name": "Radarr",
                "url": "http://radarr:7878",
                "apiKey": "a" * 32,
                "count": 2,
                "tagName": "done",
                "monitored": True,
                "movieStatus": "any",
            }],
            "sonarr": [{
                "id": "tv",
                "name": "Sonarr",
                "url": "http://sonarr:8989",
                "apiKey": "b" * 32,
                "count": "max",
                "tagName": "done",
                "monitored": True,
                "seriesStatus": "",
            }],
        },
        "scheduler": {"enabled": False, "schedule": "0 */6 * * *", "unattended": False},
        "tasks": {"syncSchedule": "0 */6 * * *", "syncEnabled": False},
        "notifications": {},
    }
    path.write_text(json.dumps(settings))
    return path


@pytest.fixture
def mock_apscheduler():
    """Stand-in for BackgroundScheduler so no scheduler threads start."""
    scheduler = MagicMock()
    scheduler.get_job.return_value = None
    return scheduler
