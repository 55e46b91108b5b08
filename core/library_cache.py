"""
Local mirror of each instance's media library.

sync() pulls the full library from the remote application and stores it;
read() serves the stored projection without touching the network, so
listing pages and cached runs do not hit the remote on every request.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from core.config import InstanceConfig
from core.filters import FilterConfig, FilterEngine
from core.media import MediaFile, MediaItem
from core.starr_api import MediaLibraryClient, StarrApiError
from core.store import LibraryStore

logger = logging.getLogger(__name__)

# Maximum file ids per file lookup request
FILE_BATCH_SIZE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncResult:
    """Outcome of syncing one instance"""
    instance_key: str
    instance_name: str
    success: bool
    item_count: int = 0
    synced_at: Optional[str] = None
    failed_batches: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "instance_key": self.instance_key,
            "instance_name": self.instance_name,
            "success": self.success,
            "item_count": self.item_count,
            "synced_at": self.synced_at,
            "failed_batches": self.failed_batches,
            "error": self.error,
        }


class CachedResolver:
    """Resolves tag and profile names from the lookups captured at sync time."""

    def __init__(self, tags: Dict[int, str], profiles: Dict[int, str]):
        self._tags = tags
        self._profiles = profiles

    def find_tag_id(self, name: str) -> Optional[int]:
        return next((tag_id for tag_id, label in self._tags.items() if label == name), None)

    def find_quality_profile_id(self, name: str) -> Optional[int]:
        return next((pid for pid, pname in self._profiles.items() if pname == name), None)


class LibraryCache:
    """Durable per-instance snapshot of remote media items."""

    def __init__(
        self,
        store: LibraryStore,
        filter_engine: Optional[FilterEngine] = None,
        clock: Callable[[], datetime] = _utcnow,
        batch_size: int = FILE_BATCH_SIZE,
    ):
        self._store = store
        self._filter_engine = filter_engine or FilterEngine()
        self._clock = clock
        self._batch_size = batch_size

    def sync(self, instance: InstanceConfig, client: MediaLibraryClient) -> SyncResult:
        """Fetch everything live and upsert it.

        Errors fetching the library, profiles or tags propagate; a failed
        file lookup batch only drops that batch's details.
        """
        logger.info(f"[{instance.display_name}] Syncing media library")
        items = client.get_media()
        profiles = client.get_quality_profiles()
        tags = client.get_tags()

        details, failed_batches = self._fetch_file_details(instance, client, items)
        normalized = [self._normalize(item, tags, profiles, details) for item in items]

        synced_at = self._clock().isoformat()
        count = self._store.upsert_library(instance.key, normalized, tags, profiles, synced_at)

        logger.info(
            f"[{instance.display_name}] Synced {count} {client.strategy.media_type_name}"
            + (f" ({failed_batches} file batch(es) failed)" if failed_batches else "")
        )
        return SyncResult(
            instance_key=instance.key,
            instance_name=instance.display_name,
            success=True,
            item_count=count,
            synced_at=synced_at,
            failed_batches=failed_batches,
        )

    def _fetch_file_details(
        self, instance: InstanceConfig, client: MediaLibraryClient, items: Sequence[MediaItem]
    ) -> Tuple[Dict[int, MediaFile], int]:
        if not client.strategy.file_endpoint:
            return {}, 0

        file_ids = sorted({fid for item in items for fid in item.file.file_ids})
        details: Dict[int, MediaFile] = {}
        failed = 0
        for start in range(0, len(file_ids), self._batch_size):
            batch = file_ids[start:start + self._batch_size]
            try:
                details.update(client.get_file_details(batch))
            except StarrApiError as e:
                failed += 1
                logger.warning(
                    f"[{instance.display_name}] File lookup failed for files "
                    f"{start + 1}-{start + len(batch)} of {len(file_ids)}: {e}"
                )
        return details, failed

    @staticmethod
    def _normalize(
        item: MediaItem, tags: Dict[int, str], profiles: Dict[int, str], details: Dict[int, MediaFile]
    ) -> MediaItem:
        file_info = item.file_info.with_details(details) if item.file_info else None
        return replace(
            item,
            tags=tuple(tags.get(tag_id, f"unknown-tag-{tag_id}") for tag_id in item.tag_ids),
            quality_profile_name=profiles.get(item.quality_profile_id) if item.quality_profile_id is not None else None,
            file_info=file_info,
            file=file_info.resolve(item.added) if file_info else item.file,
        )

    def read(self, instance: InstanceConfig, config: Optional[FilterConfig] = None) -> List[MediaItem]:
        """Return the last-synced items, optionally narrowed by the filter pipeline."""
        items = self._store.get_library(instance.key)
        if config is None:
            return items
        return self._filter_engine.filter(items, config, self.resolver_for(instance))

    def resolver_for(self, instance: InstanceConfig) -> CachedResolver:
        return CachedResolver(
            self._store.get_tags(instance.key),
            self._store.get_quality_profiles(instance.key),
        )

    def last_synced_at(self, instance: InstanceConfig) -> Optional[datetime]:
        state = self._store.get_sync_state(instance.key)
        if not state:
            return None
        return datetime.fromisoformat(state["synced_at"])

    def is_fresh(self, instance: InstanceConfig, max_age_seconds: int) -> bool:
        if max_age_seconds <= 0:
            return False
        synced_at = self.last_synced_at(instance)
        if synced_at is None:
            return False
        return (self._clock() - synced_at).total_seconds() <= max_age_seconds

    def sync_status(self, instance: InstanceConfig) -> dict:
        state = self._store.get_sync_state(instance.key) or {}
        return {
            "last_sync": state.get("synced_at"),
            "item_count": state.get("item_count", 0),
        }

    def record_tag_change(
        self, instance: InstanceConfig, media_ids: Sequence[int], tag_id: int, label: str, added: bool
    ) -> None:
        self._store.update_item_tags(instance.key, media_ids, tag_id, label, added)

    def titles(self, instance: InstanceConfig, media_ids: Sequence[int]) -> Dict[int, str]:
        return self._store.get_titles(instance.key, media_ids)

    def reset(self, instance: InstanceConfig) -> None:
        self._store.reset_instance(instance.key)
