"""Completion-tag bookkeeping: which items have already been searched."""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Set, Tuple

from core.config import InstanceConfig
from core.media import MediaItem
from core.starr_api import MediaLibraryClient
from core.store import LibraryStore

logger = logging.getLogger(__name__)


def reset_candidates(instance: InstanceConfig, items: Sequence[MediaItem], tag_id: int) -> List[int]:
    """Items the unattended reset untags: those matching the instance's
    monitored filter that carry the completion tag."""
    monitored = True if instance.monitored is None else instance.monitored
    return [item.id for item in items if item.monitored == monitored and tag_id in item.tag_ids]


class IdempotencyTagger:
    """Marks searched items with the completion tag and remembers doing so.

    The local tagged_media records drive the operator clear, which only
    untags what this application tagged. The unattended reset works from
    the live library instead, so it also recovers items tagged before the
    records existed.
    """

    def __init__(self, store: LibraryStore, clock: Optional[Callable[[], datetime]] = None):
        self._store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def resolve_tag_id(self, client: MediaLibraryClient, name: str) -> Optional[int]:
        """Return the tag id for name, creating the tag on the remote if needed."""
        if not name:
            return None
        return client.get_or_create_tag(name)

    def mark_done(self, instance: InstanceConfig, client: MediaLibraryClient, media_ids: Sequence[int], tag_id: int) -> None:
        """Tag the items remotely, then record them locally."""
        if not media_ids:
            return
        client.add_tag(media_ids, tag_id)
        self._store.record_tagged(instance.key, tag_id, media_ids, self._clock().isoformat())

    def clear_marks(self, instance: InstanceConfig, client: MediaLibraryClient, tag_id: int, media_ids: Sequence[int]) -> None:
        """Untag the items remotely, then drop their local records."""
        if not media_ids:
            return
        client.remove_tag(media_ids, tag_id)
        self._store.delete_tagged(instance.key, tag_id, media_ids)

    def previously_marked_ids(self, instance: InstanceConfig, tag_id: int) -> Set[int]:
        return self._store.get_tagged_ids(instance.key, tag_id)

    def clear_tracked(self, instance: InstanceConfig, client: MediaLibraryClient) -> Tuple[Optional[int], List[int]]:
        """Operator clear: untag every item this application has tagged.

        Returns the tag id (None if the tag does not exist) and the untagged ids.
        """
        if not instance.tag_name:
            return None, []
        tag_id = client.find_tag_id(instance.tag_name)
        if tag_id is None:
            logger.info(f"[{instance.display_name}] Tag '{instance.tag_name}' does not exist, nothing to clear")
            return None, []

        tracked = sorted(self.previously_marked_ids(instance, tag_id))
        if not tracked:
            logger.info(f"[{instance.display_name}] No tracked items carry '{instance.tag_name}'")
            return tag_id, []

        logger.info(f"[{instance.display_name}] Clearing tag '{instance.tag_name}' from {len(tracked)} tracked item(s)")
        self.clear_marks(instance, client, tag_id, tracked)
        return tag_id, tracked

    def reset_completed(
        self, instance: InstanceConfig, client: MediaLibraryClient, items: Sequence[MediaItem]
    ) -> Tuple[Optional[int], List[int]]:
        """Unattended reset: untag the tagged items the monitored filter would keep.

        Returns the tag id (None if the tag does not exist) and the untagged ids.
        """
        if not instance.tag_name:
            return None, []
        tag_id = client.find_tag_id(instance.tag_name)
        if tag_id is None:
            logger.info(f"[{instance.display_name}] Tag '{instance.tag_name}' does not exist yet, nothing to reset")
            return None, []

        to_clear = reset_candidates(instance, items, tag_id)
        if not to_clear:
            logger.info(f"[{instance.display_name}] Unattended mode: no tagged items to reset")
            return tag_id, []

        logger.info(
            f"[{instance.display_name}] Unattended mode: removing tag '{instance.tag_name}' "
            f"from {len(to_clear)} item(s)"
        )
        self.clear_marks(instance, client, tag_id, to_clear)
        return tag_id, to_clear
