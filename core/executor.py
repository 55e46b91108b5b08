"""
Per-instance search run: fetch, filter, select, search, tag.

A run never raises. Any failure is captured in the returned RunResult so a
cycle over many instances always produces one result per instance.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from core.config import InstanceConfig
from core.filters import FilterConfig, FilterEngine, NameResolver
from core.library_cache import LibraryCache
from core.media import MediaItem, summarize
from core.starr_api import MediaLibraryClient, StarrClient
from core.tagging import IdempotencyTagger, reset_candidates

logger = logging.getLogger(__name__)

ClientFactory = Callable[[InstanceConfig], MediaLibraryClient]


@dataclass
class RunResult:
    """Outcome of one instance's run"""
    success: bool
    searched: int = 0
    items: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    instance_name: str = ""
    app_type: str = ""
    instance_id: str = ""
    eligible: int = 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "searched": self.searched,
            "items": self.items,
            "error": self.error,
            "instance_name": self.instance_name,
            "app_type": self.app_type,
            "instance_id": self.instance_id,
            "eligible": self.eligible,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunResult":
        return cls(
            success=data.get("success", False),
            searched=data.get("searched", 0),
            items=data.get("items", []),
            error=data.get("error"),
            instance_name=data.get("instance_name", ""),
            app_type=data.get("app_type", ""),
            instance_id=data.get("instance_id", ""),
            eligible=data.get("eligible", 0),
        )

    @classmethod
    def failure(cls, instance: InstanceConfig, error: str) -> "RunResult":
        return cls(
            success=False,
            error=error,
            instance_name=instance.display_name,
            app_type=instance.app_type,
            instance_id=instance.id,
        )


class RunExecutor:
    """Orchestrates one search run for one instance."""

    def __init__(
        self,
        tagger: IdempotencyTagger,
        cache: Optional[LibraryCache] = None,
        client_factory: ClientFactory = StarrClient.for_instance,
        filter_engine: Optional[FilterEngine] = None,
        rng: Optional[random.Random] = None,
        cache_max_age_seconds: int = 0,
    ):
        self._tagger = tagger
        self._cache = cache
        self._client_factory = client_factory
        self._filter_engine = filter_engine or FilterEngine()
        self._rng = rng or random.Random()
        self.cache_max_age_seconds = cache_max_age_seconds

    def client_for(self, instance: InstanceConfig) -> MediaLibraryClient:
        return self._client_factory(instance)

    def run(self, instance: InstanceConfig, unattended: bool = False) -> RunResult:
        """Search a random selection of eligible items and tag them."""
        try:
            return self._run(instance, unattended)
        except Exception as e:
            logger.error(f"[{instance.display_name}] Search run failed: {e}")
            return RunResult.failure(instance, str(e))

    def _run(self, instance: InstanceConfig, unattended: bool) -> RunResult:
        client = self._client_factory(instance)
        config = FilterConfig.from_instance(instance)

        items, resolver = self._fetch(instance, client)
        eligible = self._filter_engine.filter(items, config, resolver)
        logger.info(f"[{instance.display_name}] {len(eligible)} of {len(items)} item(s) eligible")

        if not eligible and unattended:
            eligible = self._unattended_retry(instance, client, items, config)

        result = RunResult(
            success=True,
            instance_name=instance.display_name,
            app_type=instance.app_type,
            instance_id=instance.id,
            eligible=len(eligible),
        )
        selected = self._select(eligible, instance.count)
        if not selected:
            logger.info(f"[{instance.display_name}] Nothing to search")
            return result

        ids = [item.id for item in selected]
        client.search(ids)

        tag_id = self._tagger.resolve_tag_id(client, instance.tag_name)
        if tag_id is not None:
            self._tagger.mark_done(instance, client, ids, tag_id)
            if self._cache is not None:
                self._cache.record_tag_change(instance, ids, tag_id, instance.tag_name, added=True)

        result.searched = len(selected)
        result.items = summarize(selected)
        logger.info(f"[{instance.display_name}] Searched {result.searched} item(s)")
        return result

    def _fetch(self, instance: InstanceConfig, client: MediaLibraryClient) -> Tuple[List[MediaItem], NameResolver]:
        """Use the cached snapshot when it is fresh enough, otherwise go live."""
        if self._cache is not None and self._cache.is_fresh(instance, self.cache_max_age_seconds):
            logger.debug(f"[{instance.display_name}] Using cached library")
            return self._cache.read(instance), self._cache.resolver_for(instance)
        return client.get_media(), client

    def _unattended_retry(
        self, instance: InstanceConfig, client: MediaLibraryClient, items: Sequence[MediaItem], config: FilterConfig
    ) -> List[MediaItem]:
        """Clear the completion tag from the tagged items, then filter once more.

        The second pass re-fetches live and re-resolves every stage.
        """
        tag_id, cleared = self._tagger.reset_completed(instance, client, items)
        if cleared and self._cache is not None:
            self._cache.record_tag_change(instance, cleared, tag_id, instance.tag_name, added=False)

        refreshed = client.get_media()
        eligible = self._filter_engine.filter(refreshed, config, client)
        logger.info(f"[{instance.display_name}] Unattended retry: {len(eligible)} item(s) eligible")
        return eligible

    def _select(self, eligible: Sequence[MediaItem], count: Optional[int]) -> List[MediaItem]:
        if count is None or count >= len(eligible):
            return list(eligible)
        return self._rng.sample(list(eligible), count)

    def preview(self, instance: InstanceConfig, unattended: bool = False) -> RunResult:
        """Report what a run would search, without searching or tagging.

        In unattended mode an empty result is re-filtered as if the reset had
        removed the completion tag; nothing is untagged on the remote.
        """
        try:
            client = self._client_factory(instance)
            config = FilterConfig.from_instance(instance)
            items, resolver = self._fetch(instance, client)
            eligible = self._filter_engine.filter(items, config, resolver)
            if not eligible and unattended and instance.tag_name:
                tag_id = resolver.find_tag_id(instance.tag_name)
                if tag_id is not None:
                    to_clear = set(reset_candidates(instance, items, tag_id))
                    simulated = [
                        item.without_tag(tag_id, instance.tag_name) if item.id in to_clear else item
                        for item in items
                    ]
                    eligible = self._filter_engine.filter(simulated, config, resolver)
                    logger.debug(
                        f"[{instance.display_name}] Unattended preview: {len(eligible)} item(s) eligible after reset"
                    )
            selected = self._select(eligible, instance.count)
            return RunResult(
                success=True,
                items=summarize(selected),
                instance_name=instance.display_name,
                app_type=instance.app_type,
                instance_id=instance.id,
                eligible=len(eligible),
            )
        except Exception as e:
            logger.error(f"[{instance.display_name}] Preview failed: {e}")
            return RunResult.failure(instance, str(e))

    def clear_tags(self, instance: InstanceConfig) -> List[int]:
        """Remove the completion tag from every item this application tagged.

        Remote errors propagate to the caller.
        """
        client = self._client_factory(instance)
        tag_id, cleared = self._tagger.clear_tracked(instance, client)
        if cleared and self._cache is not None:
            self._cache.record_tag_change(instance, cleared, tag_id, instance.tag_name, added=False)
        return cleared

    def search_items(self, instance: InstanceConfig, media_ids: Sequence[int]) -> RunResult:
        """Search and tag a user-chosen set of items, bypassing filters and sampling."""
        ids = list(dict.fromkeys(int(i) for i in media_ids))
        try:
            client = self._client_factory(instance)
            client.search(ids)
            tag_id = self._tagger.resolve_tag_id(client, instance.tag_name)
            if tag_id is not None:
                self._tagger.mark_done(instance, client, ids, tag_id)
                if self._cache is not None:
                    self._cache.record_tag_change(instance, ids, tag_id, instance.tag_name, added=True)
        except Exception as e:
            logger.error(f"[{instance.display_name}] Manual search failed: {e}")
            return RunResult.failure(instance, str(e))

        titles = self._cache.titles(instance, ids) if self._cache is not None else {}
        logger.info(f"[{instance.display_name}] Manual search sent for {len(ids)} item(s)")
        return RunResult(
            success=True,
            searched=len(ids),
            items=[{"id": i, "title": titles.get(i, f"#{i}")} for i in ids],
            instance_name=instance.display_name,
            app_type=instance.app_type,
            instance_id=instance.id,
            eligible=len(ids),
        )
