"""Filter pipeline that reduces a library snapshot to the items eligible for a search."""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from core.config import InstanceConfig
from core.media import MediaItem, normalize_status

logger = logging.getLogger(__name__)


class NameResolver(Protocol):
    """Looks up remote ids by name without creating anything."""

    def find_tag_id(self, name: str) -> Optional[int]: ...

    def find_quality_profile_id(self, name: str) -> Optional[int]: ...


@dataclass(frozen=True)
class FilterConfig:
    """The filter fields of an instance. Empty/None fields disable their stage."""
    monitored: Optional[bool] = None
    tag_name: str = ""
    ignore_tag: str = ""
    quality_profile_name: str = ""
    status: str = ""

    @classmethod
    def from_instance(cls, instance: InstanceConfig) -> "FilterConfig":
        return cls(
            monitored=instance.monitored,
            tag_name=instance.tag_name,
            ignore_tag=instance.ignore_tag,
            quality_profile_name=instance.quality_profile_name,
            status=instance.status,
        )


class _MemoizedResolver:
    """Caches lookups for the duration of one filter call."""

    def __init__(self, resolver: NameResolver):
        self._resolver = resolver
        self._tags: Dict[str, Optional[int]] = {}
        self._profiles: Dict[str, Optional[int]] = {}

    def tag_id(self, name: str) -> Optional[int]:
        if name not in self._tags:
            self._tags[name] = self._resolver.find_tag_id(name)
        return self._tags[name]

    def quality_profile_id(self, name: str) -> Optional[int]:
        if name not in self._profiles:
            self._profiles[name] = self._resolver.find_quality_profile_id(name)
        return self._profiles[name]


Stage = Callable[[List[MediaItem], FilterConfig, _MemoizedResolver], List[MediaItem]]


class FilterEngine:
    """Applies the filter stages in order, each narrowing the previous result.

    The engine has no side effects: the same items, config and resolver answers
    always give the same output, and filtering the output again changes nothing.
    """

    def __init__(self):
        self._stages: Sequence[Stage] = (
            self._by_monitored,
            self._without_completion_tag,
            self._by_quality_profile,
            self._without_ignore_tag,
            self._by_status,
        )

    def filter(self, items: Sequence[MediaItem], config: FilterConfig, resolver: NameResolver) -> List[MediaItem]:
        memo = _MemoizedResolver(resolver)
        result = list(items)
        for stage in self._stages:
            if not result:
                break
            result = stage(result, config, memo)
        return result

    @staticmethod
    def _by_monitored(items, config, memo):
        if config.monitored is None:
            return items
        return [item for item in items if item.monitored == config.monitored]

    @staticmethod
    def _exclude_tag(items, tag_name, memo, label):
        if not tag_name:
            return items
        tag_id = memo.tag_id(tag_name)
        if tag_id is None:
            logger.info(f"{label} '{tag_name}' not found, skipping {label.lower()} filter")
            return items
        return [item for item in items if tag_id not in item.tag_ids]

    def _without_completion_tag(self, items, config, memo):
        return self._exclude_tag(items, config.tag_name, memo, "Tag")

    def _without_ignore_tag(self, items, config, memo):
        return self._exclude_tag(items, config.ignore_tag, memo, "Ignore tag")

    @staticmethod
    def _by_quality_profile(items, config, memo):
        if not config.quality_profile_name:
            return items
        profile_id = memo.quality_profile_id(config.quality_profile_name)
        if profile_id is None:
            logger.warning(
                f"Quality profile '{config.quality_profile_name}' not found, skipping quality profile filter"
            )
            return items
        return [item for item in items if item.quality_profile_id == profile_id]

    @staticmethod
    def _by_status(items, config, memo):
        wanted = normalize_status(config.status)
        if not wanted or wanted == "any":
            return items
        return [item for item in items if item.status == wanted]
