"""
Client for the *arr media library managers (Radarr, Sonarr, Lidarr, Readarr).

Every application speaks the same REST dialect with small differences (API
version, endpoint names, how search commands take ids). Those differences are
captured in one AppStrategy value per application type; StarrClient is the
single requests-based implementation of the MediaLibraryClient capability.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence

import requests

from core.config import InstanceConfig
from core.media import MediaFile, MediaItem

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
STATUS_TIMEOUT = 5


class StarrApiError(Exception):
    """A request to a media library manager failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


@dataclass(frozen=True)
class AppStrategy:
    """Per-application API differences."""
    app_type: str
    app_name: str
    api_version: str
    media_endpoint: str
    media_ids_field: str        # editor payload key, e.g. "movieIds"
    search_command: str
    search_id_field: str        # command payload key
    search_one_by_one: bool     # provider only accepts one id per search command
    media_type_name: str
    title_field: str = "title"
    file_endpoint: Optional[str] = None
    file_ids_param: Optional[str] = None

    @property
    def editor_endpoint(self) -> str:
        return f"{self.media_endpoint}/editor"


RADARR = AppStrategy(
    app_type="radarr",
    app_name="Radarr",
    api_version="v3",
    media_endpoint="movie",
    media_ids_field="movieIds",
    search_command="MoviesSearch",
    search_id_field="movieIds",
    search_one_by_one=False,
    media_type_name="movies",
    file_endpoint="moviefile",
    file_ids_param="movieFileIds",
)

SONARR = AppStrategy(
    app_type="sonarr",
    app_name="Sonarr",
    api_version="v3",
    media_endpoint="series",
    media_ids_field="seriesIds",
    search_command="SeriesSearch",
    search_id_field="seriesId",
    search_one_by_one=True,
    media_type_name="series",
)

LIDARR = AppStrategy(
    app_type="lidarr",
    app_name="Lidarr",
    api_version="v1",
    media_endpoint="artist",
    media_ids_field="artistIds",
    search_command="ArtistSearch",
    search_id_field="artistId",
    search_one_by_one=True,
    media_type_name="artists",
    title_field="artistName",
)

READARR = AppStrategy(
    app_type="readarr",
    app_name="Readarr",
    api_version="v1",
    media_endpoint="author",
    media_ids_field="authorIds",
    search_command="AuthorSearch",
    search_id_field="authorId",
    search_one_by_one=True,
    media_type_name="authors",
    title_field="authorName",
    file_endpoint="bookfile",
    file_ids_param="bookFileIds",
)

APP_STRATEGIES: Dict[str, AppStrategy] = {
    strategy.app_type: strategy for strategy in (RADARR, SONARR, LIDARR, READARR)
}


def get_strategy(app_type: str) -> AppStrategy:
    try:
        return APP_STRATEGIES[app_type]
    except KeyError:
        raise ValueError(f"Unknown application type: {app_type}")


class MediaLibraryClient(Protocol):
    """Capability consumed by the cache, tagger and run executor."""

    strategy: AppStrategy

    def get_media(self) -> List[MediaItem]: ...

    def get_quality_profiles(self) -> Dict[int, str]: ...

    def get_tags(self) -> Dict[int, str]: ...

    def find_tag_id(self, name: str) -> Optional[int]: ...

    def find_quality_profile_id(self, name: str) -> Optional[int]: ...

    def get_or_create_tag(self, name: str) -> int: ...

    def add_tag(self, media_ids: Sequence[int], tag_id: int) -> None: ...

    def remove_tag(self, media_ids: Sequence[int], tag_id: int) -> None: ...

    def search(self, media_ids: Sequence[int]) -> None: ...

    def get_file_details(self, file_ids: Sequence[int]) -> Dict[int, MediaFile]: ...

    def test_connection(self) -> bool: ...


class StarrClient:
    """requests-based MediaLibraryClient for one configured instance."""

    def __init__(
        self,
        url: str,
        api_key: str,
        strategy: AppStrategy,
        session: Optional[requests.Session] = None,
        timeout: int = DEFAULT_TIMEOUT,
        name: str = "",
    ):
        self.base_url = url.rstrip('/')
        self.strategy = strategy
        self.timeout = timeout
        self.name = name or strategy.app_name
        self._session = session or requests.Session()
        self._session.headers.update({'X-Api-Key': api_key})

    @classmethod
    def for_instance(cls, instance: InstanceConfig, session: Optional[requests.Session] = None) -> "StarrClient":
        return cls(
            instance.url,
            instance.api_key,
            get_strategy(instance.app_type),
            session=session,
            name=instance.display_name,
        )

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/{self.strategy.api_version}/{path}"

    def _request(self, method: str, path: str, timeout: Optional[int] = None, **kwargs):
        """Send a request and return the decoded JSON body (None if empty)."""
        try:
            response = self._session.request(
                method, self._url(path), timeout=timeout or self.timeout, **kwargs
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise StarrApiError(
                f"{self.strategy.app_name} API {method} /{path} failed with HTTP {status}",
                status_code=status,
                endpoint=path,
            ) from e
        except requests.RequestException as e:
            raise StarrApiError(
                f"{self.strategy.app_name} API {method} /{path} failed: {e}",
                endpoint=path,
            ) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise StarrApiError(
                f"{self.strategy.app_name} API {method} /{path} returned invalid JSON",
                status_code=response.status_code,
                endpoint=path,
            ) from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_media(self) -> List[MediaItem]:
        logger.debug(f"[{self.name}] Fetching {self.strategy.media_type_name}")
        payload = self._request("GET", self.strategy.media_endpoint) or []
        items = [MediaItem.from_api(entry, self.strategy.title_field) for entry in payload]
        logger.debug(f"[{self.name}] Fetched {len(items)} {self.strategy.media_type_name}")
        return items

    def get_quality_profiles(self) -> Dict[int, str]:
        payload = self._request("GET", "qualityprofile") or []
        return {int(p["id"]): p.get("name", "") for p in payload}

    def get_tags(self) -> Dict[int, str]:
        payload = self._request("GET", "tag") or []
        return {int(t["id"]): t.get("label", "") for t in payload}

    def find_tag_id(self, name: str) -> Optional[int]:
        for tag_id, label in self.get_tags().items():
            if label == name:
                return tag_id
        return None

    def find_quality_profile_id(self, name: str) -> Optional[int]:
        for profile_id, profile_name in self.get_quality_profiles().items():
            if profile_name == name:
                return profile_id
        return None

    def get_file_details(self, file_ids: Sequence[int]) -> Dict[int, MediaFile]:
        """File records (import date, custom format score) for one batch of file ids."""
        if not self.strategy.file_endpoint or not file_ids:
            return {}
        payload = self._request(
            "GET",
            self.strategy.file_endpoint,
            params={self.strategy.file_ids_param: list(file_ids)},
        ) or []
        details = {}
        for entry in payload:
            if entry.get("id") is not None:
                details[int(entry["id"])] = MediaFile.from_dict(entry)
        return details

    def test_connection(self) -> bool:
        try:
            self._request("GET", "system/status", timeout=STATUS_TIMEOUT)
            return True
        except StarrApiError as e:
            logger.debug(f"[{self.name}] Connection test failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def get_or_create_tag(self, name: str) -> int:
        tag_id = self.find_tag_id(name)
        if tag_id is not None:
            return tag_id
        logger.info(f"[{self.name}] Creating tag '{name}'")
        created = self._request("POST", "tag", json={"label": name})
        if not created or "id" not in created:
            raise StarrApiError(f"{self.strategy.app_name} did not return an id for new tag '{name}'", endpoint="tag")
        return int(created["id"])

    def _edit_tags(self, media_ids: Sequence[int], tag_id: int, apply: str) -> None:
        if not media_ids:
            return
        self._request(
            "PUT",
            self.strategy.editor_endpoint,
            json={
                self.strategy.media_ids_field: list(media_ids),
                "tags": [tag_id],
                "applyTags": apply,
            },
        )

    def add_tag(self, media_ids: Sequence[int], tag_id: int) -> None:
        self._edit_tags(media_ids, tag_id, "add")
        logger.debug(f"[{self.name}] Added tag {tag_id} to {len(media_ids)} item(s)")

    def remove_tag(self, media_ids: Sequence[int], tag_id: int) -> None:
        self._edit_tags(media_ids, tag_id, "remove")
        logger.debug(f"[{self.name}] Removed tag {tag_id} from {len(media_ids)} item(s)")

    def search(self, media_ids: Sequence[int]) -> None:
        if not media_ids:
            return
        command = self.strategy.search_command
        if self.strategy.search_one_by_one:
            for media_id in media_ids:
                self._request("POST", "command", json={"name": command, self.strategy.search_id_field: media_id})
        else:
            self._request("POST", "command", json={"name": command, self.strategy.search_id_field: list(media_ids)})
        logger.info(f"[{self.name}] {command} sent for {len(media_ids)} item(s)")
