"""
Media item model shared by the library cache, filter pipeline and run executor.

Items from every application type (movies, series, artists, authors) are
normalized into one MediaItem shape. File details arrive in different fields
depending on the application, so they are captured as a FileInfo and resolved
once into a FileSummary when the item is built.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Optional, Tuple

# Payload fields carrying file details, in lookup order.
# Single-file kinds hold one object, multi-file kinds hold a list.
SINGLE_FILE_KINDS = ("movieFile", "episodeFile")
MULTI_FILE_KINDS = ("trackFiles", "bookFiles")

STATUS_ALIASES = {
    "inCinemas": "in cinemas",
    "incinemas": "in cinemas",
}


def normalize_status(value: Any) -> str:
    """Map a remote or configured status onto the common vocabulary."""
    if not value:
        return ""
    text = str(value).strip()
    if text in STATUS_ALIASES:
        return STATUS_ALIASES[text]
    return text.lower()


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class MediaFile:
    """A single file attached to a media item."""
    id: Optional[int] = None
    date_added: Optional[str] = None
    score: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "MediaFile":
        return cls(
            id=_as_int(data.get("id")),
            date_added=data.get("dateAdded") or None,
            score=_as_int(data.get("customFormatScore")),
        )


@dataclass(frozen=True)
class FileSummary:
    """Resolved file projection used by filters, the cache and the API."""
    has_file: bool = False
    imported_at: Optional[str] = None
    score: Optional[int] = None
    file_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class FileInfo:
    """File details of an item, tagged by the payload field they came from."""
    kind: str
    files: Tuple[MediaFile, ...] = ()

    @classmethod
    def from_payload(cls, payload: dict) -> Optional["FileInfo"]:
        for kind in SINGLE_FILE_KINDS:
            data = payload.get(kind)
            if isinstance(data, dict):
                return cls(kind=kind, files=(MediaFile.from_dict(data),))
        for kind in MULTI_FILE_KINDS:
            data = payload.get(kind)
            if isinstance(data, list):
                return cls(
                    kind=kind,
                    files=tuple(MediaFile.from_dict(f) for f in data if isinstance(f, dict)),
                )
        return None

    def with_details(self, details: Dict[int, "MediaFile"]) -> "FileInfo":
        """Return a copy with a secondary file lookup merged in.

        The looked-up score and import date win where present; missing
        values keep what the item payload carried.
        """
        if not details:
            return self
        files = []
        for f in self.files:
            found = details.get(f.id)
            if found is None:
                files.append(f)
                continue
            files.append(replace(
                f,
                date_added=found.date_added or f.date_added,
                score=found.score if found.score is not None else f.score,
            ))
        return replace(self, files=tuple(files))

    def resolve(self, added: Optional[str] = None) -> FileSummary:
        """Collapse the files into one summary.

        The import date is the most recent file date, falling back to the
        date the item itself was added. The score is the first one present.
        """
        dates = [f.date_added for f in self.files if f.date_added]
        score = next((f.score for f in self.files if f.score is not None), None)
        return FileSummary(
            has_file=bool(dates),
            imported_at=max(dates) if dates else added,
            score=score,
            file_ids=tuple(f.id for f in self.files if f.id),
        )


@dataclass(frozen=True)
class MediaItem:
    """A movie, series, artist or author from one instance."""
    id: int
    title: str
    monitored: bool = False
    tag_ids: Tuple[int, ...] = ()
    tags: Tuple[str, ...] = ()
    quality_profile_id: Optional[int] = None
    quality_profile_name: Optional[str] = None
    status: str = ""
    added: Optional[str] = None
    last_search_time: Optional[str] = None
    file_info: Optional[FileInfo] = field(default=None, compare=False)
    file: FileSummary = field(default_factory=FileSummary)

    @classmethod
    def from_api(cls, payload: dict, title_field: str = "title") -> "MediaItem":
        """Build an item from a media endpoint payload."""
        added = payload.get("added") or None
        file_info = FileInfo.from_payload(payload)
        return cls(
            id=int(payload["id"]),
            title=payload.get(title_field) or payload.get("title") or f"#{payload['id']}",
            monitored=bool(payload.get("monitored", False)),
            tag_ids=tuple(int(t) for t in payload.get("tags", []) or []),
            quality_profile_id=_as_int(payload.get("qualityProfileId")),
            status=normalize_status(payload.get("status")),
            added=added,
            last_search_time=payload.get("lastSearchTime") or None,
            file_info=file_info,
            file=file_info.resolve(added) if file_info else FileSummary(imported_at=added),
        )

    def with_tag(self, tag_id: int, label: str) -> "MediaItem":
        if tag_id in self.tag_ids:
            return self
        return replace(self, tag_ids=self.tag_ids + (tag_id,), tags=self.tags + (label,))

    def without_tag(self, tag_id: int, label: str) -> "MediaItem":
        if tag_id not in self.tag_ids:
            return self
        return replace(
            self,
            tag_ids=tuple(t for t in self.tag_ids if t != tag_id),
            tags=tuple(t for t in self.tags if t != label),
        )

    def to_summary(self) -> dict:
        return {"id": self.id, "title": self.title}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "monitored": self.monitored,
            "tags": list(self.tags),
            "quality_profile_name": self.quality_profile_name,
            "status": self.status,
            "has_file": self.file.has_file,
            "date_imported": self.file.imported_at,
            "custom_format_score": self.file.score,
            "last_search_time": self.last_search_time,
            "added": self.added,
        }


def summarize(items: Iterable[MediaItem]) -> list:
    return [item.to_summary() for item in items]
