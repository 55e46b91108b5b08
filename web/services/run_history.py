"""Run history - persistent log of search cycles"""

import json
import logging
import os
import tempfile
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from core.executor import RunResult

logger = logging.getLogger(__name__)


@dataclass
class RunHistoryEntry:
    """A single search cycle in the history log"""
    timestamp: str                      # ISO 8601 completion time
    trigger: str                        # "manual", "global" or "instance"
    results: Dict[str, RunResult] = field(default_factory=dict)
    success: bool = True
    error: Optional[str] = None
    skipped: List[str] = field(default_factory=list)  # instance keys busy in another run
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def total_searched(self) -> int:
        return sum(r.searched for r in self.results.values())

    @classmethod
    def from_results(
        cls, results: Dict[str, RunResult], trigger: str, skipped: Optional[List[str]] = None
    ) -> "RunHistoryEntry":
        """Build an entry; the cycle fails only when every instance failed."""
        failures = [r for r in results.values() if not r.success]
        success = not results or len(failures) < len(results)
        error = None
        if failures and not success:
            error = "; ".join(f"{r.instance_name}: {r.error}" for r in failures)
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            trigger=trigger,
            results=dict(results),
            success=success,
            error=error,
            skipped=list(skipped or []),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "trigger": self.trigger,
            "results": {key: r.to_dict() for key, r in self.results.items()},
            "success": self.success,
            "error": self.error,
            "skipped": self.skipped,
            "total_searched": self.total_searched,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunHistoryEntry":
        return cls(
            id=data.get("id", str(uuid.uuid4())),
            timestamp=data.get("timestamp", ""),
            trigger=data.get("trigger", "manual"),
            results={key: RunResult.from_dict(r) for key, r in (data.get("results") or {}).items()},
            success=data.get("success", True),
            error=data.get("error"),
            skipped=data.get("skipped") or [],
        )


class RunHistory:
    """Thread-safe persistent storage for run history.

    Stores entries in run_history.json, newest first, capped at MAX_ENTRIES.
    Entries are only removed by the cap or an explicit clear().
    """

    MAX_ENTRIES = 100

    def __init__(self, history_file):
        self._file = Path(history_file)
        self._lock = threading.Lock()

    def _load(self) -> List[dict]:
        """Load entries from disk. Returns empty list on error."""
        try:
            if self._file.exists():
                with open(self._file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                if isinstance(data, list):
                    return data
        except (json.JSONDecodeError, IOError, OSError) as e:
            logger.warning(f"Failed to load run history: {e}")
        return []

    def _save(self, entries: List[dict]):
        """Atomic save: write to temp file then replace."""
        self._file.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._file.parent), suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(entries, f, indent=2)
                os.replace(tmp_path, str(self._file))
            except Exception:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except (IOError, OSError) as e:
            logger.error(f"Failed to save run history: {e}")

    def record(self, entry: RunHistoryEntry):
        """Add a new history entry (newest first) and save."""
        with self._lock:
            entries = self._load()
            entries.insert(0, entry.to_dict())
            self._save(entries[:self.MAX_ENTRIES])

    def get_recent(self, limit: int = 20) -> List[RunHistoryEntry]:
        with self._lock:
            entries = self._load()
        return [RunHistoryEntry.from_dict(e) for e in entries[:limit]]

    def clear(self):
        with self._lock:
            self._save([])
        logger.info("Run history cleared")

    def total_count(self) -> int:
        with self._lock:
            return len(self._load())
