"""Search statistics: how many items were searched, per application and instance."""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core.store import LibraryStore

logger = logging.getLogger(__name__)


class StatsService:
    """Records every run that searched something and aggregates the totals."""

    def __init__(self, store: LibraryStore):
        self._store = store

    def add_search(self, application: str, instance: Optional[str], count: int, items: List[dict]) -> None:
        self._store.add_search(
            datetime.now(timezone.utc).isoformat(),
            application,
            instance,
            count,
            items,
        )
        logger.debug(f"Recorded search: {application}/{instance} ({count} item(s))")

    def get_recent(self, page: int = 1, page_size: int = 15) -> dict:
        """One page of recorded searches, newest first. Pages start at 1."""
        total = self._store.count_searches()
        return {
            "searches": self._store.get_searches(limit=page_size, offset=(page - 1) * page_size),
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": (total + page_size - 1) // page_size,
        }

    def get_stats(self) -> dict:
        searches = self._store.get_searches()
        by_application: Dict[str, int] = {}
        by_instance: Dict[str, int] = {}
        for entry in searches:
            app = entry["application"]
            by_application[app] = by_application.get(app, 0) + entry["count"]
            if entry["instance"]:
                key = f"{app}-{entry['instance']}"
                by_instance[key] = by_instance.get(key, 0) + entry["count"]

        return {
            "total_searches": sum(entry["count"] for entry in searches),
            "searches_by_application": by_application,
            "searches_by_instance": by_instance,
            "last_search": searches[0]["timestamp"] if searches else None,
        }

    def reset(self) -> None:
        self._store.clear_searches()
        logger.info("Search stats reset")
