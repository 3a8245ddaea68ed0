"""In-memory cache of the active listing snapshot for the unfiltered feed."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .exceptions import NoActiveVersionError
from .models import ListingsSnapshot
from .search import normalize_listing_sort, sort_listings
from .versions import VersionStore

logger = logging.getLogger(__name__)


class ListingsCache:
    """Single-flight, last-write-wins cache over ``VersionStore.load_active_snapshot``."""

    def __init__(self, store: VersionStore):
        self.store = store
        self.snapshot: Optional[ListingsSnapshot] = None
        self._load_lock = asyncio.Lock()
        self._refreshing = False
        self._sorted: Dict[str, List[Dict[str, Any]]] = {}

    def _set_snapshot(self, snapshot: ListingsSnapshot) -> None:
        self.snapshot = snapshot
        self._sorted = {}

    @property
    def version_id(self) -> Optional[int]:
        return self.snapshot.version_id if self.snapshot is not None else None

    async def ensure_loaded(self) -> ListingsSnapshot:
        """Return the cached snapshot, loading it on first use.

        Raises:
            NoActiveVersionError: If nothing has been synchronized yet
        """
        if self.snapshot is not None:
            return self.snapshot

        async with self._load_lock:
            if self.snapshot is None:
                snapshot = await self.store.load_active_snapshot()
                if snapshot is None:
                    raise NoActiveVersionError("No active listing version")
                self._set_snapshot(snapshot)
                logger.info(
                    f"Loaded listing version {snapshot.version_id} "
                    f"({snapshot.total} listings)"
                )
        return self.snapshot

    async def refresh_if_changed(self) -> bool:
        """Reload the snapshot if the active version moved.

        Returns:
            True if a new snapshot was loaded. False if a refresh is already
            running, nothing is active, or the cached version is current.
        """
        if self._refreshing:
            return False

        self._refreshing = True
        try:
            active_id = await self.store.get_active_version_id()
            if active_id is None or active_id == self.version_id:
                return False

            snapshot = await self.store.load_active_snapshot()
            if snapshot is None:
                return False
            previous = self.version_id
            self._set_snapshot(snapshot)
            logger.info(
                f"Listings cache moved from version {previous} to "
                f"{snapshot.version_id} ({snapshot.total} listings)"
            )
            return True
        finally:
            self._refreshing = False

    async def run(self, interval: float, stop_event: Optional[asyncio.Event] = None) -> None:
        """Check for a new active version every ``interval`` seconds until stopped."""
        stop_event = stop_event or asyncio.Event()
        logger.info(f"Listings cache refresh loop started (every {interval}s)")

        while not stop_event.is_set():
            try:
                await self.refresh_if_changed()
            except Exception as e:
                logger.error(f"Listings cache refresh failed: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Listings cache refresh loop stopped")

    async def page(self, sort: str, offset: int, limit: int) -> Dict[str, Any]:
        """Serve one page of the cached snapshot.

        Returns:
            Dict with version_id, total, used_offset, sort and items
        """
        snapshot = await self.ensure_loaded()
        sort = normalize_listing_sort(sort)

        rows = self._sorted.get(sort)
        if rows is None:
            rows = sort_listings(snapshot.rows, sort)
            self._sorted[sort] = rows

        return {
            'version_id': snapshot.version_id,
            'total': snapshot.total,
            'used_offset': offset,
            'sort': sort,
            'items': rows[offset:offset + limit],
        }
