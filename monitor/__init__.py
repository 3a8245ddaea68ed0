"""Monitor module for periodic marketplace synchronization.

Each cycle fetches every listing of the collection and hands the set to
the synchronization engine. A failed cycle is logged and the loop carries
on; the active version is left as it was. Stopping lets the running cycle
finish and interrupts only the sleep between cycles.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import asyncpg

from listings import ListingError, SyncEngine, SyncLease, SyncLeaseError, SyncResult, VersionStore
from marketplace import MarketplaceClient, MarketplaceError

# Configure logging
logger = logging.getLogger(__name__)


class ListingSyncMonitor:
    """Run the fetch and sync cycle on an interval."""

    def __init__(self, client: MarketplaceClient, engine: SyncEngine, interval: float = 120):
        """Initialize the monitor.

        Args:
            client: Marketplace client used to fetch listings
            engine: Synchronization engine
            interval: Seconds to sleep between cycles
        """
        self.client = client
        self.engine = engine
        self.interval = interval
        self.running = False
        self._stop_event = asyncio.Event()

    @classmethod
    def from_settings(cls, pool, settings: Dict[str, Any]) -> 'ListingSyncMonitor':
        lease = None
        if settings['use_sync_lease']:
            lease = SyncLease(pool, ttl=settings['lease_ttl'])
        engine = SyncEngine(VersionStore(pool), settings['price_epsilon'], lease=lease)
        return cls(MarketplaceClient.from_settings(settings), engine, settings['sync_interval'])

    async def run_cycle(self) -> Optional[SyncResult]:
        """Fetch and synchronize once.

        Returns:
            The SyncResult, or None if the cycle failed
        """
        started = time.monotonic()
        try:
            fetched = await self.client.fetch_all_async()
        except MarketplaceError as e:
            logger.error(f"Fetch failed, keeping current version: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error fetching listings: {e!r}", exc_info=True)
            return None

        try:
            result = await self.engine.sync(fetched.listings)
        except SyncLeaseError as e:
            logger.warning(f"Skipping cycle: {e}")
            return None
        except (ListingError, asyncpg.PostgresError, OSError) as e:
            logger.error(f"Sync failed, keeping current version: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error in sync cycle: {e!r}", exc_info=True)
            return None

        counts = result.counts
        if result.changed:
            logger.info(
                f"Applied version {result.version_id} (ins={counts.inserted}, "
                f"upd={counts.updated}, del={counts.deleted}, total={counts.total})"
            )
        else:
            logger.info(
                f"No change (ins={counts.inserted}, upd={counts.updated}, "
                f"del={counts.deleted}, total={counts.total})"
            )
        logger.info(f"Sync cycle finished in {time.monotonic() - started:.1f}s")
        return result

    async def start(self) -> None:
        """Run cycles until ``stop`` is called."""
        self.running = True
        self._stop_event.clear()
        logger.info(f"Listing sync monitor started (every {self.interval}s)")

        while self.running:
            await self.run_cycle()
            if not self.running:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Listing sync monitor stopped")

    def stop(self) -> None:
        """Ask the loop to stop after the current cycle."""
        if self.running:
            logger.info("Shutdown requested, finishing current cycle...")
        self.running = False
        self._stop_event.set()

    def close(self) -> None:
        self.client.close()


__all__ = ['ListingSyncMonitor']
