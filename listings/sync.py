"""Synchronization engine.

Turns a freshly fetched listing set into a new active version, but only
when it differs from the active one. The sequence is:

1. stage the incoming rows (last write wins per mint)
2. resolve or seed the active version
3. count inserts, updates and deletes with a price tolerance
4. stop if nothing changed
5. materialize a new inactive version and verify its row count
6. activate it in one transaction
7. drop every inactive version

Only step 6 changes what readers see.
"""

import logging
from typing import Iterable, Optional

from .exceptions import ActivationError, SnapshotIntegrityError
from .lease import SyncLease
from .models import NormalizedListing, SyncResult
from .versions import VersionStore

logger = logging.getLogger(__name__)

# 0.01 SOL in lamports
PRICE_EPSILON = 10_000_000


class SyncEngine:
    """Reconcile normalized listings into the version store."""

    def __init__(self, store: VersionStore, price_epsilon: int = PRICE_EPSILON,
                 lease: Optional[SyncLease] = None):
        """Initialize the engine.

        Args:
            store: Version store to write to
            price_epsilon: Smallest price delta counted as an update
            lease: Optional lease taken around each sync
        """
        self.store = store
        self.price_epsilon = price_epsilon
        self.lease = lease

    async def sync(self, listings: Iterable[NormalizedListing]) -> SyncResult:
        """Synchronize ``listings`` into a new active version if they changed.

        Args:
            listings: Normalized listings from the marketplace

        Returns:
            SyncResult with the change flag, version id and counts

        Raises:
            SnapshotIntegrityError: If the materialized version is incomplete
            ActivationError: If the cutover transaction fails
            SyncLeaseError: If another worker holds the lease
        """
        if self.lease is None:
            return await self._sync(listings)
        async with self.lease.held():
            return await self._sync(listings)

    async def _sync(self, listings: Iterable[NormalizedListing]) -> SyncResult:
        async with self.store.stage(listings) as staged:
            active_id = await self.store.ensure_active_version_id()
            counts = await self.store.count_diffs(staged, active_id, self.price_epsilon)

            if counts.changes == 0:
                logger.info(
                    f"No listing changes against version {active_id} "
                    f"({counts.total} listings)"
                )
                await self._cleanup()
                return SyncResult(changed=False, version_id=active_id, counts=counts)

            version_id = await self.store.create_inactive_version(staged.total)
            try:
                copied = await self.store.copy_staged_into_version(staged, version_id)
            except Exception:
                await self._discard(version_id)
                raise

            if copied != staged.total:
                await self._discard(version_id)
                raise SnapshotIntegrityError(
                    f"Version {version_id} holds {copied} rows, expected {staged.total}"
                )

            try:
                await self.store.activate_version(version_id)
            except ActivationError:
                await self._discard(version_id)
                raise
            except Exception as e:
                await self._discard(version_id)
                raise ActivationError(f"Failed to activate version {version_id}: {e}") from e

        logger.info(
            f"Activated listing version {version_id} (previous {active_id}): "
            f"+{counts.inserted} ~{counts.updated} -{counts.deleted}, "
            f"{counts.total} total"
        )

        await self._cleanup()
        return SyncResult(changed=True, version_id=version_id, counts=counts)

    async def _discard(self, version_id: int) -> None:
        """Remove an attempted version without masking the error that caused it."""
        try:
            await self.store.delete_version(version_id)
            logger.warning(f"Discarded listing version {version_id}")
        except Exception as e:
            logger.error(f"Failed to discard listing version {version_id}: {e}")

    async def _cleanup(self) -> None:
        # Runs after every sync, changed or not; a failure is retried next cycle
        try:
            removed = await self.store.cleanup_inactive()
            if removed:
                logger.debug(f"Removed {removed} inactive listing versions")
        except Exception as e:
            logger.error(f"Failed to clean up inactive listing versions: {e}")
