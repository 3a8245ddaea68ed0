"""Data access for listing versions.

A version is a fully materialized snapshot of the marketplace listings.
Rows for a version are written while it is inactive and become visible to
readers only when ``activate_version`` flips the active flag inside a
single transaction.

Incoming listings are first written to ``listing_staging`` under a fresh
attempt id. ``VersionStore.stage`` owns that keyspace and removes it on
every exit path.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Iterable, Optional

import asyncpg

from database import retry_on_conflict
from .exceptions import ActivationError
from .models import NormalizedListing, SyncCounts, ListingsSnapshot

logger = logging.getLogger(__name__)

# Staging rows older than this belong to attempts whose process died
STALE_STAGING_INTERVAL = '1 hour'

SNAPSHOT_COLUMNS = 'token_mint_addr, token_num, price, seller, image_url, listing_source'


class StagedListings:
    """Handle to one staging keyspace."""

    def __init__(self, attempt_id: uuid.UUID, total: int):
        self.attempt_id = attempt_id
        self.total = total

    def __repr__(self):
        return f"StagedListings(attempt_id={self.attempt_id}, total={self.total})"


def dedupe_by_mint(listings: Iterable[NormalizedListing]) -> Dict[str, NormalizedListing]:
    """Collapse listings by mint address, keeping the last occurrence."""
    deduped: Dict[str, NormalizedListing] = {}
    for listing in listings:
        deduped[listing.token_mint_addr] = listing
    return deduped


class VersionStore:
    """Manager class for listing versions and their snapshot rows."""

    def __init__(self, pool=None):
        """Initialize the version store.

        Args:
            pool: asyncpg connection pool owned by the caller
        """
        self.pool = pool

    @asynccontextmanager
    async def stage(self, listings: Iterable[NormalizedListing]):
        """Write listings into a fresh staging keyspace.

        Duplicate mints are last-write-wins. The staged rows are deleted when
        the context exits, whether or not the body raised.

        Args:
            listings: Normalized listings to stage

        Yields:
            StagedListings handle carrying the attempt id and row count
        """
        deduped = dedupe_by_mint(listings)
        staged = StagedListings(uuid.uuid4(), len(deduped))

        try:
            if deduped:
                async with self.pool.acquire() as conn:
                    await conn.executemany(
                        '''
                        INSERT INTO listing_staging (
                            attempt_id, token_mint_addr, token_num, price,
                            seller, image_url, listing_source
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                        ''',
                        [
                            (
                                staged.attempt_id,
                                listing.token_mint_addr,
                                listing.token_num,
                                listing.price,
                                listing.seller,
                                listing.image_url,
                                listing.listing_source,
                            )
                            for listing in deduped.values()
                        ]
                    )
            logger.debug(f"Staged {staged.total} listings under attempt {staged.attempt_id}")
            yield staged
        finally:
            await self._drop_staging(staged.attempt_id)

    async def _drop_staging(self, attempt_id: uuid.UUID) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    'DELETE FROM listing_staging WHERE attempt_id = $1',
                    attempt_id
                )
        except (asyncpg.PostgresError, OSError) as e:
            # Leftover rows are purged by cleanup_inactive once they go stale
            logger.error(f"Failed to drop staging rows for attempt {attempt_id}: {e}")

    async def get_active_version_id(self) -> Optional[int]:
        """Return the id of the active version, or None before the first sync."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                'SELECT id FROM listing_versions WHERE active LIMIT 1'
            )

    async def ensure_active_version_id(self) -> int:
        """Return the active version id, seeding an empty active version if needed."""
        active_id = await self.get_active_version_id()
        if active_id is not None:
            return active_id

        async with self.pool.acquire() as conn:
            try:
                active_id = await conn.fetchval(
                    '''
                    INSERT INTO listing_versions (total, active)
                    VALUES (0, true)
                    RETURNING id
                    '''
                )
                logger.info(f"Seeded empty active listing version {active_id}")
                return active_id
            except asyncpg.exceptions.UniqueViolationError:
                # Someone else seeded between our read and insert
                return await conn.fetchval(
                    'SELECT id FROM listing_versions WHERE active LIMIT 1'
                )

    async def count_diffs(self, staged: StagedListings, active_id: int,
                          price_epsilon: int) -> SyncCounts:
        """Count inserts, updates and deletes of the staged set against a version.

        A price delta strictly below ``price_epsilon`` is not a change; any
        difference in seller, image_url or listing_source is.

        Args:
            staged: Staging handle returned by ``stage``
            active_id: Version to compare against
            price_epsilon: Price tolerance in the smallest on-chain unit

        Returns:
            SyncCounts with ``total`` set to the staged row count
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                SELECT
                    (
                        SELECT COUNT(*)
                        FROM listing_staging s
                        WHERE s.attempt_id = $1
                        AND NOT EXISTS (
                            SELECT 1 FROM listings_current c
                            WHERE c.version_id = $2
                            AND c.token_mint_addr = s.token_mint_addr
                        )
                    ) AS inserted,
                    (
                        SELECT COUNT(*)
                        FROM listing_staging s
                        JOIN listings_current c
                            ON c.version_id = $2
                            AND c.token_mint_addr = s.token_mint_addr
                        WHERE s.attempt_id = $1
                        AND (
                            ABS(s.price - c.price) >= $3
                            OR s.seller <> c.seller
                            OR s.image_url <> c.image_url
                            OR s.listing_source <> c.listing_source
                        )
                    ) AS updated,
                    (
                        SELECT COUNT(*)
                        FROM listings_current c
                        WHERE c.version_id = $2
                        AND NOT EXISTS (
                            SELECT 1 FROM listing_staging s
                            WHERE s.attempt_id = $1
                            AND s.token_mint_addr = c.token_mint_addr
                        )
                    ) AS deleted
                ''',
                staged.attempt_id,
                active_id,
                price_epsilon
            )

        return SyncCounts(
            inserted=row['inserted'],
            updated=row['updated'],
            deleted=row['deleted'],
            total=staged.total
        )

    async def create_inactive_version(self, total: int) -> int:
        """Create a new inactive version row and return its id."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                '''
                INSERT INTO listing_versions (total, active)
                VALUES ($1, false)
                RETURNING id
                ''',
                total
            )

    async def copy_staged_into_version(self, staged: StagedListings, version_id: int) -> int:
        """Copy every staged row into ``listings_current`` under ``version_id``.

        Returns:
            Number of snapshot rows that the version holds afterwards
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    f'''
                    INSERT INTO listings_current (version_id, {SNAPSHOT_COLUMNS})
                    SELECT $2, {SNAPSHOT_COLUMNS}
                    FROM listing_staging
                    WHERE attempt_id = $1
                    ''',
                    staged.attempt_id,
                    version_id
                )
                return await conn.fetchval(
                    'SELECT COUNT(*) FROM listings_current WHERE version_id = $1',
                    version_id
                )

    async def delete_version(self, version_id: int) -> None:
        """Delete a version together with its snapshot rows."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    'DELETE FROM listings_current WHERE version_id = $1',
                    version_id
                )
                await conn.execute(
                    'DELETE FROM listing_versions WHERE id = $1',
                    version_id
                )

    async def activate_version(self, version_id: int) -> None:
        """Make ``version_id`` the only active version.

        Both updates run in one transaction, so readers see either the old
        or the new version as active, never neither and never both.

        Raises:
            ActivationError: If the version does not exist
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    'UPDATE listing_versions SET active = false WHERE active AND id <> $1',
                    version_id
                )
                activated = await conn.fetchval(
                    '''
                    UPDATE listing_versions SET active = true
                    WHERE id = $1
                    RETURNING id
                    ''',
                    version_id
                )
                if activated is None:
                    raise ActivationError(f"Version {version_id} does not exist")

    async def cleanup_inactive(self) -> int:
        """Delete every inactive version and its rows. Safe to repeat.

        Returns:
            Number of version rows removed
        """
        async with self.pool.acquire() as conn:
            await conn.execute(
                '''
                DELETE FROM listings_current
                WHERE version_id IN (
                    SELECT id FROM listing_versions WHERE NOT active
                )
                '''
            )
            removed = await conn.fetch(
                'DELETE FROM listing_versions WHERE NOT active RETURNING id'
            )
            await conn.execute(
                f"DELETE FROM listing_staging WHERE staged_at < now() - INTERVAL '{STALE_STAGING_INTERVAL}'"
            )
        return len(removed)

    @retry_on_conflict
    async def load_active_snapshot(self) -> Optional[ListingsSnapshot]:
        """Load the full row set of the active version.

        The version id and its rows are read in one read-only transaction.

        Returns:
            ListingsSnapshot ordered by price then mint, or None if no
            version is active
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation='serializable', readonly=True):
                version_id = await conn.fetchval(
                    'SELECT id FROM listing_versions WHERE active LIMIT 1'
                )
                if version_id is None:
                    return None
                rows = await conn.fetch(
                    f'''
                    SELECT {SNAPSHOT_COLUMNS}
                    FROM listings_current
                    WHERE version_id = $1
                    ORDER BY price ASC, token_mint_addr ASC
                    ''',
                    version_id
                )
        return ListingsSnapshot(version_id=version_id, rows=[dict(row) for row in rows])
