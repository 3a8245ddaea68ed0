"""Lease row guarding synchronization when several workers share a database."""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta

from .exceptions import SyncLeaseError

logger = logging.getLogger(__name__)


class SyncLease:
    """A named, expiring lease stored in ``sync_leases``.

    The lease is taken when it is free, expired, or already ours.
    """

    def __init__(self, pool=None, name: str = 'listings_sync', ttl: int = 600):
        self.pool = pool
        self.name = name
        self.ttl = timedelta(seconds=ttl)
        self.holder = uuid.uuid4()

    async def acquire(self) -> None:
        """Take the lease.

        Raises:
            SyncLeaseError: If another live holder owns it
        """
        async with self.pool.acquire() as conn:
            holder = await conn.fetchval(
                '''
                INSERT INTO sync_leases (name, holder, acquired_at, expires_at)
                VALUES ($1, $2, now(), now() + $3::INTERVAL)
                ON CONFLICT (name) DO UPDATE SET
                    holder = excluded.holder,
                    acquired_at = excluded.acquired_at,
                    expires_at = excluded.expires_at
                WHERE sync_leases.expires_at < now()
                OR sync_leases.holder = excluded.holder
                RETURNING holder
                ''',
                self.name,
                self.holder,
                self.ttl
            )
        if holder is None:
            raise SyncLeaseError(f"Lease {self.name} is held by another worker")
        logger.debug(f"Acquired lease {self.name} as {self.holder}")

    async def release(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                'DELETE FROM sync_leases WHERE name = $1 AND holder = $2',
                self.name,
                self.holder
            )

    @asynccontextmanager
    async def held(self):
        await self.acquire()
        try:
            yield self
        finally:
            await self.release()
