"""Shared fixtures and in-memory fakes for the test suite."""

import os
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from config.lib.load_settings_conf import DEFAULTS, validate_settings
from listings import NormalizedListing, SyncCounts, ListingsSnapshot, StagedListings
from listings.versions import dedupe_by_mint

TEST_DB_URL = os.environ.get('DRIFELLASCAPE_TEST_DB_URL')

SNAPSHOT_FIELDS = ('token_mint_addr', 'token_num', 'price', 'seller', 'image_url', 'listing_source')


def make_listing(mint: str, price: int = 1_000_000_000, **overrides) -> NormalizedListing:
    """Build a listing with sensible defaults."""
    fields = {
        'token_mint_addr': mint,
        'token_num': None,
        'price': price,
        'seller': f'seller-{mint}',
        'image_url': f'https://img.example/{mint}.png',
        'listing_source': 'M2',
    }
    fields.update(overrides)
    return NormalizedListing(**fields)


def make_settings(**overrides) -> Dict[str, Any]:
    settings = dict(DEFAULTS)
    settings.update({key: str(value) for key, value in overrides.items()})
    return validate_settings(settings)


class FakeVersionStore:
    """In-memory stand-in for VersionStore with the same semantics."""

    def __init__(self):
        self.versions: Dict[int, Dict[str, Any]] = {}
        self.rows: Dict[int, Dict[str, Dict[str, Any]]] = {}
        self.staging: Dict[uuid.UUID, Dict[str, Dict[str, Any]]] = {}
        self.next_id = 1
        self.fail_activation = False
        self.fail_cleanup = False
        self.rows_lost_on_copy = 0
        self.snapshot_loads = 0

    @asynccontextmanager
    async def stage(self, listings):
        deduped = dedupe_by_mint(listings)
        staged = StagedListings(uuid.uuid4(), len(deduped))
        self.staging[staged.attempt_id] = {
            mint: listing.model_dump() for mint, listing in deduped.items()
        }
        try:
            yield staged
        finally:
            del self.staging[staged.attempt_id]

    def _new_version(self, total: int, active: bool) -> int:
        version_id = self.next_id
        self.next_id += 1
        self.versions[version_id] = {'total': total, 'active': active}
        self.rows[version_id] = {}
        return version_id

    def active_ids(self) -> List[int]:
        return [vid for vid, version in self.versions.items() if version['active']]

    async def get_active_version_id(self) -> Optional[int]:
        active = self.active_ids()
        return active[0] if active else None

    async def ensure_active_version_id(self) -> int:
        active_id = await self.get_active_version_id()
        if active_id is None:
            active_id = self._new_version(0, True)
        return active_id

    async def count_diffs(self, staged, active_id, price_epsilon) -> SyncCounts:
        new = self.staging[staged.attempt_id]
        old = self.rows.get(active_id, {})
        updated = 0
        for mint, row in new.items():
            prev = old.get(mint)
            if prev is None:
                continue
            if abs(row['price'] - prev['price']) >= price_epsilon or any(
                row[field] != prev[field] for field in ('seller', 'image_url', 'listing_source')
            ):
                updated += 1
        return SyncCounts(
            inserted=sum(1 for mint in new if mint not in old),
            updated=updated,
            deleted=sum(1 for mint in old if mint not in new),
            total=staged.total,
        )

    async def create_inactive_version(self, total: int) -> int:
        return self._new_version(total, False)

    async def copy_staged_into_version(self, staged, version_id) -> int:
        rows = dict(self.staging[staged.attempt_id])
        for mint in list(rows)[:self.rows_lost_on_copy]:
            del rows[mint]
        self.rows[version_id] = rows
        return len(rows)

    async def delete_version(self, version_id: int) -> None:
        self.versions.pop(version_id, None)
        self.rows.pop(version_id, None)

    async def activate_version(self, version_id: int) -> None:
        if self.fail_activation:
            raise RuntimeError("connection lost during activation")
        for version in self.versions.values():
            version['active'] = False
        self.versions[version_id]['active'] = True

    async def cleanup_inactive(self) -> int:
        if self.fail_cleanup:
            raise RuntimeError("cleanup failed")
        inactive = [vid for vid, version in self.versions.items() if not version['active']]
        for vid in inactive:
            await self.delete_version(vid)
        return len(inactive)

    async def load_active_snapshot(self) -> Optional[ListingsSnapshot]:
        self.snapshot_loads += 1
        active_id = await self.get_active_version_id()
        if active_id is None:
            return None
        rows = sorted(
            ({field: row[field] for field in SNAPSHOT_FIELDS} for row in self.rows[active_id].values()),
            key=lambda row: (row['price'], row['token_mint_addr'])
        )
        return ListingsSnapshot(version_id=active_id, rows=rows)


@pytest.fixture
def version_store():
    return FakeVersionStore()


@pytest_asyncio.fixture
async def db_pool():
    """Fresh schema on the test database; skipped when no database is configured."""
    if not TEST_DB_URL:
        pytest.skip("DRIFELLASCAPE_TEST_DB_URL not set")
    from database import create_pool, close_pool
    pool = await create_pool(TEST_DB_URL, force_recreate=True, min_size=1, max_size=5)
    yield pool
    await close_pool(pool)
