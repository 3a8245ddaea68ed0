"""Tests for the synchronization engine against the in-memory version store."""

from contextlib import asynccontextmanager

import pytest

from listings import ActivationError, SnapshotIntegrityError, SyncEngine, SyncLeaseError
from tests.conftest import make_listing

EPSILON = 10_000_000


def assert_single_active_version(store):
    active = store.active_ids()
    assert len(active) == 1
    assert set(store.rows) == set(active)
    assert store.staging == {}
    return active[0]


@pytest.mark.asyncio
async def test_first_sync_seeds_and_inserts(version_store):
    engine = SyncEngine(version_store, EPSILON)

    result = await engine.sync([make_listing('A')])

    assert result.changed
    assert result.counts.model_dump() == {'inserted': 1, 'updated': 0, 'deleted': 0, 'total': 1}
    assert assert_single_active_version(version_store) == result.version_id
    assert set(version_store.rows[result.version_id]) == {'A'}


@pytest.mark.asyncio
async def test_identical_sync_is_a_no_op(version_store):
    engine = SyncEngine(version_store, EPSILON)
    listings = [make_listing('A'), make_listing('B', price=2_000_000_000)]
    first = await engine.sync(listings)

    second = await engine.sync(listings)

    assert not second.changed
    assert second.version_id == first.version_id
    assert second.counts.model_dump() == {'inserted': 0, 'updated': 0, 'deleted': 0, 'total': 2}
    assert assert_single_active_version(version_store) == first.version_id


@pytest.mark.asyncio
async def test_price_below_epsilon_is_not_an_update(version_store):
    engine = SyncEngine(version_store, EPSILON)
    first = await engine.sync([make_listing('A', price=1_000_000_000)])

    result = await engine.sync([make_listing('A', price=1_009_999_999)])

    assert not result.changed
    assert result.counts.updated == 0
    assert result.version_id == first.version_id


@pytest.mark.asyncio
async def test_price_at_epsilon_is_an_update(version_store):
    engine = SyncEngine(version_store, EPSILON)
    first = await engine.sync([make_listing('A', price=1_000_000_000)])

    result = await engine.sync([make_listing('A', price=1_010_000_000)])

    assert result.changed
    assert result.counts.model_dump() == {'inserted': 0, 'updated': 1, 'deleted': 0, 'total': 1}
    assert result.version_id != first.version_id
    assert version_store.rows[result.version_id]['A']['price'] == 1_010_000_000
    assert_single_active_version(version_store)


@pytest.mark.asyncio
async def test_non_price_fields_count_as_updates(version_store):
    engine = SyncEngine(version_store, EPSILON)
    await engine.sync([make_listing('A'), make_listing('B'), make_listing('C')])

    result = await engine.sync([
        make_listing('A', seller='someone-else'),
        make_listing('B', image_url='https://img.example/new.png'),
        make_listing('C', listing_source='TENSOR'),
    ])

    assert result.counts.updated == 3


@pytest.mark.asyncio
async def test_token_num_change_alone_is_not_an_update(version_store):
    engine = SyncEngine(version_store, EPSILON)
    await engine.sync([make_listing('A', token_num=None)])

    result = await engine.sync([make_listing('A', token_num=12)])

    assert not result.changed


@pytest.mark.asyncio
async def test_empty_set_deletes_everything(version_store):
    engine = SyncEngine(version_store, EPSILON)
    await engine.sync([make_listing('A')])

    result = await engine.sync([])

    assert result.changed
    assert result.counts.model_dump() == {'inserted': 0, 'updated': 0, 'deleted': 1, 'total': 0}
    assert version_store.rows[assert_single_active_version(version_store)] == {}


@pytest.mark.asyncio
async def test_empty_sync_on_empty_store_seeds_only(version_store):
    engine = SyncEngine(version_store, EPSILON)

    result = await engine.sync([])

    assert not result.changed
    assert result.counts.total == 0
    assert assert_single_active_version(version_store) == result.version_id


@pytest.mark.asyncio
async def test_duplicate_mints_are_last_write_wins(version_store):
    engine = SyncEngine(version_store, EPSILON)

    result = await engine.sync([
        make_listing('A', price=1),
        make_listing('A', price=5_000_000_000),
    ])

    assert result.counts.total == 1
    assert version_store.rows[result.version_id]['A']['price'] == 5_000_000_000


@pytest.mark.asyncio
async def test_mixed_changes_are_counted(version_store):
    engine = SyncEngine(version_store, EPSILON)
    await engine.sync([make_listing('A'), make_listing('B'), make_listing('C')])

    result = await engine.sync([
        make_listing('A'),
        make_listing('B', price=3_000_000_000),
        make_listing('D'),
        make_listing('E'),
    ])

    assert result.counts.model_dump() == {'inserted': 2, 'updated': 1, 'deleted': 1, 'total': 4}
    assert set(version_store.rows[result.version_id]) == {'A', 'B', 'D', 'E'}


@pytest.mark.asyncio
async def test_row_count_mismatch_discards_new_version(version_store):
    engine = SyncEngine(version_store, EPSILON)
    first = await engine.sync([make_listing('A')])
    version_store.rows_lost_on_copy = 1

    with pytest.raises(SnapshotIntegrityError):
        await engine.sync([make_listing('A'), make_listing('B')])

    assert assert_single_active_version(version_store) == first.version_id
    assert set(version_store.versions) == {first.version_id}
    assert set(version_store.rows[first.version_id]) == {'A'}


@pytest.mark.asyncio
async def test_activation_failure_keeps_previous_version(version_store):
    engine = SyncEngine(version_store, EPSILON)
    first = await engine.sync([make_listing('A')])
    version_store.fail_activation = True

    with pytest.raises(ActivationError):
        await engine.sync([make_listing('B')])

    assert assert_single_active_version(version_store) == first.version_id
    assert set(version_store.versions) == {first.version_id}


@pytest.mark.asyncio
async def test_cleanup_failure_does_not_fail_sync(version_store):
    engine = SyncEngine(version_store, EPSILON)
    first = await engine.sync([make_listing('A')])
    version_store.fail_cleanup = True

    result = await engine.sync([make_listing('B')])

    assert result.changed
    assert version_store.active_ids() == [result.version_id]
    # The superseded version lingers until the next successful cleanup
    assert first.version_id in version_store.versions

    version_store.fail_cleanup = False
    await engine.sync([make_listing('C')])
    assert first.version_id not in version_store.versions


@pytest.mark.asyncio
async def test_unchanged_sync_removes_stale_versions(version_store):
    engine = SyncEngine(version_store, EPSILON)
    first = await engine.sync([make_listing('A')])
    version_store.fail_cleanup = True
    second = await engine.sync([make_listing('B')])
    assert set(version_store.versions) == {first.version_id, second.version_id}

    version_store.fail_cleanup = False
    result = await engine.sync([make_listing('B')])

    assert not result.changed
    assert result.version_id == second.version_id
    assert set(version_store.versions) == {second.version_id}
    assert_single_active_version(version_store)


class FakeLease:
    def __init__(self, available=True):
        self.available = available
        self.entered = 0
        self.exited = 0

    @asynccontextmanager
    async def held(self):
        if not self.available:
            raise SyncLeaseError("held elsewhere")
        self.entered += 1
        try:
            yield self
        finally:
            self.exited += 1


@pytest.mark.asyncio
async def test_sync_runs_under_lease(version_store):
    lease = FakeLease()
    engine = SyncEngine(version_store, EPSILON, lease=lease)

    await engine.sync([make_listing('A')])

    assert (lease.entered, lease.exited) == (1, 1)


@pytest.mark.asyncio
async def test_sync_refuses_without_lease(version_store):
    engine = SyncEngine(version_store, EPSILON, lease=FakeLease(available=False))

    with pytest.raises(SyncLeaseError):
        await engine.sync([make_listing('A')])

    assert version_store.versions == {}
