"""Integration tests against a real database.

Set DRIFELLASCAPE_TEST_DB_URL to a disposable PostgreSQL or CockroachDB
database to run them; the schema is recreated for every test.
"""

import pytest
import pytest_asyncio

from catalog import CatalogManager
from listings import (
    ListingSearch, SyncEngine, SyncLease, SyncLeaseError, TraitEnricher,
    TraitFilter, VersionStore,
)
from tests.conftest import make_listing

# token mint -> traits
CATALOG = {
    'T1': {'Color': 'Red', 'Shape': 'Circle', 'Hat': 'None'},
    'T2': {'Color': 'Blue', 'Shape': 'Circle', 'Hat': 'Cap'},
    'T3': {'Color': 'Red', 'Shape': 'Square', 'Hat': 'Cap'},
    'T4': {'Color': 'Green', 'Shape': 'Square', 'Hat': 'None'},
}


@pytest_asyncio.fixture
async def catalog(db_pool):
    """Ingest the sample catalog and return name -> id lookups."""
    manager = CatalogManager(db_pool)
    for num, (mint, traits) in enumerate(CATALOG.items(), start=1):
        await manager.ingest_token({
            'token_mint_addr': mint,
            'token_num': num,
            'name': f'Drifella III #{num}',
            'image_url': f'https://img.example/{mint}.png',
            'traits': [{'type': t, 'value': v} for t, v in traits.items()],
        })

    async with db_pool.acquire() as conn:
        types = {r['name']: r['id'] for r in await conn.fetch('SELECT id, name FROM trait_types')}
        values = {r['value']: r['id'] for r in await conn.fetch('SELECT id, value FROM trait_values')}
    sentinel = await manager.resolve_sentinel_value_id('None')
    return {'types': types, 'values': values, 'sentinel': sentinel}


async def active_state(pool):
    async with pool.acquire() as conn:
        active = await conn.fetch('SELECT id FROM listing_versions WHERE active')
        versions_with_rows = await conn.fetch('SELECT DISTINCT version_id FROM listings_current')
        staged = await conn.fetchval('SELECT COUNT(*) FROM listing_staging')
    return [r['id'] for r in active], [r['version_id'] for r in versions_with_rows], staged


@pytest.mark.asyncio
async def test_sync_lifecycle(db_pool):
    engine = SyncEngine(VersionStore(db_pool), price_epsilon=10_000_000)

    first = await engine.sync([make_listing('A', price=1_000_000_000)])
    assert first.changed
    assert first.counts.inserted == 1

    same = await engine.sync([make_listing('A', price=1_009_999_999)])
    assert not same.changed
    assert same.version_id == first.version_id

    moved = await engine.sync([make_listing('A', price=1_010_000_000)])
    assert moved.changed
    assert moved.counts.updated == 1

    emptied = await engine.sync([])
    assert emptied.counts.deleted == 1
    assert emptied.counts.total == 0

    active, with_rows, staged = await active_state(db_pool)
    assert active == [emptied.version_id]
    assert with_rows == []
    assert staged == 0


@pytest.mark.asyncio
async def test_only_active_version_keeps_rows(db_pool):
    engine = SyncEngine(VersionStore(db_pool))
    await engine.sync([make_listing('A'), make_listing('B')])
    result = await engine.sync([make_listing('B'), make_listing('C')])

    active, with_rows, _ = await active_state(db_pool)
    assert active == [result.version_id]
    assert with_rows == [result.version_id]


@pytest.mark.asyncio
async def test_value_mode_requires_every_value(db_pool, catalog):
    values = catalog['values']
    search = ListingSearch(db_pool, catalog['sentinel'])

    result = await search.search_tokens(
        TraitFilter.from_value_ids([values['Red'], values['Circle']], catalog['sentinel'])
    )

    assert [row['token_mint_addr'] for row in result['items']] == ['T1']
    assert result['total'] == 1


@pytest.mark.asyncio
async def test_trait_mode_ors_within_and_ands_across(db_pool, catalog):
    types, values = catalog['types'], catalog['values']
    search = ListingSearch(db_pool, catalog['sentinel'])
    trait_filter = TraitFilter.from_groups([
        {'typeId': types['Color'], 'valueIds': [values['Red'], values['Blue']]},
        {'typeId': types['Shape'], 'valueIds': [values['Circle']]},
    ], catalog['sentinel'])

    result = await search.search_tokens(trait_filter, sort='token_asc')

    assert [row['token_mint_addr'] for row in result['items']] == ['T1', 'T2']


@pytest.mark.asyncio
async def test_sentinel_never_matches_or_enriches(db_pool, catalog):
    types, sentinel = catalog['types'], catalog['sentinel']
    search = ListingSearch(db_pool, sentinel)

    matched = await search.search_tokens(
        TraitFilter.from_groups([{'typeId': types['Hat'], 'valueIds': [sentinel]}], sentinel)
    )
    # The sentinel-only group is dropped, leaving an empty filter
    assert matched['total'] == len(CATALOG)

    unsanitized = TraitFilter.from_groups([{'typeId': types['Hat'], 'valueIds': [sentinel]}])
    assert (await search.search_tokens(unsanitized))['total'] == 0

    enriched = await TraitEnricher(db_pool, sentinel).attach_traits(matched['items'])
    t1 = next(row for row in enriched if row['token_mint_addr'] == 'T1')
    assert {trait['type_name'] for trait in t1['traits']} == {'Color', 'Shape'}
    assert all(trait['value_id'] != sentinel for row in enriched for trait in row['traits'])


@pytest.mark.asyncio
async def test_listing_search_filters_and_enriches(db_pool, catalog):
    values = catalog['values']
    await SyncEngine(VersionStore(db_pool)).sync([
        make_listing('T1', price=3_000_000_000),
        make_listing('T3', price=1_000_000_000),
        make_listing('UNKNOWN', price=2_000_000_000),
    ])
    search = ListingSearch(db_pool, catalog['sentinel'])
    enricher = TraitEnricher(db_pool, catalog['sentinel'])

    everything = await search.search_listings(sort='price_asc')
    red = await search.search_listings(TraitFilter.from_value_ids([values['Red']]), sort='price_desc')
    enriched = await enricher.attach_traits(everything['items'])

    assert [row['token_mint_addr'] for row in everything['items']] == ['T3', 'UNKNOWN', 'T1']
    assert [row['token_mint_addr'] for row in red['items']] == ['T1', 'T3']
    assert enriched[1]['traits'] == []
    assert enriched[0]['token_num'] == 3
    assert enriched[0]['token_name'] == 'Drifella III #3'
    assert enriched[1]['token_name'] is None


@pytest.mark.asyncio
async def test_token_search_returns_token_name(db_pool, catalog):
    result = await ListingSearch(db_pool, catalog['sentinel']).search_tokens(limit=2)

    assert [row['token_name'] for row in result['items']] == ['Drifella III #1', 'Drifella III #2']
    assert 'name' not in result['items'][0]


@pytest.mark.asyncio
async def test_trait_type_groups_are_applied(db_pool, catalog):
    manager = CatalogManager(db_pool)
    types = catalog['types']

    applied = await manager.update_trait_type_groups([
        {'type_id': types['Color'], 'type_name': 'Colour', 'group': 'body', 'category': 'visual'},
        {'type_id': types['Hat'], 'type_name': 'Hat', 'group': 'head', 'category': 'accessory'},
    ])
    listed = {row['id']: row for row in await manager.list_trait_types()}

    assert applied == 2
    assert listed[types['Color']]['name'] == 'Colour'
    assert listed[types['Color']]['spatial_group'] == 'body'
    assert listed[types['Hat']]['purpose_class'] == 'accessory'
    assert listed[types['Shape']]['spatial_group'] is None


@pytest.mark.asyncio
async def test_ingest_tokens_is_idempotent(db_pool, catalog):
    manager = CatalogManager(db_pool)
    token = {
        'token_mint_addr': 'T1',
        'token_num': 1,
        'name': 'Drifella III #1',
        'image_url': 'https://img.example/T1.png',
        'traits': [{'type': 'Color', 'value': 'Blue'}],
    }

    assert await manager.ingest_tokens([token, token]) == 2

    async with db_pool.acquire() as conn:
        tokens = await conn.fetchval('SELECT COUNT(*) FROM tokens')
        color = await conn.fetchval(
            '''
            SELECT v.value FROM token_traits tt
            JOIN tokens t ON t.id = tt.token_id
            JOIN trait_values v ON v.id = tt.value_id
            WHERE t.token_mint_addr = 'T1' AND tt.type_id = $1
            ''',
            catalog['types']['Color']
        )
    assert tokens == len(CATALOG)
    assert color == 'Blue'


@pytest.mark.asyncio
async def test_anchor_centers_page(db_pool):
    listings = [make_listing(f'M{i:03d}', price=1_000_000_000 + i * 100_000_000) for i in range(101)]
    await SyncEngine(VersionStore(db_pool)).sync(listings)
    search = ListingSearch(db_pool)

    middle = await search.search_listings(limit=10, offset=999, anchor_mint='M050')
    start = await search.search_listings(limit=10, anchor_mint='M002')
    end = await search.search_listings(limit=10, anchor_mint='M099')
    missing = await search.search_listings(limit=10, offset=30, anchor_mint='NOPE')

    assert middle['used_offset'] == 45
    assert 'M050' in [row['token_mint_addr'] for row in middle['items']]
    assert start['used_offset'] == 0
    assert end['used_offset'] == 91
    assert missing['used_offset'] == 0


@pytest.mark.asyncio
async def test_anchor_ties_break_on_mint(db_pool):
    await SyncEngine(VersionStore(db_pool)).sync(
        [make_listing(f'M{i}', price=1_000_000_000) for i in range(6)]
    )
    search = ListingSearch(db_pool)

    asc = await search.search_listings(limit=2, anchor_mint='M4')
    desc = await search.search_listings(sort='price_desc', limit=2, anchor_mint='M4')

    assert asc['used_offset'] == 3
    assert desc['used_offset'] == 0


@pytest.mark.asyncio
async def test_lease_is_exclusive(db_pool):
    first = SyncLease(db_pool, ttl=60)
    second = SyncLease(db_pool, ttl=60)

    async with first.held():
        with pytest.raises(SyncLeaseError):
            await second.acquire()

    await second.acquire()
    await second.release()
