"""Tests for the HTTP layer with in-memory services."""

import pytest
from fastapi.testclient import TestClient

from api import create_app
from api.deps import Services, SearchRequest
from listings import ListingsCache, NoActiveVersionError, SyncEngine
from tests.conftest import FakeVersionStore, make_listing, make_settings

SENTINEL = 217


class FakeSearch:
    def __init__(self, items=None, used_offset=0, fail=False):
        self.items = items or []
        self.used_offset = used_offset
        self.fail = fail
        self.calls = []

    async def search_listings(self, trait_filter, sort, offset, limit, anchor_mint=None):
        self.calls.append(('listings', trait_filter, sort, offset, limit, anchor_mint))
        if self.fail:
            raise NoActiveVersionError("No active listing version")
        return {'version_id': 7, 'total': len(self.items), 'used_offset': self.used_offset,
                'items': list(self.items)}

    async def search_tokens(self, trait_filter, sort, offset, limit, anchor_mint=None):
        self.calls.append(('tokens', trait_filter, sort, offset, limit, anchor_mint))
        return {'version_id': None, 'total': len(self.items), 'used_offset': self.used_offset,
                'items': list(self.items)}


class FakeEnricher:
    def __init__(self):
        self.calls = 0

    async def attach_traits(self, rows):
        self.calls += 1
        return [{**row, 'traits': []} for row in rows]


def build_client(search=None, store=None, **settings):
    store = store or FakeVersionStore()
    services = Services(
        settings=make_settings(**settings),
        search=search or FakeSearch(),
        enricher=FakeEnricher(),
        cache=ListingsCache(store),
        sentinel_value_id=SENTINEL,
    )
    return TestClient(create_app(services)), services


def test_search_request_defaults():
    params = SearchRequest.from_body({}, max_limit=200, max_offset=1_000_000)

    assert params.mode == 'value'
    assert params.offset == 0
    assert params.limit == 100
    assert params.include_traits is True
    assert params.anchor_mint is None


def test_search_request_clamps_and_anchor_overrides_offset():
    params = SearchRequest.from_body(
        {'limit': 5000, 'offset': -3, 'mode': 'TRAIT', 'sort': 'PRICE_DESC'},
        max_limit=200, max_offset=1_000_000
    )
    anchored = SearchRequest.from_body(
        {'offset': 40, 'anchorMint': 'Mint9', 'limit': '0'},
        max_limit=200, max_offset=1_000_000
    )

    assert (params.limit, params.offset, params.mode, params.sort) == (200, 0, 'trait', 'price_desc')
    assert anchored.offset == 0
    assert anchored.limit == 100
    assert anchored.anchor_mint == 'Mint9'


def test_listings_search_passes_sanitized_filter():
    search = FakeSearch(items=[{'token_mint_addr': 'A', 'token_id': 1, 'price': 5}])
    client, services = build_client(search)

    response = client.post('/listings/search', json={
        'mode': 'trait',
        'traits': [{'typeId': 1, 'valueIds': [10, SENTINEL]}, {'typeId': 2, 'valueIds': []}],
        'sort': 'price_desc',
        'offset': 20,
        'limit': 10,
    })

    assert response.status_code == 200
    body = response.json()
    assert body['versionId'] == 7
    assert body['offset'] == 0
    assert body['limit'] == 10
    assert body['sort'] == 'price_desc'
    assert body['items'][0]['traits'] == []
    assert 'anchorDebug' not in body

    _, trait_filter, sort, offset, limit, anchor = search.calls[0]
    assert [(c.type_id, c.value_ids) for c in trait_filter.clauses] == [(1, [10])]
    assert (sort, offset, limit, anchor) == ('price_desc', 20, 10, None)


def test_listings_search_without_traits():
    client, services = build_client(FakeSearch(items=[{'token_mint_addr': 'A'}]))

    response = client.post('/listings/search', json={'includeTraits': False})

    assert response.status_code == 200
    assert 'traits' not in response.json()['items'][0]
    assert services.enricher.calls == 0


def test_listings_search_debug_reports_anchor():
    search = FakeSearch(items=[{'token_mint_addr': 'A'}, {'token_mint_addr': 'B'}], used_offset=45)
    client, _ = build_client(search, debug='true')

    response = client.post('/listings/search', json={'anchorMint': 'B', 'offset': 3})

    body = response.json()
    assert body['offset'] == 45
    assert body['anchorDebug'] == {
        'anchorMint': 'B',
        'effectiveOffset': 45,
        'pageContainsAnchor': True,
    }
    assert search.calls[0][3] == 0


def test_invalid_json_is_rejected():
    client, _ = build_client()

    response = client.post(
        '/listings/search',
        content='{not json',
        headers={'content-type': 'application/json'}
    )

    assert response.status_code == 400
    assert response.json() == {'detail': 'Invalid JSON'}


def test_empty_body_matches_everything():
    search = FakeSearch()
    client, _ = build_client(search)

    response = client.post('/listings/search')

    assert response.status_code == 200
    assert search.calls[0][1].is_empty


def test_missing_active_version_is_a_server_error():
    client, _ = build_client(FakeSearch(fail=True))

    response = client.post('/listings/search', json={})

    assert response.status_code == 500
    assert 'No active listing version' in response.json()['detail']


def test_tokens_search_uses_token_limits_and_sort():
    search = FakeSearch(items=[{'token_mint_addr': 'A', 'token_id': 3}])
    client, _ = build_client(search)

    response = client.post('/tokens/search', json={
        'valueIds': [4, 5],
        'sort': 'price_asc',
        'limit': 1000,
    })

    body = response.json()
    assert response.status_code == 200
    assert body['versionId'] is None
    assert body['limit'] == 100
    assert body['sort'] == 'token_asc'
    kind, trait_filter, sort, offset, limit, anchor = search.calls[0]
    assert kind == 'tokens'
    assert [c.value_ids for c in trait_filter.clauses] == [[4], [5]]


@pytest.mark.asyncio
async def test_listings_feed_from_cache():
    store = FakeVersionStore()
    result = await SyncEngine(store).sync([
        make_listing('A', price=3_000_000_000),
        make_listing('B', price=1_000_000_000),
    ])
    client, _ = build_client(store=store)

    response = client.get('/listings', params={'sort': 'price_desc', 'limit': '1', 'offset': 'x'})

    assert response.status_code == 200
    body = response.json()
    assert body['versionId'] == result.version_id
    assert body['total'] == 2
    assert body['offset'] == 0
    assert body['limit'] == 1
    assert [item['token_mint_addr'] for item in body['items']] == ['A']


def test_health():
    client, _ = build_client()

    response = client.get('/health')

    assert response.json() == {'status': 'ok', 'versionId': None}
