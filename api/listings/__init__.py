"""Listings API endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from listings import TraitFilter, normalize_listing_sort
from ..deps import (
    Services, get_services, read_json_body, SearchRequest, search_response,
    clamp_offset, clamp_limit,
)

router = APIRouter(
    prefix="/listings",
    tags=["Listings"]
)


@router.get("")
async def list_listings(
    sort: Optional[str] = Query(None),
    offset: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    services: Services = Depends(get_services)
):
    """Unfiltered listings feed served from the snapshot cache."""
    settings = services.settings
    sort = normalize_listing_sort(sort.lower() if sort else None)
    limit = clamp_limit(limit, settings['listings_max_limit'])
    page = await services.cache.page(
        sort,
        clamp_offset(offset, settings['max_offset']),
        limit
    )
    return {
        'versionId': page['version_id'],
        'total': page['total'],
        'offset': page['used_offset'],
        'limit': limit,
        'sort': page['sort'],
        'items': page['items'],
    }


@router.post("/search")
async def search_listings(request: Request, services: Services = Depends(get_services)):
    """Search the active listing version by trait, with optional anchor paging.

    Body: ``{mode, valueIds?, traits?, sort, offset?, limit, includeTraits?, anchorMint?}``
    """
    settings = services.settings
    body = await read_json_body(request)
    params = SearchRequest.from_body(
        body,
        max_limit=settings['listings_max_limit'],
        max_offset=settings['max_offset']
    )
    trait_filter = TraitFilter.from_request(
        params.mode, params.value_ids, params.traits, services.sentinel_value_id
    )
    sort = normalize_listing_sort(params.sort)

    result = await services.search.search_listings(
        trait_filter,
        sort=sort,
        offset=params.offset,
        limit=params.limit,
        anchor_mint=params.anchor_mint
    )
    items = result['items']
    if params.include_traits:
        items = await services.enricher.attach_traits(items)

    return search_response(result, items, params.limit, sort,
                           params.anchor_mint, settings['debug'])
