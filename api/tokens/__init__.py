"""Token catalog API endpoints."""

from fastapi import APIRouter, Depends, Request

from listings import TraitFilter, normalize_token_sort
from ..deps import Services, get_services, read_json_body, SearchRequest, search_response

router = APIRouter(
    prefix="/tokens",
    tags=["Tokens"]
)


@router.post("/search")
async def search_tokens(request: Request, services: Services = Depends(get_services)):
    """Search the static token catalog; same body as ``/listings/search``."""
    settings = services.settings
    body = await read_json_body(request)
    params = SearchRequest.from_body(
        body,
        max_limit=settings['tokens_max_limit'],
        max_offset=settings['max_offset']
    )
    trait_filter = TraitFilter.from_request(
        params.mode, params.value_ids, params.traits, services.sentinel_value_id
    )
    sort = normalize_token_sort(params.sort)

    result = await services.search.search_tokens(
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
