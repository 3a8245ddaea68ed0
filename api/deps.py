"""Shared request handling for the API routers.

Search bodies are parsed leniently: malformed fields fall back to their
defaults and invalid filter entries are dropped, so only an unparseable
body is a client error.
"""

import json
import logging
import math
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from pydantic import BaseModel

from listings import ListingSearch, ListingsCache, TraitEnricher

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100


class Services:
    """Components the routers need, stored on ``app.state.services``."""

    def __init__(self, settings: Dict[str, Any], search: ListingSearch,
                 enricher: TraitEnricher, cache: ListingsCache,
                 sentinel_value_id: Optional[int] = None):
        self.settings = settings
        self.search = search
        self.enricher = enricher
        self.cache = cache
        self.sentinel_value_id = sentinel_value_id


def get_services(request: Request) -> Services:
    services = request.app.state.services
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting")
    return services


def to_number(value: Any) -> Optional[int]:
    """Coerce a query or JSON value to an int, or None if it is not numeric."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return None


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def clamp_offset(value: Any, max_offset: int) -> int:
    return clamp(to_number(value) or 0, 0, max_offset)


def clamp_limit(value: Any, max_limit: int) -> int:
    return clamp(to_number(value) or DEFAULT_LIMIT, 1, max_limit)


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Return the JSON object body; an empty or non-object body reads as ``{}``.

    Raises:
        HTTPException: 400 if the body is not valid JSON
    """
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON")
    return body if isinstance(body, dict) else {}


class SearchRequest(BaseModel):
    """Normalized search body."""
    mode: str = 'value'
    value_ids: Any = None
    traits: Any = None
    sort: Optional[str] = None
    offset: int = 0
    limit: int = DEFAULT_LIMIT
    include_traits: bool = True
    anchor_mint: Optional[str] = None

    @classmethod
    def from_body(cls, body: Dict[str, Any], max_limit: int, max_offset: int) -> 'SearchRequest':
        mode = body.get('mode')
        sort = body.get('sort')
        anchor_mint = body.get('anchorMint')
        if not isinstance(anchor_mint, str) or not anchor_mint:
            anchor_mint = None

        return cls(
            mode=mode.lower() if isinstance(mode, str) else 'value',
            value_ids=body.get('valueIds'),
            traits=body.get('traits'),
            sort=sort.lower() if isinstance(sort, str) else None,
            # anchorMint overrides any client offset
            offset=0 if anchor_mint else clamp_offset(body.get('offset'), max_offset),
            limit=clamp_limit(body.get('limit'), max_limit),
            include_traits=body.get('includeTraits') is not False,
            anchor_mint=anchor_mint,
        )


def search_response(result: Dict[str, Any], items: List[Dict[str, Any]], limit: int,
                    sort: str, anchor_mint: Optional[str], debug: bool) -> Dict[str, Any]:
    response = {
        'versionId': result['version_id'],
        'total': result['total'],
        'offset': result['used_offset'],
        'limit': limit,
        'sort': sort,
        'items': items,
    }
    if debug:
        response['anchorDebug'] = {
            'anchorMint': anchor_mint,
            'effectiveOffset': result['used_offset'],
            'pageContainsAnchor': bool(anchor_mint) and any(
                item.get('token_mint_addr') == anchor_mint for item in items
            ),
        }
    return response
