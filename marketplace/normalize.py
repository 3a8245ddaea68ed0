"""Normalization of raw marketplace listing records."""
import re
from typing import Any, Optional

from listings.models import NormalizedListing

TOKEN_NUM_PATTERN = re.compile(r'#(\d+)')


def parse_token_num(name: Any) -> Optional[int]:
    """Extract the token number from a name like ``Drifella III #780``."""
    if not isinstance(name, str):
        return None
    match = TOKEN_NUM_PATTERN.search(name)
    return int(match.group(1)) if match else None


def _get(item: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(item, dict):
            return None
        item = item.get(key)
    return item


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def normalize_item(item: Any) -> Optional[NormalizedListing]:
    """Validate one marketplace record.

    Returns:
        NormalizedListing, or None if a mandatory field is missing or the
        price is not a non-negative integer string
    """
    mint = _text(_get(item, 'tokenMint'))
    seller = _text(_get(item, 'seller'))
    raw_price = _text(_get(item, 'priceInfo', 'solPrice', 'rawAmount'))
    image_url = _text(_get(item, 'extra', 'img'))
    listing_source = _text(_get(item, 'listingSource'))

    if not (mint and seller and raw_price and image_url and listing_source):
        return None

    raw_price = raw_price.strip()
    if not (raw_price.isascii() and raw_price.isdigit()):
        return None

    return NormalizedListing(
        token_mint_addr=mint,
        token_num=parse_token_num(_get(item, 'token', 'name')),
        price=int(raw_price),
        seller=seller,
        image_url=image_url,
        listing_source=listing_source,
    )
