"""Trait-filtered search over the active listing version and the token catalog.

Results are ordered by a total order: the sort key (price or token_num)
followed by the mint address in the same direction. Pagination is either
an explicit offset or an anchor mint, in which case the page is centered
on the anchor's rank within the filtered, sorted set.

Count, rank and page queries of one search share a single read-only
transaction and a single resolved active version id.
"""

import logging
from typing import Any, Dict, List, Optional

from database import retry_on_conflict
from .exceptions import NoActiveVersionError
from .filters import SqlParams, TraitFilter

logger = logging.getLogger(__name__)

# sort name -> (column, direction)
LISTING_SORTS = {
    'price_asc': ('price', 'ASC'),
    'price_desc': ('price', 'DESC'),
}
TOKEN_SORTS = {
    'token_asc': ('token_num', 'ASC'),
    'token_desc': ('token_num', 'DESC'),
}
DEFAULT_LISTING_SORT = 'price_asc'
DEFAULT_TOKEN_SORT = 'token_asc'

LISTINGS_FROM = '''
    FROM listings_current l
    LEFT JOIN tokens t ON t.token_mint_addr = l.token_mint_addr
'''
LISTING_FIELDS = '''
    l.token_mint_addr,
    COALESCE(l.token_num, t.token_num) AS token_num,
    l.price,
    l.seller,
    l.image_url,
    l.listing_source,
    t.id AS token_id,
    t.name AS token_name
'''
TOKEN_FIELDS = '''
    t.id AS token_id,
    t.token_mint_addr,
    t.token_num,
    t.name AS token_name,
    t.image_url
'''


def normalize_listing_sort(sort: Any) -> str:
    return sort if sort in LISTING_SORTS else DEFAULT_LISTING_SORT


def normalize_token_sort(sort: Any) -> str:
    return sort if sort in TOKEN_SORTS else DEFAULT_TOKEN_SORT


def center_offset(total: int, rank: int, limit: int) -> int:
    """Offset of a ``limit``-sized page centered on ``rank``, kept in range.

    Example: 101 rows, limit 10: rank 50 -> 45, rank 2 -> 0, rank 99 -> 91.
    """
    return max(0, min(max(0, total - limit), rank - limit // 2))


def sort_listings(rows: List[Dict[str, Any]], sort: str) -> List[Dict[str, Any]]:
    """Sort listing rows in memory under the same total order as the SQL queries."""
    sort = normalize_listing_sort(sort)
    _, direction = LISTING_SORTS[sort]
    return sorted(
        rows,
        key=lambda row: (row['price'], row['token_mint_addr']),
        reverse=direction == 'DESC'
    )


def _before(key_sql: str, mint_sql: str, direction: str, params: SqlParams,
            anchor_key: Any, anchor_mint: str) -> str:
    """Condition for rows ordered strictly before the anchor."""
    op = '<' if direction == 'ASC' else '>'
    key = params.add(anchor_key)
    mint = params.add(anchor_mint)
    return f'({key_sql} {op} {key} OR ({key_sql} = {key} AND {mint_sql} {op} {mint}))'


def _where(conditions: List[str]) -> str:
    return ' AND '.join(conditions) if conditions else 'TRUE'


class ListingSearch:
    """Query engine for listings and tokens."""

    def __init__(self, pool=None, sentinel_value_id: Optional[int] = None):
        """Initialize the query engine.

        Args:
            pool: asyncpg connection pool
            sentinel_value_id: Trait value id meaning "none", excluded from filters
        """
        self.pool = pool
        self.sentinel_value_id = sentinel_value_id

    @retry_on_conflict
    async def search_listings(
        self,
        trait_filter: Optional[TraitFilter] = None,
        sort: str = DEFAULT_LISTING_SORT,
        offset: int = 0,
        limit: int = 100,
        anchor_mint: Optional[str] = None
    ) -> Dict[str, Any]:
        """Search the active listing version.

        Args:
            trait_filter: Filter to apply, None matches everything
            sort: ``price_asc`` or ``price_desc``
            offset: Explicit offset, ignored when ``anchor_mint`` is given
            limit: Page size
            anchor_mint: Mint to center the page on

        Returns:
            Dict with version_id, total, used_offset and items

        Raises:
            NoActiveVersionError: If no version has been activated yet
        """
        trait_filter = trait_filter or TraitFilter()
        sort = normalize_listing_sort(sort)
        column, direction = LISTING_SORTS[sort]
        key_sql = f'l.{column}'

        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation='serializable', readonly=True):
                version_id = await conn.fetchval(
                    'SELECT id FROM listing_versions WHERE active LIMIT 1'
                )
                if version_id is None:
                    raise NoActiveVersionError("No active listing version")

                params = SqlParams()
                conditions = [f'l.version_id = {params.add(version_id)}']
                conditions += trait_filter.conditions('t.id', params, self.sentinel_value_id)
                where = _where(conditions)

                total = await conn.fetchval(
                    f'SELECT COUNT(*) {LISTINGS_FROM} WHERE {where}',
                    *params.values
                )

                used_offset = offset
                if anchor_mint is not None:
                    used_offset = 0
                    anchor_key = await conn.fetchval(
                        f'''
                        SELECT {column} FROM listings_current
                        WHERE version_id = $1 AND token_mint_addr = $2
                        ''',
                        version_id,
                        anchor_mint
                    )
                    if anchor_key is not None:
                        rank_params = params.copy()
                        before = _before(key_sql, 'l.token_mint_addr', direction,
                                         rank_params, anchor_key, anchor_mint)
                        rank = await conn.fetchval(
                            f'SELECT COUNT(*) {LISTINGS_FROM} WHERE {where} AND {before}',
                            *rank_params.values
                        )
                        used_offset = center_offset(total, rank, limit)

                page_params = params.copy()
                limit_sql = page_params.add(limit)
                offset_sql = page_params.add(used_offset)
                rows = await conn.fetch(
                    f'''
                    SELECT {LISTING_FIELDS}
                    {LISTINGS_FROM}
                    WHERE {where}
                    ORDER BY {key_sql} {direction}, l.token_mint_addr {direction}
                    LIMIT {limit_sql} OFFSET {offset_sql}
                    ''',
                    *page_params.values
                )

        logger.debug(
            f"Listing search on version {version_id}: {total} matches, "
            f"offset {used_offset}, {len(rows)} rows"
        )
        return {
            'version_id': version_id,
            'total': total,
            'used_offset': used_offset,
            'items': [dict(row) for row in rows],
        }

    @retry_on_conflict
    async def search_tokens(
        self,
        trait_filter: Optional[TraitFilter] = None,
        sort: str = DEFAULT_TOKEN_SORT,
        offset: int = 0,
        limit: int = 100,
        anchor_mint: Optional[str] = None
    ) -> Dict[str, Any]:
        """Search the static token catalog.

        Same pagination rules as ``search_listings``. Tokens without a
        token_num sort last in both directions and cannot be anchors.

        Returns:
            Dict with version_id (always None), total, used_offset and items
        """
        trait_filter = trait_filter or TraitFilter()
        sort = normalize_token_sort(sort)
        column, direction = TOKEN_SORTS[sort]
        key_sql = f't.{column}'

        async with self.pool.acquire() as conn:
            async with conn.transaction(isolation='serializable', readonly=True):
                params = SqlParams()
                where = _where(trait_filter.conditions('t.id', params, self.sentinel_value_id))

                total = await conn.fetchval(
                    f'SELECT COUNT(*) FROM tokens t WHERE {where}',
                    *params.values
                )

                used_offset = offset
                if anchor_mint is not None:
                    used_offset = 0
                    anchor_key = await conn.fetchval(
                        f'SELECT {column} FROM tokens WHERE token_mint_addr = $1',
                        anchor_mint
                    )
                    if anchor_key is not None:
                        rank_params = params.copy()
                        before = _before(key_sql, 't.token_mint_addr', direction,
                                         rank_params, anchor_key, anchor_mint)
                        rank = await conn.fetchval(
                            f'SELECT COUNT(*) FROM tokens t WHERE {where} AND {before}',
                            *rank_params.values
                        )
                        used_offset = center_offset(total, rank, limit)

                page_params = params.copy()
                limit_sql = page_params.add(limit)
                offset_sql = page_params.add(used_offset)
                rows = await conn.fetch(
                    f'''
                    SELECT {TOKEN_FIELDS}
                    FROM tokens t
                    WHERE {where}
                    ORDER BY {key_sql} {direction} NULLS LAST, t.token_mint_addr {direction}
                    LIMIT {limit_sql} OFFSET {offset_sql}
                    ''',
                    *page_params.values
                )

        return {
            'version_id': None,
            'total': total,
            'used_offset': used_offset,
            'items': [dict(row) for row in rows],
        }
