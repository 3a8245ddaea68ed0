"""Catalog module for the static token and trait taxonomy.

The catalog is version independent. Ingestion writes tokens, trait types,
trait values and at most one value per (token, trait type).
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Base exception for catalog operations."""
    pass


class CatalogManager:
    """Manager class for tokens and their trait assignments."""

    def __init__(self, pool=None):
        """Initialize the catalog manager.

        Args:
            pool: asyncpg connection pool
        """
        self.pool = pool

    async def upsert_token(self, token_mint_addr: str, image_url: str,
                           token_num: Optional[int] = None,
                           name: Optional[str] = None, conn=None) -> int:
        """Insert or update a token by mint address and return its id."""
        query = '''
            INSERT INTO tokens (token_mint_addr, token_num, name, image_url)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (token_mint_addr) DO UPDATE SET
                token_num = excluded.token_num,
                name = excluded.name,
                image_url = excluded.image_url
            RETURNING id
        '''
        if conn is not None:
            return await conn.fetchval(query, token_mint_addr, token_num, name, image_url)
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, token_mint_addr, token_num, name, image_url)

    async def ensure_trait_type(self, name: str, conn=None) -> int:
        query = '''
            INSERT INTO trait_types (name) VALUES ($1)
            ON CONFLICT (name) DO UPDATE SET name = excluded.name
            RETURNING id
        '''
        if conn is not None:
            return await conn.fetchval(query, name)
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, name)

    async def ensure_trait_value(self, value: str, conn=None) -> int:
        query = '''
            INSERT INTO trait_values (value) VALUES ($1)
            ON CONFLICT (value) DO UPDATE SET value = excluded.value
            RETURNING id
        '''
        if conn is not None:
            return await conn.fetchval(query, value)
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, value)

    async def assign_trait(self, token_id: int, type_id: int, value_id: int, conn=None) -> None:
        """Set the value of one trait type for a token, replacing any previous value."""
        query = '''
            INSERT INTO token_traits (token_id, type_id, value_id)
            VALUES ($1, $2, $3)
            ON CONFLICT (token_id, type_id) DO UPDATE SET value_id = excluded.value_id
        '''
        if conn is not None:
            await conn.execute(query, token_id, type_id, value_id)
            return
        async with self.pool.acquire() as conn:
            await conn.execute(query, token_id, type_id, value_id)

    async def ingest_token(self, token: Dict[str, Any]) -> int:
        """Upsert a token and all of its traits in one transaction.

        Args:
            token: Dict with token_mint_addr, image_url, optional token_num
                   and name, and ``traits`` as a list of {type, value}

        Returns:
            The token id

        Raises:
            CatalogError: If the mint address or image URL is missing
        """
        if not token.get('token_mint_addr') or not token.get('image_url'):
            raise CatalogError(f"Token needs token_mint_addr and image_url: {token!r}")

        traits = [
            (str(trait['type']).strip(), str(trait['value']).strip())
            for trait in token.get('traits') or []
            if isinstance(trait.get('type'), str) and isinstance(trait.get('value'), str)
        ]

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                token_id = await self.upsert_token(
                    token['token_mint_addr'],
                    token['image_url'],
                    token_num=token.get('token_num'),
                    name=token.get('name'),
                    conn=conn
                )
                for type_name, value in traits:
                    type_id = await self.ensure_trait_type(type_name, conn=conn)
                    value_id = await self.ensure_trait_value(value, conn=conn)
                    await self.assign_trait(token_id, type_id, value_id, conn=conn)
        return token_id

    async def ingest_tokens(self, tokens: Iterable[Dict[str, Any]]) -> int:
        """Ingest many tokens; returns how many were written."""
        count = 0
        for token in tokens:
            await self.ingest_token(token)
            count += 1
        logger.info(f"Ingested {count} tokens")
        return count

    async def update_trait_type_groups(self, rows: Iterable[Dict[str, Any]]) -> int:
        """Apply names, spatial groups and purpose classes to trait types by id.

        Args:
            rows: Dicts with type_id, type_name, group and category

        Returns:
            Number of rows applied
        """
        rows = list(rows)
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(
                    '''
                    UPDATE trait_types
                    SET name = $1, spatial_group = $2, purpose_class = $3
                    WHERE id = $4
                    ''',
                    [
                        (row['type_name'], row.get('group'), row.get('category'), row['type_id'])
                        for row in rows
                    ]
                )
        logger.info(f"Updated {len(rows)} trait types")
        return len(rows)

    async def list_trait_types(self) -> List[Dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                'SELECT id, name, spatial_group, purpose_class FROM trait_types ORDER BY id'
            )
        return [dict(row) for row in rows]

    async def resolve_sentinel_value_id(self, value: str = 'None') -> Optional[int]:
        """Look up the id of the trait value meaning "absent".

        Returns:
            The value id, or None if the catalog has no such value
        """
        async with self.pool.acquire() as conn:
            value_id = await conn.fetchval(
                'SELECT id FROM trait_values WHERE value = $1',
                value
            )
        if value_id is None:
            logger.warning(f"Sentinel trait value {value!r} not found in catalog")
        else:
            logger.info(f"Sentinel trait value {value!r} has id {value_id}")
        return value_id


async def resolve_sentinel(pool, settings: Dict[str, Any]) -> Optional[int]:
    """Sentinel id from settings if set explicitly, otherwise from the catalog."""
    if settings.get('sentinel_value_id') is not None:
        return settings['sentinel_value_id']
    return await CatalogManager(pool).resolve_sentinel_value_id(settings['sentinel_trait_value'])


__all__ = ['CatalogManager', 'CatalogError', 'resolve_sentinel']
