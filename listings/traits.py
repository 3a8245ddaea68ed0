"""Attach trait lists to search results."""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from .filters import SqlParams

logger = logging.getLogger(__name__)


class TraitEnricher:
    """Batch-load traits for a page of rows carrying ``token_id``."""

    def __init__(self, pool=None, sentinel_value_id: Optional[int] = None):
        self.pool = pool
        self.sentinel_value_id = sentinel_value_id

    async def fetch_traits(self, token_ids: List[int]) -> Dict[int, List[Dict[str, Any]]]:
        """Return non-sentinel traits per token id, ordered by type id.

        Args:
            token_ids: Distinct token ids to look up

        Returns:
            Mapping of token id to its trait dicts
        """
        traits: Dict[int, List[Dict[str, Any]]] = defaultdict(list)
        if not token_ids:
            return traits

        params = SqlParams()
        conditions = [f'tt.token_id = ANY({params.add(list(token_ids))}::INT8[])']
        if self.sentinel_value_id is not None:
            conditions.append(f'tt.value_id <> {params.add(self.sentinel_value_id)}')

        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f'''
                SELECT
                    tt.token_id,
                    tt.type_id,
                    ty.name AS type_name,
                    ty.spatial_group,
                    ty.purpose_class,
                    tt.value_id,
                    tv.value
                FROM token_traits tt
                JOIN trait_types ty ON ty.id = tt.type_id
                JOIN trait_values tv ON tv.id = tt.value_id
                WHERE {' AND '.join(conditions)}
                ORDER BY tt.token_id, tt.type_id
                ''',
                *params.values
            )

        for row in rows:
            trait = dict(row)
            traits[trait.pop('token_id')].append(trait)
        return traits

    async def attach_traits(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Return copies of ``rows`` with a ``traits`` list on each.

        Rows with no token id or no non-sentinel traits get an empty list.
        """
        token_ids = sorted({
            row['token_id'] for row in rows
            if row.get('token_id') is not None
        })
        traits = await self.fetch_traits(token_ids)
        return [
            {**row, 'traits': list(traits.get(row.get('token_id'), []))}
            for row in rows
        ]
