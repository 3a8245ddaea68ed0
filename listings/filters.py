"""Trait filter representation and SQL rendering.

A filter is an AND of clauses. Each clause is an OR over trait value ids,
optionally restricted to one trait type:

* value mode: one clause per value id, no type restriction, so a token
  must carry every listed value
* trait mode: one clause per ``{typeId, valueIds}`` group, so a token must
  carry one of the group's values for that type, for every group

Clauses render to ``EXISTS`` sub-queries over ``token_traits`` with all
values bound as asyncpg parameters. The sentinel ("none") value id is
removed during sanitization and excluded again inside every sub-query.
"""

import math
from typing import Any, List, Optional

from pydantic import BaseModel


class SqlParams:
    """Collects positional parameters and hands out ``$n`` placeholders."""

    def __init__(self, values: Optional[List[Any]] = None):
        self.values: List[Any] = list(values or [])

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f'${len(self.values)}'

    def copy(self) -> 'SqlParams':
        return SqlParams(self.values)


def parse_id(value: Any) -> Optional[int]:
    """Coerce a JSON value to an integer id, or None if it is not one.

    Booleans, non-finite and fractional numbers are rejected. Numeric
    strings are accepted.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return int(value)
        return None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def sanitize_ids(raw: Any, sentinel_value_id: Optional[int] = None) -> List[int]:
    """Drop invalid and sentinel ids, then dedupe keeping first-seen order."""
    if not isinstance(raw, (list, tuple)):
        return []
    ids: List[int] = []
    seen = set()
    for item in raw:
        value_id = parse_id(item)
        if value_id is None or value_id == sentinel_value_id or value_id in seen:
            continue
        seen.add(value_id)
        ids.append(value_id)
    return ids


def sanitize_groups(raw: Any, sentinel_value_id: Optional[int] = None) -> List['TraitClause']:
    """Turn ``[{typeId, valueIds}]`` into clauses, dropping malformed or empty groups."""
    if not isinstance(raw, (list, tuple)):
        return []
    clauses = []
    for group in raw:
        if not isinstance(group, dict):
            continue
        type_id = parse_id(group.get('typeId'))
        value_ids = sanitize_ids(group.get('valueIds'), sentinel_value_id)
        if type_id is None or not value_ids:
            continue
        clauses.append(TraitClause(type_id=type_id, value_ids=value_ids))
    return clauses


class TraitClause(BaseModel):
    """Token has one of ``value_ids`` (for ``type_id`` when given)."""
    type_id: Optional[int] = None
    value_ids: List[int]

    def render(self, token_id_sql: str, params: SqlParams,
               sentinel_value_id: Optional[int] = None) -> str:
        conditions = [f'tt.token_id = {token_id_sql}']
        if self.type_id is not None:
            conditions.append(f'tt.type_id = {params.add(self.type_id)}')
        if len(self.value_ids) == 1:
            conditions.append(f'tt.value_id = {params.add(self.value_ids[0])}')
        else:
            conditions.append(f'tt.value_id = ANY({params.add(list(self.value_ids))}::INT8[])')
        if sentinel_value_id is not None:
            conditions.append(f'tt.value_id <> {params.add(sentinel_value_id)}')
        return (
            'EXISTS (SELECT 1 FROM token_traits tt WHERE '
            + ' AND '.join(conditions)
            + ')'
        )


class TraitFilter(BaseModel):
    """AND of trait clauses. No clauses matches everything."""
    clauses: List[TraitClause] = []

    @classmethod
    def from_value_ids(cls, raw: Any, sentinel_value_id: Optional[int] = None) -> 'TraitFilter':
        return cls(clauses=[
            TraitClause(value_ids=[value_id])
            for value_id in sanitize_ids(raw, sentinel_value_id)
        ])

    @classmethod
    def from_groups(cls, raw: Any, sentinel_value_id: Optional[int] = None) -> 'TraitFilter':
        return cls(clauses=sanitize_groups(raw, sentinel_value_id))

    @classmethod
    def from_request(cls, mode: Any, value_ids: Any = None, traits: Any = None,
                     sentinel_value_id: Optional[int] = None) -> 'TraitFilter':
        """Build a filter from a search body; unknown modes fall back to value mode."""
        if mode == 'trait':
            return cls.from_groups(traits, sentinel_value_id)
        return cls.from_value_ids(value_ids, sentinel_value_id)

    @property
    def is_empty(self) -> bool:
        return not self.clauses

    def conditions(self, token_id_sql: str, params: SqlParams,
                   sentinel_value_id: Optional[int] = None) -> List[str]:
        """Render each clause as a SQL condition on ``token_id_sql``."""
        return [
            clause.render(token_id_sql, params, sentinel_value_id)
            for clause in self.clauses
        ]
