"""Data models shared by the synchronization engine, cache and API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class NormalizedListing(BaseModel):
    """A validated marketplace listing, ready to be staged."""
    token_mint_addr: str = Field(..., min_length=1)
    token_num: Optional[int] = None
    price: int
    seller: str = Field(..., min_length=1)
    image_url: str = Field(..., min_length=1)
    listing_source: str = Field(..., min_length=1)


class SyncCounts(BaseModel):
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    total: int = 0

    @property
    def changes(self) -> int:
        return self.inserted + self.updated + self.deleted


class SyncResult(BaseModel):
    """Outcome of one synchronization call."""
    changed: bool
    version_id: Optional[int] = None
    counts: SyncCounts


class ListingsSnapshot(BaseModel):
    """The full row set of one listing version as held by the cache."""
    version_id: int
    rows: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.rows)
