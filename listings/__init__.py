"""Listings module for the versioned marketplace snapshot.

This module provides functionality for:
- Synchronizing fetched listings into versioned snapshots
- Searching listings and tokens by trait with anchor pagination
- Attaching trait lists to results
- Caching the active snapshot for the unfiltered feed
"""

from .exceptions import (
    ListingError,
    SnapshotIntegrityError,
    NoActiveVersionError,
    ActivationError,
    SyncLeaseError,
)
from .models import NormalizedListing, SyncCounts, SyncResult, ListingsSnapshot
from .versions import VersionStore, StagedListings
from .lease import SyncLease
from .sync import SyncEngine, PRICE_EPSILON
from .filters import TraitFilter, TraitClause, SqlParams, sanitize_ids, sanitize_groups
from .search import ListingSearch, center_offset, normalize_listing_sort, normalize_token_sort
from .traits import TraitEnricher
from .cache import ListingsCache

__all__ = [
    'ListingError',
    'SnapshotIntegrityError',
    'NoActiveVersionError',
    'ActivationError',
    'SyncLeaseError',
    'NormalizedListing',
    'SyncCounts',
    'SyncResult',
    'ListingsSnapshot',
    'VersionStore',
    'StagedListings',
    'SyncLease',
    'SyncEngine',
    'PRICE_EPSILON',
    'TraitFilter',
    'TraitClause',
    'SqlParams',
    'sanitize_ids',
    'sanitize_groups',
    'ListingSearch',
    'center_offset',
    'normalize_listing_sort',
    'normalize_token_sort',
    'TraitEnricher',
    'ListingsCache',
]
