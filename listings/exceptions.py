"""Exceptions raised by the listings synchronization and query code."""


class ListingError(Exception):
    """Base exception for listing operations."""
    pass


class SnapshotIntegrityError(ListingError):
    """Raised when a materialized snapshot does not match what was staged."""
    pass


class NoActiveVersionError(SnapshotIntegrityError):
    """Raised when an operation requires an active version and none exists."""
    pass


class ActivationError(ListingError):
    """Raised when the version cutover transaction fails."""
    pass


class SyncLeaseError(ListingError):
    """Raised when another worker holds the synchronization lease."""
    pass
