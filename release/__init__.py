"""
Static-site release pipeline.

Mirrors a content directory into the site bucket, invalidates the changed
paths on the edge distribution, and restores prior object versions on demand:

- **ContentSynchronizer**: SyncPlan computation and mirror apply.
- **CacheInvalidator**: per-path (or ``/*``) CloudFront invalidations.
- **VersionLedger**: version history and rollback.
- **ReleasePipeline**: trigger filtering, bucket lock, sync, invalidation.
"""

from release.errors import (
    ConfigurationError,
    PartialReleaseError,
    PermissionDeniedError,
    ReleaseError,
    TransientNetworkError,
)
from release.invalidation import CacheInvalidator, InvalidationRequest
from release.ledger import VersionLedger
from release.pipeline import ReleasePipeline, ReleaseResult
from release.settings import ReleaseConfig
from release.sync import ContentSynchronizer, SyncReport

__all__ = [
    "CacheInvalidator",
    "ConfigurationError",
    "ContentSynchronizer",
    "InvalidationRequest",
    "PartialReleaseError",
    "PermissionDeniedError",
    "ReleaseConfig",
    "ReleaseError",
    "ReleasePipeline",
    "ReleaseResult",
    "SyncReport",
    "TransientNetworkError",
    "VersionLedger",
]
