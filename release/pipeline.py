"""
Release pipeline: trigger, bucket lock, mirror sync, then cache invalidation.

A release either fails with a ``ReleaseError`` (nothing or a reported subset
published), or returns a ``ReleaseResult``:

- ``published``: content mirrored and the changed paths invalidated
- ``published_stale``: content mirrored, invalidation failed
  (``PartialReleaseError`` on the result; re-run ``invalidate`` alone)
- ``noop``: the bucket already matched the content tree
- ``skipped``: the event was not a new push to the production branch

Every log line emitted during a run carries the triggering ``commit`` and
``run_id``.
"""

import threading
from dataclasses import dataclass

import structlog

from release.content import ContentTree
from release.errors import PartialReleaseError, ReleaseError
from release.invalidation import CacheInvalidator, InvalidationRequest, invalidation_paths
from release.lock import bucket_lock
from release.logging_config import get_logger
from release.scope import ScopeGuard
from release.settings import ReleaseConfig
from release.store import S3ObjectStore, client_config
from release.sync import ContentSynchronizer, SyncReport
from release.trigger import ReleaseEvent, ReleaseTrigger

logger = get_logger(__name__)

PUBLISHED = "published"
PUBLISHED_STALE = "published_stale"
NOOP = "noop"
SKIPPED = "skipped"


@dataclass
class ReleaseResult:
    """Outcome of one pipeline run."""

    status: str
    commit: str | None = None
    report: SyncReport | None = None
    invalidation: InvalidationRequest | None = None
    error: PartialReleaseError | None = None

    @property
    def degraded(self) -> bool:
        return self.status == PUBLISHED_STALE

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "commit": self.commit,
            "sync": self.report.to_dict() if self.report else None,
            "invalidation": self.invalidation.to_dict() if self.invalidation else None,
            "error": self.error.to_dict() if self.error else None,
        }


def content_tree(config: ReleaseConfig) -> ContentTree:
    return ContentTree(
        config.source_path,
        config.content_dir,
        html_cache_control=config.html_cache_control,
        asset_cache_control=config.asset_cache_control,
    )


def build_store(config: ReleaseConfig, guard: ScopeGuard) -> S3ObjectStore:
    return S3ObjectStore(
        bucket=config.require_bucket(),
        guard=guard,
        access_key_id=config.access_key_id,
        secret_access_key=config.secret_access_key,
        config=client_config(
            max_attempts=config.max_attempts,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            region=config.region,
        ),
    )


def build_invalidator(config: ReleaseConfig, guard: ScopeGuard) -> CacheInvalidator:
    return CacheInvalidator(
        distribution_id=config.require_distribution(),
        account_id=config.account_id,
        guard=guard,
        max_paths=config.invalidation_max_paths,
        access_key_id=config.access_key_id,
        secret_access_key=config.secret_access_key,
        config=client_config(
            max_attempts=config.max_attempts,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
        ),
    )


class ReleasePipeline:
    """
    Sequences one release per accepted event.

    Args:
        config: Run settings.
        synchronizer: ContentSynchronizer bound to the target bucket.
        invalidator: CacheInvalidator bound to the distribution.
        trigger: Event filter; defaults to one for ``config.production_branch``.
    """

    def __init__(
        self,
        config: ReleaseConfig,
        synchronizer: ContentSynchronizer,
        invalidator: CacheInvalidator,
        trigger: ReleaseTrigger | None = None,
    ):
        self.config = config
        self.synchronizer = synchronizer
        self.invalidator = invalidator
        self.trigger = trigger or ReleaseTrigger(config.production_branch)

    @classmethod
    def from_config(cls, config: ReleaseConfig) -> "ReleasePipeline":
        guard = ScopeGuard(config.grant())
        return cls(
            config=config,
            synchronizer=ContentSynchronizer(build_store(config, guard)),
            invalidator=build_invalidator(config, guard),
        )

    def run(
        self,
        event: ReleaseEvent | None,
        cancel: threading.Event | None = None,
    ) -> ReleaseResult:
        """
        Release *event* if the trigger accepts it.

        Raises:
            ReleaseError: Configuration, permission, network, cancellation or
                busy failures. Sync failures carry the completed operations.
        """
        accepted = self.trigger.accept(event)
        if accepted is None:
            return ReleaseResult(status=SKIPPED, commit=event.commit if event else None)

        with structlog.contextvars.bound_contextvars(
            commit=accepted.commit, run_id=accepted.event_id
        ):
            logger.info(
                "release_started",
                branch=accepted.branch,
                bucket=self.config.bucket,
                distribution_id=self.invalidator.distribution_id,
            )
            try:
                return self._release(accepted, cancel)
            except ReleaseError as exc:
                logger.error("release_failed", **exc.to_dict())
                raise

    def _release(
        self, event: ReleaseEvent, cancel: threading.Event | None
    ) -> ReleaseResult:
        tree = content_tree(self.config)
        with bucket_lock(
            self.synchronizer.store,
            timeout=self.config.lock_timeout,
            poll_interval=self.config.lock_poll_interval,
            holder=event.event_id,
        ):
            report = self.synchronizer.sync(tree, delete=True, cancel=cancel)
            if not report.mutated:
                logger.info("release_noop", unchanged=report.unchanged)
                return ReleaseResult(status=NOOP, commit=event.commit, report=report)

            try:
                invalidation = self.invalidator.invalidate_changes(
                    report.changed_paths, run_token=event.event_id
                )
            except ReleaseError as exc:
                partial = PartialReleaseError(
                    "content is published but the edge cache was not invalidated; "
                    "re-run `python -m release invalidate` for the listed paths",
                    cause=exc.category,
                    paths=invalidation_paths(
                        report.changed_paths, self.invalidator.max_paths
                    ),
                    **{k: v for k, v in exc.details.items() if k != "paths"},
                )
                logger.warning("release_degraded", **partial.to_dict())
                return ReleaseResult(
                    status=PUBLISHED_STALE,
                    commit=event.commit,
                    report=report,
                    error=partial,
                )

        logger.info(
            "release_published",
            uploaded=len(report.uploaded),
            deleted=len(report.deleted),
            invalidation_id=invalidation.request_id if invalidation else None,
        )
        return ReleaseResult(
            status=PUBLISHED,
            commit=event.commit,
            report=report,
            invalidation=invalidation,
        )
