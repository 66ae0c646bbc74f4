"""
Content Synchronizer: mirror a local content tree into the bucket.

A run lists the bucket, computes a SyncPlan, then applies uploads before
deletes so that pages never reference assets that were already removed. The
first failing operation stops the run; the raised ``SyncAbortedError`` carries
a ``SyncReport`` saying exactly which operations completed and are live.
"""

import threading
from dataclasses import dataclass, field

from release.content import ContentTree
from release.errors import ReleaseCancelledError, ReleaseError, SyncAbortedError
from release.logging_config import get_logger
from release.plan import SyncPlan, compute_plan
from release.store import ObjectStore

logger = get_logger(__name__)


@dataclass
class SyncReport:
    """Outcome of applying a SyncPlan."""

    uploaded: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    unchanged: int = 0
    completed: bool = False
    dry_run: bool = False

    @property
    def changed_paths(self) -> list[str]:
        return sorted({*self.uploaded, *self.deleted})

    @property
    def mutated(self) -> bool:
        return bool(self.uploaded or self.deleted)

    def to_dict(self) -> dict:
        return {
            "uploaded": list(self.uploaded),
            "deleted": list(self.deleted),
            "failed": dict(self.failed),
            "unchanged": self.unchanged,
            "completed": self.completed,
            "dry_run": self.dry_run,
        }


class ContentSynchronizer:
    """Applies mirror syncs against one ObjectStore."""

    def __init__(self, store: ObjectStore):
        self.store = store

    def plan(self, tree: ContentTree, delete: bool = True) -> SyncPlan:
        local = tree.objects()
        remote = self.store.list_objects()
        plan = compute_plan(local, remote, delete=delete)
        logger.info("sync_planned", bucket=self.store.bucket, **plan.summary())
        return plan

    def sync(
        self,
        tree: ContentTree,
        delete: bool = True,
        dry_run: bool = False,
        cancel: threading.Event | None = None,
    ) -> SyncReport:
        """
        Make the bucket mirror *tree*.

        Args:
            tree: Local content to publish.
            delete: Remove remote objects absent locally.
            dry_run: Plan and log only.
            cancel: Checked before the plan is applied and between operations.

        Returns:
            SyncReport with ``completed=True``.

        Raises:
            ReleaseCancelledError: ``clean`` is True when nothing was mutated.
            SyncAbortedError: An upload or delete failed.
        """
        plan = self.plan(tree, delete=delete)
        report = SyncReport(unchanged=len(plan.unchanged), dry_run=dry_run)

        if dry_run:
            for path in plan.upload_paths:
                logger.info("object_would_upload", path=path)
            for path in plan.to_delete:
                logger.info("object_would_delete", path=path)
            report.completed = True
            return report

        if cancel is not None and cancel.is_set():
            raise ReleaseCancelledError(
                "release cancelled before any change was applied", report, clean=True
            )
        return self.apply(plan, report, cancel)

    def apply(
        self,
        plan: SyncPlan,
        report: SyncReport | None = None,
        cancel: threading.Event | None = None,
    ) -> SyncReport:
        report = report or SyncReport(unchanged=len(plan.unchanged))
        operations = [("upload", obj.path, obj) for obj in plan.to_upload]
        operations += [("delete", path, None) for path in plan.to_delete]

        for kind, path, obj in operations:
            if cancel is not None and cancel.is_set():
                logger.warning("sync_cancelled", **report.to_dict())
                raise ReleaseCancelledError(
                    "release cancelled after changes were applied; "
                    "completed operations are live",
                    report,
                    clean=not report.mutated,
                )
            try:
                if kind == "upload":
                    version_id = self.store.put_object(obj)
                    report.uploaded.append(path)
                    logger.info("object_uploaded", path=path, version_id=version_id)
                else:
                    version_id = self.store.delete_object(path)
                    report.deleted.append(path)
                    logger.info("object_deleted", path=path, version_id=version_id)
            except ReleaseError as exc:
                report.failed[path] = exc.message
                logger.error(
                    "sync_aborted",
                    path=path,
                    operation=kind,
                    error=exc.category,
                    **{k: v for k, v in exc.details.items() if k != "path"},
                )
                raise SyncAbortedError(exc, path=path, report=report) from exc

        report.completed = True
        logger.info(
            "sync_completed",
            bucket=self.store.bucket,
            uploaded=len(report.uploaded),
            deleted=len(report.deleted),
            unchanged=report.unchanged,
        )
        return report
