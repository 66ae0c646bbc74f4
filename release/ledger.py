"""
Version Ledger: read the bucket's version history and roll a path back.

The bucket keeps every overwritten or deleted version (versioning is enabled
by the provisioning stack). Rollback is an explicit operator action; it never
runs as a side effect of a failed sync.
"""

from release.errors import ConfigurationError
from release.logging_config import get_logger
from release.store import ObjectStore, RemoteObjectState

logger = get_logger(__name__)


def normalize_key(path: str) -> str:
    """``/index.html`` and ``index.html`` name the same object."""
    key = path.lstrip("/")
    if not key:
        raise ConfigurationError("an object path is required", path=path)
    return key


class VersionLedger:
    """Read-mostly view over a versioned ObjectStore."""

    def __init__(self, store: ObjectStore):
        self.store = store

    def history(self, path: str) -> list[RemoteObjectState]:
        return self.store.list_versions(normalize_key(path))

    def current(self, path: str) -> RemoteObjectState | None:
        return next((v for v in self.history(path) if v.is_current), None)

    def previous_version(self, path: str) -> RemoteObjectState | None:
        """
        The newest real (non delete-marker) version older than the current one.

        For a path whose current entry is a delete marker, this is the content
        that was live before the delete.
        """
        versions = self.history(path)
        older = [v for v in versions if not v.is_current and not v.is_delete_marker]
        return older[0] if older else None

    def restore(self, path: str, version_id: str | None = None) -> str | None:
        """
        Make *version_id* the current content of *path*.

        Without *version_id*, restores ``previous_version``. The copy adds a
        new version, so the restore itself can be rolled back too.

        Returns:
            The new current version id.
        """
        key = normalize_key(path)
        versions = self.store.list_versions(key)
        if version_id is None:
            older = [v for v in versions if not v.is_current and not v.is_delete_marker]
            if not older:
                raise ConfigurationError(f"{key} has no earlier version", path=key)
            version_id = older[0].version_id

        target = next((v for v in versions if v.version_id == version_id), None)
        if target is None:
            raise ConfigurationError(
                f"{key} has no version {version_id}", path=key, version_id=version_id
            )
        if target.is_delete_marker:
            raise ConfigurationError(
                f"version {version_id} of {key} is a delete marker",
                path=key,
                version_id=version_id,
            )
        if target.is_current:
            logger.info("rollback_noop", path=key, version_id=version_id)
            return version_id

        new_version = self.store.restore_version(key, version_id)
        logger.info(
            "rollback_completed",
            path=key,
            restored_version_id=version_id,
            new_version_id=new_version,
        )
        return new_version
