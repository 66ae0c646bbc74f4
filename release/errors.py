"""
Error taxonomy for release runs.

Each error carries a machine-readable ``category`` and the process
``exit_code`` the CLI uses for it. ``to_dict()`` is what the CLI prints to
stderr as a single JSON line, so every field an operator needs to diagnose a
failed run (path, action, resource) must be in ``details``.
"""

from typing import Any


class ReleaseError(Exception):
    """Base class for every failure raised by the release pipeline."""

    category: str = "release_error"
    exit_code: int = 1

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = {
            key: value for key, value in details.items() if value is not None
        }

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.category, "detail": self.message, **self.details}


class ConfigurationError(ReleaseError):
    """Missing or invalid target identifiers, or a source path outside scope."""

    category = "configuration"
    exit_code = 2


class PermissionDeniedError(ReleaseError):
    """
    The principal lacks an action, either refused locally by the scope guard
    or denied by AWS.
    """

    category = "permission_denied"
    exit_code = 3

    def __init__(self, message: str, action: str, resource: str | None = None):
        super().__init__(message, action=action, resource=resource)
        self.action = action
        self.resource = resource


class TransientNetworkError(ReleaseError):
    """Connection or timeout failure that survived the transport's retries."""

    category = "transient_network"
    exit_code = 4


class PartialReleaseError(ReleaseError):
    """
    Content is published at origin but the cache invalidation failed.

    Degraded success: the pipeline records it on the result instead of
    raising. Re-run ``invalidate`` alone to recover.
    """

    category = "partial_release"
    exit_code = 5


class ReleaseCancelledError(ReleaseError):
    """
    The run was cancelled.

    ``clean`` is True only when nothing was mutated; otherwise ``report``
    lists the operations that completed and are now live.
    """

    category = "cancelled"
    exit_code = 6

    def __init__(self, message: str, report: Any, clean: bool):
        super().__init__(message, clean=clean)
        self.report = report
        self.clean = clean

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), **self.report.to_dict()}


class ReleaseBusyError(ReleaseError):
    """Another run holds the lock for the target bucket."""

    category = "busy"
    exit_code = 7


class SyncAbortedError(ReleaseError):
    """
    An object operation failed mid-sync and the run stopped.

    Takes its category and exit code from the underlying error, so a denied
    upload still reports ``permission_denied``.
    """

    def __init__(self, cause: ReleaseError, path: str, report: Any):
        super().__init__(
            f"sync aborted at {path}: {cause.message}",
            **{**cause.details, "path": path},
        )
        self.cause = cause
        self.path = path
        self.report = report
        self.category = cause.category
        self.exit_code = cause.exit_code

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), **self.report.to_dict()}
