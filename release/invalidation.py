"""
Cache Invalidator: tell CloudFront to drop cached copies of changed paths.

Invalidations are per changed path by default; above ``max_paths`` (or when
the caller has no per-path list) a single ``/*`` wildcard is used instead.
Submission is fire-and-forget unless the caller asks to wait; the request id
is always returned so freshness can be checked afterwards.
"""

import hashlib
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, replace
from pathlib import PurePosixPath
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from release import scope
from release.errors import ConfigurationError
from release.logging_config import get_logger
from release.store import client_config, translate_error

logger = get_logger(__name__)

WILDCARD = "/*"
COMPLETED = "Completed"
FAILED = "failed"

_SAFE_CHARS = "/-._~"


@dataclass(frozen=True)
class InvalidationRequest:
    """
    One CloudFront invalidation.

    Attributes:
        paths: Invalidated path patterns.
        distribution_id: Target distribution.
        request_id: CloudFront invalidation id.
        status: ``InProgress``, ``Completed`` or ``failed``.
        caller_reference: Idempotency token sent with the request.
    """

    paths: tuple[str, ...]
    distribution_id: str
    request_id: str
    status: str
    caller_reference: str

    @property
    def is_wildcard(self) -> bool:
        return WILDCARD in self.paths

    def to_dict(self) -> dict:
        return {
            "paths": list(self.paths),
            "distribution_id": self.distribution_id,
            "request_id": self.request_id,
            "status": self.status,
        }


def invalidation_paths(changed: Iterable[str] | None, max_paths: int = 1000) -> list[str]:
    """
    Edge paths to invalidate for the changed object keys.

    ``index.html`` documents also invalidate their directory URL (``/`` for
    the root one). ``None`` means per-path tracking is unavailable.
    """
    if changed is None:
        return [WILDCARD]
    paths: set[str] = set()
    for key in changed:
        key = key.lstrip("/")
        paths.add("/" + quote(key, safe=_SAFE_CHARS))
        doc = PurePosixPath(key)
        if doc.name == "index.html":
            parent = doc.parent.as_posix()
            paths.add("/" if parent == "." else f"/{quote(parent, safe=_SAFE_CHARS)}/")
    if len(paths) > max_paths:
        return [WILDCARD]
    return sorted(paths)


def caller_reference(paths: Iterable[str], run_token: str | None = None) -> str:
    """
    Idempotency token: the same run and path set always yield the same value,
    so a retried submission does not create a second invalidation.
    """
    digest = hashlib.sha256("\n".join(sorted(paths)).encode("utf-8")).hexdigest()[:16]
    token = run_token or uuid.uuid4().hex
    return f"{token}-{digest}"[:128]


class CacheInvalidator:
    """
    Submits invalidations for one distribution.

    Args:
        distribution_id: CloudFront distribution id.
        account_id: Account owning the distribution (for the guard's ARN).
        guard: ScopeGuard for the principal in use.
        client: Optional pre-built CloudFront client.
        max_paths: Above this many paths, invalidate ``/*``.
    """

    def __init__(
        self,
        distribution_id: str,
        account_id: str,
        guard: scope.ScopeGuard,
        client=None,
        max_paths: int = 1000,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        config: Config | None = None,
    ):
        if not distribution_id:
            raise ConfigurationError(
                "distribution id is required", setting="RELEASE_DISTRIBUTION_ID"
            )
        self.distribution_id = distribution_id
        self.resource = scope.distribution_arn(account_id, distribution_id)
        self.guard = guard
        self.max_paths = max_paths
        if client is None:
            kwargs: dict = {"config": config or client_config()}
            if access_key_id and secret_access_key:
                kwargs["aws_access_key_id"] = access_key_id
                kwargs["aws_secret_access_key"] = secret_access_key
            client = boto3.client("cloudfront", **kwargs)
        self._client = client

    def invalidate_changes(
        self,
        changed: Iterable[str] | None,
        run_token: str | None = None,
    ) -> InvalidationRequest | None:
        """Invalidate the edge paths for *changed* keys; None if nothing changed."""
        if changed is not None:
            changed = list(changed)
            if not changed:
                logger.info("invalidation_skipped", reason="no changes")
                return None
        return self.submit(invalidation_paths(changed, self.max_paths), run_token)

    def submit(
        self, paths: Iterable[str], run_token: str | None = None
    ) -> InvalidationRequest:
        paths = sorted(set(paths))
        if not paths:
            raise ConfigurationError("at least one path pattern is required")
        for path in paths:
            if not path.startswith("/"):
                raise ConfigurationError(
                    f"invalidation paths must start with '/': {path!r}", path=path
                )
        reference = caller_reference(paths, run_token)

        self.guard.require(scope.CREATE_INVALIDATION, self.resource)
        try:
            response = self._client.create_invalidation(
                DistributionId=self.distribution_id,
                InvalidationBatch={
                    "Paths": {"Quantity": len(paths), "Items": paths},
                    "CallerReference": reference,
                },
            )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(
                exc, scope.CREATE_INVALIDATION, self.resource
            ) from exc

        invalidation = response["Invalidation"]
        request = InvalidationRequest(
            paths=tuple(paths),
            distribution_id=self.distribution_id,
            request_id=invalidation["Id"],
            status=invalidation.get("Status", "InProgress"),
            caller_reference=reference,
        )
        logger.info(
            "invalidation_submitted",
            distribution_id=self.distribution_id,
            request_id=request.request_id,
            paths=len(paths),
            wildcard=request.is_wildcard,
        )
        return request

    def wait(
        self,
        request: InvalidationRequest,
        delay: int = 20,
        max_attempts: int = 30,
    ) -> InvalidationRequest:
        """
        Poll until *request* completes.

        Needs ``cloudfront:GetInvalidation``, which only operator grants hold.
        Returns the request with status ``Completed`` or ``failed``.
        """
        self.guard.require(scope.GET_INVALIDATION, self.resource)
        waiter = self._client.get_waiter("invalidation_completed")
        try:
            waiter.wait(
                DistributionId=request.distribution_id,
                Id=request.request_id,
                WaiterConfig={"Delay": delay, "MaxAttempts": max_attempts},
            )
        except WaiterError as exc:
            logger.error(
                "invalidation_wait_failed",
                request_id=request.request_id,
                reason=str(exc),
            )
            return replace(request, status=FAILED)
        logger.info("invalidation_completed", request_id=request.request_id)
        return replace(request, status=COMPLETED)
