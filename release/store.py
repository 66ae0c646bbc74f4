"""
ObjectStore: the bucket operations a release needs, and the boto3 backend.

Every ``S3ObjectStore`` call is checked against the run's ``ScopeGuard`` first,
then sent through a botocore client configured for bounded exponential backoff
(``standard`` retry mode). botocore/AWS failures are translated into the
release error taxonomy:

- ``AccessDenied`` and friends become ``PermissionDeniedError`` with the IAM action
- ``NoSuchBucket`` and ``NoSuchVersion`` become ``ConfigurationError``
- connection and timeout errors left after retries become ``TransientNetworkError``

The bucket also holds the release lock object (``LOCK_KEY``), created with a
conditional put so only one run at a time can hold it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from release import scope
from release.content import ContentObject
from release.errors import (
    ConfigurationError,
    PermissionDeniedError,
    ReleaseError,
    TransientNetworkError,
)
from release.logging_config import get_logger

logger = get_logger(__name__)

_DENIED_CODES = frozenset(
    {"AccessDenied", "AllAccessDisabled", "Forbidden", "403", "AccessDeniedException"}
)
_MISSING_CODES = frozenset(
    {"NoSuchBucket", "NoSuchVersion", "NoSuchDistribution", "InvalidArgument", "404"}
)
_THROTTLE_CODES = frozenset(
    {"SlowDown", "Throttling", "ThrottlingException", "RequestTimeout", "ServiceUnavailable"}
)
_LOCK_HELD_CODES = frozenset({"PreconditionFailed", "ConditionalRequestConflict", "412", "409"})

# Release lock object. Dot-prefixed keys are never published from the content
# tree, and the sync plan ignores this key in the remote listing.
LOCK_KEY = ".release-lock"


@dataclass(frozen=True)
class RemoteObject:
    """Metadata for a current remote object, from a plain listing."""

    key: str
    etag: str
    size: int


@dataclass(frozen=True)
class RemoteObjectState:
    """
    One entry of a key's version history.

    ``is_current`` is True for exactly one entry per key; for a deleted key
    the current entry is a delete marker.
    """

    path: str
    version_id: str
    last_modified: datetime | None
    is_current: bool
    is_delete_marker: bool = False
    etag: str | None = None


def client_config(
    max_attempts: int = 5,
    connect_timeout: float = 10.0,
    read_timeout: float = 60.0,
    region: str | None = None,
) -> Config:
    """botocore client config shared by the S3 and CloudFront clients."""
    return Config(
        region_name=region,
        retries={"max_attempts": max_attempts, "mode": "standard"},
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
    )


def translate_error(
    exc: Exception,
    action: str,
    resource: str,
) -> ReleaseError:
    """Map a boto3/botocore exception onto the release error taxonomy."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        message = error.get("Message") or str(exc)
        if code in _DENIED_CODES:
            return PermissionDeniedError(
                f"AWS denied {action} on {resource}: {message}",
                action=action,
                resource=resource,
            )
        if code in _MISSING_CODES:
            return ConfigurationError(
                f"{action} on {resource} failed: {code} {message}",
                action=action,
                resource=resource,
                code=code,
            )
        if code in _THROTTLE_CODES or code.startswith("5"):
            return TransientNetworkError(
                f"{action} on {resource} kept failing after retries: {code}",
                action=action,
                resource=resource,
                code=code,
            )
        return ReleaseError(
            f"{action} on {resource} failed: {code} {message}",
            action=action,
            resource=resource,
            code=code,
        )
    if isinstance(
        exc,
        (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError, BotoConnectionError),
    ):
        return TransientNetworkError(
            f"{action} on {resource} kept failing after retries: {exc}",
            action=action,
            resource=resource,
        )
    return ReleaseError(
        f"{action} on {resource} failed: {exc}", action=action, resource=resource
    )


class ObjectStore(ABC):
    """Bucket operations used by the synchronizer and the version ledger."""

    bucket: str

    @abstractmethod
    def list_objects(self) -> list[RemoteObject]:
        """List every current object in the bucket."""

    @abstractmethod
    def put_object(self, obj: ContentObject) -> str | None:
        """Upload *obj*; return the new version id when the bucket is versioned."""

    @abstractmethod
    def delete_object(self, key: str) -> str | None:
        """Delete *key*; on a versioned bucket this adds a delete marker."""

    @abstractmethod
    def list_versions(self, key: str) -> list[RemoteObjectState]:
        """Version history of *key*, newest first, delete markers included."""

    @abstractmethod
    def restore_version(self, key: str, version_id: str) -> str | None:
        """Make *version_id* of *key* current again; return the new version id."""

    @abstractmethod
    def get_version(self, key: str, version_id: str) -> bytes:
        """Read the bytes of one version of *key*."""

    @abstractmethod
    def acquire_lock(self, key: str, body: bytes) -> bool:
        """Create *key* only if it does not exist; False when another run holds it."""

    @abstractmethod
    def release_lock(self, key: str) -> None:
        """Remove the lock object *key*."""


class S3ObjectStore(ObjectStore):
    """
    boto3-backed ObjectStore for one bucket.

    Args:
        bucket: Target bucket (must already exist).
        guard: ScopeGuard for the principal whose credentials are in use.
        client: Optional pre-built S3 client (tests pass a MagicMock).
        access_key_id / secret_access_key / region: Used when ``client`` is
            not given.
        config: botocore Config; defaults to ``client_config()``.
    """

    def __init__(
        self,
        bucket: str,
        guard: scope.ScopeGuard,
        client=None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region: str | None = None,
        config: Config | None = None,
    ):
        if not bucket:
            raise ConfigurationError("target bucket is required", setting="RELEASE_BUCKET")
        self.bucket = bucket
        self.guard = guard
        if client is None:
            kwargs: dict = {"config": config or client_config(region=region)}
            if access_key_id and secret_access_key:
                kwargs["aws_access_key_id"] = access_key_id
                kwargs["aws_secret_access_key"] = secret_access_key
            client = boto3.client("s3", **kwargs)
        self._client = client

    def _call(self, action: str, resource: str, method: str, **kwargs):
        self.guard.require(action, resource)
        try:
            return getattr(self._client, method)(**kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, action, resource) from exc

    def list_objects(self) -> list[RemoteObject]:
        resource = scope.bucket_arn(self.bucket)
        self.guard.require(scope.LIST_BUCKET, resource)
        result: list[RemoteObject] = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket):
                for obj in page.get("Contents", []):
                    result.append(
                        RemoteObject(
                            key=obj["Key"],
                            etag=obj["ETag"].strip('"'),
                            size=obj["Size"],
                        )
                    )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, scope.LIST_BUCKET, resource) from exc
        return result

    def put_object(self, obj: ContentObject) -> str | None:
        response = self._call(
            scope.PUT_OBJECT,
            scope.object_arn(self.bucket, obj.path),
            "put_object",
            Bucket=self.bucket,
            Key=obj.path,
            Body=obj.body,
            ContentType=obj.content_type,
            CacheControl=obj.cache_control,
            Metadata={"sha256": obj.sha256},
        )
        return response.get("VersionId")

    def delete_object(self, key: str) -> str | None:
        response = self._call(
            scope.DELETE_OBJECT,
            scope.object_arn(self.bucket, key),
            "delete_object",
            Bucket=self.bucket,
            Key=key,
        )
        return response.get("VersionId")

    def list_versions(self, key: str) -> list[RemoteObjectState]:
        resource = scope.bucket_arn(self.bucket)
        self.guard.require(scope.LIST_BUCKET_VERSIONS, resource)
        entries: list[RemoteObjectState] = []
        try:
            paginator = self._client.get_paginator("list_object_versions")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=key):
                for version in page.get("Versions", []):
                    if version["Key"] == key:
                        entries.append(
                            RemoteObjectState(
                                path=key,
                                version_id=version["VersionId"],
                                last_modified=version.get("LastModified"),
                                is_current=version.get("IsLatest", False),
                                etag=version.get("ETag", "").strip('"') or None,
                            )
                        )
                for marker in page.get("DeleteMarkers", []):
                    if marker["Key"] == key:
                        entries.append(
                            RemoteObjectState(
                                path=key,
                                version_id=marker["VersionId"],
                                last_modified=marker.get("LastModified"),
                                is_current=marker.get("IsLatest", False),
                                is_delete_marker=True,
                            )
                        )
        except (ClientError, BotoCoreError) as exc:
            raise translate_error(exc, scope.LIST_BUCKET_VERSIONS, resource) from exc
        # Newest first; the current entry always leads.
        entries.sort(
            key=lambda e: (
                e.is_current,
                e.last_modified.timestamp() if e.last_modified else 0.0,
            ),
            reverse=True,
        )
        return entries

    def restore_version(self, key: str, version_id: str) -> str | None:
        self.guard.require(
            scope.GET_OBJECT_VERSION, scope.object_arn(self.bucket, key)
        )
        response = self._call(
            scope.PUT_OBJECT,
            scope.object_arn(self.bucket, key),
            "copy_object",
            Bucket=self.bucket,
            Key=key,
            CopySource={"Bucket": self.bucket, "Key": key, "VersionId": version_id},
            MetadataDirective="COPY",
        )
        return response.get("VersionId")

    def get_version(self, key: str, version_id: str) -> bytes:
        response = self._call(
            scope.GET_OBJECT_VERSION,
            scope.object_arn(self.bucket, key),
            "get_object",
            Bucket=self.bucket,
            Key=key,
            VersionId=version_id,
        )
        return response["Body"].read()

    def acquire_lock(self, key: str, body: bytes) -> bool:
        resource = scope.object_arn(self.bucket, key)
        self.guard.require(scope.PUT_OBJECT, resource)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType="application/json",
                IfNoneMatch="*",
            )
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _LOCK_HELD_CODES:
                return False
            raise translate_error(exc, scope.PUT_OBJECT, resource) from exc
        except BotoCoreError as exc:
            raise translate_error(exc, scope.PUT_OBJECT, resource) from exc
        return True

    def release_lock(self, key: str) -> None:
        self._call(
            scope.DELETE_OBJECT,
            scope.object_arn(self.bucket, key),
            "delete_object",
            Bucket=self.bucket,
            Key=key,
        )
