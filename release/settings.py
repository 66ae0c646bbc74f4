"""
Release run configuration.

Provides a typed, immutable view of the settings a single release run needs.
Values come from an explicit mapping (the CLI passes ``os.environ``; tests pass
a plain dict) so runs stay isolated from process-wide state. Identifiers
(bucket, distribution, account) are outputs of the provisioning stack; the static
key pair comes from the CI secret store at run time. Operators running
``invalidate``, ``rollback`` or ``history`` may leave it unset and use their
profile or SSO credentials.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from release.errors import ConfigurationError
from release.scope import CredentialGrant, pipeline_grant, rollback_grant

_MISSING = object()


def _lookup(environ: Mapping[str, str], key: str, default: Any) -> Any:
    raw = environ.get(key)
    if raw is None or str(raw).strip() == "":
        if default is _MISSING:
            raise ConfigurationError(f"missing required setting {key}", setting=key)
        return default
    return str(raw).strip()


def _str(default: Any = _MISSING) -> Callable[[Mapping[str, str], str], Any]:
    def parse(environ: Mapping[str, str], key: str) -> Any:
        return _lookup(environ, key, default)

    return parse


def _int(default: Any = _MISSING) -> Callable[[Mapping[str, str], str], Any]:
    def parse(environ: Mapping[str, str], key: str) -> Any:
        raw = _lookup(environ, key, default)
        if raw is default:
            return raw
        try:
            value = int(raw)
        except ValueError:
            raise ConfigurationError(
                f"{key} must be an integer, got {raw!r}", setting=key
            ) from None
        if value < 1:
            raise ConfigurationError(f"{key} must be positive", setting=key)
        return value

    return parse


def _float(default: Any = _MISSING) -> Callable[[Mapping[str, str], str], Any]:
    def parse(environ: Mapping[str, str], key: str) -> Any:
        raw = _lookup(environ, key, default)
        if raw is default:
            return raw
        try:
            return float(raw)
        except ValueError:
            raise ConfigurationError(
                f"{key} must be a number, got {raw!r}", setting=key
            ) from None

    return parse


# (field, environment key, parser); parser receives (environ, key).
_CONFIG_SPEC: list[tuple[str, str, Callable[[Mapping[str, str], str], Any]]] = [
    ("bucket", "RELEASE_BUCKET", _str(None)),
    ("distribution_id", "RELEASE_DISTRIBUTION_ID", _str(None)),
    ("account_id", "RELEASE_ACCOUNT_ID", _str(None)),
    ("access_key_id", "AWS_ACCESS_KEY_ID", _str(None)),
    ("secret_access_key", "AWS_SECRET_ACCESS_KEY", _str(None)),
    ("region", "AWS_REGION", _str("us-east-1")),
    ("principal", "RELEASE_PRINCIPAL", _str("site-deployer")),
    ("source_root", "RELEASE_SOURCE_ROOT", _str(".")),
    ("content_dir", "RELEASE_CONTENT_DIR", _str("public")),
    ("production_branch", "RELEASE_BRANCH", _str("main")),
    ("max_attempts", "RELEASE_MAX_ATTEMPTS", _int(5)),
    ("connect_timeout", "RELEASE_CONNECT_TIMEOUT", _float(10.0)),
    ("read_timeout", "RELEASE_READ_TIMEOUT", _float(60.0)),
    ("invalidation_max_paths", "RELEASE_INVALIDATION_MAX_PATHS", _int(1000)),
    ("lock_timeout", "RELEASE_LOCK_TIMEOUT", _float(None)),
    ("lock_poll_interval", "RELEASE_LOCK_POLL_INTERVAL", _float(2.0)),
    (
        "html_cache_control",
        "RELEASE_HTML_CACHE_CONTROL",
        _str("public, max-age=0, must-revalidate"),
    ),
    (
        "asset_cache_control",
        "RELEASE_ASSET_CACHE_CONTROL",
        _str("public, max-age=86400"),
    ),
    ("log_level", "RELEASE_LOG_LEVEL", _str("INFO")),
]


@dataclass(frozen=True)
class ReleaseConfig:
    """
    Settings for one release run.

    Attributes:
        bucket: Target S3 bucket name. Required by every command that touches
            the bucket (``sync``, ``release``, ``rollback``, ``history``).
        access_key_id: Deployer principal's access key id. With
            ``secret_access_key`` unset too, boto3's default credential chain
            (profile, SSO, instance role) is used instead.
        secret_access_key: Secret key paired with ``access_key_id``.
        distribution_id: CloudFront distribution id. Required for any command
            that invalidates.
        account_id: AWS account id, used to build the distribution ARN.
        region: Region for the S3 client.
        principal: Name of the IAM principal, used in the credential grant.
        source_root: Repository checkout root.
        content_dir: Subdirectory of ``source_root`` that is published.
        production_branch: Only pushes to this branch release.
        max_attempts: botocore retry budget per request (standard mode).
        connect_timeout: Socket connect timeout in seconds.
        read_timeout: Socket read timeout in seconds.
        invalidation_max_paths: Above this many paths, invalidate ``/*``.
        lock_timeout: Seconds to wait for the bucket lock; None waits forever.
        lock_poll_interval: Seconds between bucket lock attempts.
        html_cache_control: Cache-Control for HTML documents.
        asset_cache_control: Cache-Control for every other object.
        log_level: Root log level.
    """

    bucket: str | None = None
    access_key_id: str | None = field(default=None, repr=False)
    secret_access_key: str | None = field(default=None, repr=False)
    distribution_id: str | None = None
    account_id: str | None = None
    region: str = "us-east-1"
    principal: str = "site-deployer"
    source_root: str = "."
    content_dir: str = "public"
    production_branch: str = "main"
    max_attempts: int = 5
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    invalidation_max_paths: int = 1000
    lock_timeout: float | None = None
    lock_poll_interval: float = 2.0
    html_cache_control: str = "public, max-age=0, must-revalidate"
    asset_cache_control: str = "public, max-age=86400"
    log_level: str = "INFO"

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str],
        overrides: Mapping[str, str] | None = None,
    ) -> "ReleaseConfig":
        """
        Build ReleaseConfig from an environment mapping.

        ``overrides`` is keyed like ``environ`` and wins over it; the CLI uses
        it for command-line options. Raises ConfigurationError naming the first
        malformed key, or the missing half of a static key pair.
        """
        merged = {**environ, **(overrides or {})}
        kwargs = {name: parser(merged, key) for name, key, parser in _CONFIG_SPEC}
        if bool(kwargs["access_key_id"]) != bool(kwargs["secret_access_key"]):
            missing = "AWS_SECRET_ACCESS_KEY" if kwargs["access_key_id"] else "AWS_ACCESS_KEY_ID"
            raise ConfigurationError(
                f"missing required setting {missing}: static keys come in pairs",
                setting=missing,
            )
        return cls(**kwargs)

    @property
    def source_path(self) -> Path:
        return Path(self.source_root)

    def require_bucket(self) -> str:
        if not self.bucket:
            raise ConfigurationError(
                "missing required setting RELEASE_BUCKET", setting="RELEASE_BUCKET"
            )
        return self.bucket

    def require_distribution(self) -> str:
        if not self.distribution_id:
            raise ConfigurationError(
                "RELEASE_DISTRIBUTION_ID is required to invalidate",
                setting="RELEASE_DISTRIBUTION_ID",
            )
        return self.distribution_id

    def _require_account(self) -> None:
        if self.distribution_id and not self.account_id:
            raise ConfigurationError(
                "RELEASE_ACCOUNT_ID is required to scope invalidations",
                setting="RELEASE_ACCOUNT_ID",
            )

    def grant(self) -> CredentialGrant:
        """The least-privilege grant the pipeline principal is expected to hold."""
        self._require_account()
        return pipeline_grant(
            principal=self.principal,
            bucket=self.bucket,
            distribution_id=self.distribution_id,
            account_id=self.account_id,
        )

    def operator_grant(self, invalidate: bool = False) -> CredentialGrant:
        """
        Grant used by rollback and history, run with operator credentials.

        With *invalidate*, the grant also covers invalidating the distribution.
        """
        if invalidate:
            self.require_distribution()
            self._require_account()
        return rollback_grant(
            principal=self.principal,
            bucket=self.require_bucket(),
            distribution_id=self.distribution_id if invalidate else None,
            account_id=self.account_id if invalidate else None,
        )
