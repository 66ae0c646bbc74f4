"""
Stack configuration loaded from pulumi.Config().

Provides a typed, immutable view of stack settings. All settings are read from
Pulumi config (e.g. Pulumi.<stack>.yaml or pulumi config set). Every key is
required except ``extra_aliases``. Used by __main__.main() to name resources,
set the canonical host and alias set, and name the deployer principal.
"""

from dataclasses import dataclass
from typing import Any, Callable

import pulumi


def _require_bool(config: pulumi.Config, key: str) -> bool:
    raw = config.require(key)
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in ("1", "true", "yes")


def _require_str(config: pulumi.Config, key: str) -> str:
    return config.require(key)


def _get_list(config: pulumi.Config, key: str) -> list[str]:
    raw = config.get(key) or ""
    return [item.strip() for item in raw.split(",") if item.strip()]


# (key, parser); parser receives (config, key) and returns value.
_CONFIG_SPEC: list[tuple[str, Callable[[pulumi.Config, str], Any]]] = [
    ("project_name", _require_str),
    ("environment", _require_str),
    ("canonical_host", _require_str),
    ("extra_aliases", _get_list),
    ("bucket_name", _require_str),
    ("certificate_arn", _require_str),
    ("deployer_user_name", _require_str),
    ("enable_public_access_block", _require_bool),
    ("price_class", _require_str),
]


@dataclass(frozen=True)
class StackConfig:
    """
    Stack configuration from Pulumi config.

    Attributes:
        project_name: Project name used in resource naming (required).
        environment: Environment label used in resource naming (required).
        canonical_host: The one public hostname, e.g. "asadalikhan.co.uk" (required).
        extra_aliases: Comma-separated hostnames redirected to the canonical
            host, e.g. "www.asadalikhan.co.uk" (optional).
        bucket_name: S3 bucket name (required; must be globally unique).
        certificate_arn: ACM certificate in us-east-1 covering every alias (required).
        deployer_user_name: IAM user name for the release pipeline (required).
        enable_public_access_block: Whether to enable S3 Block Public Access (required).
        price_class: CloudFront price class, e.g. "PriceClass_100" (required).
    """

    project_name: str
    environment: str
    canonical_host: str
    extra_aliases: list[str]
    bucket_name: str
    certificate_arn: str
    deployer_user_name: str
    enable_public_access_block: bool
    price_class: str

    @classmethod
    def from_pulumi_config(cls, config: pulumi.Config) -> "StackConfig":
        """
        Build StackConfig from pulumi.Config(). All keys in _CONFIG_SPEC but
        extra_aliases are required.
        """
        kwargs = {key: parser(config, key) for key, parser in _CONFIG_SPEC}
        return cls(**kwargs)
