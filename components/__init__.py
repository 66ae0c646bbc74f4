"""
Static-site infrastructure components.

Each concern is encapsulated in its own ComponentResource. Use from the Pulumi
entrypoint (``__main__.py``) with config and output chaining:

- **SiteInfra**: versioned S3 origin + CloudFront with HTTPS redirect, the
  canonical-host function and the alias set; exposes bucket and distribution
  identifiers.
- **DeployerPrincipal**: IAM user whose policy is the release pipeline's
  credential grant for that bucket and distribution.
"""

from components.aws import SiteInfra
from components.deployer import DeployerPrincipal

__all__ = ["DeployerPrincipal", "SiteInfra"]
