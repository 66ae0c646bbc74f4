"""
Static site - Pulumi entrypoint for the release pipeline's target.

Wires two ComponentResources using Pulumi config and output chaining:

- **SiteInfra**: versioned S3 origin + CloudFront. Viewer protocol policy
  redirects HTTP to HTTPS; a viewer-request function 301s every host but the
  canonical one; the alias set covers the canonical host and its redirected
  variants.
- **DeployerPrincipal**: IAM user for CI, scoped by the release pipeline's
  credential grant to exactly the bucket and distribution created above.

Stack exports feed the release pipeline's environment: bucket_name
(RELEASE_BUCKET), distribution_id (RELEASE_DISTRIBUTION_ID), account_id
(RELEASE_ACCOUNT_ID), deployer_access_key_id / deployer_secret_access_key
(secrets for AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY), plus
cloudfront_domain_name for the DNS record and canonical_url.
"""

import pulumi

from components import DeployerPrincipal, SiteInfra
from components._helpers import resource_name
from config import StackConfig


def main():
    """
    Build the site and deployer components and export stack outputs.
    """
    config = StackConfig.from_pulumi_config(pulumi.Config())

    def name(prefix: str) -> str:
        return resource_name(prefix, config.project_name, config.environment)

    site = SiteInfra(
        name=name("site"),
        bucket_name=config.bucket_name,
        canonical_host=config.canonical_host,
        certificate_arn=config.certificate_arn,
        extra_aliases=config.extra_aliases,
        enable_public_access_block=config.enable_public_access_block,
        price_class=config.price_class,
    )

    deployer = DeployerPrincipal(
        name=name("deployer"),
        user_name=config.deployer_user_name,
        bucket_name=site.bucket_name,
        distribution_id=site.distribution_id,
    )

    for output_name, value in [
        ("bucket_name", site.bucket_name),
        ("distribution_id", site.distribution_id),
        ("cloudfront_domain_name", site.cloudfront_domain_name),
        ("canonical_url", site.canonical_url),
        ("account_id", deployer.account_id),
        ("deployer_access_key_id", deployer.access_key_id),
        ("deployer_secret_access_key", deployer.secret_access_key),
    ]:
        pulumi.export(output_name, value)


if __name__ == "__main__":
    main()
