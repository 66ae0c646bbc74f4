"""
AWS static hosting: versioned S3 origin + CloudFront with canonical-host
enforcement.

This component creates the S3 bucket the release pipeline mirrors into and the
CloudFront distribution that serves it. The bucket is not publicly readable:
Block Public Access can be enabled (default), and CloudFront reads it via
Origin Access Control (OAC) with signed requests. Versioning is enabled so the
release pipeline's rollback can restore any overwritten or deleted object.

Edge state the canonical-host enforcer depends on is declared here:

- viewer protocol policy ``redirect-to-https`` (the function only ever sees
  HTTPS requests, so it adjudicates host, never scheme);
- the redirect CloudFront Function at viewer-request;
- the alias set (canonical host plus redirected extras) on the ACM certificate.

Outputs (``bucket_name``, ``bucket_arn``, ``distribution_id``,
``distribution_arn``, ``cloudfront_domain_name``) are ``Output[str]`` and feed
the deployer principal's policy and the release pipeline's configuration.
"""

import json

import pulumi
import pulumi_aws as aws

from components._helpers import (
    distribution_aliases,
    oac_bucket_policy,
    redirect_function_code,
)

ID: str = "staticsite:aws:SiteInfra"

# Applied when enable_public_access_block is True. Used by tests and callers
# to assert on secure defaults.
S3_BLOCK_PUBLIC_ACCESS: dict[str, bool] = {
    "block_public_acls": True,
    "block_public_policy": True,
    "ignore_public_acls": True,
    "restrict_public_buckets": True,
}

VIEWER_PROTOCOL_POLICY = "redirect-to-https"
FUNCTION_RUNTIME = "cloudfront-js-2.0"
ORIGIN_ID = "s3-origin"


class SiteInfra(pulumi.ComponentResource):
    """
    Versioned S3 bucket + CloudFront (OAC, HTTPS-only, canonical-host redirect).

    Resources: Bucket, BucketVersioningV2, optional BucketPublicAccessBlock,
    OriginAccessControl, cloudfront Function, Distribution, BucketPolicy.
    Content is served only via CloudFront.
    """

    def __init__(
        self,
        name: str,
        bucket_name: str,
        canonical_host: str,
        certificate_arn: str,
        extra_aliases: list[str] | None = None,
        enable_public_access_block: bool = True,
        price_class: str = "PriceClass_100",
    ):
        """
        Create the bucket, redirect function and distribution.

        Args:
            name: Pulumi resource name prefix.
            bucket_name: Globally unique S3 bucket name.
            canonical_host: The one public hostname (e.g. "example.com").
            certificate_arn: ACM certificate (us-east-1) covering every alias.
            extra_aliases: Other hostnames served only to be redirected.
            enable_public_access_block: If True (default), apply
                S3_BLOCK_PUBLIC_ACCESS so the bucket cannot be made public.
            price_class: CloudFront price class.
        """
        super().__init__(
            ID,
            name,
        )
        child_opts = pulumi.ResourceOptions(parent=self)
        aliases = distribution_aliases(canonical_host, extra_aliases)

        self.bucket = aws.s3.Bucket(
            resource_name=name,
            bucket=bucket_name,
            opts=child_opts,
        )

        # Rollback restores prior versions; deletes leave delete markers.
        aws.s3.BucketVersioningV2(
            resource_name=f"{name}-versioning",
            bucket=self.bucket.id,
            versioning_configuration=aws.s3.BucketVersioningV2VersioningConfigurationArgs(
                status="Enabled",
            ),
            opts=child_opts,
        )

        if enable_public_access_block:
            aws.s3.BucketPublicAccessBlock(
                resource_name=f"{name}-block-public",
                bucket=self.bucket.id,
                opts=child_opts,
                **S3_BLOCK_PUBLIC_ACCESS,
            )

        # retain_on_delete=True avoids AWS 409 OriginAccessControlInUse on
        # destroy while the distribution still references the OAC.
        oac = aws.cloudfront.OriginAccessControl(
            resource_name=f"{name}-oac",
            origin_access_control_origin_type="s3",
            signing_behavior="always",
            signing_protocol="sigv4",
            opts=pulumi.ResourceOptions(parent=self, retain_on_delete=True),
        )

        self.redirect_function = aws.cloudfront.Function(
            resource_name=f"{name}-canonical-host",
            runtime=FUNCTION_RUNTIME,
            comment=f"301 every host except {aliases[0]} to https://{aliases[0]}",
            code=redirect_function_code(canonical_host),
            publish=True,
            opts=child_opts,
        )

        origins = [
            aws.cloudfront.DistributionOriginArgs(
                domain_name=self.bucket.bucket_regional_domain_name,
                origin_id=ORIGIN_ID,
                origin_access_control_id=oac.id,
            )
        ]

        forwarded_values = aws.cloudfront.DistributionDefaultCacheBehaviorForwardedValuesArgs(
            query_string=False,
            cookies=aws.cloudfront.DistributionDefaultCacheBehaviorForwardedValuesCookiesArgs(
                forward="none",
            ),
        )
        default_cache_behavior = aws.cloudfront.DistributionDefaultCacheBehaviorArgs(
            target_origin_id=ORIGIN_ID,
            viewer_protocol_policy=VIEWER_PROTOCOL_POLICY,
            allowed_methods=["GET", "HEAD", "OPTIONS"],
            cached_methods=["GET", "HEAD"],
            compress=True,
            forwarded_values=forwarded_values,
            function_associations=[
                aws.cloudfront.DistributionDefaultCacheBehaviorFunctionAssociationArgs(
                    event_type="viewer-request",
                    function_arn=self.redirect_function.arn,
                )
            ],
        )

        restrictions = aws.cloudfront.DistributionRestrictionsArgs(
            geo_restriction=aws.cloudfront.DistributionRestrictionsGeoRestrictionArgs(
                restriction_type="none",
            ),
        )

        viewer_certificate = aws.cloudfront.DistributionViewerCertificateArgs(
            acm_certificate_arn=certificate_arn,
            ssl_support_method="sni-only",
            minimum_protocol_version="TLSv1.2_2021",
        )

        # Distribution is deleted before the OAC (AWS returns 409 otherwise).
        self.distribution = aws.cloudfront.Distribution(
            resource_name=f"{name}-cdn",
            enabled=True,
            aliases=aliases,
            default_root_object="index.html",
            price_class=price_class,
            origins=origins,
            default_cache_behavior=default_cache_behavior,
            restrictions=restrictions,
            viewer_certificate=viewer_certificate,
            opts=pulumi.ResourceOptions(parent=self, depends_on=[oac]),
        )

        aws.s3.BucketPolicy(
            resource_name=f"{name}-oac-read",
            bucket=self.bucket.id,
            policy=pulumi.Output.all(self.bucket.arn, self.distribution.arn).apply(
                lambda arns: json.dumps(oac_bucket_policy(arns[0], arns[1]))
            ),
            opts=child_opts,
        )

        self.bucket_name: pulumi.Output[str] = self.bucket.bucket
        self.bucket_arn: pulumi.Output[str] = self.bucket.arn
        self.distribution_id: pulumi.Output[str] = self.distribution.id
        self.distribution_arn: pulumi.Output[str] = self.distribution.arn
        self.cloudfront_domain_name: pulumi.Output[str] = self.distribution.domain_name
        self.canonical_url: str = f"https://{aliases[0]}"
        self.register_outputs(
            {
                "bucket_name": self.bucket_name,
                "bucket_arn": self.bucket_arn,
                "distribution_id": self.distribution_id,
                "distribution_arn": self.distribution_arn,
                "cloudfront_domain_name": self.cloudfront_domain_name,
            }
        )
