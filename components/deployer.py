"""
AWS deployer principal: the IAM user CI releases with.

The user's only permissions are an inline policy rendered from
``release.scope.pipeline_grant`` for exactly the site bucket and distribution,
so the provisioned policy and the grant the pipeline enforces at run time
cannot drift apart. ``validate_grant`` runs at preview time; a grant broader
than the four pipeline actions fails the deployment.

The access key pair is exported as secrets for the CI secret store.
"""

import json

import pulumi
import pulumi_aws as aws

from release.scope import pipeline_grant, policy_document, validate_grant

ID: str = "staticsite:aws:DeployerPrincipal"


def deployer_policy_json(
    principal: str,
    bucket: str,
    distribution_id: str,
    account_id: str,
) -> str:
    """Policy JSON for the deployer; raises if the grant is not minimal."""
    grant = validate_grant(
        pipeline_grant(
            principal=principal,
            bucket=bucket,
            distribution_id=distribution_id,
            account_id=account_id,
        )
    )
    return json.dumps(policy_document(grant), sort_keys=True)


class DeployerPrincipal(pulumi.ComponentResource):
    """IAM user + inline least-privilege policy + access key."""

    def __init__(
        self,
        name: str,
        user_name: str,
        bucket_name: pulumi.Input[str],
        distribution_id: pulumi.Input[str],
    ):
        """
        Create the deployer user.

        Args:
            name: Pulumi resource name prefix.
            user_name: IAM user name; also the grant's principal.
            bucket_name: Site bucket (Output from SiteInfra).
            distribution_id: Site distribution (Output from SiteInfra).

        Outputs:
            access_key_id: Secret output for ``AWS_ACCESS_KEY_ID``.
            secret_access_key: Secret output for ``AWS_SECRET_ACCESS_KEY``.
        """
        super().__init__(
            ID,
            name,
        )
        child_opts = pulumi.ResourceOptions(parent=self)

        self.user = aws.iam.User(
            resource_name=name,
            name=user_name,
            opts=child_opts,
        )

        account_id = aws.get_caller_identity_output().account_id
        policy = pulumi.Output.all(bucket_name, distribution_id, account_id).apply(
            lambda args: deployer_policy_json(user_name, args[0], args[1], args[2])
        )
        aws.iam.UserPolicy(
            resource_name=f"{name}-release",
            user=self.user.name,
            policy=policy,
            opts=child_opts,
        )

        key = aws.iam.AccessKey(
            resource_name=f"{name}-key",
            user=self.user.name,
            opts=child_opts,
        )

        self.account_id: pulumi.Output[str] = account_id
        self.access_key_id: pulumi.Output[str] = pulumi.Output.secret(key.id)
        self.secret_access_key: pulumi.Output[str] = pulumi.Output.secret(key.secret)
        self.register_outputs(
            {
                "user_name": self.user.name,
                "access_key_id": self.access_key_id,
                "secret_access_key": self.secret_access_key,
            }
        )
