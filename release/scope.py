"""
Credential scope for the deployer principal.

The pipeline principal holds exactly four actions on exactly one bucket and one
distribution. The same ``CredentialGrant`` is used three ways:

- rendered into the IAM inline policy by the provisioning stack
  (``components.deployer``);
- checked statically by ``validate_grant`` (tests and ``python -m release
  policy``) so an overly broad grant is a review-time defect;
- enforced at run time by ``ScopeGuard`` before every AWS call, so an action
  outside the grant fails with ``PermissionDeniedError`` instead of silently
  relying on IAM.
"""

from dataclasses import dataclass

from release.errors import ConfigurationError, PermissionDeniedError

PUT_OBJECT = "s3:PutObject"
DELETE_OBJECT = "s3:DeleteObject"
LIST_BUCKET = "s3:ListBucket"
CREATE_INVALIDATION = "cloudfront:CreateInvalidation"

PIPELINE_ACTIONS: frozenset[str] = frozenset(
    {PUT_OBJECT, DELETE_OBJECT, LIST_BUCKET, CREATE_INVALIDATION}
)

# Operator-only actions. Rollback and invalidation polling are deliberate,
# manual operations and never part of the pipeline grant. Rollback also deletes
# the release lock object it takes.
GET_OBJECT_VERSION = "s3:GetObjectVersion"
LIST_BUCKET_VERSIONS = "s3:ListBucketVersions"
GET_INVALIDATION = "cloudfront:GetInvalidation"

ROLLBACK_ACTIONS: frozenset[str] = frozenset(
    {LIST_BUCKET_VERSIONS, GET_OBJECT_VERSION, PUT_OBJECT, DELETE_OBJECT}
)

_BUCKET_LEVEL_ACTIONS = frozenset({LIST_BUCKET, LIST_BUCKET_VERSIONS})


def bucket_arn(bucket: str) -> str:
    return f"arn:aws:s3:::{bucket}"


def objects_arn(bucket: str) -> str:
    return f"arn:aws:s3:::{bucket}/*"


def object_arn(bucket: str, key: str) -> str:
    return f"arn:aws:s3:::{bucket}/{key}"


def distribution_arn(account_id: str, distribution_id: str) -> str:
    return f"arn:aws:cloudfront::{account_id}:distribution/{distribution_id}"


@dataclass(frozen=True)
class CredentialGrant:
    """
    What a principal may do, and where.

    Attributes:
        principal: IAM principal name (e.g. the deployer user).
        actions: Enumerated IAM actions; never a wildcard.
        resources: ARNs the actions apply to. Only the object ARN carries a
            trailing ``/*``.
    """

    principal: str
    actions: frozenset[str]
    resources: frozenset[str]

    def allows(self, action: str, resource: str) -> bool:
        if action not in self.actions:
            return False
        service = action.split(":", 1)[0]
        return any(
            _arn_matches(pattern, resource)
            for pattern in self.resources
            if _arn_service(pattern) == service
        )


def _arn_service(arn: str) -> str:
    parts = arn.split(":")
    return parts[2] if len(parts) > 2 else ""


def _arn_matches(pattern: str, resource: str) -> bool:
    if pattern.endswith("*"):
        return resource.startswith(pattern[:-1])
    return pattern == resource


def pipeline_grant(
    principal: str,
    bucket: str | None,
    distribution_id: str | None = None,
    account_id: str | None = None,
) -> CredentialGrant:
    """
    Build the pipeline principal's grant from the fixed action list.

    Without a distribution the grant covers the bucket only and the
    invalidation action is left out. Without a bucket it covers only the
    distribution (the ``invalidate`` command).
    """
    actions: set[str] = set()
    resources: set[str] = set()
    if bucket:
        actions.update({PUT_OBJECT, DELETE_OBJECT, LIST_BUCKET})
        resources.update({bucket_arn(bucket), objects_arn(bucket)})
    _add_distribution(actions, resources, distribution_id, account_id)
    return CredentialGrant(
        principal=principal,
        actions=frozenset(actions),
        resources=frozenset(resources),
    )


def _add_distribution(
    actions: set[str],
    resources: set[str],
    distribution_id: str | None,
    account_id: str | None,
) -> None:
    if not distribution_id:
        return
    if not account_id:
        raise ConfigurationError(
            "account id is required to scope a distribution",
            setting="account_id",
        )
    actions.add(CREATE_INVALIDATION)
    resources.add(distribution_arn(account_id, distribution_id))


def rollback_grant(
    principal: str,
    bucket: str,
    distribution_id: str | None = None,
    account_id: str | None = None,
) -> CredentialGrant:
    """
    Grant for an operator restoring prior object versions.

    With a distribution it also allows invalidating the restored paths.
    """
    actions = set(ROLLBACK_ACTIONS)
    resources = {bucket_arn(bucket), objects_arn(bucket)}
    _add_distribution(actions, resources, distribution_id, account_id)
    return CredentialGrant(
        principal=principal,
        actions=frozenset(actions),
        resources=frozenset(resources),
    )


def with_actions(grant: CredentialGrant, *actions: str) -> CredentialGrant:
    """Same principal and resources, plus *actions*. For operator runs only."""
    return CredentialGrant(
        principal=grant.principal,
        actions=grant.actions | frozenset(actions),
        resources=grant.resources,
    )


def grant_violations(grant: CredentialGrant) -> list[str]:
    """
    Return every way *grant* is broader (or narrower) than the pipeline needs.

    An empty list means the grant is exactly the minimal pipeline grant.
    """
    problems: list[str] = []
    for action in sorted(grant.actions):
        if "*" in action:
            problems.append(f"wildcard action {action}")
        elif action not in PIPELINE_ACTIONS:
            problems.append(f"action not needed by the pipeline: {action}")
    for action in sorted(PIPELINE_ACTIONS - grant.actions):
        problems.append(f"missing required action {action}")

    buckets: set[str] = set()
    distributions = 0
    for resource in sorted(grant.resources):
        service = _arn_service(resource)
        if service == "s3":
            name = resource.split(":::", 1)[-1]
            bucket, _, key = name.partition("/")
            if not bucket or "*" in bucket:
                problems.append(f"wildcard bucket resource {resource}")
            elif key not in ("", "*"):
                problems.append(f"resource narrower than the bucket: {resource}")
            buckets.add(bucket)
        elif service == "cloudfront":
            if "*" in resource or ":distribution/" not in resource:
                problems.append(f"wildcard distribution resource {resource}")
            distributions += 1
        else:
            problems.append(f"resource outside bucket and distribution: {resource}")
    if len(buckets) > 1:
        problems.append(f"grant spans several buckets: {sorted(buckets)}")
    if distributions > 1:
        problems.append("grant spans several distributions")
    return problems


def validate_grant(grant: CredentialGrant) -> CredentialGrant:
    problems = grant_violations(grant)
    if problems:
        raise ConfigurationError(
            f"credential grant for {grant.principal} is not minimal",
            problems=problems,
        )
    return grant


def policy_document(grant: CredentialGrant) -> dict:
    """
    Render *grant* as an IAM policy document.

    Bucket-level actions attach to the bucket ARN, object actions to the
    objects ARN, and invalidation to the distribution ARN.
    """
    bucket_resources = sorted(
        r for r in grant.resources if _arn_service(r) == "s3" and not r.endswith("/*")
    )
    object_resources = sorted(r for r in grant.resources if r.endswith("/*"))
    edge_resources = sorted(
        r for r in grant.resources if _arn_service(r) == "cloudfront"
    )

    groups = [
        ("ListSiteBucket", "s3", True, bucket_resources),
        ("WriteSiteObjects", "s3", False, object_resources),
        ("InvalidateSiteCache", "cloudfront", None, edge_resources),
    ]
    statements = []
    for sid, service, bucket_level, resources in groups:
        actions = sorted(
            a
            for a in grant.actions
            if a.startswith(f"{service}:")
            and (bucket_level is None or (a in _BUCKET_LEVEL_ACTIONS) == bucket_level)
        )
        if actions and resources:
            statements.append(
                {
                    "Sid": sid,
                    "Effect": "Allow",
                    "Action": actions,
                    "Resource": resources,
                }
            )
    return {"Version": "2012-10-17", "Statement": statements}


class ScopeGuard:
    """Refuses any call the grant does not cover, before it reaches AWS."""

    def __init__(self, grant: CredentialGrant):
        self.grant = grant

    def require(self, action: str, resource: str) -> None:
        if not self.grant.allows(action, resource):
            raise PermissionDeniedError(
                f"{self.grant.principal} is not granted {action} on {resource}",
                action=action,
                resource=resource,
            )
