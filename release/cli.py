"""
Command surface: ``python -m release <command>``.

Settings come from the environment (see ``release.settings``); options
override the matching variables. On failure one JSON object is written to
stderr (``{"error": <category>, "detail": ..., ...}``) and the process exits
with the category's code. Results are written to stdout as JSON.

``sync``, ``release`` and ``rollback`` hold the bucket's lock object while they
mutate the bucket, so overlapping CI jobs serialize even across hosts. A lock
left by a killed job is removed with ``unlock``.
"""

import functools
import json
import os
import shlex
import sys
import threading
from pathlib import Path

import click

from release import scope
from release.errors import ConfigurationError, ReleaseError
from release.invalidation import CacheInvalidator, invalidation_paths
from release.ledger import VersionLedger, normalize_key
from release.lock import bucket_lock
from release.logging_config import configure_logging
from release.pipeline import ReleasePipeline, build_invalidator, build_store, content_tree
from release.settings import ReleaseConfig
from release.store import LOCK_KEY
from release.sync import ContentSynchronizer
from release.trigger import event_from_ci, event_from_payload


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _fail(error: ReleaseError) -> None:
    click.echo(json.dumps(error.to_dict(), sort_keys=True, default=str), err=True)
    sys.exit(error.exit_code)


def handle_release_errors(command):
    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except ReleaseError as exc:
            _fail(exc)

    return wrapper


def _config(ctx: click.Context, **overrides: str | None) -> ReleaseConfig:
    environ = ctx.obj["environ"]
    return ReleaseConfig.from_env(
        environ, {key: value for key, value in overrides.items() if value is not None}
    )


def _load_event(event_file: Path) -> dict:
    try:
        payload = json.loads(event_file.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ConfigurationError(
            "event file is not a JSON object", path=str(event_file), reason=str(exc)
        ) from exc
    if not isinstance(payload, dict):
        raise ConfigurationError("event file is not a JSON object", path=str(event_file))
    return payload


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option("--log-level", default=None, help="Override RELEASE_LOG_LEVEL.")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None):
    """Publish the static site: mirror sync, cache invalidation, rollback."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("environ", dict(os.environ))
    environ = ctx.obj["environ"]
    configure_logging(
        level=log_level or environ.get("RELEASE_LOG_LEVEL", "INFO"), environ=environ
    )


@cli.command()
@click.argument("source")
@click.option("--bucket", default=None, help="Target bucket (RELEASE_BUCKET).")
@click.option(
    "--delete/--no-delete",
    default=True,
    show_default=True,
    help="Delete remote objects that are absent locally.",
)
@click.option("--dry-run", is_flag=True, help="Plan and log without changing anything.")
@click.pass_context
@handle_release_errors
def sync(ctx: click.Context, source: str, bucket: str | None, delete: bool, dry_run: bool):
    """Mirror SOURCE (a subdirectory of the checkout) into the bucket."""
    config = _config(ctx, RELEASE_CONTENT_DIR=source, RELEASE_BUCKET=bucket)
    store = build_store(config, scope.ScopeGuard(config.grant()))
    tree = content_tree(config)
    with bucket_lock(
        store, timeout=config.lock_timeout, poll_interval=config.lock_poll_interval
    ):
        report = ContentSynchronizer(store).sync(tree, delete=delete, dry_run=dry_run)
    _echo_json(report.to_dict())


@cli.command()
@click.argument("paths", nargs=-1, required=True)
@click.option(
    "--distribution-id", default=None, help="Distribution (RELEASE_DISTRIBUTION_ID)."
)
@click.option(
    "--wait",
    is_flag=True,
    help="Poll until complete; needs cloudfront:GetInvalidation (operator only).",
)
@click.pass_context
@handle_release_errors
def invalidate(ctx: click.Context, paths: tuple[str, ...], distribution_id: str | None, wait: bool):
    """Invalidate PATHS (e.g. /index.html or /*) on the distribution."""
    config = _config(ctx, RELEASE_DISTRIBUTION_ID=distribution_id)
    config.require_distribution()
    grant = config.grant()
    if wait:
        grant = scope.with_actions(grant, scope.GET_INVALIDATION)
    invalidator: CacheInvalidator = build_invalidator(config, scope.ScopeGuard(grant))
    request = invalidator.submit(paths)
    if wait:
        request = invalidator.wait(request)
    _echo_json(request.to_dict())


@cli.command(name="release")
@click.option(
    "--event",
    "event_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Push webhook payload (JSON). Defaults to the CI environment.",
)
@click.option("--delivery-id", default=None, help="Webhook delivery id.")
@click.pass_context
@handle_release_errors
def release_command(ctx: click.Context, event_file: Path | None, delivery_id: str | None):
    """Run the full release for a push event."""
    config = _config(ctx)
    if event_file is not None:
        event = event_from_payload(_load_event(event_file), delivery_id=delivery_id)
    else:
        event = event_from_ci(ctx.obj["environ"])

    pipeline = ctx.obj.get("pipeline") or ReleasePipeline.from_config(config)
    result = pipeline.run(event, cancel=ctx.obj.get("cancel") or threading.Event())
    _echo_json(result.to_dict())
    if result.error is not None:
        _fail(result.error)


@cli.command()
@click.argument("path")
@click.option("--version-id", default=None, help="Version to restore; defaults to the previous one.")
@click.option(
    "--invalidate",
    "invalidate_edge",
    is_flag=True,
    help="Also invalidate the restored path (RELEASE_DISTRIBUTION_ID).",
)
@click.pass_context
@handle_release_errors
def rollback(ctx: click.Context, path: str, version_id: str | None, invalidate_edge: bool):
    """Restore PATH to a prior version. Needs operator credentials."""
    config = _config(ctx)
    guard = scope.ScopeGuard(config.operator_grant(invalidate=invalidate_edge))
    store = build_store(config, guard)
    key = normalize_key(path)
    with bucket_lock(
        store, timeout=config.lock_timeout, poll_interval=config.lock_poll_interval
    ):
        new_version = VersionLedger(store).restore(key, version_id)

    result: dict = {"path": key, "version_id": new_version}
    if invalidate_edge:
        request = build_invalidator(config, guard).invalidate_changes([key])
        result["invalidation"] = request.to_dict() if request else None
    else:
        # The edge keeps serving the old copy until its max-age runs out.
        paths = invalidation_paths([key], config.invalidation_max_paths)
        result["next"] = shlex.join(["python", "-m", "release", "invalidate", *paths])
    _echo_json(result)


@cli.command()
@click.argument("path")
@click.pass_context
@handle_release_errors
def history(ctx: click.Context, path: str):
    """List the versions of PATH, newest first. Needs operator credentials."""
    config = _config(ctx)
    ledger = VersionLedger(build_store(config, scope.ScopeGuard(config.operator_grant())))
    _echo_json(
        [
            {
                "version_id": v.version_id,
                "last_modified": v.last_modified,
                "is_current": v.is_current,
                "is_delete_marker": v.is_delete_marker,
            }
            for v in ledger.history(path)
        ]
    )


@cli.command()
@click.option("--bucket", default=None, help="Target bucket (RELEASE_BUCKET).")
@click.pass_context
@handle_release_errors
def unlock(ctx: click.Context, bucket: str | None):
    """Remove the bucket's release lock left behind by a run that died."""
    config = _config(ctx, RELEASE_BUCKET=bucket)
    store = build_store(config, scope.ScopeGuard(config.grant()))
    store.release_lock(LOCK_KEY)
    _echo_json({"bucket": store.bucket, "lock_key": LOCK_KEY, "released": True})


@cli.command()
@click.option("--bucket", envvar="RELEASE_BUCKET", required=True)
@click.option("--distribution-id", envvar="RELEASE_DISTRIBUTION_ID", required=True)
@click.option("--account-id", envvar="RELEASE_ACCOUNT_ID", required=True)
@click.option("--principal", envvar="RELEASE_PRINCIPAL", default="site-deployer")
@handle_release_errors
def policy(bucket: str, distribution_id: str, account_id: str, principal: str):
    """Print the deployer's IAM policy and check that it is minimal."""
    grant = scope.validate_grant(
        scope.pipeline_grant(
            principal=principal,
            bucket=bucket,
            distribution_id=distribution_id,
            account_id=account_id,
        )
    )
    _echo_json(scope.policy_document(grant))


def main():
    cli(obj={})
