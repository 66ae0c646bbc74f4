"""
Release Trigger: turn push events into at most one release each.

Events come from a GitHub-style push webhook payload or from the CI
environment of a push-triggered workflow. Only pushes to the production branch
release.

A redelivered event (same event id) is ignored only within one process, since
the seen set is not persisted. A redelivery that reaches a new CLI run still
releases, but finds the bucket already mirrored and ends as a no-op without
invalidating. A run that died between sync and invalidation therefore leaves
the edge stale until `python -m release invalidate` is run for its paths.
"""

import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from release.errors import ConfigurationError
from release.logging_config import get_logger

logger = get_logger(__name__)

_BRANCH_PREFIX = "refs/heads/"
_COMMIT_RE = re.compile(r"^[0-9a-f]{7,64}$")
_NULL_COMMIT_RE = re.compile(r"^0+$")


@dataclass(frozen=True)
class ReleaseEvent:
    """
    A push to a branch.

    Attributes:
        branch: Short branch name (``main``), or None for non-branch refs.
        commit: Full commit hash the push moved the branch to.
        event_id: Delivery or run id; unique per event, shared by redeliveries.
    """

    branch: str | None
    commit: str
    event_id: str

    @property
    def short_commit(self) -> str:
        return self.commit[:12]


def _branch_from_ref(ref: str | None) -> str | None:
    if not ref:
        return None
    if ref.startswith(_BRANCH_PREFIX):
        return ref[len(_BRANCH_PREFIX):]
    if ref.startswith("refs/"):
        return None
    return ref


def _checked_commit(commit: Any) -> str:
    value = str(commit or "").strip().lower()
    if not _COMMIT_RE.match(value):
        raise ConfigurationError(
            f"event does not carry a valid commit id: {commit!r}", commit=str(commit)
        )
    return value


def event_from_payload(
    payload: Mapping[str, Any],
    delivery_id: str | None = None,
) -> ReleaseEvent | None:
    """
    Build an event from a push webhook payload (``ref``, ``after``).

    Returns None for branch deletions, which carry an all-zero commit.
    """
    if payload.get("deleted") or _NULL_COMMIT_RE.match(str(payload.get("after", ""))):
        logger.info("trigger_ignored", reason="branch deleted", ref=payload.get("ref"))
        return None
    branch = _branch_from_ref(payload.get("ref"))
    commit = _checked_commit(payload.get("after") or payload.get("commit"))
    event_id = delivery_id or str(payload.get("delivery_id") or f"{branch}@{commit}")
    return ReleaseEvent(branch=branch, commit=commit, event_id=event_id)


def event_from_ci(environ: Mapping[str, str]) -> ReleaseEvent:
    """Build an event from a push-triggered workflow's environment."""
    ref = environ.get("GITHUB_REF") or environ.get("GITHUB_REF_NAME")
    branch = _branch_from_ref(ref)
    if environ.get("GITHUB_REF_TYPE", "branch") != "branch":
        branch = None
    commit = _checked_commit(environ.get("GITHUB_SHA"))
    run_id = environ.get("GITHUB_RUN_ID")
    attempt = environ.get("GITHUB_RUN_ATTEMPT")
    event_id = f"{run_id}.{attempt}" if run_id and attempt else run_id or f"{branch}@{commit}"
    return ReleaseEvent(branch=branch, commit=commit, event_id=event_id)


class ReleaseTrigger:
    """Filters events down to the ones that should release."""

    def __init__(self, production_branch: str):
        if not production_branch:
            raise ConfigurationError("production branch is required", setting="RELEASE_BRANCH")
        self.production_branch = production_branch
        self._seen: set[str] = set()
        self._lock = threading.Lock()

    def accept(self, event: ReleaseEvent | None) -> ReleaseEvent | None:
        """Return *event* if it should release now, otherwise None."""
        if event is None:
            return None
        if event.branch != self.production_branch:
            logger.info(
                "trigger_ignored",
                reason="not the production branch",
                branch=event.branch,
                commit=event.commit,
            )
            return None
        with self._lock:
            if event.event_id in self._seen:
                logger.info(
                    "trigger_ignored",
                    reason="duplicate delivery",
                    event_id=event.event_id,
                    commit=event.commit,
                )
                return None
            self._seen.add(event.event_id)
        logger.info(
            "trigger_accepted",
            branch=event.branch,
            commit=event.commit,
            event_id=event.event_id,
        )
        return event
