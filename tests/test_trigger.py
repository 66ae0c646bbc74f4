"""Tests for ReleaseTrigger and event parsing"""

import pytest

from release.errors import ConfigurationError
from release.trigger import ReleaseEvent, ReleaseTrigger, event_from_ci, event_from_payload

COMMIT = "3f786850e387550fdab836ed7e6dc881de23001b"


class TestEventFromPayload:
    def test_push_to_branch(self):
        event = event_from_payload(
            {"ref": "refs/heads/main", "after": COMMIT}, delivery_id="d-1"
        )
        assert event == ReleaseEvent(branch="main", commit=COMMIT, event_id="d-1")
        assert event.short_commit == COMMIT[:12]

    def test_branch_deletion_is_ignored(self):
        payload = {"ref": "refs/heads/main", "after": "0" * 40, "deleted": True}
        assert event_from_payload(payload) is None

    def test_tag_push_has_no_branch(self):
        event = event_from_payload({"ref": "refs/tags/v1.0", "after": COMMIT})
        assert event.branch is None

    def test_event_id_defaults_to_branch_and_commit(self):
        event = event_from_payload({"ref": "refs/heads/main", "after": COMMIT})
        assert event.event_id == f"main@{COMMIT}"

    def test_invalid_commit(self):
        with pytest.raises(ConfigurationError):
            event_from_payload({"ref": "refs/heads/main", "after": "not-a-sha"})


class TestEventFromCi:
    def test_reads_workflow_environment(self):
        event = event_from_ci(
            {
                "GITHUB_REF": "refs/heads/main",
                "GITHUB_REF_TYPE": "branch",
                "GITHUB_SHA": COMMIT.upper(),
                "GITHUB_RUN_ID": "981",
                "GITHUB_RUN_ATTEMPT": "2",
            }
        )
        assert event.branch == "main"
        assert event.commit == COMMIT
        assert event.event_id == "981.2"

    def test_tag_workflow_has_no_branch(self):
        event = event_from_ci(
            {"GITHUB_REF_NAME": "v1.0", "GITHUB_REF_TYPE": "tag", "GITHUB_SHA": COMMIT}
        )
        assert event.branch is None

    def test_missing_sha(self):
        with pytest.raises(ConfigurationError):
            event_from_ci({"GITHUB_REF": "refs/heads/main"})


class TestReleaseTrigger:
    def test_production_push_is_accepted(self):
        event = ReleaseEvent(branch="main", commit=COMMIT, event_id="d-1")
        assert ReleaseTrigger("main").accept(event) is event

    def test_other_branch_is_ignored(self):
        event = ReleaseEvent(branch="feature/x", commit=COMMIT, event_id="d-1")
        assert ReleaseTrigger("main").accept(event) is None

    def test_redelivery_releases_once(self):
        trigger = ReleaseTrigger("main")
        event = ReleaseEvent(branch="main", commit=COMMIT, event_id="d-1")
        assert trigger.accept(event) is event
        assert trigger.accept(event) is None

    def test_two_pushes_release_twice(self):
        trigger = ReleaseTrigger("main")
        first = ReleaseEvent(branch="main", commit=COMMIT, event_id="d-1")
        second = ReleaseEvent(branch="main", commit="a" * 40, event_id="d-2")
        assert trigger.accept(first) and trigger.accept(second)

    def test_none_passes_through(self):
        assert ReleaseTrigger("main").accept(None) is None

    def test_branch_is_required(self):
        with pytest.raises(ConfigurationError):
            ReleaseTrigger("")
