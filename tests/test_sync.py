"""Tests for ContentSynchronizer against an in-memory versioned bucket"""

import threading

import pytest

from release.errors import (
    PermissionDeniedError,
    ReleaseCancelledError,
    SyncAbortedError,
    TransientNetworkError,
)
from release.sync import ContentSynchronizer

from conftest import write_tree


@pytest.fixture
def synchronizer(store):
    return ContentSynchronizer(store)


class TestMirror:
    def test_remote_equals_local_after_sync(self, store, synchronizer, make_tree):
        store.seed({"index.html": b"old", "stale.html": b"remove me", "keep.css": b"k"})
        tree = make_tree({"index.html": b"new", "keep.css": b"k", "blog/post.html": b"p"})

        report = synchronizer.sync(tree)

        assert store.tree() == {
            "index.html": b"new",
            "keep.css": b"k",
            "blog/post.html": b"p",
        }
        assert sorted(report.uploaded) == ["blog/post.html", "index.html"]
        assert report.deleted == ["stale.html"]
        assert report.unchanged == 1
        assert report.completed

    def test_unchanged_objects_keep_their_version(self, store, synchronizer, make_tree):
        store.seed({"keep.css": b"k", "index.html": b"old"})
        before = store.current_version_id("keep.css")

        synchronizer.sync(make_tree({"keep.css": b"k", "index.html": b"new"}))

        assert store.current_version_id("keep.css") == before
        assert ("put", "keep.css") not in store.calls

    def test_second_run_is_a_noop(self, store, synchronizer, make_tree):
        tree = make_tree({"index.html": b"a", "img/logo.png": b"png"})
        synchronizer.sync(tree)
        store.calls.clear()

        report = synchronizer.sync(tree)

        assert report.uploaded == [] and report.deleted == []
        assert store.mutations() == []
        assert not report.mutated

    def test_deletes_leave_history(self, store, synchronizer, make_tree):
        store.seed({"old.html": b"x"})
        synchronizer.sync(make_tree({"index.html": b"i"}))
        history = store.list_versions("old.html")
        assert history[0].is_delete_marker and history[0].is_current
        assert not history[1].is_delete_marker

    def test_no_delete_keeps_extraneous(self, store, synchronizer, make_tree):
        store.seed({"old.html": b"x"})
        report = synchronizer.sync(make_tree({"index.html": b"i"}), delete=False)
        assert report.deleted == []
        assert store.tree()["old.html"] == b"x"

    def test_uploads_run_before_deletes(self, store, synchronizer, make_tree):
        store.seed({"old.css": b"x"})
        synchronizer.sync(make_tree({"index.html": b"i"}))
        assert store.mutations() == [("put", "index.html"), ("delete", "old.css")]

    def test_control_files_outside_content_dir_are_not_published(
        self, store, synchronizer, make_tree, checkout
    ):
        write_tree(checkout, {"deploy.yml": b"secrets: true"})
        synchronizer.sync(make_tree({"index.html": b"i"}))
        assert set(store.tree()) == {"index.html"}


class TestDryRun:
    def test_changes_nothing(self, store, synchronizer, make_tree):
        store.seed({"old.html": b"x"})
        report = synchronizer.sync(make_tree({"index.html": b"i"}), dry_run=True)
        assert report.dry_run and report.completed
        assert store.mutations() == []
        assert store.tree() == {"old.html": b"x"}


class TestFailures:
    def test_failed_upload_aborts_and_reports(self, store, synchronizer, make_tree):
        store.fail_on["b.html"] = TransientNetworkError("timed out", action="s3:PutObject")
        tree = make_tree({"a.html": b"a", "b.html": b"b", "c.html": b"c"})

        with pytest.raises(SyncAbortedError) as exc_info:
            synchronizer.sync(tree)

        error = exc_info.value
        assert error.path == "b.html"
        assert error.category == "transient_network"
        assert error.exit_code == 4
        assert error.report.uploaded == ["a.html"]
        assert error.report.failed == {"b.html": "timed out"}
        assert not error.report.completed
        assert ("put", "c.html") not in store.calls

    def test_permission_failure_keeps_its_category(self, store, synchronizer, make_tree):
        store.fail_on["index.html"] = PermissionDeniedError(
            "denied", action="s3:PutObject", resource="arn:aws:s3:::site-bucket/index.html"
        )
        with pytest.raises(SyncAbortedError) as exc_info:
            synchronizer.sync(make_tree({"index.html": b"i"}))
        payload = exc_info.value.to_dict()
        assert payload["error"] == "permission_denied"
        assert payload["action"] == "s3:PutObject"
        assert payload["path"] == "index.html"
        assert payload["uploaded"] == []


class TestCancellation:
    def test_cancel_before_apply_is_clean(self, store, synchronizer, make_tree):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ReleaseCancelledError) as exc_info:
            synchronizer.sync(make_tree({"index.html": b"i"}), cancel=cancel)
        assert exc_info.value.clean
        assert store.mutations() == []

    def test_cancel_mid_run_reports_what_is_live(self, store, synchronizer, make_tree):
        cancel = threading.Event()
        original_put = store.put_object

        def put_then_cancel(obj):
            version = original_put(obj)
            cancel.set()
            return version

        store.put_object = put_then_cancel
        tree = make_tree({"a.html": b"a", "b.html": b"b"})

        with pytest.raises(ReleaseCancelledError) as exc_info:
            synchronizer.sync(tree, cancel=cancel)

        error = exc_info.value
        assert not error.clean
        assert error.report.uploaded == ["a.html"]
        assert store.tree() == {"a.html": b"a"}
