"""Tests for ReleasePipeline"""

import dataclasses
import threading

import pytest
from botocore.exceptions import ClientError

from release.errors import ReleaseBusyError, ReleaseCancelledError
from release.invalidation import CacheInvalidator
from release.lock import bucket_lock
from release.logging_config import configure_logging
from release.pipeline import NOOP, PUBLISHED, PUBLISHED_STALE, SKIPPED, ReleasePipeline
from release.settings import ReleaseConfig
from release.sync import ContentSynchronizer
from release.trigger import ReleaseEvent

from conftest import ACCOUNT_ID, BUCKET, DISTRIBUTION_ID, FakeVersionedStore, write_tree

COMMIT = "3f786850e387550fdab836ed7e6dc881de23001b"


def push(event_id: str = "d-1", branch: str = "main", commit: str = COMMIT) -> ReleaseEvent:
    return ReleaseEvent(branch=branch, commit=commit, event_id=event_id)


@pytest.fixture
def pipeline(config, store, invalidator):
    return ReleasePipeline(config, ContentSynchronizer(store), invalidator)


class TestRelease:
    def test_publishes_and_invalidates_changed_paths(
        self, pipeline, store, make_tree, cloudfront_client
    ):
        store.seed({"index.html": b"old", "stale.css": b"x", "keep.js": b"k"})
        make_tree({"index.html": b"new", "keep.js": b"k"})

        result = pipeline.run(push())

        assert result.status == PUBLISHED
        assert result.commit == COMMIT
        assert store.tree() == {"index.html": b"new", "keep.js": b"k"}
        assert result.invalidation.paths == ("/", "/index.html", "/stale.css")
        cloudfront_client.create_invalidation.assert_called_once()

    def test_unchanged_content_is_a_noop(self, pipeline, store, make_tree, cloudfront_client):
        store.seed({"index.html": b"same"})
        make_tree({"index.html": b"same"})

        result = pipeline.run(push())

        assert result.status == NOOP
        assert store.mutations() == []
        cloudfront_client.create_invalidation.assert_not_called()

    def test_other_branch_is_skipped(self, pipeline, store, make_tree):
        make_tree({"index.html": b"i"})
        result = pipeline.run(push(branch="feature/x"))
        assert result.status == SKIPPED
        assert store.calls == []

    def test_redelivered_event_releases_once(self, pipeline, store, make_tree, cloudfront_client):
        make_tree({"index.html": b"i"})
        assert pipeline.run(push("d-1")).status == PUBLISHED
        assert pipeline.run(push("d-1")).status == SKIPPED
        assert cloudfront_client.create_invalidation.call_count == 1

    def test_redelivery_to_a_new_process_is_a_noop(
        self, config, store, invalidator, make_tree, cloudfront_client
    ):
        make_tree({"index.html": b"i"})
        assert ReleasePipeline(config, ContentSynchronizer(store), invalidator).run(
            push("d-1")
        ).status == PUBLISHED

        # a fresh pipeline has no memory of d-1; the mirrored bucket makes it a no-op
        rerun = ReleasePipeline(config, ContentSynchronizer(store), invalidator)
        assert rerun.run(push("d-1")).status == NOOP
        assert cloudfront_client.create_invalidation.call_count == 1

    def test_result_serializes(self, pipeline, make_tree):
        make_tree({"index.html": b"i"})
        payload = pipeline.run(push()).to_dict()
        assert payload["status"] == PUBLISHED
        assert payload["sync"]["uploaded"] == ["index.html"]
        assert payload["invalidation"]["request_id"] == "I1"
        assert payload["error"] is None


class TestDegraded:
    def test_invalidation_failure_leaves_content_published(
        self, pipeline, store, make_tree, cloudfront_client
    ):
        cloudfront_client.create_invalidation.side_effect = ClientError(
            {"Error": {"Code": "ServiceUnavailable", "Message": "down"}},
            "CreateInvalidation",
        )
        make_tree({"index.html": b"new"})

        result = pipeline.run(push())

        assert result.status == PUBLISHED_STALE
        assert result.degraded
        assert store.tree() == {"index.html": b"new"}
        assert result.error.exit_code == 5
        assert result.error.details["cause"] == "transient_network"
        assert result.error.details["paths"] == ["/", "/index.html"]


class TestFailures:
    def test_cancel_before_sync_is_clean(self, pipeline, store, make_tree):
        make_tree({"index.html": b"i"})
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ReleaseCancelledError) as exc_info:
            pipeline.run(push(), cancel=cancel)
        assert exc_info.value.clean
        assert store.mutations() == []

    def test_busy_bucket(self, config, store, invalidator, make_tree):
        make_tree({"index.html": b"i"})
        pipeline = ReleasePipeline(
            dataclasses.replace(config, lock_timeout=0.05),
            ContentSynchronizer(store),
            invalidator,
        )
        with bucket_lock(store):
            with pytest.raises(ReleaseBusyError):
                pipeline.run(push())
        assert store.mutations() == []


class TestLogging:
    @pytest.fixture
    def structured_logs(self):
        # before the call phase, which installs caplog's handler on the root logger
        configure_logging(level="INFO", environ={})

    def test_every_line_carries_commit_and_run_id(
        self, structured_logs, pipeline, make_tree, caplog
    ):
        make_tree({"index.html": b"i"})

        pipeline.run(push("d-42"))

        events = [
            record.msg
            for record in caplog.records
            if record.name.startswith("release.") and isinstance(record.msg, dict)
        ]
        assert any(e["event"] == "release_published" for e in events)
        for event in events:
            if event["event"] == "trigger_accepted":
                continue
            assert event["commit"] == COMMIT
            assert event["run_id"] == "d-42"


class TestConcurrentRuns:
    def test_two_runs_never_interleave(self, tmp_path, guard, cloudfront_client):
        store = FakeVersionedStore(put_delay=0.01)
        first = {f"page-{i}.html": b"first" for i in range(5)}
        second = {f"page-{i}.html": b"second" for i in range(3)}

        pipelines = []
        for name, files in (("a", first), ("b", second)):
            checkout = tmp_path / name
            write_tree(checkout / "public", files)
            config = _config_for(checkout)
            invalidator = CacheInvalidator(
                DISTRIBUTION_ID, ACCOUNT_ID, guard, client=cloudfront_client
            )
            pipelines.append(ReleasePipeline(config, ContentSynchronizer(store), invalidator))

        errors = []

        def run(pipeline, event_id):
            try:
                pipeline.run(push(event_id))
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [
            threading.Thread(target=run, args=(p, f"d-{i}")) for i, p in enumerate(pipelines)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert store.tree() in (first, second)
        assert cloudfront_client.create_invalidation.call_count == 2


def _config_for(checkout):
    return ReleaseConfig(
        bucket=BUCKET,
        access_key_id="AKIAEXAMPLE",
        secret_access_key="secret",
        distribution_id=DISTRIBUTION_ID,
        account_id=ACCOUNT_ID,
        source_root=str(checkout),
        content_dir="public",
        lock_poll_interval=0.01,
    )
