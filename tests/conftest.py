import itertools
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from release.content import ContentObject, ContentTree
from release.errors import ConfigurationError, ReleaseError
from release.invalidation import CacheInvalidator
from release.scope import ScopeGuard, pipeline_grant
from release.settings import ReleaseConfig
from release.store import ObjectStore, RemoteObject, RemoteObjectState

BUCKET = "site-bucket"
DISTRIBUTION_ID = "E2EXAMPLE123"
ACCOUNT_ID = "123456789012"

_EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeVersionedStore(ObjectStore):
    """
    In-memory versioned bucket.

    Every put appends a version, every delete appends a delete marker, and
    nothing is ever erased, like S3 with versioning enabled.
    """

    def __init__(self, bucket: str = BUCKET, put_delay: float = 0.0):
        self.bucket = bucket
        self.put_delay = put_delay
        self.fail_on: dict[str, ReleaseError] = {}
        self.calls: list[tuple[str, str]] = []
        # key -> list of (version_id, body, etag, is_delete_marker), oldest first
        self.versions: dict[str, list[tuple[str, bytes | None, str | None, bool]]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _append(self, key, body, etag, delete_marker=False) -> str:
        with self._lock:
            version_id = f"v{next(self._ids)}"
            self.versions.setdefault(key, []).append((version_id, body, etag, delete_marker))
            return version_id

    def seed(self, files: dict[str, bytes]) -> None:
        for key, body in files.items():
            self.put_object(ContentObject.from_bytes(key, body))
        self.calls.clear()

    def list_objects(self) -> list[RemoteObject]:
        self.calls.append(("list", ""))
        result = []
        for key, history in sorted(self.versions.items()):
            _, body, etag, deleted = history[-1]
            if not deleted:
                result.append(RemoteObject(key=key, etag=etag, size=len(body)))
        return result

    def put_object(self, obj: ContentObject) -> str:
        self.calls.append(("put", obj.path))
        if obj.path in self.fail_on:
            raise self.fail_on[obj.path]
        if self.put_delay:
            time.sleep(self.put_delay)
        return self._append(obj.path, obj.body, obj.content_hash)

    def delete_object(self, key: str) -> str:
        self.calls.append(("delete", key))
        if key in self.fail_on:
            raise self.fail_on[key]
        return self._append(key, None, None, delete_marker=True)

    def list_versions(self, key: str) -> list[RemoteObjectState]:
        history = self.versions.get(key, [])
        states = []
        for index, (version_id, _, etag, deleted) in enumerate(history):
            states.append(
                RemoteObjectState(
                    path=key,
                    version_id=version_id,
                    last_modified=_EPOCH + timedelta(seconds=index),
                    is_current=index == len(history) - 1,
                    is_delete_marker=deleted,
                    etag=etag,
                )
            )
        return list(reversed(states))

    def restore_version(self, key: str, version_id: str) -> str:
        self.calls.append(("restore", key))
        body = self.get_version(key, version_id)
        etag = next(v[2] for v in self.versions[key] if v[0] == version_id)
        return self._append(key, body, etag)

    def get_version(self, key: str, version_id: str) -> bytes:
        for vid, body, _, deleted in self.versions.get(key, []):
            if vid == version_id and not deleted:
                return body
        raise ConfigurationError(f"{key} has no version {version_id}")

    def current_version_id(self, key: str) -> str | None:
        history = self.versions.get(key)
        return history[-1][0] if history else None

    def acquire_lock(self, key: str, body: bytes) -> bool:
        self.calls.append(("lock", key))
        with self._lock:
            history = self.versions.get(key)
            if history and not history[-1][3]:
                return False
            self.versions.setdefault(key, []).append((f"v{next(self._ids)}", body, None, False))
            return True

    def release_lock(self, key: str) -> None:
        self.calls.append(("unlock", key))
        history = self.versions.get(key)
        if history and not history[-1][3]:
            self._append(key, None, None, delete_marker=True)

    def tree(self) -> dict[str, bytes]:
        return {
            key: history[-1][1]
            for key, history in self.versions.items()
            if not history[-1][3]
        }

    def mutations(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in ("put", "delete", "restore")]


class FileLockStore(FakeVersionedStore):
    """FakeVersionedStore whose lock object is a file, shared across processes."""

    def __init__(self, root: Path, bucket: str = BUCKET):
        super().__init__(bucket)
        self.root = Path(root)

    def acquire_lock(self, key: str, body: bytes) -> bool:
        try:
            with open(self.root / key, "xb") as handle:
                handle.write(body)
        except FileExistsError:
            return False
        return True

    def release_lock(self, key: str) -> None:
        (self.root / key).unlink(missing_ok=True)


def write_tree(root: Path, files: dict[str, bytes]) -> None:
    for relative, body in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(body)


@pytest.fixture
def store():
    return FakeVersionedStore()


@pytest.fixture
def checkout(tmp_path):
    """A repository checkout with a ``public`` content dir and control files."""
    (tmp_path / "public").mkdir()
    write_tree(
        tmp_path,
        {
            ".env": b"AWS_SECRET_ACCESS_KEY=do-not-publish",
            "README.md": b"# site",
        },
    )
    return tmp_path


@pytest.fixture
def make_tree(checkout):
    def build(files: dict[str, bytes]) -> ContentTree:
        write_tree(checkout / "public", files)
        return ContentTree(checkout, "public")

    return build


@pytest.fixture
def config(checkout):
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


@pytest.fixture
def guard():
    return ScopeGuard(pipeline_grant("site-deployer", BUCKET, DISTRIBUTION_ID, ACCOUNT_ID))


@pytest.fixture
def cloudfront_client():
    client = MagicMock()
    ids = itertools.count(1)
    client.create_invalidation.side_effect = lambda **kwargs: {
        "Invalidation": {"Id": f"I{next(ids)}", "Status": "InProgress"}
    }
    return client


@pytest.fixture
def invalidator(guard, cloudfront_client):
    return CacheInvalidator(
        distribution_id=DISTRIBUTION_ID,
        account_id=ACCOUNT_ID,
        guard=guard,
        client=cloudfront_client,
    )
