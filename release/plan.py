"""
SyncPlan: the diff between the local content tree and the bucket listing.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from release.content import ContentObject
from release.store import LOCK_KEY, RemoteObject


@dataclass(frozen=True)
class SyncPlan:
    """
    Uploads and deletes needed to make the bucket mirror the local tree.

    ``to_upload`` and ``to_delete`` never share a path; ``unchanged`` lists
    the paths left untouched.
    """

    to_upload: tuple[ContentObject, ...]
    to_delete: tuple[str, ...]
    unchanged: tuple[str, ...] = ()

    def __post_init__(self):
        overlap = {obj.path for obj in self.to_upload} & set(self.to_delete)
        if overlap:
            raise ValueError(f"paths both uploaded and deleted: {sorted(overlap)}")

    @property
    def upload_paths(self) -> list[str]:
        return [obj.path for obj in self.to_upload]

    @property
    def is_empty(self) -> bool:
        return not self.to_upload and not self.to_delete

    def summary(self) -> dict[str, int]:
        return {
            "upload": len(self.to_upload),
            "delete": len(self.to_delete),
            "unchanged": len(self.unchanged),
        }


def etag_matches(local: ContentObject, remote: RemoteObject) -> bool:
    # Multipart ETags ("<md5>-<parts>") are not content hashes; treat as changed.
    if "-" in remote.etag:
        return False
    return remote.etag.lower() == local.content_hash


def compute_plan(
    local: Mapping[str, ContentObject],
    remote: Iterable[RemoteObject],
    delete: bool = True,
) -> SyncPlan:
    """
    Compare *local* against the *remote* listing.

    New or changed paths are uploaded. Remote paths missing locally are deleted
    when *delete* is True and otherwise left in place. The release lock object
is never part of the plan. Output is sorted by path.
    """
    remote_by_key = {obj.key: obj for obj in remote if obj.key != LOCK_KEY}
    to_upload: list[ContentObject] = []
    unchanged: list[str] = []
    for path in sorted(local):
        current = remote_by_key.get(path)
        if current is not None and etag_matches(local[path], current):
            unchanged.append(path)
        else:
            to_upload.append(local[path])

    extraneous = sorted(set(remote_by_key) - set(local))
    return SyncPlan(
        to_upload=tuple(to_upload),
        to_delete=tuple(extraneous) if delete else (),
        unchanged=tuple(unchanged),
    )
