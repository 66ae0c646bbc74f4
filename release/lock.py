"""
Per-bucket run lock.

Interleaved uploads from two runs would be visible on the public site, so a
run holds the lock for its bucket from listing through invalidation
submission. The lock is an object in the target bucket (``LOCK_KEY``) created
with a conditional put, so runs in separate CI jobs or hosts exclude each
other. It needs only ``s3:PutObject`` and ``s3:DeleteObject``, which the
pipeline grant already holds.

A run that dies without releasing leaves the object behind; ``python -m
release unlock`` removes it once the holder is known to be gone.
"""

import json
import os
import socket
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from release.errors import ReleaseBusyError
from release.logging_config import get_logger
from release.store import LOCK_KEY, ObjectStore

logger = get_logger(__name__)


def lock_body(holder: str | None = None) -> bytes:
    """Lock object content: who holds it and since when."""
    return json.dumps(
        {
            "holder": holder or f"{socket.gethostname()}:{os.getpid()}",
            "token": uuid.uuid4().hex,
            "acquired_at": datetime.now(timezone.utc).isoformat(),
        },
        sort_keys=True,
    ).encode("utf-8")


@contextmanager
def bucket_lock(
    store: ObjectStore,
    timeout: float | None = None,
    poll_interval: float = 2.0,
    holder: str | None = None,
) -> Iterator[None]:
    """
    Hold the run lock for *store*'s bucket.

    Args:
        store: Store for the target bucket.
        timeout: Seconds to wait; None waits indefinitely.
        poll_interval: Seconds between acquisition attempts.
        holder: Recorded in the lock object; defaults to ``host:pid``.

    Raises:
        ReleaseBusyError: The lock was not acquired within *timeout*.
    """
    body = lock_body(holder)
    deadline = None if timeout is None else time.monotonic() + timeout
    while not store.acquire_lock(LOCK_KEY, body):
        remaining = None if deadline is None else deadline - time.monotonic()
        if remaining is not None and remaining <= 0:
            raise ReleaseBusyError(
                f"another release holds the lock for {store.bucket}; if that run "
                f"is gone, remove it with `python -m release unlock`",
                bucket=store.bucket,
                lock_key=LOCK_KEY,
            )
        logger.info("bucket_lock_waiting", bucket=store.bucket)
        time.sleep(poll_interval if remaining is None else min(poll_interval, remaining))
    logger.debug("bucket_lock_acquired", bucket=store.bucket)
    try:
        yield
    finally:
        store.release_lock(LOCK_KEY)
        logger.debug("bucket_lock_released", bucket=store.bucket)
