"""
Local content tree: the set of objects a release publishes.

The walk is confined to one content subdirectory of the checkout, never the
checkout itself, and skips dot-paths (``.git``, ``.env``, ``.DS_Store``...), so
build metadata and credentials cannot be published by a too-broad source path.
"""

import hashlib
import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from release.errors import ConfigurationError
from release.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
HTML_CACHE_CONTROL = "public, max-age=0, must-revalidate"
ASSET_CACHE_CONTROL = "public, max-age=86400"

_CHARSET_TYPES = (
    "application/javascript",
    "application/json",
    "application/xml",
    "image/svg+xml",
)


def content_type_for(path: str) -> str:
    guessed, _ = mimetypes.guess_type(path, strict=False)
    if not guessed:
        return DEFAULT_CONTENT_TYPE
    if guessed.startswith("text/") or guessed in _CHARSET_TYPES:
        return f"{guessed}; charset=utf-8"
    return guessed


def is_html(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in (".html", ".htm")


@dataclass(frozen=True)
class ContentObject:
    """
    One publishable file.

    Attributes:
        path: Key relative to the content root, POSIX separators.
        body: File bytes.
        content_hash: Hex MD5 of ``body``; equals the S3 ETag of a
            single-part upload, so unchanged objects are detected from a
            plain listing.
        sha256: Hex SHA-256 of ``body``, stored as object metadata.
        content_type: Content-Type header to upload with.
        cache_control: Cache-Control header to upload with.
    """

    path: str
    body: bytes = field(repr=False)
    content_hash: str
    sha256: str
    content_type: str
    cache_control: str

    @classmethod
    def from_bytes(
        cls,
        path: str,
        body: bytes,
        html_cache_control: str = HTML_CACHE_CONTROL,
        asset_cache_control: str = ASSET_CACHE_CONTROL,
    ) -> "ContentObject":
        return cls(
            path=path,
            body=body,
            content_hash=hashlib.md5(body).hexdigest(),
            sha256=hashlib.sha256(body).hexdigest(),
            content_type=content_type_for(path),
            cache_control=html_cache_control if is_html(path) else asset_cache_control,
        )


def resolve_content_root(source_root: Path, content_dir: str) -> Path:
    """
    Return the absolute content directory, refusing anything but a strict
    subdirectory of *source_root*.
    """
    raw = (content_dir or "").strip()
    relative = PurePosixPath(raw.replace("\\", "/"))
    if not raw or raw in (".", "./") or relative.is_absolute():
        raise ConfigurationError(
            f"content directory must be a subdirectory of the checkout, got {raw!r}",
            setting="RELEASE_CONTENT_DIR",
        )
    if ".." in relative.parts:
        raise ConfigurationError(
            f"content directory escapes the checkout: {raw!r}",
            setting="RELEASE_CONTENT_DIR",
        )

    base = Path(source_root).resolve()
    root = (base / relative).resolve()
    if root == base or base not in root.parents:
        raise ConfigurationError(
            f"content directory resolves outside the checkout: {root}",
            setting="RELEASE_CONTENT_DIR",
        )
    if not root.is_dir():
        raise ConfigurationError(
            f"content directory does not exist: {root}",
            setting="RELEASE_CONTENT_DIR",
        )
    return root


class ContentTree:
    """The files under one content root, keyed by object path."""

    def __init__(
        self,
        source_root: Path | str,
        content_dir: str,
        html_cache_control: str = HTML_CACHE_CONTROL,
        asset_cache_control: str = ASSET_CACHE_CONTROL,
    ):
        self.root = resolve_content_root(Path(source_root), content_dir)
        self.html_cache_control = html_cache_control
        self.asset_cache_control = asset_cache_control

    def paths(self) -> list[str]:
        found: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for filename in sorted(filenames):
                if filename.startswith("."):
                    continue
                full = Path(dirpath) / filename
                resolved = full.resolve()
                if self.root not in resolved.parents:
                    raise ConfigurationError(
                        f"{full} links outside the content directory",
                        path=str(full),
                    )
                found.append(full.relative_to(self.root).as_posix())
        return sorted(found)

    def objects(self) -> dict[str, ContentObject]:
        """
        Read every publishable file.

        Raises:
            ConfigurationError: The content directory holds nothing to publish.
        """
        objects = {
            path: ContentObject.from_bytes(
                path,
                (self.root / path).read_bytes(),
                html_cache_control=self.html_cache_control,
                asset_cache_control=self.asset_cache_control,
            )
            for path in self.paths()
        }
        if not objects:
            raise ConfigurationError(
                f"content directory is empty: {self.root}",
                setting="RELEASE_CONTENT_DIR",
            )
        logger.debug("content_scanned", root=str(self.root), objects=len(objects))
        return objects
