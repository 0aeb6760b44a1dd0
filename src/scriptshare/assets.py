"""Storage for uploaded cover images and script data files."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from urllib.parse import urlsplit

from .errors import StorageError

logger = logging.getLogger(__name__)

UPLOADS_URL_PREFIX = "/uploads"


class AssetKind(str, Enum):
    """Upload categories, each stored in its own directory."""

    IMAGE = "images"
    JSON = "json"

    @property
    def filename_prefix(self) -> str:
        return "script-img-" if self is AssetKind.IMAGE else "script-json-"


@dataclass(frozen=True)
class StoredAsset:
    kind: AssetKind
    filename: str
    path: Path
    url: str
    size: int


class AssetStore:
    """Write uploads under ``root`` and map their public URLs back to disk.

    Files are named ``<prefix><milliseconds>-<random><extension>`` so two
    uploads of the same original file never collide.
    """

    def __init__(self, root: Path, *, public_base_url: str = "") -> None:
        self.root = root
        self.public_base_url = public_base_url.rstrip("/")
        self._base_path_parts = PurePosixPath(urlsplit(self.public_base_url).path or "/").parts
        for kind in AssetKind:
            self.directory_for(kind).mkdir(parents=True, exist_ok=True)

    def directory_for(self, kind: AssetKind) -> Path:
        return self.root / kind.value

    def url_for(self, kind: AssetKind, filename: str) -> str:
        return f"{self.public_base_url}{UPLOADS_URL_PREFIX}/{kind.value}/{filename}"

    def save(self, kind: AssetKind, original_filename: str | None, content: bytes) -> StoredAsset:
        """Persist ``content`` and return where it was stored.

        Raises:
            StorageError: If the file cannot be written.
        """

        extension = PurePosixPath(original_filename or "").suffix
        filename = (
            f"{kind.filename_prefix}{int(time.time() * 1000)}-"
            f"{random.randint(0, 10**9)}{extension}"
        )
        path = self.directory_for(kind) / filename
        try:
            path.write_bytes(content)
        except OSError as exc:
            logger.error("Failed to store %s upload '%s': %s", kind.value, filename, exc)
            raise StorageError("Failed to store the uploaded file.") from exc

        return StoredAsset(
            kind=kind,
            filename=filename,
            path=path,
            url=self.url_for(kind, filename),
            size=len(content),
        )

    def resolve(self, url: str | None) -> Path | None:
        """Return the local path behind ``url`` if it points into this store.

        Both bare ``/uploads/...`` paths and URLs under ``public_base_url``
        are recognised. External URLs and paths escaping the upload
        directories yield ``None``.
        """

        if not url:
            return None

        parts = PurePosixPath(urlsplit(url).path).parts
        # (<base path parts>..., "uploads", "<kind>", "<filename>")
        if len(parts) < 4:
            return None
        base, (root, kind_name, filename) = parts[:-3], parts[-3:]
        if base not in {("/",), self._base_path_parts} or root != UPLOADS_URL_PREFIX.strip("/"):
            return None

        try:
            kind = AssetKind(kind_name)
        except ValueError:
            return None

        if filename in {".", ".."}:
            return None
        return self.directory_for(kind) / filename

    def discard(self, url: str | None) -> bool:
        """Delete the file behind ``url`` if present.

        Failures are logged and never raised.
        """

        path = self.resolve(url)
        if path is None:
            return False

        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Failed to delete asset '%s': %s", path, exc)
            return False
        return True


__all__ = ["AssetKind", "AssetStore", "StoredAsset", "UPLOADS_URL_PREFIX"]
