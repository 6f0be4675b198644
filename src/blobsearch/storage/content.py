"""Content-addressed blob storage on the local filesystem."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from blobsearch.errors import NotFound, StoreUnavailable
from blobsearch.utils.files import compute_sha256_bytes, is_sha256_hex

LOGGER = logging.getLogger(__name__)


class FileSystemContentStore:
    """Stores payloads under their SHA-256 digest.

    Layout is ``<root>/<first two hex chars>/<digest>``. Writing the same
    payload twice yields the same hash and a single file.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot create blob directory {self.root}: {exc}") from exc

    def _path_for(self, content_hash: str) -> Path:
        return self.root / content_hash[:2] / content_hash

    def store(self, payload: bytes) -> str:
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError(f"Payload must be bytes, got {type(payload).__name__}")
        data = bytes(payload)
        content_hash = compute_sha256_bytes(data)
        target = self._path_for(content_hash)
        if target.exists():
            LOGGER.debug("Blob %s already stored", content_hash)
            return content_hash

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StoreUnavailable(f"Failed to write blob {content_hash}: {exc}") from exc

        LOGGER.debug("Stored blob %s (%d bytes)", content_hash, len(data))
        return content_hash

    def fetch(self, content_hash: str) -> bytes:
        if not isinstance(content_hash, str) or not is_sha256_hex(content_hash):
            raise NotFound("Unknown content hash: %s", content_hash)
        path = self._path_for(content_hash)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFound("Unknown content hash: %s", content_hash) from None
        except OSError as exc:
            raise StoreUnavailable(f"Failed to read blob {content_hash}: {exc}") from exc

    def exists(self, content_hash: str) -> bool:
        return is_sha256_hex(content_hash) and self._path_for(content_hash).is_file()
