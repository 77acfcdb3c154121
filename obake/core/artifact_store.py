"""Content-addressed, immutable blob store for fetched source archives.

Storage layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.blob
No delete method — a blob never changes once its digest has been verified.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from pathlib import Path

from obake.core.hasher import file_sha256

logger = logging.getLogger(__name__)


class ArtifactIntegrityError(RuntimeError):
    """Raised when a blob's content does not match its address."""


class ContentAddressedStore:
    """SHA-256 keyed, immutable blob store.

    Blobs are stored under their SHA-256 digest.  Adding the same content
    twice is a no-op.  There is no update or delete.

    Parameters
    ----------
    base_path:
        Root directory for blob storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _extract_digest(content_address: str) -> str:
        """Strip the ``sha256:`` prefix from a content address, if present."""
        return content_address.removeprefix("sha256:")

    def path_for(self, content_address: str) -> Path:
        """Storage path for a digest.

        Layout: {base}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.blob
        """
        digest = self._extract_digest(content_address)
        return self._base / digest[:2] / digest[2:4] / f"{digest}.blob"

    # ------------------------------------------------------------------
    # Add
    # ------------------------------------------------------------------

    def add_file(self, source: Path, *, expected: str | None = None) -> str:
        """Move *source* into the store and return ``sha256:<hex>``.

        When *expected* is given the file must hash to it; otherwise
        ``ArtifactIntegrityError`` is raised and nothing is stored.
        """
        digest = file_sha256(source)
        if expected is not None and digest != self._extract_digest(expected):
            raise ArtifactIntegrityError(
                f"checksum mismatch for {source.name}: "
                f"expected {self._extract_digest(expected)}, got {digest}"
            )

        path = self.path_for(digest)
        if path.exists():
            if not self.verify(digest):
                raise ArtifactIntegrityError(
                    f"Existing blob at {digest} failed integrity check"
                )
            source.unlink()
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(f".{digest}.{uuid.uuid4().hex}")
            shutil.move(str(source), tmp)
            os.replace(tmp, path)
            logger.debug("stored blob sha256:%s", digest)
        return f"sha256:{digest}"

    # ------------------------------------------------------------------
    # Check and verify
    # ------------------------------------------------------------------

    def exists(self, content_address: str) -> bool:
        """Check if a blob exists in the store."""
        return self.path_for(content_address).exists()

    def verify(self, content_address: str) -> bool:
        """Re-hash stored data and compare against the content address."""
        digest = self._extract_digest(content_address)
        path = self.path_for(digest)
        if not path.exists():
            return False
        return file_sha256(path) == digest
