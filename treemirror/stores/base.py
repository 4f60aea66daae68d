"""
Store Adapter Interfaces
========================

Abstract record and blob store adapters. The replication engine talks to
backends only through these two interfaces, one instance per side.

Blob store contract:
    - checksum() returns a SHA-256 hex digest of the stored content, or
      None when the object is absent. Both sides must use the same digest.
    - upload() must never expose a partially written object: content is
      staged under a temporary name and committed only after the whole
      stream was consumed. A failed or cancelled upload leaves the key
      absent or at its previous content.
    - reference() and parse_reference() are pure; they translate between
      storage keys and the locators embedded in records.
"""

import hashlib
import logging
import urllib.parse
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, List, Optional, Tuple

from ..config.config import ReferenceStyle

logger = logging.getLogger(__name__)

CHECKSUM_ALGORITHM = "sha256"


def new_digest():
    return hashlib.new(CHECKSUM_ALGORITHM)


class RecordStore(ABC):
    """Read/write access to a hierarchical record tree."""

    name: str = "records"

    @abstractmethod
    async def get(self, path: str) -> Optional[Any]:
        """Return the subtree at path, or None when absent."""

    @abstractmethod
    async def set(self, path: str, tree: Any) -> None:
        """Replace the subtree at path. Raises StoreError on failure."""

    async def close(self) -> None:
        """Release backend resources."""


class BlobStore(ABC):
    """Keyed binary object storage."""

    def __init__(
        self,
        bucket: str,
        reference_style: ReferenceStyle = ReferenceStyle.PATH,
        url_host: str = "firebasestorage.googleapis.com",
        name: str = "blobs",
    ):
        self.bucket = bucket
        self.reference_style = reference_style
        self.url_host = url_host
        self.name = name

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Whether an object is stored under key."""

    @abstractmethod
    async def checksum(self, key: str) -> Optional[str]:
        """SHA-256 hex digest of the object, or None when absent."""

    @abstractmethod
    def download(self, key: str, chunk_size: int = 1024 * 1024) -> AsyncIterator[bytes]:
        """Stream the object's bytes. Raises StoreError when absent."""

    @abstractmethod
    async def upload(self, key: str, chunks: AsyncIterator[bytes]) -> None:
        """Atomically store the streamed bytes under key."""

    @abstractmethod
    async def list(self) -> List[Tuple[str, int]]:
        """All (key, size) pairs in the store."""

    async def close(self) -> None:
        """Release backend resources."""

    # =========================================================================
    # Reference translation
    # =========================================================================

    def reference(self, key: str) -> str:
        """Issue the locator records should hold for key."""
        if self.reference_style == ReferenceStyle.URL:
            quoted = urllib.parse.quote(key, safe="")
            return f"https://{self.url_host}/v0/b/{self.bucket}/o/{quoted}?alt=media"
        return f"{self.bucket}/{key}"

    def parse_reference(self, ref: Any) -> Optional[str]:
        """
        Extract the storage key from a locator issued by this backend.

        Accepts download URLs (key between '/o/' and '?', URL-encoded),
        gs://bucket/key URIs and bucket/key paths. Returns None for locators
        that belong to another bucket or cannot be parsed.
        """
        if not isinstance(ref, str) or not ref:
            return None

        if ref.startswith(("http://", "https://")):
            parsed = urllib.parse.urlparse(ref)
            if "/o/" not in parsed.path:
                return None
            head, _, encoded_key = parsed.path.partition("/o/")
            if not head.endswith(f"/b/{self.bucket}"):
                return None
            key = urllib.parse.unquote(encoded_key)
            return key or None

        if ref.startswith("gs://"):
            bucket, _, key = ref[len("gs://"):].partition("/")
            return key if bucket == self.bucket and key else None

        bucket, sep, key = ref.partition("/")
        if sep and bucket == self.bucket and key:
            return key
        return None
