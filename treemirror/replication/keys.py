"""
Deterministic mapping from source blob locators to target keys and
target locators.

The same source key always maps to the same target key; that is what
makes repeated transfers idempotent and lets the manifest de-duplicate.
"""

from typing import Any, Optional

from ..stores.base import BlobStore


class BlobKeyMapper:
    """Translate blob references between the source and target backends."""

    def __init__(
        self,
        source_blobs: BlobStore,
        target_blobs: BlobStore,
        target_key_prefix: Optional[str] = None,
    ):
        self.source_blobs = source_blobs
        self.target_blobs = target_blobs
        self.target_key_prefix = target_key_prefix.strip("/") if target_key_prefix else None

    def source_key(self, ref: Any) -> Optional[str]:
        """Storage key of a source-issued reference, None if foreign."""
        return self.source_blobs.parse_reference(ref)

    def target_key(self, source_key: str) -> str:
        """Derived target key: the source key, optionally re-rooted."""
        if self.target_key_prefix:
            return f"{self.target_key_prefix}/{source_key}"
        return source_key

    def target_ref(self, target_key: str) -> str:
        return self.target_blobs.reference(target_key)
