"""
In-memory store adapters.

Used for tests and dry runs. Both stores count their I/O so callers can
assert how much work a replication actually did.
"""

import copy
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from ..config.config import ReferenceStyle
from ..errors import StoreError
from ..tree import get_in, set_in, split_path
from .base import BlobStore, RecordStore, new_digest

logger = logging.getLogger(__name__)


class InMemoryRecordStore(RecordStore):
    """Record tree held in a dict."""

    def __init__(self, tree: Optional[Dict[str, Any]] = None, name: str = "memory-records"):
        self.tree: Dict[str, Any] = copy.deepcopy(tree) if tree else {}
        self.name = name
        self.reads: List[str] = []
        self.writes: List[str] = []

    async def get(self, path: str) -> Optional[Any]:
        self.reads.append(path)
        value = get_in(self.tree, split_path(path))
        return copy.deepcopy(value)

    async def set(self, path: str, tree: Any) -> None:
        self.writes.append(path)
        updated = set_in(self.tree, split_path(path), tree)
        self.tree = updated if isinstance(updated, dict) else {}


class InMemoryBlobStore(BlobStore):
    """
    Blobs held as bytes in a dict.

    Uploads collect the whole stream before committing, so a failed or
    cancelled upload never replaces the previous content.
    """

    def __init__(
        self,
        bucket: str = "memory",
        blobs: Optional[Dict[str, bytes]] = None,
        reference_style: ReferenceStyle = ReferenceStyle.PATH,
        name: str = "memory-blobs",
    ):
        super().__init__(bucket, reference_style=reference_style, name=name)
        self.blobs: Dict[str, bytes] = dict(blobs or {})
        self.upload_calls = 0
        self.download_calls = 0
        self.bytes_uploaded = 0

    async def exists(self, key: str) -> bool:
        return key in self.blobs

    async def checksum(self, key: str) -> Optional[str]:
        data = self.blobs.get(key)
        if data is None:
            return None
        digest = new_digest()
        digest.update(data)
        return digest.hexdigest()

    async def download(self, key: str, chunk_size: int = 1024 * 1024) -> AsyncIterator[bytes]:
        if key not in self.blobs:
            raise StoreError(f"{self.name}: object '{key}' not found", transient=False)
        self.download_calls += 1
        data = self.blobs[key]
        for offset in range(0, len(data), chunk_size):
            yield data[offset:offset + chunk_size]

    async def upload(self, key: str, chunks: AsyncIterator[bytes]) -> None:
        self.upload_calls += 1
        staged = bytearray()
        async for chunk in chunks:
            staged.extend(chunk)
        self.blobs[key] = bytes(staged)
        self.bytes_uploaded += len(staged)

    async def list(self) -> List[Tuple[str, int]]:
        return sorted((key, len(data)) for key, data in self.blobs.items())
