"""
Filesystem store adapters.

JsonFileRecordStore keeps the whole record tree in one JSON document;
LocalBlobStore keeps one file per blob under a root directory. Both write
to a temporary file and os.replace() it into place, so readers only ever
see complete content.
"""

import asyncio
import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional, Tuple

from ..config.config import ReferenceStyle
from ..errors import StoreError
from ..tree import get_in, set_in, split_path
from .base import BlobStore, RecordStore, new_digest

logger = logging.getLogger(__name__)

STAGING_DIRNAME = ".staging"


def _fsync_replace(tmp_path: Path, final_path: Path) -> None:
    with open(tmp_path, "rb") as f:
        os.fsync(f.fileno())
    os.replace(tmp_path, final_path)


class JsonFileRecordStore(RecordStore):
    """Record tree stored as a single JSON file."""

    def __init__(self, path: str, name: str = "json-records"):
        self.path = Path(path).expanduser()
        self.name = name
        self._lock = asyncio.Lock()

    def _read(self) -> Any:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise StoreError(f"{self.name}: corrupt JSON in {self.path}: {e}", transient=False)
        except OSError as e:
            raise StoreError(f"{self.name}: cannot read {self.path}: {e}")

    def _write(self, tree: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(tree, f, indent=2, sort_keys=True)
            _fsync_replace(tmp_path, self.path)
        except OSError as e:
            raise StoreError(f"{self.name}: cannot write {self.path}: {e}")
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    async def get(self, path: str) -> Optional[Any]:
        segments = split_path(path)
        async with self._lock:
            tree = await asyncio.to_thread(self._read)
        return get_in(tree, segments)

    async def set(self, path: str, tree: Any) -> None:
        segments = split_path(path)
        # Read-modify-write of the whole document must not interleave
        async with self._lock:
            current = await asyncio.to_thread(self._read)
            updated = set_in(current, segments, tree)
            await asyncio.to_thread(self._write, updated if updated is not None else {})
        logger.debug(f"{self.name}: wrote '{path or '/'}'")


class LocalBlobStore(BlobStore):
    """Blobs stored as files below a root directory."""

    def __init__(
        self,
        root: str,
        bucket: str = "local",
        reference_style: ReferenceStyle = ReferenceStyle.PATH,
        url_host: str = "firebasestorage.googleapis.com",
        name: str = "local-blobs",
    ):
        super().__init__(bucket, reference_style=reference_style, url_host=url_host, name=name)
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.staging_dir = self.root / STAGING_DIRNAME

    def _path_for(self, key: str) -> Path:
        if not key or key.startswith("/"):
            raise StoreError(f"{self.name}: invalid blob key {key!r}", transient=False)
        path = (self.root / key).resolve()
        if self.root not in path.parents or STAGING_DIRNAME in path.relative_to(self.root).parts:
            raise StoreError(f"{self.name}: blob key escapes store root: {key!r}", transient=False)
        return path

    async def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def _hash_file(self, path: Path) -> Optional[str]:
        if not path.is_file():
            return None
        digest = new_digest()
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(1024 * 1024), b""):
                digest.update(chunk)
        return digest.hexdigest()

    async def checksum(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._hash_file, self._path_for(key))
        except OSError as e:
            raise StoreError(f"{self.name}: cannot hash '{key}': {e}")

    async def download(self, key: str, chunk_size: int = 1024 * 1024) -> AsyncIterator[bytes]:
        path = self._path_for(key)
        if not path.is_file():
            raise StoreError(f"{self.name}: object '{key}' not found", transient=False)
        try:
            handle = await asyncio.to_thread(open, path, "rb")
        except OSError as e:
            raise StoreError(f"{self.name}: cannot open '{key}': {e}")
        try:
            while True:
                chunk = await asyncio.to_thread(handle.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            handle.close()

    async def upload(self, key: str, chunks: AsyncIterator[bytes]) -> None:
        final_path = self._path_for(key)
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.staging_dir / f"{uuid.uuid4().hex}.partial"
        try:
            with open(tmp_path, "wb") as handle:
                async for chunk in chunks:
                    await asyncio.to_thread(handle.write, chunk)
            final_path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(_fsync_replace, tmp_path, final_path)
        except OSError as e:
            raise StoreError(f"{self.name}: upload of '{key}' failed: {e}")
        finally:
            # Covers failure and cancellation; after a successful replace the
            # temporary name no longer exists.
            if tmp_path.exists():
                tmp_path.unlink()

    def _walk(self) -> List[Tuple[str, int]]:
        entries = []
        for path in self.root.rglob("*"):
            if not path.is_file():
                continue
            relative = path.relative_to(self.root)
            if relative.parts and relative.parts[0] == STAGING_DIRNAME:
                continue
            entries.append((relative.as_posix(), path.stat().st_size))
        return sorted(entries)

    async def list(self) -> List[Tuple[str, int]]:
        return await asyncio.to_thread(self._walk)
