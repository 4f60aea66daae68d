"""
Blob Transfer Engine
====================

Copies one blob from the source blob store to the target blob store.

transfer(source_key) is idempotent: when the derived target key already
holds content whose checksum matches the source, nothing is copied. That
is what makes repair cheap: re-running a transfer is a no-op when nothing
changed.

Concurrency:
    - distinct keys transfer in parallel, bounded by a semaphore
    - the same target key is serialised with a per-key lock
    - each transfer runs under a deadline; the blob stores commit uploads
      atomically, so a cancelled transfer never leaves a partial object
"""

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

from ..config.config import ReplicationConfig
from ..errors import StoreError, TransferFailed
from ..retry import retry_with_backoff
from ..stores.base import BlobStore
from .keys import BlobKeyMapper
from .locks import KeyedLocks

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """Outcome of one successful transfer."""
    source_key: str
    target_key: str
    target_ref: str
    checksum: str
    copied: bool
    bytes_copied: int = 0


@dataclass
class TransferStats:
    """Counters over the lifetime of an engine."""
    copied: int = 0
    skipped: int = 0
    failed: int = 0
    bytes_copied: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class BlobTransferEngine:
    """Idempotent, retryable source-to-target blob copier."""

    def __init__(
        self,
        source_blobs: BlobStore,
        target_blobs: BlobStore,
        mapper: Optional[BlobKeyMapper] = None,
        config: Optional[ReplicationConfig] = None,
    ):
        self.source = source_blobs
        self.target = target_blobs
        self.config = config or ReplicationConfig()
        self.mapper = mapper or BlobKeyMapper(
            source_blobs, target_blobs, target_key_prefix=self.config.target_key_prefix
        )
        self.stats = TransferStats()
        self._locks = KeyedLocks()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_transfers)

    async def transfer(self, source_key: str) -> TransferResult:
        """
        Ensure the blob behind source_key exists, verified, in the target.

        Args:
            source_key: Storage key in the source blob store

        Returns:
            TransferResult; copied is False when the target already matched

        Raises:
            TransferFailed: source absent, upload failed, deadline exceeded,
                or the uploaded content does not match the source checksum
        """
        target_key = self.mapper.target_key(source_key)
        timeout = self.config.transfer_timeout_seconds or None

        async with self._locks.hold(target_key):
            async with self._semaphore:
                try:
                    result = await asyncio.wait_for(
                        self._transfer_locked(source_key, target_key), timeout=timeout
                    )
                except asyncio.TimeoutError:
                    self.stats.failed += 1
                    logger.error(f"Transfer of '{source_key}' timed out after {timeout}s")
                    raise TransferFailed(source_key, f"timed out after {timeout}s")
                except TransferFailed:
                    self.stats.failed += 1
                    raise
                except StoreError as e:
                    self.stats.failed += 1
                    logger.error(f"Transfer of '{source_key}' failed: {e}")
                    raise TransferFailed(source_key, str(e)) from e

        if result.copied:
            self.stats.copied += 1
            self.stats.bytes_copied += result.bytes_copied
        else:
            self.stats.skipped += 1
        return result

    async def _transfer_locked(self, source_key: str, target_key: str) -> TransferResult:
        retries = dict(
            max_retries=self.config.max_retries,
            initial_backoff=self.config.retry_backoff_seconds,
        )
        target_ref = self.mapper.target_ref(target_key)

        source_checksum = await retry_with_backoff(
            self.source.checksum, source_key,
            operation_name=f"checksum source '{source_key}'", **retries
        )
        if source_checksum is None:
            raise TransferFailed(source_key, "source object not found")

        target_checksum = await retry_with_backoff(
            self.target.checksum, target_key,
            operation_name=f"checksum target '{target_key}'", **retries
        )
        if target_checksum == source_checksum:
            logger.debug(f"Skipping '{source_key}': target '{target_key}' already up to date")
            return TransferResult(source_key, target_key, target_ref, source_checksum, copied=False)

        copy = self._copy_staged if self.config.staged_copy else self._copy_streaming
        bytes_copied = await retry_with_backoff(
            copy, source_key, target_key,
            operation_name=f"copy '{source_key}' -> '{target_key}'", **retries
        )

        written_checksum = await retry_with_backoff(
            self.target.checksum, target_key,
            operation_name=f"verify target '{target_key}'", **retries
        )
        if written_checksum != source_checksum:
            raise TransferFailed(
                source_key,
                f"checksum mismatch after upload (source={source_checksum}, target={written_checksum})",
            )

        logger.info(f"Copied '{source_key}' -> '{target_key}' ({bytes_copied} bytes)")
        return TransferResult(
            source_key, target_key, target_ref, source_checksum,
            copied=True, bytes_copied=bytes_copied,
        )

    async def _copy_streaming(self, source_key: str, target_key: str) -> int:
        """Pass bytes straight from the source download into the target upload."""
        copied = 0

        async def counted() -> AsyncIterator[bytes]:
            nonlocal copied
            async for chunk in self.source.download(source_key, self.config.chunk_size):
                copied += len(chunk)
                yield chunk

        await self.target.upload(target_key, counted())
        return copied

    async def _copy_staged(self, source_key: str, target_key: str) -> int:
        """Download into a local temp file, then upload from it."""
        staging_dir = self.config.staging_dir
        if staging_dir:
            Path(staging_dir).mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix="treemirror-", suffix=".blob", dir=staging_dir)
        tmp_path = Path(tmp_name)
        copied = 0
        try:
            with os.fdopen(fd, "wb") as handle:
                async for chunk in self.source.download(source_key, self.config.chunk_size):
                    await asyncio.to_thread(handle.write, chunk)
                    copied += len(chunk)

            async def from_file() -> AsyncIterator[bytes]:
                with open(tmp_path, "rb") as reader:
                    while True:
                        chunk = await asyncio.to_thread(reader.read, self.config.chunk_size)
                        if not chunk:
                            break
                        yield chunk

            await self.target.upload(target_key, from_file())
            return copied
        finally:
            tmp_path.unlink(missing_ok=True)
