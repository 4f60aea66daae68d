"""Tests for the blob transfer engine."""

import asyncio
import os

import pytest

from treemirror.config import ReplicationConfig
from treemirror.errors import StoreError, TransferFailed
from treemirror.replication import BlobTransferEngine
from treemirror.stores import InMemoryBlobStore


class FlakyBlobStore(InMemoryBlobStore):
    """Fails the first `failures` uploads with a transient error."""

    def __init__(self, *args, failures=1, transient=True, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = failures
        self.transient = transient

    async def upload(self, key, chunks):
        if self.failures > 0:
            self.failures -= 1
            raise StoreError("503 service unavailable", transient=self.transient)
        await super().upload(key, chunks)


class CorruptingBlobStore(InMemoryBlobStore):
    """Stores something other than what was streamed."""

    async def upload(self, key, chunks):
        async for _ in chunks:
            pass
        self.upload_calls += 1
        self.blobs[key] = b"garbage"


class SlowBlobStore(InMemoryBlobStore):
    def __init__(self, *args, delay=0.05, **kwargs):
        super().__init__(*args, **kwargs)
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def upload(self, key, chunks):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            await super().upload(key, chunks)
        finally:
            self.in_flight -= 1


class TestTransfer:
    def test_copies_and_verifies(self, transfer_engine, source_blobs, target_blobs):
        result = asyncio.run(transfer_engine.transfer("img1"))

        assert result.copied is True
        assert result.target_key == "img1"
        assert result.target_ref == "B/img1"
        assert result.bytes_copied == len(source_blobs.blobs["img1"])
        assert target_blobs.blobs["img1"] == source_blobs.blobs["img1"]

    def test_second_transfer_is_a_no_op(self, transfer_engine, target_blobs):
        async def run():
            first = await transfer_engine.transfer("img1")
            second = await transfer_engine.transfer("img1")
            return first, second

        first, second = asyncio.run(run())

        assert first.copied and not second.copied
        assert first.checksum == second.checksum
        assert target_blobs.upload_calls == 1
        assert transfer_engine.stats.to_dict() == {
            "copied": 1, "skipped": 1, "failed": 0, "bytes_copied": first.bytes_copied,
        }

    def test_overwrites_diverging_target(self, transfer_engine, source_blobs, target_blobs):
        target_blobs.blobs["doc1"] = b"stale"

        result = asyncio.run(transfer_engine.transfer("doc1"))

        assert result.copied
        assert target_blobs.blobs["doc1"] == source_blobs.blobs["doc1"]

    def test_missing_source_raises(self, transfer_engine, target_blobs):
        with pytest.raises(TransferFailed) as exc_info:
            asyncio.run(transfer_engine.transfer("nope"))

        assert exc_info.value.source_key == "nope"
        assert "not found" in exc_info.value.cause
        assert target_blobs.blobs == {}
        assert transfer_engine.stats.failed == 1

    def test_checksum_mismatch_after_upload_raises(self, source_blobs, fast_config):
        target = CorruptingBlobStore(bucket="B")
        engine = BlobTransferEngine(source_blobs, target, config=fast_config)

        with pytest.raises(TransferFailed, match="checksum mismatch"):
            asyncio.run(engine.transfer("img1"))

    def test_chunked_stream(self, source_blobs, target_blobs):
        config = ReplicationConfig(chunk_size=4, retry_backoff_seconds=0)
        engine = BlobTransferEngine(source_blobs, target_blobs, config=config)

        asyncio.run(engine.transfer("doc1"))

        assert target_blobs.blobs["doc1"] == source_blobs.blobs["doc1"]

    def test_target_prefix(self, source_blobs, target_blobs):
        engine = BlobTransferEngine(
            source_blobs, target_blobs,
            config=ReplicationConfig(target_key_prefix="mirror", retry_backoff_seconds=0),
        )

        result = asyncio.run(engine.transfer("img1"))

        assert result.target_key == "mirror/img1"
        assert "mirror/img1" in target_blobs.blobs


class TestRetries:
    def test_transient_upload_error_retried(self, source_blobs, fast_config):
        target = FlakyBlobStore(bucket="B", failures=2)
        engine = BlobTransferEngine(source_blobs, target, config=fast_config)

        result = asyncio.run(engine.transfer("img1"))

        assert result.copied
        assert target.blobs["img1"] == source_blobs.blobs["img1"]

    def test_retries_exhausted(self, source_blobs, fast_config):
        target = FlakyBlobStore(bucket="B", failures=10)
        engine = BlobTransferEngine(source_blobs, target, config=fast_config)

        with pytest.raises(TransferFailed, match="503"):
            asyncio.run(engine.transfer("img1"))
        assert target.failures == 10 - (fast_config.max_retries + 1)

    def test_fatal_error_not_retried(self, source_blobs, fast_config):
        target = FlakyBlobStore(bucket="B", failures=10, transient=False)
        engine = BlobTransferEngine(source_blobs, target, config=fast_config)

        with pytest.raises(TransferFailed):
            asyncio.run(engine.transfer("img1"))
        assert target.failures == 9


class TestConcurrency:
    def test_concurrent_calls_for_same_key_copy_once(self, source_blobs, fast_config):
        target = SlowBlobStore(bucket="B")
        engine = BlobTransferEngine(source_blobs, target, config=fast_config)

        async def run():
            return await asyncio.gather(*(engine.transfer("img1") for _ in range(5)))

        results = asyncio.run(run())

        assert target.upload_calls == 1
        assert sum(r.copied for r in results) == 1
        assert target.max_in_flight == 1
        assert len(engine._locks) == 0

    def test_parallelism_bounded_by_semaphore(self, fast_config):
        source = InMemoryBlobStore(bucket="A", blobs={f"k{i}": b"x" * i for i in range(10)})
        target = SlowBlobStore(bucket="B")
        config = ReplicationConfig(max_concurrent_transfers=3, retry_backoff_seconds=0)
        engine = BlobTransferEngine(source, target, config=config)

        async def run():
            await asyncio.gather(*(engine.transfer(f"k{i}") for i in range(10)))

        asyncio.run(run())

        assert target.upload_calls == 10
        assert 1 < target.max_in_flight <= 3

    def test_timeout_raises_transfer_failed(self, source_blobs):
        target = SlowBlobStore(bucket="B", delay=1.0)
        config = ReplicationConfig(transfer_timeout_seconds=0.05, retry_backoff_seconds=0)
        engine = BlobTransferEngine(source_blobs, target, config=config)

        with pytest.raises(TransferFailed, match="timed out"):
            asyncio.run(engine.transfer("img1"))
        assert "img1" not in target.blobs


class TestStagedCopy:
    def test_staged_copy_cleans_up(self, source_blobs, target_blobs, tmp_path):
        config = ReplicationConfig(staged_copy=True, staging_dir=str(tmp_path), retry_backoff_seconds=0)
        engine = BlobTransferEngine(source_blobs, target_blobs, config=config)

        result = asyncio.run(engine.transfer("doc1"))

        assert result.copied
        assert target_blobs.blobs["doc1"] == source_blobs.blobs["doc1"]
        assert os.listdir(tmp_path) == []

    def test_staged_copy_cleans_up_on_failure(self, source_blobs, tmp_path):
        target = FlakyBlobStore(bucket="B", failures=10, transient=False)
        config = ReplicationConfig(staged_copy=True, staging_dir=str(tmp_path), retry_backoff_seconds=0)
        engine = BlobTransferEngine(source_blobs, target, config=config)

        with pytest.raises(TransferFailed):
            asyncio.run(engine.transfer("doc1"))
        assert os.listdir(tmp_path) == []
