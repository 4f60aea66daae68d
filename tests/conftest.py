"""Shared fixtures: a two-backend scenario held in memory."""

import copy

import pytest

from treemirror.config import ReplicationConfig, TreeLayout
from treemirror.replication import (
    BlobKeyMapper,
    BlobTransferEngine,
    MigrationOrchestrator,
    ReferenceResolver,
    VerificationRepairEngine,
)
from treemirror.stores import InMemoryBlobStore, InMemoryRecordStore

SOURCE_TREE = {
    "projects": {
        "p1": {
            "kind": "project",
            "title": "Harbour",
            "coverImageUrl": "A/img1",
            "sections": [
                {"type": "Text", "body": "intro"},
                {"type": "File", "id": "f1"},
            ],
        },
    },
    "files": {
        "f1": {"name": "doc.pdf", "storagePath": "A/doc1"},
    },
}

SOURCE_BLOBS = {
    "img1": b"cover image bytes",
    "doc1": b"%PDF-1.4 document bytes",
}


@pytest.fixture
def source_tree():
    return copy.deepcopy(SOURCE_TREE)


@pytest.fixture
def source_records(source_tree):
    return InMemoryRecordStore(source_tree, name="source-records")


@pytest.fixture
def source_blobs():
    return InMemoryBlobStore(bucket="A", blobs=SOURCE_BLOBS, name="source-blobs")


@pytest.fixture
def target_records():
    return InMemoryRecordStore(name="target-records")


@pytest.fixture
def target_blobs():
    return InMemoryBlobStore(bucket="B", name="target-blobs")


@pytest.fixture
def fast_config():
    """No backoff sleeps, short deadline."""
    return ReplicationConfig(
        max_concurrent_transfers=4,
        transfer_timeout_seconds=5,
        max_retries=2,
        retry_backoff_seconds=0,
    )


@pytest.fixture
def layout():
    return TreeLayout()


@pytest.fixture
def mapper(source_blobs, target_blobs):
    return BlobKeyMapper(source_blobs, target_blobs)


@pytest.fixture
def resolver(mapper, layout):
    return ReferenceResolver(mapper, layout)


@pytest.fixture
def transfer_engine(source_blobs, target_blobs, fast_config):
    return BlobTransferEngine(source_blobs, target_blobs, config=fast_config)


@pytest.fixture
def orchestrator(source_records, source_blobs, target_records, target_blobs, layout, fast_config):
    return MigrationOrchestrator(
        source_records, source_blobs, target_records, target_blobs,
        layout=layout, config=fast_config,
    )


@pytest.fixture
def repair_engine(source_records, source_blobs, target_records, target_blobs, layout, fast_config):
    return VerificationRepairEngine(
        source_records, source_blobs, target_records, target_blobs,
        layout=layout, config=fast_config,
    )
