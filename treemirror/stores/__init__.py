"""
Store adapters for the record tree and blob storage of each backend.

Components:
    - RecordStore / BlobStore: adapter interfaces used by the engine
    - InMemoryRecordStore / InMemoryBlobStore: dict-backed, for tests
    - JsonFileRecordStore / LocalBlobStore: local filesystem
    - PostgresRecordStore: JSONB record tree via asyncpg
"""

from ..config.config import BackendConfig, BackendType
from .base import BlobStore, RecordStore, CHECKSUM_ALGORITHM
from .filesystem import JsonFileRecordStore, LocalBlobStore
from .memory import InMemoryBlobStore, InMemoryRecordStore


def create_record_store(config: BackendConfig) -> RecordStore:
    """Build the record store adapter for one side of a replication."""
    label = f"{config.name}-records"
    if config.record_backend == BackendType.MEMORY:
        return InMemoryRecordStore(name=label)
    if config.record_backend == BackendType.FILESYSTEM:
        return JsonFileRecordStore(config.record_path, name=label)
    if config.record_backend == BackendType.POSTGRESQL:
        from .postgres import PostgresRecordStore
        return PostgresRecordStore(
            config.get_connection_string(),
            workspace=config.postgres_workspace,
            max_connections=config.postgres_max_connections,
            name=label,
        )
    raise ValueError(f"Unsupported record backend: {config.record_backend}")


def create_blob_store(config: BackendConfig) -> BlobStore:
    """Build the blob store adapter for one side of a replication."""
    label = f"{config.name}-blobs"
    if config.blob_backend == BackendType.MEMORY:
        return InMemoryBlobStore(
            bucket=config.bucket,
            reference_style=config.reference_style,
            name=label,
        )
    if config.blob_backend == BackendType.FILESYSTEM:
        return LocalBlobStore(
            config.blob_root,
            bucket=config.bucket,
            reference_style=config.reference_style,
            url_host=config.url_host,
            name=label,
        )
    raise ValueError(f"Unsupported blob backend: {config.blob_backend}")


__all__ = [
    'BlobStore',
    'RecordStore',
    'CHECKSUM_ALGORITHM',
    'InMemoryBlobStore',
    'InMemoryRecordStore',
    'JsonFileRecordStore',
    'LocalBlobStore',
    'create_blob_store',
    'create_record_store',
]
