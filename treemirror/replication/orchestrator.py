"""
Migration Orchestrator
======================

Replicates a scope (the whole tree or one project subtree) from the source
backend to the target backend: read, resolve references, transfer every
manifest blob, then write the rewritten records.

Target records are written only after every blob of the manifest was
transferred and verified. A failed transfer aborts the scope without any
record write, and the result reports which manifest entries succeeded.

Usage:
    orchestrator = MigrationOrchestrator(
        source_records, source_blobs, target_records, target_blobs,
    )
    result = await orchestrator.migrate(MigrationScope.project("p1"))
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..config.config import ReplicationConfig, TreeLayout
from ..errors import NotFound, StoreError, TransferFailed
from ..retry import retry_with_backoff
from ..stores.base import BlobStore, RecordStore
from .keys import BlobKeyMapper
from .models import ManifestEntry, MigrationManifest, MigrationScope, ResolutionGap
from .resolver import ReferenceResolver
from .scope import plan_writes, read_scope
from .transfer import BlobTransferEngine

logger = logging.getLogger(__name__)


class MigrationStatus(str, Enum):
    """Status of a migration run."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class MigrationProgress:
    """
    Tracks the progress of one migration run.

    Passed to the progress callback after every finished blob transfer.
    """
    job_id: str
    scope: str
    status: MigrationStatus = MigrationStatus.PENDING
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    blobs_total: int = 0
    blobs_copied: int = 0
    blobs_skipped: int = 0
    blobs_failed: int = 0
    bytes_copied: int = 0
    records_written: int = 0

    completed_keys: List[str] = field(default_factory=list)
    failed_keys: Dict[str, str] = field(default_factory=dict)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    last_error: Optional[str] = None

    def record_error(self, error: Exception) -> None:
        self.last_error = str(error)
        self.errors.append({
            'timestamp': datetime.now().isoformat(),
            'error': str(error),
            'type': type(error).__name__,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'scope': self.scope,
            'status': self.status.value,
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'blobs_total': self.blobs_total,
            'blobs_copied': self.blobs_copied,
            'blobs_skipped': self.blobs_skipped,
            'blobs_failed': self.blobs_failed,
            'bytes_copied': self.bytes_copied,
            'records_written': self.records_written,
            'completed_keys': list(self.completed_keys),
            'failed_keys': dict(self.failed_keys),
            'errors': list(self.errors),
            'last_error': self.last_error,
        }


@dataclass
class MigrationResult:
    """Result of a migration run."""
    success: bool
    status: MigrationStatus
    progress: MigrationProgress
    duration_seconds: float
    message: str
    gaps: List[ResolutionGap] = field(default_factory=list)
    manifest: Optional[MigrationManifest] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'status': self.status.value,
            'message': self.message,
            'duration_seconds': round(self.duration_seconds, 3),
            'progress': self.progress.to_dict(),
            'gaps': [gap.to_dict() for gap in self.gaps],
        }


class MigrationOrchestrator:
    """
    Drives end-to-end or subtree-scoped replication.

    Holds only backend handles and the per-run task list. Pass the same
    transfer_engine to every engine writing one target blob store so
    transfers of a target key stay serialised across them.
    """

    def __init__(
        self,
        source_records: RecordStore,
        source_blobs: BlobStore,
        target_records: RecordStore,
        target_blobs: BlobStore,
        layout: Optional[TreeLayout] = None,
        config: Optional[ReplicationConfig] = None,
        progress_callback: Optional[Callable[[MigrationProgress], None]] = None,
        transfer_engine: Optional[BlobTransferEngine] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            source_records: Record store to read from
            source_blobs: Blob store to copy from
            target_records: Record store to write to
            target_blobs: Blob store to copy into
            layout: Collection and field names of the record tree
            config: Transfer tuning (concurrency, timeouts, retries)
            progress_callback: Called with MigrationProgress after each blob
            transfer_engine: Reuse an existing engine (and its per-key locks)
        """
        self.source_records = source_records
        self.source_blobs = source_blobs
        self.target_records = target_records
        self.target_blobs = target_blobs
        self.layout = layout or TreeLayout()
        self.config = config or ReplicationConfig()
        self.progress_callback = progress_callback

        self.mapper = BlobKeyMapper(
            source_blobs, target_blobs, target_key_prefix=self.config.target_key_prefix
        )
        self.resolver = ReferenceResolver(self.mapper, self.layout)
        self.transfer_engine = transfer_engine or BlobTransferEngine(
            source_blobs, target_blobs, mapper=self.mapper, config=self.config
        )

        self._tasks: List[asyncio.Task] = []
        self._cancelled = False

    def cancel(self) -> None:
        """Request cancellation of the running migration."""
        self._cancelled = True
        for task in self._tasks:
            task.cancel()

    async def migrate(self, scope: MigrationScope) -> MigrationResult:
        """
        Execute the migration for one scope.

        Args:
            scope: MigrationScope.full() or MigrationScope.project(id)

        Returns:
            MigrationResult with status, progress and resolution gaps

        Raises:
            NotFound: project scope absent in the source (no target write)
            NoData: full scope on an empty source tree
        """
        start_time = time.time()
        self._cancelled = False
        progress = MigrationProgress(
            job_id=str(uuid.uuid4())[:8],
            scope=scope.describe(),
            status=MigrationStatus.IN_PROGRESS,
            started_at=datetime.now().isoformat(),
        )
        logger.info(f"Starting migration job {progress.job_id} ({progress.scope})")

        try:
            snapshot = await read_scope(self.source_records, self.layout, scope, self.config)
        except NotFound:
            logger.warning(f"Migration job {progress.job_id}: {scope.describe()} not found in source")
            raise
        except StoreError as e:
            progress.record_error(e)
            return self._finish(progress, MigrationStatus.FAILED, start_time,
                                f"Migration failed reading source: {e}")

        resolution = self.resolver.resolve(
            snapshot.nodes, snapshot.files, include_unreferenced_files=scope.is_full
        )
        progress.blobs_total = len(resolution.manifest)
        for gap in resolution.gaps:
            logger.warning(f"Reference gap at {gap.path}: {gap.reason.value} ({gap.detail})")

        if not self._cancelled:
            await self._transfer_all(resolution.manifest, progress)

        if self._cancelled:
            return self._finish(progress, MigrationStatus.CANCELLED, start_time,
                                "Migration cancelled by user", resolution)

        if progress.blobs_failed:
            message = (
                f"{progress.blobs_failed} of {progress.blobs_total} blob transfers failed; "
                f"target records not written ({len(progress.completed_keys)} blobs succeeded)"
            )
            return self._finish(progress, MigrationStatus.FAILED, start_time, message, resolution)

        writes = plan_writes(snapshot, resolution, self.layout)
        try:
            await self._write_records(writes, progress)
        except Exception as e:
            progress.record_error(e)
            return self._finish(progress, MigrationStatus.FAILED, start_time,
                                f"Migration failed writing target records: {e}", resolution)

        message = "Migration completed successfully"
        if resolution.gaps:
            message += f" with {len(resolution.gaps)} unresolved reference(s)"
        return self._finish(progress, MigrationStatus.COMPLETED, start_time, message, resolution)

    async def _transfer_all(self, manifest: MigrationManifest, progress: MigrationProgress) -> None:
        """Transfer every manifest entry concurrently; failures are recorded, not raised."""
        self._tasks = [
            asyncio.create_task(self._transfer_entry(entry, progress))
            for entry in manifest
        ]
        try:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        except asyncio.CancelledError:
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            raise
        finally:
            self._tasks = []

    async def _transfer_entry(self, entry: ManifestEntry, progress: MigrationProgress) -> None:
        try:
            result = await self.transfer_engine.transfer(entry.source_key)
        except asyncio.CancelledError:
            progress.failed_keys[entry.source_key] = "cancelled"
            raise
        except TransferFailed as e:
            progress.blobs_failed += 1
            progress.failed_keys[entry.source_key] = e.cause
            progress.record_error(e)
            logger.error(str(e))
        except Exception as e:
            progress.blobs_failed += 1
            progress.failed_keys[entry.source_key] = str(e)
            progress.record_error(e)
            logger.exception(f"Unexpected error transferring '{entry.source_key}': {e}")
        else:
            progress.completed_keys.append(entry.source_key)
            if result.copied:
                progress.blobs_copied += 1
                progress.bytes_copied += result.bytes_copied
            else:
                progress.blobs_skipped += 1
        self._notify_progress(progress)

    async def _write_records(self, writes: Dict[str, Any], progress: MigrationProgress) -> None:
        """Write each planned path; distinct paths are written concurrently."""

        async def write(path: str, value: Any) -> None:
            await retry_with_backoff(
                self.target_records.set, path, value,
                max_retries=self.config.max_retries,
                initial_backoff=self.config.retry_backoff_seconds,
                operation_name=f"write '{path or '/'}'",
            )
            progress.records_written += 1
            logger.info(f"Wrote target records at '{path or '/'}'")

        results = await asyncio.gather(
            *(write(path, value) for path, value in writes.items()),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    def _notify_progress(self, progress: MigrationProgress) -> None:
        """Notify progress callback if set."""
        if self.progress_callback:
            self.progress_callback(progress)

    def _finish(
        self,
        progress: MigrationProgress,
        status: MigrationStatus,
        start_time: float,
        message: str,
        resolution=None,
    ) -> MigrationResult:
        progress.status = status
        progress.completed_at = datetime.now().isoformat()
        result = MigrationResult(
            success=status == MigrationStatus.COMPLETED,
            status=status,
            progress=progress,
            duration_seconds=time.time() - start_time,
            message=message,
            gaps=list(resolution.gaps) if resolution else [],
            manifest=resolution.manifest if resolution else None,
        )
        log = logger.info if result.success else logger.error
        log(f"Migration job {progress.job_id} {status.value} in {result.duration_seconds:.1f}s: {message}")
        return result
