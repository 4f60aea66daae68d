"""
Verification & Repair Engine
============================

Compares a migrated scope between source and target and repairs only what
diverges:

    - blobs are compared by content checksum; a blob missing in the target
      or holding different content is re-transferred
    - records are compared structurally against the tree the source
      resolves to today; a diverging path is rewritten as a whole

Record rewrites only happen once every blob repair of the scope succeeded,
so the target never points at content it does not hold. Discrepancies are
reported, never raised; a second run after a successful repair finds
nothing.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from ..config.config import ReplicationConfig, TreeLayout
from ..errors import StructuralMismatch, TransferFailed
from ..retry import retry_with_backoff
from ..stores.base import BlobStore, RecordStore
from ..tree import diff_paths, normalize_tree, trees_equal
from .keys import BlobKeyMapper
from .locks import KeyedLocks
from .models import (
    DiscrepancyReason,
    DiscrepancyRecord,
    ManifestEntry,
    MigrationScope,
    RepairAction,
    ResolutionGap,
    SubjectKind,
)
from .resolver import ReferenceResolver
from .scope import plan_writes, read_scope
from .transfer import BlobTransferEngine

logger = logging.getLogger(__name__)


@dataclass
class RepairReport:
    """Outcome of one verify-and-repair run."""

    scope: str
    storage_discrepancies: List[DiscrepancyRecord] = field(default_factory=list)
    database_discrepancies: List[DiscrepancyRecord] = field(default_factory=list)
    orphaned_blobs: List[str] = field(default_factory=list)
    gaps: List[ResolutionGap] = field(default_factory=list)
    blobs_checked: int = 0
    records_checked: int = 0

    @property
    def is_consistent(self) -> bool:
        """True when neither blobs nor records diverged."""
        return not self.storage_discrepancies and not self.database_discrepancies

    @property
    def repairs_failed(self) -> int:
        failed = (RepairAction.TRANSFER_FAILED, RepairAction.WRITE_FAILED, RepairAction.DEFERRED)
        return sum(
            1 for d in self.storage_discrepancies + self.database_discrepancies
            if d.action_taken in failed
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        return {
            "scope": self.scope,
            "consistent": self.is_consistent,
            "blobsChecked": self.blobs_checked,
            "recordsChecked": self.records_checked,
            "storageDiscrepancies": [d.to_dict() for d in self.storage_discrepancies],
            "databaseDiscrepancies": [d.to_dict() for d in self.database_discrepancies],
            "orphanedBlobs": list(self.orphaned_blobs),
            "gaps": [gap.to_dict() for gap in self.gaps],
        }

    def print_report(self, console: Optional[Console] = None) -> None:
        """Print formatted verification report."""
        console = console or Console()
        console.rule("[bold]VERIFY & REPAIR REPORT")
        console.print(f"Scope: {self.scope}")
        console.print(f"Checked: {self.blobs_checked} blobs, {self.records_checked} record paths")

        discrepancies = self.storage_discrepancies + self.database_discrepancies
        if discrepancies:
            table = Table(show_header=True, header_style="bold", expand=True, box=None, padding=(0, 1))
            table.add_column("Kind", style="cyan", width=7)
            table.add_column("Key", style="white", overflow="ellipsis")
            table.add_column("Reason", style="yellow")
            table.add_column("Action")
            for d in discrepancies:
                style = "green" if d.action_taken in (RepairAction.RETRANSFERRED, RepairAction.RESYNCED) else "red"
                table.add_row(
                    d.subject_kind.value, d.key or "/", d.reason.value,
                    f"[{style}]{d.action_taken.value}[/{style}]",
                )
            console.print(table)

        if self.orphaned_blobs:
            console.print(f"[dim]{len(self.orphaned_blobs)} orphaned source blob(s), left in place[/dim]")
        if self.gaps:
            console.print(f"[dim]{len(self.gaps)} unresolved reference(s)[/dim]")

        if self.is_consistent:
            console.print("[green]✓ Source and target are consistent[/green]")
        elif self.repairs_failed:
            console.print(f"[red]✗ {self.repairs_failed} discrepancies could not be repaired[/red]")
        else:
            console.print(f"[yellow]✓ {len(discrepancies)} discrepancies repaired[/yellow]")
        console.rule()


class VerificationRepairEngine:
    """
    Detects source/target divergence and repairs only the divergent subset.

    Performs, per scope:
    1. Blob check for every manifest entry (checksum comparison)
    2. Orphan scan of the source blob store (full scope only, report only)
    3. Structural comparison of each planned record path
    """

    def __init__(
        self,
        source_records: RecordStore,
        source_blobs: BlobStore,
        target_records: RecordStore,
        target_blobs: BlobStore,
        layout: Optional[TreeLayout] = None,
        config: Optional[ReplicationConfig] = None,
        transfer_engine: Optional[BlobTransferEngine] = None,
    ):
        """
        Initialize the repair engine.

        Args:
            source_records: Record store holding the authoritative tree
            source_blobs: Blob store holding the authoritative content
            target_records: Record store to verify and repair
            target_blobs: Blob store to verify and repair
            layout: Collection and field names of the record tree
            config: Transfer tuning, shared with re-transfers
            transfer_engine: Reuse an existing engine (and its locks)
        """
        self.source_records = source_records
        self.source_blobs = source_blobs
        self.target_records = target_records
        self.target_blobs = target_blobs
        self.layout = layout or TreeLayout()
        self.config = config or ReplicationConfig()

        self.mapper = BlobKeyMapper(
            source_blobs, target_blobs, target_key_prefix=self.config.target_key_prefix
        )
        self.resolver = ReferenceResolver(self.mapper, self.layout)
        self.transfer_engine = transfer_engine or BlobTransferEngine(
            source_blobs, target_blobs, mapper=self.mapper, config=self.config
        )
        self._record_locks = KeyedLocks()

    async def verify_and_repair(self, scope: MigrationScope) -> RepairReport:
        """
        Verify one scope and repair what diverges.

        Args:
            scope: MigrationScope.full() or MigrationScope.project(id)

        Returns:
            RepairReport; empty discrepancy lists mean full consistency

        Raises:
            NotFound: project scope absent in the source
            NoData: full scope on an empty source tree
            StoreError: a backend could not be read at all
        """
        logger.info(f"Verifying {scope.describe()}")
        snapshot = await read_scope(self.source_records, self.layout, scope, self.config)
        resolution = self.resolver.resolve(
            snapshot.nodes, snapshot.files, include_unreferenced_files=scope.is_full
        )
        report = RepairReport(scope=scope.describe(), gaps=list(resolution.gaps))

        blob_results = await _gather_all(
            self._check_blob(entry) for entry in resolution.manifest
        )
        report.blobs_checked = len(blob_results)
        report.storage_discrepancies = [d for d in blob_results if d is not None]

        if scope.is_full:
            report.orphaned_blobs = await self._find_orphans(resolution.manifest.source_keys())

        blocked = any(
            d.action_taken == RepairAction.TRANSFER_FAILED
            for d in report.storage_discrepancies
        )
        writes = plan_writes(snapshot, resolution, self.layout)
        record_results = await _gather_all(
            self._check_record(path, expected, blocked) for path, expected in writes.items()
        )
        report.records_checked = len(record_results)
        report.database_discrepancies = [d for d in record_results if d is not None]

        if report.is_consistent:
            logger.info(f"{scope.describe()}: source and target are consistent")
        else:
            logger.warning(
                f"{scope.describe()}: {len(report.storage_discrepancies)} storage and "
                f"{len(report.database_discrepancies)} database discrepancies"
            )
        return report

    async def _check_blob(self, entry: ManifestEntry) -> Optional[DiscrepancyRecord]:
        retries = dict(
            max_retries=self.config.max_retries,
            initial_backoff=self.config.retry_backoff_seconds,
        )
        source_checksum, target_checksum = await asyncio.gather(
            retry_with_backoff(
                self.source_blobs.checksum, entry.source_key,
                operation_name=f"checksum source '{entry.source_key}'", **retries
            ),
            retry_with_backoff(
                self.target_blobs.checksum, entry.target_key,
                operation_name=f"checksum target '{entry.target_key}'", **retries
            ),
        )

        if source_checksum is None:
            logger.warning(f"Blob '{entry.source_key}' missing in source, nothing to repair from")
            return DiscrepancyRecord(
                SubjectKind.BLOB, entry.source_key, DiscrepancyReason.MISSING_IN_SOURCE,
                RepairAction.NONE, detail=f"referenced by {', '.join(entry.owners)}",
            )
        if target_checksum == source_checksum:
            return None

        if target_checksum is None:
            reason = DiscrepancyReason.MISSING_IN_TARGET
        else:
            reason = DiscrepancyReason.CHECKSUM_MISMATCH

        try:
            await self.transfer_engine.transfer(entry.source_key)
        except TransferFailed as e:
            logger.error(f"Blob '{entry.source_key}' {reason.value}, re-transfer failed: {e.cause}")
            return DiscrepancyRecord(
                SubjectKind.BLOB, entry.source_key, reason,
                RepairAction.TRANSFER_FAILED, detail=e.cause,
            )
        logger.warning(f"Blob '{entry.source_key}' {reason.value}, re-transferred")
        return DiscrepancyRecord(
            SubjectKind.BLOB, entry.source_key, reason, RepairAction.RETRANSFERRED,
            detail=f"target key '{entry.target_key}'",
        )

    async def _check_record(self, path: str, expected: Any, blocked: bool) -> Optional[DiscrepancyRecord]:
        async with self._record_locks.hold(path):
            actual = await retry_with_backoff(
                self.target_records.get, path,
                max_retries=self.config.max_retries,
                initial_backoff=self.config.retry_backoff_seconds,
                operation_name=f"read target '{path or '/'}'",
            )
            if actual is not None and trees_equal(expected, actual):
                return None
            if actual is None or normalize_tree(actual) in ({}, []):
                reason = DiscrepancyReason.MISSING_IN_TARGET
                detail = ""
            else:
                reason = DiscrepancyReason.CONTENT_MISMATCH
                detail = ", ".join(diff_paths(expected, actual, prefix=path, limit=5))
                logger.warning(f"{StructuralMismatch(path or '/')}: {detail}")

            if blocked:
                logger.warning(f"Record '{path or '/'}' {reason.value}, re-sync deferred until blobs are repaired")
                return DiscrepancyRecord(SubjectKind.RECORD, path, reason, RepairAction.DEFERRED, detail)

            try:
                await retry_with_backoff(
                    self.target_records.set, path, expected,
                    max_retries=self.config.max_retries,
                    initial_backoff=self.config.retry_backoff_seconds,
                    operation_name=f"write target '{path or '/'}'",
                )
            except Exception as e:
                logger.error(f"Record '{path or '/'}' {reason.value}, re-sync failed: {e}")
                return DiscrepancyRecord(SubjectKind.RECORD, path, reason, RepairAction.WRITE_FAILED, str(e))

        logger.warning(f"Record '{path or '/'}': database mismatch, re-synced")
        return DiscrepancyRecord(SubjectKind.RECORD, path, reason, RepairAction.RESYNCED, detail)

    async def _find_orphans(self, manifest_keys: List[str]) -> List[str]:
        """Source blobs no record references. Reported only, never deleted."""
        referenced = set(manifest_keys)
        listing = await retry_with_backoff(
            self.source_blobs.list,
            max_retries=self.config.max_retries,
            initial_backoff=self.config.retry_backoff_seconds,
            operation_name="list source blobs",
        )
        orphans = sorted(key for key, _size in listing if key not in referenced)
        if orphans:
            logger.info(f"{len(orphans)} source blob(s) are not referenced by any record")
        return orphans


async def _gather_all(coroutines) -> list:
    """Run all coroutines to completion, then re-raise the first error if any."""
    results = await asyncio.gather(*coroutines, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results
