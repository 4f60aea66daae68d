"""
TreeMirror Replication Engine
=============================

Replicates a record tree and the blobs it references from a source backend
to a target backend, then verifies and repairs divergence.

Components:
    - ReferenceResolver: builds the blob manifest and rewritten records
    - BlobTransferEngine: idempotent, checksum-verified blob copy
    - MigrationOrchestrator: resolve -> transfer -> write, per scope
    - VerificationRepairEngine: diff source and target, repair the difference
"""

from .models import (
    DiscrepancyReason,
    DiscrepancyRecord,
    GapReason,
    ManifestEntry,
    MigrationManifest,
    MigrationScope,
    RepairAction,
    ResolutionGap,
    SubjectKind,
)
from .keys import BlobKeyMapper
from .resolver import ReferenceResolver, Resolution
from .transfer import BlobTransferEngine, TransferResult, TransferStats
from .orchestrator import (
    MigrationOrchestrator,
    MigrationProgress,
    MigrationResult,
    MigrationStatus,
)
from .verify import RepairReport, VerificationRepairEngine

__all__ = [
    'BlobKeyMapper',
    'BlobTransferEngine',
    'DiscrepancyReason',
    'DiscrepancyRecord',
    'GapReason',
    'ManifestEntry',
    'MigrationManifest',
    'MigrationOrchestrator',
    'MigrationProgress',
    'MigrationResult',
    'MigrationScope',
    'MigrationStatus',
    'ReferenceResolver',
    'RepairAction',
    'RepairReport',
    'Resolution',
    'ResolutionGap',
    'SubjectKind',
    'TransferResult',
    'TransferStats',
    'VerificationRepairEngine',
]
