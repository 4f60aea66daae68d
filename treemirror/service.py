"""
Trigger surface for hosting TreeMirror behind an HTTP endpoint, a
scheduled job or a message consumer.

Each handler takes the decoded request payload and returns a
TriggerResponse; the hosting layer only has to serialise it.

    {"scope": "full"}                 -> migrate the whole tree
    {"scope": {"projectId": "p1"}}    -> migrate one project subtree
    {"projectId": "p1"}               -> shorthand for the above
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Union

from .config.config import ReplicationConfig, TreeLayout
from .errors import NotFound, StoreError
from .replication.models import MigrationScope
from .replication.orchestrator import MigrationOrchestrator, MigrationProgress
from .replication.transfer import BlobTransferEngine
from .replication.verify import VerificationRepairEngine
from .stores.base import BlobStore, RecordStore

logger = logging.getLogger(__name__)


@dataclass
class TriggerResponse:
    """Status code plus a human readable (migrate) or structured (verify) body."""
    status: int
    body: Union[str, Dict[str, Any]]

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "body": self.body}


def create_engines(
    source_records: RecordStore,
    source_blobs: BlobStore,
    target_records: RecordStore,
    target_blobs: BlobStore,
    layout: Optional[TreeLayout] = None,
    config: Optional[ReplicationConfig] = None,
    progress_callback: Optional[Callable[[MigrationProgress], None]] = None,
) -> Tuple[MigrationOrchestrator, VerificationRepairEngine]:
    """
    Build an orchestrator and a repair engine over one pair of backends.

    Both share a single BlobTransferEngine, so a migrate and a repair running
    at the same time never upload the same target key concurrently.
    """
    config = config or ReplicationConfig()
    transfer_engine = BlobTransferEngine(source_blobs, target_blobs, config=config)
    orchestrator = MigrationOrchestrator(
        source_records, source_blobs, target_records, target_blobs,
        layout=layout, config=config,
        progress_callback=progress_callback,
        transfer_engine=transfer_engine,
    )
    engine = VerificationRepairEngine(
        source_records, source_blobs, target_records, target_blobs,
        layout=layout, config=config,
        transfer_engine=transfer_engine,
    )
    return orchestrator, engine

async def handle_migrate(payload: Any, orchestrator: MigrationOrchestrator) -> TriggerResponse:
    """
    Run a migration for the scope named in payload.

    Returns:
        200 on success, 400 when the scope is missing or malformed, 404 when
        the source holds no data for the scope, 500 on any other failure
    """
    try:
        scope = MigrationScope.from_payload(payload)
    except ValueError as e:
        logger.warning(f"Rejected migrate request: {e}")
        return TriggerResponse(400, f"Bad request: {e}")

    try:
        result = await orchestrator.migrate(scope)
    except NotFound as e:
        return TriggerResponse(404, str(e))
    except Exception as e:
        logger.exception(f"Migration of {scope.describe()} crashed: {e}")
        return TriggerResponse(500, f"Internal error: {e}")

    if not result.success:
        return TriggerResponse(500, result.message)

    body = f"Migrated {scope.describe()}: {result.message}"
    progress = result.progress
    body += (
        f" ({progress.blobs_copied} blobs copied, {progress.blobs_skipped} unchanged, "
        f"{progress.records_written} record paths written)"
    )
    return TriggerResponse(200, body)


async def handle_verify(payload: Any, engine: VerificationRepairEngine) -> TriggerResponse:
    """
    Verify and repair the scope named in payload.

    An empty payload, or one without a scope or projectId key, means the
    whole tree; a scope that is present must be valid.

    Returns:
        200 with {storageDiscrepancies, databaseDiscrepancies, ...}, 400 for
        a malformed scope, 404 when the source holds no data, 500 when a
        backend could not be read
    """
    try:
        if not payload or (isinstance(payload, dict) and "scope" not in payload and "projectId" not in payload):
            scope = MigrationScope.full()
        else:
            scope = MigrationScope.from_payload(payload)
    except ValueError as e:
        logger.warning(f"Rejected verify request: {e}")
        return TriggerResponse(400, f"Bad request: {e}")

    try:
        report = await engine.verify_and_repair(scope)
    except NotFound as e:
        return TriggerResponse(404, str(e))
    except StoreError as e:
        logger.error(f"Verification of {scope.describe()} failed: {e}")
        return TriggerResponse(500, f"Internal error: {e}")
    except Exception as e:
        logger.exception(f"Verification of {scope.describe()} crashed: {e}")
        return TriggerResponse(500, f"Internal error: {e}")

    return TriggerResponse(200, report.to_dict())
