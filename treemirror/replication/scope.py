"""
Scope reading and target write planning shared by the orchestrator and
the repair engine.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..config.config import ReplicationConfig, TreeLayout
from ..errors import NoData, NotFound
from ..retry import retry_with_backoff
from ..stores.base import RecordStore
from .models import MigrationScope
from .resolver import Resolution, as_collection

logger = logging.getLogger(__name__)


@dataclass
class ScopeSnapshot:
    """Source records read for one scope."""

    scope: MigrationScope
    nodes: Dict[str, Any]
    files: Dict[str, Any]
    tree: Optional[Dict[str, Any]] = None  # whole tree, full scope only


async def read_scope(
    records: RecordStore,
    layout: TreeLayout,
    scope: MigrationScope,
    config: Optional[ReplicationConfig] = None,
) -> ScopeSnapshot:
    """
    Read the source records a scope needs.

    Full scope reads the whole tree. Project scope reads the node subtree
    and the whole file collection, since cross-references may point at any
    file record. Transient read errors are retried per config.

    Raises:
        NoData: full scope on an empty tree
        NotFound: project scope on an absent node
    """
    config = config or ReplicationConfig()

    async def read(path: str) -> Any:
        return await retry_with_backoff(
            records.get, path,
            max_retries=config.max_retries,
            initial_backoff=config.retry_backoff_seconds,
            operation_name=f"read source '{path or '/'}'",
        )

    if scope.is_full:
        tree = await read("")
        if not tree or not isinstance(tree, dict):
            raise NoData("/", "No data found in source tree")
        return ScopeSnapshot(
            scope=scope,
            nodes=dict(as_collection(tree.get(layout.node_collection))),
            files=dict(as_collection(tree.get(layout.file_collection))),
            tree=tree,
        )

    node_path = layout.node_path(scope.project_id)
    node, files = await asyncio.gather(
        read(node_path),
        read(layout.file_collection),
    )
    if node is None:
        raise NotFound(node_path, f"Project '{scope.project_id}' not found in source")
    return ScopeSnapshot(
        scope=scope,
        nodes={scope.project_id: node},
        files=dict(as_collection(files)),
    )


def plan_writes(snapshot: ScopeSnapshot, resolution: Resolution, layout: TreeLayout) -> Dict[str, Any]:
    """
    Map target path -> record value the target must hold for the scope.

    Full scope: one write of the whole rewritten tree at the root.
    Project scope: the node subtree plus each file record it references,
    each at its own path; no other sibling is touched.
    """
    if snapshot.scope.is_full:
        tree = copy.deepcopy(snapshot.tree)
        if layout.node_collection in tree:
            tree[layout.node_collection] = resolution.nodes
        if layout.file_collection in tree:
            tree[layout.file_collection] = resolution.files
        return {"": tree}

    project_id = snapshot.scope.project_id
    writes = {layout.node_path(project_id): resolution.nodes[project_id]}
    for file_id in sorted(resolution.referenced_file_ids):
        writes[layout.file_path(file_id)] = resolution.files[file_id]
    return writes
