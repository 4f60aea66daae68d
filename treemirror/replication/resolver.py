"""
Reference Resolver
==================

Walks a node subtree together with the file collection it references and
produces:

    - a rewritten copy of the nodes and file records in which every blob
      reference names the pending target blob
    - a MigrationManifest of the distinct source blobs to transfer
    - the gaps (references it could not resolve), which are reported,
      never raised

Resolution is pure: it performs no backend I/O. Reference parsing and
target reference issuing come from the BlobKeyMapper.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..config.config import TreeLayout
from ..errors import ReferenceUnresolved
from ..tree import join_path
from .keys import BlobKeyMapper
from .models import GapReason, ManifestEntry, MigrationManifest, ResolutionGap

logger = logging.getLogger(__name__)


def as_collection(value: Any) -> Dict[str, Any]:
    """View a stored collection as an id -> record mapping."""
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return {str(i): item for i, item in enumerate(value) if item is not None}
    return {}


@dataclass
class Resolution:
    """Result of resolving one scope."""

    nodes: Dict[str, Any]
    files: Dict[str, Any]
    manifest: MigrationManifest
    gaps: List[ResolutionGap] = field(default_factory=list)
    referenced_file_ids: Set[str] = field(default_factory=set)


class ReferenceResolver:
    """Builds the manifest and rewritten records for a scope."""

    def __init__(self, mapper: BlobKeyMapper, layout: Optional[TreeLayout] = None):
        self.mapper = mapper
        self.layout = layout or TreeLayout()

    def resolve(
        self,
        nodes: Dict[str, Any],
        files: Dict[str, Any],
        include_unreferenced_files: bool = False,
    ) -> Resolution:
        """
        Resolve references of the given nodes.

        Args:
            nodes: node id -> node record (not modified)
            files: the full file collection, file id -> file record (not modified)
            include_unreferenced_files: also rewrite file records no section
                points at (full-tree scope, where the whole collection is
                written to the target)

        Returns:
            Resolution with rewritten copies, manifest and gaps
        """
        layout = self.layout
        manifest = MigrationManifest()
        gaps: List[ResolutionGap] = []
        files = as_collection(files)
        rewritten_nodes = copy.deepcopy(nodes)
        rewritten_files: Dict[str, Any] = {}
        file_entries: Dict[str, Optional[ManifestEntry]] = {}
        referenced: Set[str] = set()

        for node_id in sorted(rewritten_nodes, key=str):
            node = rewritten_nodes[node_id]
            if not isinstance(node, dict):
                continue
            node_path = layout.node_path(node_id)

            cover_ref = node.get(layout.cover_field)
            if cover_ref:
                owner = join_path(node_path, layout.cover_field)
                entry = self._enqueue(manifest, gaps, cover_ref, owner)
                if entry is not None:
                    node[layout.cover_field] = entry.target_ref

            sections = node.get(layout.sections_field)
            if isinstance(sections, dict):
                section_items = sorted(sections.items(), key=lambda kv: _index_key(kv[0]))
            elif isinstance(sections, list):
                section_items = [(str(i), s) for i, s in enumerate(sections)]
            else:
                section_items = []

            for index, section in section_items:
                if not isinstance(section, dict):
                    continue
                if section.get(layout.section_type_field) != layout.file_section_type:
                    continue
                section_path = join_path(node_path, layout.sections_field, index)
                file_id = self._section_ref(section, files)
                if not file_id:
                    continue

                if file_id not in files or not isinstance(files[file_id], dict):
                    unresolved = ReferenceUnresolved(section_path, file_id)
                    gaps.append(ResolutionGap(
                        path=section_path,
                        reason=GapReason.UNRESOLVED_REFERENCE,
                        detail=str(unresolved),
                    ))
                    logger.warning(f"Skipping reference: {unresolved}")
                    continue

                referenced.add(file_id)
                if file_id not in rewritten_files:
                    file_record = copy.deepcopy(files[file_id])
                    rewritten_files[file_id] = file_record
                    file_entries[file_id] = self._rewrite_file(manifest, gaps, file_id, file_record)

                entry = file_entries.get(file_id)
                if entry is not None:
                    section[layout.section_blob_field] = entry.target_ref
                    manifest.add(
                        source_key=entry.source_key,
                        source_ref=entry.source_ref,
                        target_key=entry.target_key,
                        target_ref=entry.target_ref,
                        owner=join_path(section_path, layout.section_blob_field),
                    )

        if include_unreferenced_files:
            for file_id in sorted(files, key=str):
                if file_id in rewritten_files or not isinstance(files[file_id], dict):
                    continue
                file_record = copy.deepcopy(files[file_id])
                rewritten_files[file_id] = file_record
                self._rewrite_file(manifest, gaps, file_id, file_record)

        logger.debug(
            f"Resolved {len(rewritten_nodes)} nodes: {len(manifest)} blobs, "
            f"{len(referenced)} referenced files, {len(gaps)} gaps"
        )
        return Resolution(
            nodes=rewritten_nodes,
            files=rewritten_files,
            manifest=manifest,
            gaps=gaps,
            referenced_file_ids=referenced,
        )

    def _section_ref(self, section: Dict[str, Any], files: Dict[str, Any]) -> Optional[str]:
        """First ref field naming an existing file record, else the first non-empty one."""
        candidates = [str(section[f]) for f in self.layout.section_ref_fields if section.get(f)]
        for file_id in candidates:
            if isinstance(files.get(file_id), dict):
                return file_id
        return candidates[0] if candidates else None

    def _rewrite_file(
        self,
        manifest: MigrationManifest,
        gaps: List[ResolutionGap],
        file_id: str,
        file_record: Dict[str, Any],
    ) -> Optional[ManifestEntry]:
        blob_field = self.layout.file_blob_field
        file_path = self.layout.file_path(file_id)
        blob_ref = file_record.get(blob_field)
        if not blob_ref:
            gaps.append(ResolutionGap(
                path=file_path,
                reason=GapReason.MISSING_BLOB_FIELD,
                detail=f"no '{blob_field}' field",
            ))
            return None
        entry = self._enqueue(manifest, gaps, blob_ref, join_path(file_path, blob_field))
        if entry is not None:
            file_record[blob_field] = entry.target_ref
        return entry

    def _enqueue(
        self,
        manifest: MigrationManifest,
        gaps: List[ResolutionGap],
        ref: Any,
        owner: str,
    ) -> Optional[ManifestEntry]:
        """Add ref to the manifest, returning its entry (None when foreign)."""
        source_key = self.mapper.source_key(ref)
        if source_key is None:
            gaps.append(ResolutionGap(
                path=owner,
                reason=GapReason.FOREIGN_REFERENCE,
                detail=f"not a source blob reference: {ref!r}",
            ))
            logger.debug(f"Leaving foreign reference at {owner}: {ref!r}")
            return None
        target_key = self.mapper.target_key(source_key)
        return manifest.add(
            source_key=source_key,
            source_ref=ref,
            target_key=target_key,
            target_ref=self.mapper.target_ref(target_key),
            owner=owner,
        )


def _index_key(key: str):
    return (0, int(key)) if key.isdigit() else (1, key)
