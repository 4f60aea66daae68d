"""
Replication data model: scopes, manifests, resolution gaps and
discrepancy records.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


@dataclass(frozen=True)
class MigrationScope:
    """Either the whole tree or a single node subtree keyed by id."""

    project_id: Optional[str] = None

    @classmethod
    def full(cls) -> "MigrationScope":
        return cls()

    @classmethod
    def project(cls, project_id: str) -> "MigrationScope":
        if not project_id or not isinstance(project_id, str) or "/" in project_id:
            raise ValueError(f"Invalid project id: {project_id!r}")
        return cls(project_id=project_id)

    @property
    def is_full(self) -> bool:
        return self.project_id is None

    def describe(self) -> str:
        return "full tree" if self.is_full else f"project '{self.project_id}'"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MigrationScope":
        """
        Parse a trigger payload.

        Accepted shapes: {"scope": "full"}, {"scope": {"projectId": "p1"}}
        and the shorthand {"projectId": "p1"}.

        Raises:
            ValueError: missing or malformed scope
        """
        if not isinstance(payload, dict):
            raise ValueError("Request body must be an object")
        scope = payload.get("scope")
        if scope == "full":
            return cls.full()
        if isinstance(scope, dict):
            project_id = scope.get("projectId")
        elif scope is None:
            project_id = payload.get("projectId")
        else:
            raise ValueError(f"Unsupported scope: {scope!r}")
        if not project_id:
            raise ValueError("Missing scope id: provide scope 'full' or a projectId")
        return cls.project(str(project_id))


@dataclass
class ManifestEntry:
    """One distinct source blob that must exist, verified, in the target."""

    source_key: str
    source_ref: str
    target_key: str
    target_ref: str
    owners: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceKey": self.source_key,
            "sourceRef": self.source_ref,
            "targetKey": self.target_key,
            "targetRef": self.target_ref,
            "owners": list(self.owners),
        }


class MigrationManifest:
    """Ordered work list of blobs, de-duplicated by source key."""

    def __init__(self):
        self._entries: Dict[str, ManifestEntry] = {}

    def add(
        self,
        source_key: str,
        source_ref: str,
        target_key: str,
        target_ref: str,
        owner: str,
    ) -> ManifestEntry:
        """Register an owner of source_key, creating the entry on first sight."""
        entry = self._entries.get(source_key)
        if entry is None:
            entry = ManifestEntry(source_key, source_ref, target_key, target_ref)
            self._entries[source_key] = entry
        if owner not in entry.owners:
            entry.owners.append(owner)
        return entry

    def get(self, source_key: str) -> Optional[ManifestEntry]:
        return self._entries.get(source_key)

    @property
    def entries(self) -> List[ManifestEntry]:
        return list(self._entries.values())

    def source_keys(self) -> List[str]:
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ManifestEntry]:
        return iter(list(self._entries.values()))

    def __contains__(self, source_key: object) -> bool:
        return source_key in self._entries

    def to_dict(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries.values()]


class GapReason(str, Enum):
    """Why a reference was left as it was."""
    UNRESOLVED_REFERENCE = "unresolved-reference"
    FOREIGN_REFERENCE = "foreign-reference"
    MISSING_BLOB_FIELD = "missing-blob-field"


@dataclass
class ResolutionGap:
    """A reference the resolver skipped. Non-fatal, reported to the caller."""

    path: str
    reason: GapReason
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "reason": self.reason.value, "detail": self.detail}


class SubjectKind(str, Enum):
    RECORD = "record"
    BLOB = "blob"


class DiscrepancyReason(str, Enum):
    MISSING_IN_TARGET = "missing-in-target"
    MISSING_IN_SOURCE = "missing-in-source"
    CHECKSUM_MISMATCH = "checksum-mismatch"
    CONTENT_MISMATCH = "content-mismatch"


class RepairAction(str, Enum):
    RETRANSFERRED = "re-transferred"
    RESYNCED = "re-synced"
    TRANSFER_FAILED = "transfer-failed"
    WRITE_FAILED = "write-failed"
    DEFERRED = "deferred"
    NONE = "none"


@dataclass
class DiscrepancyRecord:
    """A divergence found by verification and what was done about it."""

    subject_kind: SubjectKind
    key: str
    reason: DiscrepancyReason
    action_taken: RepairAction
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subjectKind": self.subject_kind.value,
            "key": self.key,
            "reason": self.reason.value,
            "actionTaken": self.action_taken.value,
            "detail": self.detail,
        }
