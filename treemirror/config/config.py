"""Backend and replication configuration for TreeMirror.

This module defines the configuration dataclasses for the pluggable record
and blob store backends on each side of a replication, the record tree
layout, and the tuning knobs of the transfer engine.

Profiles are YAML files; secrets come from the environment (a `.env` file
is honoured through python-dotenv).
"""

import os
import urllib.parse
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

ENV_PREFIX = "TREEMIRROR_"
CONFIG_ENV_VAR = "TREEMIRROR_CONFIG"


class BackendType(str, Enum):
    """Supported store backend types."""

    MEMORY = "memory"  # In-process dicts, for tests and dry runs
    FILESYSTEM = "filesystem"  # JSON file records + directory blobs
    POSTGRESQL = "postgres"  # JSONB record tree (records only)

    @classmethod
    def default(cls) -> "BackendType":
        """Return the default backend type."""
        return cls.MEMORY

    @classmethod
    def from_string(cls, value: str) -> "BackendType":
        """Parse backend type from string (case-insensitive)."""
        value_lower = value.lower().strip()
        for member in cls:
            if member.value == value_lower:
                return member
        raise ValueError(
            f"Invalid backend type: {value}. "
            f"Valid types: {[m.value for m in cls]}"
        )


class ReferenceStyle(str, Enum):
    """How a blob store renders references it issues."""

    PATH = "path"  # "<bucket>/<key>"
    URL = "url"  # "https://<host>/v0/b/<bucket>/o/<quoted key>?alt=media"


@dataclass
class BackendConfig:
    """Configuration for one side (source or target) of a replication.

    Attributes:
        name: Side label used in logs ("source" / "target")
        record_backend: Backend holding the record tree
        blob_backend: Backend holding binary blobs
        record_path: JSON file holding the tree (filesystem record backend)
        blob_root: Directory holding blobs (filesystem blob backend)
        bucket: Bucket/container name embedded in issued references
        reference_style: Shape of issued blob references
        url_host: Host used when reference_style is "url"
        postgres_*: PostgreSQL connection parameters (postgres record backend)
        connection_string: Alternative to individual PostgreSQL params
    """

    name: str = "source"
    record_backend: BackendType = BackendType.MEMORY
    blob_backend: BackendType = BackendType.MEMORY

    record_path: Optional[str] = None
    blob_root: Optional[str] = None

    bucket: str = "default"
    reference_style: ReferenceStyle = ReferenceStyle.PATH
    url_host: str = "firebasestorage.googleapis.com"

    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "treemirror"
    postgres_password: Optional[str] = None  # From env or secrets
    postgres_database: str = "treemirror"
    postgres_workspace: str = "default"
    postgres_max_connections: int = 10
    connection_string: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if isinstance(self.record_backend, str):
            self.record_backend = BackendType.from_string(self.record_backend)
        if isinstance(self.blob_backend, str):
            self.blob_backend = BackendType.from_string(self.blob_backend)
        if isinstance(self.reference_style, str):
            self.reference_style = ReferenceStyle(self.reference_style.lower().strip())

        if self.blob_backend == BackendType.POSTGRESQL:
            raise ValueError("postgres is a record backend only; choose memory or filesystem for blobs")

        if self.record_backend == BackendType.FILESYSTEM and not self.record_path:
            raise ValueError(f"{self.name}: record_path is required for the filesystem record backend")
        if self.blob_backend == BackendType.FILESYSTEM and not self.blob_root:
            raise ValueError(f"{self.name}: blob_root is required for the filesystem blob backend")

        if not self.bucket or "/" in self.bucket:
            raise ValueError(f"{self.name}: bucket must be a non-empty name without '/', got {self.bucket!r}")

        if not 1 <= self.postgres_port <= 65535:
            raise ValueError(f"postgres_port must be 1-65535, got {self.postgres_port}")

        if not 1 <= self.postgres_max_connections <= 100:
            raise ValueError(
                f"postgres_max_connections must be 1-100, got {self.postgres_max_connections}"
            )

    def get_connection_string(self) -> Optional[str]:
        """Build PostgreSQL connection string from parameters.

        Returns:
            Connection string or None if records are not in PostgreSQL
        """
        if self.record_backend != BackendType.POSTGRESQL:
            return None

        if self.connection_string:
            return self.connection_string

        password_part = f":{urllib.parse.quote(self.postgres_password, safe='')}" if self.postgres_password else ""
        return (
            f"postgresql://{self.postgres_user}{password_part}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_database}"
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any], name: Optional[str] = None) -> "BackendConfig":
        """Create BackendConfig from dictionary, ignoring unknown keys."""
        values = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if name and "name" not in values:
            values["name"] = name
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization.

        Returns:
            Dict with configuration values (password and connection string excluded)
        """
        result = asdict(self)
        result["record_backend"] = self.record_backend.value
        result["blob_backend"] = self.blob_backend.value
        result["reference_style"] = self.reference_style.value
        # Secrets never leave the process
        result.pop("postgres_password", None)
        result.pop("connection_string", None)
        return result


@dataclass
class TreeLayout:
    """Collection and field names of the replicated record tree."""

    node_collection: str = "projects"
    file_collection: str = "files"
    cover_field: str = "coverImageUrl"
    sections_field: str = "sections"
    section_type_field: str = "type"
    file_section_type: str = "File"
    section_ref_fields: Tuple[str, ...] = ("refId", "id")
    section_blob_field: str = "storagePath"
    file_blob_field: str = "storagePath"

    def __post_init__(self) -> None:
        if isinstance(self.section_ref_fields, (list, str)):
            fields = [self.section_ref_fields] if isinstance(self.section_ref_fields, str) else self.section_ref_fields
            self.section_ref_fields = tuple(fields)
        if self.node_collection == self.file_collection:
            raise ValueError("node_collection and file_collection must differ")

    def node_path(self, node_id: str) -> str:
        return f"{self.node_collection}/{node_id}"

    def file_path(self, file_id: str) -> str:
        return f"{self.file_collection}/{file_id}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TreeLayout":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class ReplicationConfig:
    """Transfer engine tuning.

    Attributes:
        max_concurrent_transfers: Blob copies allowed in flight at once
        transfer_timeout_seconds: Per-blob deadline (0 disables)
        max_retries: Retries for transient store errors
        retry_backoff_seconds: First backoff delay
        staged_copy: Download into a local temp file before uploading
        staging_dir: Directory for staged copies (system temp when unset)
        target_key_prefix: Prefix prepended to every derived target key
        chunk_size: Bytes per streamed chunk
    """

    max_concurrent_transfers: int = 8
    transfer_timeout_seconds: float = 300.0
    max_retries: int = 3
    retry_backoff_seconds: float = 0.5
    staged_copy: bool = False
    staging_dir: Optional[str] = None
    target_key_prefix: Optional[str] = None
    chunk_size: int = 1024 * 1024

    def __post_init__(self) -> None:
        if self.max_concurrent_transfers < 1:
            raise ValueError(
                f"max_concurrent_transfers must be >= 1, got {self.max_concurrent_transfers}"
            )
        if self.transfer_timeout_seconds < 0:
            raise ValueError("transfer_timeout_seconds must be >= 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        if self.target_key_prefix:
            self.target_key_prefix = self.target_key_prefix.strip("/")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReplicationConfig":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class TreeMirrorConfig:
    """Complete configuration for a replication profile."""

    source: BackendConfig = field(default_factory=lambda: BackendConfig(name="source"))
    target: BackendConfig = field(default_factory=lambda: BackendConfig(name="target", bucket="target"))
    layout: TreeLayout = field(default_factory=TreeLayout)
    replication: ReplicationConfig = field(default_factory=ReplicationConfig)

    def __post_init__(self) -> None:
        if (self.source.blob_backend == self.target.blob_backend == BackendType.FILESYSTEM
                and Path(self.source.blob_root).resolve() == Path(self.target.blob_root).resolve()):
            raise ValueError("source and target blob_root must differ")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TreeMirrorConfig":
        return cls(
            source=BackendConfig.from_dict(data.get("source", {}), name="source"),
            target=BackendConfig.from_dict({"bucket": "target", **data.get("target", {})}, name="target"),
            layout=TreeLayout.from_dict(data.get("layout", {})),
            replication=ReplicationConfig.from_dict(data.get("replication", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        layout = asdict(self.layout)
        layout["section_ref_fields"] = list(self.layout.section_ref_fields)
        return {
            "source": self.source.to_dict(),
            "target": self.target.to_dict(),
            "layout": layout,
            "replication": asdict(self.replication),
        }


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay TREEMIRROR_* environment variables onto a raw profile dict."""
    data = {k: dict(v) if isinstance(v, dict) else v for k, v in data.items()}

    for side in ("source", "target"):
        section = data.setdefault(side, {})
        prefix = f"{ENV_PREFIX}{side.upper()}_"
        password = os.environ.get(f"{prefix}POSTGRES_PASSWORD")
        if password:
            section["postgres_password"] = password
        conn_str = os.environ.get(f"{prefix}CONNECTION_STRING")
        if conn_str:
            section["connection_string"] = conn_str

    replication = data.setdefault("replication", {})
    concurrency = os.environ.get(f"{ENV_PREFIX}MAX_CONCURRENT_TRANSFERS")
    if concurrency:
        replication["max_concurrent_transfers"] = int(concurrency)
    timeout = os.environ.get(f"{ENV_PREFIX}TRANSFER_TIMEOUT")
    if timeout:
        replication["transfer_timeout_seconds"] = float(timeout)

    return data


def load_config(config_path: Optional[str] = None) -> TreeMirrorConfig:
    """
    Load a replication profile.

    Resolution order for the profile file: explicit argument, then the
    TREEMIRROR_CONFIG environment variable. Without a file, defaults
    (in-memory stores) are used. Environment overrides apply either way.

    Args:
        config_path: Optional path to a YAML profile

    Returns:
        TreeMirrorConfig instance
    """
    load_dotenv()

    path = config_path or os.environ.get(CONFIG_ENV_VAR)
    data: Dict[str, Any] = {}
    if path:
        profile = Path(path).expanduser()
        if not profile.exists():
            raise FileNotFoundError(f"Config file not found: {profile}")
        with open(profile, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {profile} must contain a mapping")

    return TreeMirrorConfig.from_dict(_apply_env_overrides(data))
