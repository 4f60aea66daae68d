# Config module - re-exports for convenience
#
#   BackendConfig     - one side (source or target) of a replication
#   TreeLayout        - collection and field names of the record tree
#   ReplicationConfig - transfer engine tuning
#
from .config import (  # noqa: F401
    BackendConfig,
    BackendType,
    ReferenceStyle,
    ReplicationConfig,
    TreeLayout,
    TreeMirrorConfig,
    load_config,
)
