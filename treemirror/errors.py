"""
TreeMirror Error Taxonomy
=========================

Exceptions raised by the replication engine and the store adapters.

- NotFound / NoData: the requested source scope does not exist or is empty
- ReferenceUnresolved: a Section points at a missing FileRecord (normally
  accumulated as a gap, not raised)
- TransferFailed: a blob copy or its checksum verification failed (retryable)
- StoreError: backend I/O failure, transient or fatal
- StructuralMismatch: source and target record trees differ
"""

from typing import Optional, Set


class ReplicationError(Exception):
    """Base class for all TreeMirror errors."""


class NotFound(ReplicationError):
    """The requested source scope is absent."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        super().__init__(message or f"No data found at '{path}'")


class NoData(NotFound):
    """The source tree exists but holds nothing to migrate."""


class ReferenceUnresolved(ReplicationError):
    """A Section's reference has no matching FileRecord."""

    def __init__(self, path: str, ref_id: str):
        self.path = path
        self.ref_id = ref_id
        super().__init__(f"Section at '{path}' references missing file record '{ref_id}'")


class TransferFailed(ReplicationError):
    """A blob could not be copied to the target backend."""

    def __init__(self, source_key: str, cause: str):
        self.source_key = source_key
        self.cause = cause
        super().__init__(f"Transfer of '{source_key}' failed: {cause}")


class StoreError(ReplicationError):
    """
    Backend I/O failure.

    Args:
        message: Human readable description
        transient: True when the operation may succeed if retried
            (timeouts, throttling, connection resets). Auth and permission
            failures are never transient.
    """

    def __init__(self, message: str, transient: bool = True):
        self.transient = transient
        super().__init__(message)


class StructuralMismatch(ReplicationError):
    """Source and target record trees differ at a path."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Record tree mismatch at '{path}'")


# Substrings that mark an exception as safe to retry
TRANSIENT_ERROR_PATTERNS = [
    'timeout', 'timed out',
    'connection', 'reset by peer',
    'temporarily unavailable', 'service unavailable',
    'too many requests', 'rate limit', 'throttl',
    '429', '500', '502', '503', '504',
]

# Substrings that mark an exception as fatal regardless of other hints
FATAL_ERROR_PATTERNS = [
    'permission', 'forbidden', 'unauthorized', 'unauthenticated',
    'authentication', 'access denied', '401', '403',
]

TRANSIENT_EXCEPTION_TYPES: Set[type] = {TimeoutError, ConnectionError}


def is_transient_error(exception: BaseException) -> bool:
    """
    Determine if an exception is transient and worth retrying.

    StoreError carries its own classification. Other exceptions are
    classified by type, then by message: fatal (auth/permission) patterns
    win over transient ones, and unknown errors are not retried.
    """
    if isinstance(exception, StoreError):
        return exception.transient
    if isinstance(exception, ReplicationError):
        return False

    error_str = str(exception).lower()
    error_type = type(exception).__name__.lower()

    for pattern in FATAL_ERROR_PATTERNS:
        if pattern in error_str or pattern in error_type:
            return False

    if isinstance(exception, tuple(TRANSIENT_EXCEPTION_TYPES)):
        return True

    for pattern in TRANSIENT_ERROR_PATTERNS:
        if pattern in error_str or pattern in error_type:
            return True

    return False
