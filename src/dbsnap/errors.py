"""
Exceptions raised by dbsnap.

Every expected failure of a snapshot operation maps to one of these. Callers that only care
whether an operation failed can catch `DbsnapError`.
"""

from __future__ import annotations


class DbsnapError(RuntimeError):
    """Base exception for all dbsnap failures."""


class ResolutionError(DbsnapError):
    """Raised when a service or its engine cannot be resolved."""


class PreconditionError(DbsnapError):
    """Raised when the target container is not in a state the operation requires."""


class ExecutionError(DbsnapError):
    """Raised when a command in the container fails or its I/O streams break."""


class IntegrityError(DbsnapError):
    """Raised when a snapshot file does not match the checksum recorded in its manifest."""


class SnapshotTimeoutError(DbsnapError, TimeoutError):
    """Raised when polling for a database state exceeds its deadline."""


class ManifestValidationError(DbsnapError, ValueError):
    """Raised when a manifest is malformed or incomplete."""


class OperationCancelledError(DbsnapError):
    """Raised when a caller cancels an operation while it is waiting."""
