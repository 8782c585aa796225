"""
Error taxonomy for copilot_memory.

Persistence and input errors propagate to callers untouched. Only
RemoteCollaboratorFailure is caught inside the package (by the shaping
layer) and degraded to the deterministic result.
"""

from __future__ import annotations

from typing import Optional


class MemoryStoreError(Exception):
    """Base class for all copilot_memory errors."""

    pass


class EmptyMemory(MemoryStoreError, ValueError):
    """Raised when add() receives empty or whitespace-only text."""

    def __init__(self, message: str = "Cannot add an empty memory."):
        super().__init__(message)


class InvalidCriteria(MemoryStoreError, ValueError):
    """Raised when purge() gets zero or several selection criteria."""

    pass


class MalformedStore(MemoryStoreError):
    """Raised when the store file exists but is not a JSON array of records."""

    def __init__(self, path: str, reason: str = "must be a JSON array"):
        self.path = path
        super().__init__(f"Memory file {reason}: {path}")


class LockTimeout(MemoryStoreError):
    """Raised when the store lock cannot be acquired in time."""

    def __init__(self, lock_path: str, timeout: float):
        self.lock_path = lock_path
        self.timeout = timeout
        super().__init__(
            f"Timed out after {timeout:.1f}s acquiring lock: {lock_path} "
            "(remove it if no other process is writing)"
        )


class RemoteCollaboratorFailure(MemoryStoreError):
    """Raised when the remote shaping/compression service fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
