"""Filesystem lock manager."""

from opsguard_core.locking.file_lock import (
    DEFAULT_POLL_INTERVAL,
    METADATA_FILENAME,
    FileLock,
    LockMetadata,
    LockState,
    LockStatus,
    file_lock,
    inspect_lock,
    lock_age,
    run_locked,
)

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "METADATA_FILENAME",
    "FileLock",
    "LockMetadata",
    "LockState",
    "LockStatus",
    "file_lock",
    "inspect_lock",
    "lock_age",
    "run_locked",
]
