"""
OpsGuard Core - Locks, Deadlines and Cleanup for Automation Scripts
"""

__version__ = "1.0.0"

from opsguard_core.core.error_handling import (
    EXIT_CLEANUP_FAILED,
    EXIT_DEADLINE_EXCEEDED,
    EXIT_LOCK_TIMEOUT,
    EXIT_USAGE,
    OpsGuardError,
)
from opsguard_core.locking import FileLock, file_lock, run_locked
from opsguard_core.supervision import (
    CleanupStack,
    run_with_cleanup,
    run_with_deadline,
    run_with_retry,
)

__all__ = [
    "EXIT_CLEANUP_FAILED",
    "EXIT_DEADLINE_EXCEEDED",
    "EXIT_LOCK_TIMEOUT",
    "EXIT_USAGE",
    "OpsGuardError",
    "FileLock",
    "file_lock",
    "run_locked",
    "CleanupStack",
    "run_with_cleanup",
    "run_with_deadline",
    "run_with_retry",
    "__version__",
]
