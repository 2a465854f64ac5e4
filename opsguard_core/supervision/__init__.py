"""
Process supervision primitives.

- deadline: run a command under a wall-clock deadline
- cleanup:  run a command, then unwind a LIFO teardown stack exactly once
- retry:    re-run a failing command with exponential backoff
"""

from opsguard_core.supervision.cleanup import (
    CleanupAction,
    CleanupReport,
    CleanupStack,
    read_cleanup_file,
    run_with_cleanup,
)
from opsguard_core.supervision.deadline import (
    DeadlineResult,
    run_with_config,
    run_with_deadline,
)
from opsguard_core.supervision.retry import (
    RetryResult,
    RetryRunner,
    run_with_retry,
)

__all__ = [
    "CleanupAction",
    "CleanupReport",
    "CleanupStack",
    "read_cleanup_file",
    "run_with_cleanup",
    "DeadlineResult",
    "run_with_config",
    "run_with_deadline",
    "RetryResult",
    "RetryRunner",
    "run_with_retry",
]
