"""
OpsGuard Core - Core Module
===========================

Error taxonomy and reserved exit codes shared by every primitive.
"""

from __future__ import annotations

from opsguard_core.core.error_handling import (
    EXIT_CLEANUP_FAILED,
    EXIT_DEADLINE_EXCEEDED,
    EXIT_FAILURE,
    EXIT_LOCK_TIMEOUT,
    EXIT_NOT_EXECUTABLE,
    EXIT_NOT_FOUND,
    EXIT_SUCCESS,
    EXIT_USAGE,
    CleanupError,
    CleanupFailure,
    CommandNotExecutableError,
    CommandNotFoundError,
    DeadlineExceededError,
    ErrorCategory,
    LockTimeoutError,
    OpsGuardError,
    StaleLockError,
    UsageError,
    describe_exit_code,
    exit_code_from_returncode,
    resolve_cleanup_exit_code,
    signal_exit_code,
)

__all__ = [
    "EXIT_CLEANUP_FAILED",
    "EXIT_DEADLINE_EXCEEDED",
    "EXIT_FAILURE",
    "EXIT_LOCK_TIMEOUT",
    "EXIT_NOT_EXECUTABLE",
    "EXIT_NOT_FOUND",
    "EXIT_SUCCESS",
    "EXIT_USAGE",
    "CleanupError",
    "CleanupFailure",
    "CommandNotExecutableError",
    "CommandNotFoundError",
    "DeadlineExceededError",
    "ErrorCategory",
    "LockTimeoutError",
    "OpsGuardError",
    "StaleLockError",
    "UsageError",
    "describe_exit_code",
    "exit_code_from_returncode",
    "resolve_cleanup_exit_code",
    "signal_exit_code",
]
