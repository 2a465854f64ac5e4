"""
Error Taxonomy and Exit Codes
=============================

Single source of truth for how OpsGuard failures are classified and how
they surface as process exit codes.

Three families of failure are kept apart so callers can branch on
"busy" versus "broken":

- USAGE:       bad flags, missing arguments, invalid values (exit 2)
- CONTENTION:  lock not acquired in time (73), deadline exceeded (124)
- CLEANUP:     one or more teardown steps failed (70)

Anything else raised by the primitives is an OpsGuardError subclass that
carries its own exit code, so the CLI never needs a lookup table.
"""

from __future__ import annotations

import signal
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


# =============================================================================
# RESERVED EXIT CODES
# =============================================================================

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_CLEANUP_FAILED = 70
EXIT_LOCK_TIMEOUT = 73
EXIT_DEADLINE_EXCEEDED = 124
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127
SIGNAL_EXIT_BASE = 128


class ErrorCategory(Enum):
    """Error categories for routing."""
    USAGE = "usage"
    CONTENTION = "contention"
    LOCK = "lock"
    CLEANUP = "cleanup"
    COMMAND = "command"


# =============================================================================
# EXCEPTIONS
# =============================================================================


class OpsGuardError(Exception):
    """Base class for every error raised by the primitives."""

    exit_code: int = EXIT_FAILURE
    category: ErrorCategory = ErrorCategory.COMMAND

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code


class UsageError(OpsGuardError):
    """Invalid invocation: bad flag, missing argument or out-of-range value."""

    exit_code = EXIT_USAGE
    category = ErrorCategory.USAGE


class LockTimeoutError(OpsGuardError):
    """The lock could not be acquired before the wait timeout elapsed."""

    exit_code = EXIT_LOCK_TIMEOUT
    category = ErrorCategory.CONTENTION

    def __init__(self, lock_path: str, waited: float):
        super().__init__(f"timed out waiting for lock: {lock_path} (waited {waited:.1f}s)")
        self.lock_path = lock_path
        self.waited = waited


class StaleLockError(OpsGuardError):
    """A stale lock was detected but could not be removed."""

    category = ErrorCategory.LOCK


class DeadlineExceededError(OpsGuardError):
    """Raised by callers that prefer an exception over a DeadlineResult."""

    exit_code = EXIT_DEADLINE_EXCEEDED
    category = ErrorCategory.CONTENTION

    def __init__(self, timeout: float):
        super().__init__(f"command timed out after {timeout:g}s")
        self.timeout = timeout


class CommandNotFoundError(OpsGuardError):
    """The supervised command does not exist."""

    exit_code = EXIT_NOT_FOUND


class CommandNotExecutableError(OpsGuardError):
    """The supervised command exists but cannot be executed."""

    exit_code = EXIT_NOT_EXECUTABLE


@dataclass
class CleanupFailure:
    """One teardown step that did not succeed."""
    action: str
    reason: str


class CleanupError(OpsGuardError):
    """Aggregate of every teardown step that failed during one run."""

    exit_code = EXIT_CLEANUP_FAILED
    category = ErrorCategory.CLEANUP

    def __init__(self, failures: List[CleanupFailure]):
        summary = "; ".join(f"{f.action}: {f.reason}" for f in failures)
        super().__init__(f"{len(failures)} cleanup action(s) failed: {summary}")
        self.failures = list(failures)


# =============================================================================
# EXIT CODE HELPERS
# =============================================================================


def exit_code_from_returncode(returncode: int) -> int:
    """
    Map an asyncio/subprocess return code to a shell-style exit code.

    asyncio reports a child killed by signal N as -N; shells report 128+N.
    """
    if returncode < 0:
        return SIGNAL_EXIT_BASE + (-returncode)
    return returncode


def signal_exit_code(signum: int) -> int:
    """POSIX convention for a process terminated by a signal."""
    return SIGNAL_EXIT_BASE + int(signum)


def resolve_cleanup_exit_code(command_code: int, cleanup_failed: bool) -> int:
    """
    Combine the command's exit code with the teardown outcome.

    A failing command keeps its own code even if teardown also failed;
    a successful command with failed teardown reports EXIT_CLEANUP_FAILED.
    """
    if cleanup_failed and command_code == EXIT_SUCCESS:
        return EXIT_CLEANUP_FAILED
    return command_code


def describe_exit_code(code: int) -> Tuple[ErrorCategory, str]:
    """Human-readable interpretation of a reserved exit code."""
    if code == EXIT_USAGE:
        return ErrorCategory.USAGE, "usage error"
    if code == EXIT_LOCK_TIMEOUT:
        return ErrorCategory.CONTENTION, "lock timeout"
    if code == EXIT_DEADLINE_EXCEEDED:
        return ErrorCategory.CONTENTION, "deadline exceeded"
    if code == EXIT_CLEANUP_FAILED:
        return ErrorCategory.CLEANUP, "cleanup failed"
    if code > SIGNAL_EXIT_BASE:
        try:
            name = signal.Signals(code - SIGNAL_EXIT_BASE).name
        except ValueError:
            name = f"signal {code - SIGNAL_EXIT_BASE}"
        return ErrorCategory.COMMAND, f"terminated by {name}"
    return ErrorCategory.COMMAND, f"exit status {code}"


__all__ = [
    "EXIT_SUCCESS",
    "EXIT_FAILURE",
    "EXIT_USAGE",
    "EXIT_CLEANUP_FAILED",
    "EXIT_LOCK_TIMEOUT",
    "EXIT_DEADLINE_EXCEEDED",
    "EXIT_NOT_EXECUTABLE",
    "EXIT_NOT_FOUND",
    "SIGNAL_EXIT_BASE",
    "ErrorCategory",
    "OpsGuardError",
    "UsageError",
    "LockTimeoutError",
    "StaleLockError",
    "DeadlineExceededError",
    "CommandNotFoundError",
    "CommandNotExecutableError",
    "CleanupFailure",
    "CleanupError",
    "exit_code_from_returncode",
    "signal_exit_code",
    "resolve_cleanup_exit_code",
    "describe_exit_code",
]
