"""
Process helpers shared by the supervision primitives.

Every helper here treats "the process is already gone" as a normal
outcome: liveness checks and signal delivery race with the child exiting,
and losing that race must never surface as an error.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Dict, Optional, Sequence, Union

import psutil

from opsguard_core.core.error_handling import (
    CommandNotExecutableError,
    CommandNotFoundError,
    UsageError,
)

logger = logging.getLogger(__name__)

SignalLike = Union[str, int, signal.Signals]


def is_process_alive(pid: Optional[int]) -> bool:
    """
    Probe a pid with the no-op signal.

    psutil.pid_exists() sends signal 0 on POSIX and reports a pid that
    exists under another user (EPERM) as alive.
    """
    if pid is None or pid <= 0:
        return False
    try:
        return psutil.pid_exists(pid)
    except (OverflowError, ValueError):
        return False


def resolve_signal(value: SignalLike) -> signal.Signals:
    """Accept TERM, SIGTERM, term or 15 and return the Signals member."""
    if isinstance(value, signal.Signals):
        return value
    if isinstance(value, int):
        try:
            return signal.Signals(value)
        except ValueError:
            raise UsageError(f"invalid signal: {value}") from None

    text = str(value).strip()
    if text.isdigit():
        return resolve_signal(int(text))

    name = text.upper()
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    try:
        return signal.Signals[name]
    except KeyError:
        raise UsageError(f"invalid signal: {value}") from None


def send_signal(process: asyncio.subprocess.Process, sig: SignalLike) -> bool:
    """
    Deliver a signal to a child, ignoring a child that already exited.

    Returns True if the signal was sent.
    """
    if process.returncode is not None:
        return False
    try:
        process.send_signal(resolve_signal(sig))
        return True
    except ProcessLookupError:
        logger.debug(f"[Process] pid {process.pid} exited before signal delivery")
        return False


async def wait_for_exit(
    process: asyncio.subprocess.Process,
    timeout: Optional[float],
) -> bool:
    """Wait up to ``timeout`` seconds for the child; True if it exited."""
    if process.returncode is not None:
        return True
    try:
        await asyncio.wait_for(process.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False


async def terminate_and_reap(
    process: asyncio.subprocess.Process,
    sig: SignalLike = signal.SIGTERM,
    grace: float = 0.0,
) -> int:
    """
    Send ``sig``, wait ``grace`` seconds, then SIGKILL and reap.

    Returns the child's raw return code.
    """
    send_signal(process, sig)
    if grace > 0 and await wait_for_exit(process, grace):
        return process.returncode
    if process.returncode is None:
        send_signal(process, signal.SIGKILL)
    return await process.wait()


async def spawn(
    command: Sequence[str],
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
) -> asyncio.subprocess.Process:
    """
    Start ``command`` with inherited stdio.

    Launch failures are mapped onto the shell's 127/126 convention.
    """
    if not command:
        raise UsageError("COMMAND is required (use -- COMMAND ...)")

    process_env = None
    if env:
        process_env = os.environ.copy()
        process_env.update(env)

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            env=process_env,
            cwd=cwd,
        )
    except FileNotFoundError:
        raise CommandNotFoundError(f"command not found: {command[0]}") from None
    except PermissionError:
        raise CommandNotExecutableError(f"command not executable: {command[0]}") from None

    logger.debug(f"[Process] started pid {process.pid}: {' '.join(command)}")
    return process


__all__ = [
    "is_process_alive",
    "resolve_signal",
    "send_signal",
    "wait_for_exit",
    "terminate_and_reap",
    "spawn",
]
