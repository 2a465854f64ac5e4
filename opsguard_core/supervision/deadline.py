"""
Deadline Supervision
====================

Runs a child command under a wall-clock deadline. A watchdog task sleeps
for the timeout; if the child is still running when it wakes, the
watchdog sends the configured signal, waits out the grace period, and
then SIGKILLs whatever is left.

    result = await run_with_deadline(["curl", url], timeout=30, grace=2)
    if result.timed_out:
        ...

The child and the watchdog race; whichever finishes first decides the
outcome. A timed-out run reports EXIT_DEADLINE_EXCEEDED (124) instead of
the child's own status, so callers can tell "timed out" from "exited
with that code".
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from opsguard_core.config.base_config import DeadlineConfig
from opsguard_core.core.error_handling import (
    EXIT_DEADLINE_EXCEEDED,
    DeadlineExceededError,
    exit_code_from_returncode,
)
from opsguard_core.utils.process import (
    SignalLike,
    resolve_signal,
    send_signal,
    spawn,
    terminate_and_reap,
    wait_for_exit,
)

logger = logging.getLogger(__name__)


@dataclass
class DeadlineResult:
    """Outcome of one supervised run."""
    exit_code: int
    timed_out: bool = False
    returncode: Optional[int] = None
    duration: float = 0.0
    signal_sent: Optional[str] = None
    killed: bool = False
    timeout: Optional[float] = None

    def raise_for_timeout(self) -> "DeadlineResult":
        if self.timed_out:
            raise DeadlineExceededError(self.timeout or self.duration)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
            "returncode": self.returncode,
            "duration": round(self.duration, 3),
            "signal_sent": self.signal_sent,
            "killed": self.killed,
        }


class _Watchdog:
    """Enforces one deadline on one child."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        timeout: float,
        sig: signal.Signals,
        grace: float,
    ):
        self.process = process
        self.timeout = timeout
        self.sig = sig
        self.grace = grace
        self.fired = False
        self.killed = False

    async def run(self) -> None:
        await asyncio.sleep(self.timeout)
        if self.process.returncode is not None:
            return

        self.fired = True
        logger.warning(
            f"[Deadline] pid {self.process.pid} exceeded {self.timeout:g}s, sending {self.sig.name}"
        )
        send_signal(self.process, self.sig)

        if self.grace > 0 and await wait_for_exit(self.process, self.grace):
            return

        if self.process.returncode is None and send_signal(self.process, signal.SIGKILL):
            self.killed = True
            logger.warning(
                f"[Deadline] pid {self.process.pid} still alive after {self.grace:g}s grace, sent SIGKILL"
            )


async def run_with_deadline(
    command: Sequence[str],
    timeout: float,
    sig: SignalLike = signal.SIGTERM,
    grace: float = 5.0,
    env: Optional[Dict[str, str]] = None,
) -> DeadlineResult:
    """
    Run ``command`` and enforce a maximum runtime.

    Args:
        command: argv of the child
        timeout: seconds before the watchdog fires; must be > 0
        sig: signal sent when the deadline passes (name, number or Signals)
        grace: seconds between ``sig`` and SIGKILL; 0 kills immediately

    Returns:
        DeadlineResult whose exit_code is the child's code, or 124 on timeout
    """
    resolved = resolve_signal(sig)
    config = DeadlineConfig(timeout=timeout, signal=resolved.name, grace=grace).validate()

    start = time.monotonic()
    process = await spawn(command, env=env)
    watchdog = _Watchdog(process, config.timeout, resolved, config.grace)
    watchdog_task = asyncio.ensure_future(watchdog.run())

    try:
        returncode = await process.wait()
    except asyncio.CancelledError:
        # Host is being interrupted; never leave the child behind
        if process.returncode is None:
            await terminate_and_reap(process, signal.SIGKILL)
        raise
    finally:
        watchdog_task.cancel()
        await asyncio.gather(watchdog_task, return_exceptions=True)

    duration = time.monotonic() - start
    if watchdog.fired:
        logger.error(f"[Deadline] command timed out after {config.timeout:g}s")
        return DeadlineResult(
            exit_code=EXIT_DEADLINE_EXCEEDED,
            timed_out=True,
            returncode=returncode,
            duration=duration,
            signal_sent=resolved.name,
            killed=watchdog.killed,
            timeout=config.timeout,
        )

    logger.debug(f"[Deadline] command exited with {returncode} after {duration:.2f}s")
    return DeadlineResult(
        exit_code=exit_code_from_returncode(returncode),
        returncode=returncode,
        duration=duration,
    )


async def run_with_config(
    command: Sequence[str],
    config: DeadlineConfig,
    env: Optional[Dict[str, str]] = None,
) -> DeadlineResult:
    config.validate()
    return await run_with_deadline(
        command,
        timeout=config.timeout,
        sig=config.signal,
        grace=config.grace,
        env=env,
    )


__all__ = ["DeadlineResult", "run_with_deadline", "run_with_config"]
