"""
Cleanup Coordination
====================

Runs a command and then unwinds a stack of teardown actions in reverse
registration order, whether the command finished on its own or the
coordinator was interrupted by INT, TERM or HUP.

Features:
- LIFO teardown, executed exactly once (one-shot guard)
- The same teardown path for normal exit and for signals
- Every action runs even when an earlier one fails; failures are
  logged one by one and aggregated
- Shell-string actions (``bash -c``) and in-process callables

Exit-code precedence:
    command failed, cleanup failed    -> command's code
    command succeeded, cleanup failed -> EXIT_CLEANUP_FAILED (70)
    otherwise                         -> command's code
    interrupted by signal N           -> 128+N (70 if the child still exited 0
                                         and cleanup failed)

Usage:
    stack = CleanupStack()
    stack.register("rm -rf /tmp/build.123")
    stack.register(lambda: release_quota())
    code = await run_with_cleanup(["make", "deploy"], stack)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from opsguard_core.config.base_config import CleanupConfig
from opsguard_core.core.error_handling import (
    EXIT_CLEANUP_FAILED,
    CleanupError,
    CleanupFailure,
    OpsGuardError,
    UsageError,
    exit_code_from_returncode,
    resolve_cleanup_exit_code,
    signal_exit_code,
)
from opsguard_core.utils.process import send_signal, spawn, terminate_and_reap
from opsguard_core.utils.signals import SignalTrap

logger = logging.getLogger(__name__)

CleanupAction = Union[str, Callable[[], Any]]


@dataclass
class CleanupReport:
    """What one teardown pass did."""
    executed: List[str] = field(default_factory=list)
    failures: List[CleanupFailure] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.failures)

    def raise_for_failures(self) -> "CleanupReport":
        if self.failures:
            raise CleanupError(self.failures)
        return self


def _label(action: CleanupAction) -> str:
    if isinstance(action, str):
        return action
    return getattr(action, "__qualname__", None) or repr(action)


class CleanupStack:
    """
    Ordered teardown actions that unwind once, last registered first.

    Calling run() again after the first pass returns the first report
    without executing anything.
    """

    def __init__(
        self,
        actions: Optional[Iterable[CleanupAction]] = None,
        shell: str = "bash",
        verbose: bool = False,
    ):
        self.shell = shell
        self.verbose = verbose
        self._actions: List[Tuple[str, CleanupAction]] = []
        self._done = False
        self.report = CleanupReport()
        if actions:
            self.extend(actions)

    @classmethod
    def from_config(
        cls,
        config: CleanupConfig,
        actions: Optional[Iterable[CleanupAction]] = None,
    ) -> "CleanupStack":
        config.validate()
        return cls(actions, shell=config.shell, verbose=config.verbose)

    def register(self, action: CleanupAction, label: Optional[str] = None) -> None:
        if self._done:
            raise RuntimeError("cleanup already ran; cannot register more actions")
        if isinstance(action, str):
            if not action.strip():
                raise UsageError("cleanup command must not be empty")
        elif not callable(action):
            raise TypeError(f"cleanup action must be a string or callable, got {type(action).__name__}")
        self._actions.append((label or _label(action), action))

    def extend(self, actions: Iterable[CleanupAction]) -> None:
        for action in actions:
            self.register(action)

    def __len__(self) -> int:
        return len(self._actions)

    @property
    def done(self) -> bool:
        return self._done

    @property
    def labels(self) -> List[str]:
        return [label for label, _ in self._actions]

    async def run(self) -> CleanupReport:
        """Execute every action in reverse order, once."""
        if self._done:
            return self.report
        self._done = True

        for label, action in reversed(self._actions):
            if self.verbose:
                logger.info(f"[Cleanup] running cleanup: {label}")
            else:
                logger.debug(f"[Cleanup] running cleanup: {label}")

            try:
                reason = await self._execute(action)
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"

            self.report.executed.append(label)
            if reason is not None:
                self.report.failures.append(CleanupFailure(action=label, reason=reason))
                logger.warning(f"[Cleanup] cleanup command failed: {label} ({reason})")

        if self.report.failures:
            logger.error(
                f"[Cleanup] {len(self.report.failures)} of {len(self._actions)} cleanup action(s) failed"
            )
        return self.report

    async def _execute(self, action: CleanupAction) -> Optional[str]:
        """Run one action; return a failure reason or None on success."""
        if isinstance(action, str):
            process = await asyncio.create_subprocess_exec(self.shell, "-c", action)
            returncode = await process.wait()
            if returncode != 0:
                return f"exit status {exit_code_from_returncode(returncode)}"
            return None

        result = action()
        if inspect.isawaitable(result):
            result = await result
        if result is False:
            return "returned False"
        return None


def read_cleanup_file(path: Union[str, Path]) -> List[str]:
    """
    Read cleanup commands, one per line.

    Surrounding whitespace is trimmed; blank lines and lines starting
    with '#' are skipped.
    """
    path = Path(path)
    try:
        text = path.read_text()
    except (OSError, UnicodeDecodeError):
        raise UsageError(f"cleanup file is not readable: {path}") from None

    commands = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        commands.append(line)
    return commands


async def run_with_cleanup(
    command: Sequence[str],
    actions: Union[CleanupStack, Iterable[CleanupAction]],
    shell: str = "bash",
    verbose: bool = False,
    env: Optional[Dict[str, str]] = None,
) -> int:
    """
    Run ``command`` and unwind ``actions`` afterwards, exactly once.

    Returns:
        The command's exit code, EXIT_CLEANUP_FAILED, or 128+signal
    """
    stack = actions if isinstance(actions, CleanupStack) else CleanupStack(actions, shell, verbose)
    process: Optional[asyncio.subprocess.Process] = None
    returncode: Optional[int] = None

    def on_signal(sig: signal.Signals) -> None:
        if stack.verbose:
            logger.warning(f"[Cleanup] received signal {sig.name}; terminating command")
        if process is not None:
            send_signal(process, signal.SIGTERM)

    with SignalTrap(name="Cleanup", on_signal=on_signal) as trap:
        try:
            try:
                process = await spawn(command, env=env)
            except OpsGuardError as e:
                logger.error(f"[Cleanup] {e}")
                returncode = e.exit_code
            else:
                if trap.triggered:
                    send_signal(process, signal.SIGTERM)
                returncode = await process.wait()
        finally:
            if process is not None and process.returncode is None:
                # Only reachable when this coroutine is cancelled
                await terminate_and_reap(process, signal.SIGKILL)
            report = await stack.run()

    if trap.triggered:
        if report.failed and returncode == 0:
            return EXIT_CLEANUP_FAILED
        return signal_exit_code(trap.first_signal)

    return resolve_cleanup_exit_code(exit_code_from_returncode(returncode), report.failed)


__all__ = [
    "CleanupAction",
    "CleanupReport",
    "CleanupStack",
    "read_cleanup_file",
    "run_with_cleanup",
]
