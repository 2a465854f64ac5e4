"""
Retry with backoff for flaky commands.

The first retry waits exactly ``delay``. Each later wait is the previous
one times ``backoff``, capped at ``max_delay`` when set, plus up to
``jitter`` percent of positive jitter; the jittered value feeds the next
step.
"""

from __future__ import annotations

import asyncio
import logging
import random
import signal
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from opsguard_core.config.base_config import RetryConfig
from opsguard_core.core.error_handling import (
    EXIT_SUCCESS,
    OpsGuardError,
    exit_code_from_returncode,
)
from opsguard_core.utils.process import spawn, terminate_and_reap

logger = logging.getLogger(__name__)


@dataclass
class RetryResult:
    """Outcome of a retried command."""
    exit_code: int
    attempts: int
    delays: List[float] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == EXIT_SUCCESS


class RetryRunner:
    """
    Re-run a command on failure with exponential backoff.

    Features:
    - Configurable total attempts
    - Exponential backoff with cap and jitter
    - Exit-code filtering (empty retry_on retries any non-zero status)
    - Callback hook per retry
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        on_retry: Optional[Callable[[int, int, float], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = (config or RetryConfig()).validate()
        self.on_retry = on_retry
        self._sleep = sleep

    def should_retry(self, status: int) -> bool:
        if status == EXIT_SUCCESS:
            return False
        if not self.config.retry_on:
            return True
        return status in self.config.retry_on

    def next_delay(self, current: float) -> float:
        """Delay for the retry that follows one which waited ``current`` seconds."""
        delay = current * self.config.backoff
        if self.config.max_delay > 0:
            delay = min(delay, self.config.max_delay)
        if self.config.jitter > 0:
            delay += delay * (self.config.jitter / 100.0) * random.random()
        return delay

    def schedule(self, retries: int) -> List[float]:
        """The first ``retries`` delays; the first is always exactly ``delay``."""
        delays: List[float] = []
        current = self.config.delay
        for _ in range(retries):
            delays.append(current)
            current = self.next_delay(current)
        return delays

    async def _attempt(self, command: Sequence[str], env: Optional[Dict[str, str]]) -> int:
        try:
            process = await spawn(command, env=env)
        except OpsGuardError as e:
            logger.error(f"[Retry] {e}")
            return e.exit_code
        try:
            returncode = await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                await terminate_and_reap(process, signal.SIGKILL)
            raise
        return exit_code_from_returncode(returncode)

    async def run(
        self,
        command: Sequence[str],
        env: Optional[Dict[str, str]] = None,
    ) -> RetryResult:
        attempts = self.config.attempts
        delays: List[float] = []
        delay = self.config.delay
        label = " ".join(command)

        for attempt in range(1, attempts + 1):
            logger.info(f"[Retry] attempt {attempt}/{attempts}: {label}")
            status = await self._attempt(command, env)

            if status == EXIT_SUCCESS:
                logger.info(f"[Retry] command succeeded on attempt {attempt}/{attempts}")
                return RetryResult(exit_code=status, attempts=attempt, delays=delays)

            if not self.should_retry(status):
                logger.warning(f"[Retry] command failed with non-retryable status {status}")
                return RetryResult(exit_code=status, attempts=attempt, delays=delays)

            if attempt >= attempts:
                logger.error(f"[Retry] command failed after {attempts} attempts (status {status})")
                return RetryResult(exit_code=status, attempts=attempt, delays=delays)

            delays.append(delay)
            logger.warning(f"[Retry] command failed with status {status}; retrying in {delay:.2f}s")
            if self.on_retry:
                self.on_retry(attempt, status, delay)
            await self._sleep(delay)
            delay = self.next_delay(delay)

        return RetryResult(exit_code=status, attempts=attempts, delays=delays)


async def run_with_retry(
    command: Sequence[str],
    config: Optional[RetryConfig] = None,
    env: Optional[Dict[str, str]] = None,
) -> RetryResult:
    """Convenience wrapper around RetryRunner.run()."""
    return await RetryRunner(config).run(command, env=env)


__all__ = ["RetryResult", "RetryRunner", "run_with_retry"]
