"""
Filesystem Locks for OpsGuard
=============================

Single-host mutual exclusion for independently invoked automation
scripts (one deployment per environment, one writer per state file).

Features:
- Atomic directory creation as the mutual-exclusion event
- Human-readable owner metadata (pid, creation time, host)
- Stale-lock recovery gated on dead owner AND minimum age
- Bounded or unbounded waiting with a fixed poll interval
- Guaranteed release on every exit path of the wrapped command

Layout on disk:

    /var/lock/deploy-prod/          <- the lock; its existence is the truth
    /var/lock/deploy-prod/.owner    <- pid=4242 / created=1718000000 / host=ci-7

Usage:
    from opsguard_core.locking import FileLock, file_lock

    async with FileLock("/var/lock/deploy-prod", timeout=60) as lock:
        await deploy()

    async with file_lock("/tmp/state.lock", stale_after=300):
        await rewrite_state()

There is no reentrancy: a process that locks a path it already holds
waits on itself until its timeout.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import socket
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional, Sequence, Union

from opsguard_core.config.base_config import LockConfig
from opsguard_core.core.error_handling import (
    LockTimeoutError,
    OpsGuardError,
    StaleLockError,
    exit_code_from_returncode,
    signal_exit_code,
)
from opsguard_core.utils.process import is_process_alive, send_signal, spawn
from opsguard_core.utils.signals import SignalTrap

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

METADATA_FILENAME = ".owner"
DEFAULT_POLL_INTERVAL = 0.2


# =============================================================================
# LOCK STATE
# =============================================================================

class LockState(Enum):
    """States of a filesystem lock held by this process."""
    RELEASED = "released"
    ACQUIRING = "acquiring"
    ACQUIRED = "acquired"


@dataclass
class LockMetadata:
    """Owner record stored inside the lock directory."""
    pid: Optional[int] = None
    created: Optional[int] = None
    host: str = ""

    @classmethod
    def current(cls) -> "LockMetadata":
        try:
            host = socket.gethostname() or "unknown"
        except OSError:
            host = "unknown"
        return cls(pid=os.getpid(), created=int(time.time()), host=host)

    def render(self) -> str:
        return (
            f"pid={self.pid if self.pid is not None else ''}\n"
            f"created={self.created if self.created is not None else ''}\n"
            f"host={self.host}\n"
        )

    @classmethod
    def parse(cls, text: str) -> "LockMetadata":
        """Parse key=value lines; unknown keys and malformed values are ignored."""
        values: Dict[str, str] = {}
        for line in text.splitlines():
            key, sep, value = line.partition("=")
            if sep:
                values[key.strip()] = value.strip()

        return cls(
            pid=_parse_int(values.get("pid")),
            created=_parse_int(values.get("created")),
            host=values.get("host", ""),
        )

    @classmethod
    def read(cls, lock_path: PathLike) -> Optional["LockMetadata"]:
        try:
            text = (Path(lock_path) / METADATA_FILENAME).read_text()
        except (FileNotFoundError, NotADirectoryError, PermissionError, UnicodeDecodeError):
            return None
        return cls.parse(text)

    def to_dict(self) -> Dict[str, Any]:
        return {"pid": self.pid, "created": self.created, "host": self.host}


def _parse_int(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def lock_age(lock_path: PathLike) -> Optional[float]:
    """Seconds since the lock directory was last modified, or None if absent."""
    try:
        mtime = os.stat(lock_path).st_mtime
    except FileNotFoundError:
        return None
    return max(0.0, time.time() - mtime)


@dataclass
class LockStatus:
    """Point-in-time view of a lock for operators."""
    path: str
    exists: bool
    metadata: Optional[LockMetadata] = None
    age_seconds: Optional[float] = None
    owner_alive: bool = False
    stale: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "exists": self.exists,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "age_seconds": self.age_seconds,
            "owner_alive": self.owner_alive,
            "stale": self.stale,
        }


def inspect_lock(lock_path: PathLike, stale_after: float = 0.0) -> LockStatus:
    """Describe a lock without touching it."""
    path = Path(lock_path)
    age = lock_age(path)
    if age is None:
        return LockStatus(path=str(path), exists=False)

    metadata = LockMetadata.read(path)
    owner_alive = is_process_alive(metadata.pid if metadata else None)
    return LockStatus(
        path=str(path),
        exists=True,
        metadata=metadata,
        age_seconds=age,
        owner_alive=owner_alive,
        stale=stale_after > 0 and not owner_alive and age >= stale_after,
    )


# =============================================================================
# FILE LOCK
# =============================================================================

class FileLock:
    """
    Exclusive lock backed by an atomically created directory.

    Features:
    - acquire() polls until success, timeout (0 = forever) or stale recovery
    - release() is idempotent and tolerates a lock that is already gone
    - async context manager raising LockTimeoutError when not acquired
    """

    def __init__(
        self,
        path: PathLike,
        timeout: float = 0.0,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        stale_after: float = 0.0,
    ):
        """
        Initialize a filesystem lock.

        Args:
            path: Lock directory path (its parent must exist)
            timeout: Maximum seconds to wait; 0 waits indefinitely
            poll_interval: Seconds between acquisition attempts
            stale_after: Reclaim a dead owner's lock older than this; 0 disables
        """
        self.path = Path(path)
        self.timeout = float(timeout)
        self.poll_interval = float(poll_interval)
        self.stale_after = float(stale_after)

        self.state = LockState.RELEASED
        self.metadata: Optional[LockMetadata] = None
        self.waited = 0.0
        self.stale_breaks = 0

    @classmethod
    def from_config(cls, config: LockConfig) -> "FileLock":
        config.validate()
        return cls(
            config.lock_file,
            timeout=config.timeout,
            poll_interval=config.poll_interval,
            stale_after=config.stale_after,
        )

    @property
    def metadata_path(self) -> Path:
        return self.path / METADATA_FILENAME

    @property
    def acquired(self) -> bool:
        return self.state == LockState.ACQUIRED

    def _try_create(self) -> bool:
        try:
            os.mkdir(self.path)
        except FileExistsError:
            return False
        except OSError as e:
            raise OpsGuardError(f"cannot create lock {self.path}: {e}") from None
        return True

    def _write_metadata(self) -> None:
        metadata = LockMetadata.current()
        try:
            self.metadata_path.write_text(metadata.render())
        except OSError:
            shutil.rmtree(self.path, ignore_errors=True)
            raise
        self.metadata = metadata

    def _stale_snapshot(self) -> Optional[LockMetadata]:
        """
        Return the owner record if the lock may be reclaimed, else None.

        Reclaiming needs both a dead (or unrecorded) owner and a minimum
        age: the age guards a lock whose owner has not written metadata
        yet, and liveness guards against reclaiming a slow live holder.
        """
        if self.stale_after <= 0:
            return None

        age = lock_age(self.path)
        if age is None:
            return None

        metadata = LockMetadata.read(self.path) or LockMetadata()
        if is_process_alive(metadata.pid):
            return None
        if age < self.stale_after:
            return None
        return metadata

    def _break_stale(self, snapshot: LockMetadata) -> bool:
        current = LockMetadata.read(self.path) or LockMetadata()
        if (current.pid, current.created) != (snapshot.pid, snapshot.created):
            # Another waiter already reclaimed and re-created it
            return False

        logger.info(
            f"[FileLock] detected stale lock at {self.path} "
            f"(owner pid={snapshot.pid}, host={snapshot.host or 'unknown'}), removing"
        )
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StaleLockError(f"failed to remove stale lock: {self.path}: {e}") from None

        self.stale_breaks += 1
        return True

    async def acquire(self) -> bool:
        """
        Acquire the lock.

        Returns:
            True if acquired, False if the timeout elapsed first
        """
        if self.acquired:
            logger.debug(f"[FileLock] {self.path} already held by this instance")
            return True

        self.state = LockState.ACQUIRING
        start = time.monotonic()
        announced = False

        try:
            while True:
                if self._try_create():
                    self._write_metadata()
                    self.state = LockState.ACQUIRED
                    self.waited = time.monotonic() - start
                    logger.info(f"[FileLock] acquired lock: {self.path}")
                    return True

                snapshot = self._stale_snapshot()
                if snapshot is not None:
                    self._break_stale(snapshot)
                    continue

                self.waited = time.monotonic() - start
                if self.timeout > 0 and self.waited >= self.timeout:
                    logger.info(f"[FileLock] gave up waiting for lock after {self.waited:.1f}s: {self.path}")
                    self.state = LockState.RELEASED
                    return False

                if not announced:
                    logger.info(f"[FileLock] waiting for lock: {self.path}")
                    announced = True
                else:
                    logger.debug(f"[FileLock] still waiting for lock: {self.path}")

                await asyncio.sleep(self.poll_interval)
        except BaseException:
            if self.state == LockState.ACQUIRING:
                self.state = LockState.RELEASED
            raise

    async def release(self) -> bool:
        """Release the lock; a no-op if it is not held."""
        if not self.acquired:
            return True

        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            logger.debug(f"[FileLock] {self.path} was already removed")
        except OSError as e:
            logger.error(f"[FileLock] failed to release lock {self.path}: {e}")
            return False

        self.state = LockState.RELEASED
        self.metadata = None
        logger.info(f"[FileLock] released lock: {self.path}")
        return True

    def get_info(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "state": self.state.value,
            "waited": self.waited,
            "stale_breaks": self.stale_breaks,
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }

    async def __aenter__(self) -> "FileLock":
        if not await self.acquire():
            raise LockTimeoutError(str(self.path), self.waited)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.release()


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

@asynccontextmanager
async def file_lock(
    path: PathLike,
    timeout: float = 0.0,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    stale_after: float = 0.0,
) -> AsyncIterator[FileLock]:
    """
    Hold a filesystem lock for the body of an ``async with`` block.

    Usage:
        async with file_lock("/var/lock/deploy-prod", timeout=30):
            await deploy()
    """
    lock = FileLock(path, timeout=timeout, poll_interval=poll_interval, stale_after=stale_after)
    async with lock:
        yield lock


async def run_locked(
    command: Sequence[str],
    config: LockConfig,
    env: Optional[Dict[str, str]] = None,
) -> int:
    """
    Run ``command`` while holding the lock described by ``config``.

    INT, TERM and HUP are trapped for the whole call: while waiting they
    abort the wait, while the command runs they are forwarded to it. The
    lock is released on every path and a signalled run returns 128+signal.

    Raises:
        LockTimeoutError: the lock was not acquired within config.timeout
    """
    lock = FileLock.from_config(config)

    with SignalTrap(name="FileLock") as trap:
        acquire_task = asyncio.ensure_future(lock.acquire())
        signal_task = asyncio.ensure_future(trap.wait())
        try:
            await asyncio.wait({acquire_task, signal_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            signal_task.cancel()
            await asyncio.gather(signal_task, return_exceptions=True)
            if not acquire_task.done():
                acquire_task.cancel()
            try:
                await acquire_task
            except asyncio.CancelledError:
                pass

        if trap.triggered:
            await lock.release()
            logger.warning(f"[FileLock] received {trap.first_signal.name} while waiting for {lock.path}")
            return signal_exit_code(trap.first_signal)

        if not lock.acquired:
            raise LockTimeoutError(str(lock.path), lock.waited)

        try:
            process = await spawn(command, env=env)
            if trap.triggered:
                send_signal(process, trap.first_signal)
            trap.on_signal = lambda sig: send_signal(process, sig)
            returncode = await process.wait()
        finally:
            await lock.release()

    if trap.triggered:
        return signal_exit_code(trap.first_signal)
    return exit_code_from_returncode(returncode)


__all__ = [
    "METADATA_FILENAME",
    "DEFAULT_POLL_INTERVAL",
    "LockState",
    "LockMetadata",
    "LockStatus",
    "FileLock",
    "file_lock",
    "inspect_lock",
    "lock_age",
    "run_locked",
]
