"""Helpers shared by the OpsGuard tests."""

from __future__ import annotations

import asyncio
import os
import sys
import time
from pathlib import Path
from typing import List

ROOT = Path(__file__).resolve().parents[1]


def py(code: str) -> List[str]:
    """argv for a Python one-liner child."""
    return [sys.executable, "-c", code]


def cli_env() -> dict:
    """Environment for running ``python -m opsguard_core`` from the checkout."""
    env = os.environ.copy()
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(ROOT), env.get("PYTHONPATH")]))
    env.pop("OPSGUARD_CONFIG", None)
    return env


def cli(*args: str) -> List[str]:
    return [sys.executable, "-m", "opsguard_core", *args]


def wait_for_path(path: Path, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} did not appear within {timeout}s")
        time.sleep(0.02)


async def async_wait_for_path(path: Path, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise AssertionError(f"{path} did not appear within {timeout}s")
        await asyncio.sleep(0.02)
