"""Shared fixtures for the OpsGuard test suite."""

from __future__ import annotations

import os
import subprocess
import sys

import pytest


@pytest.fixture
def dead_pid():
    """A pid that belonged to a process which has exited and been reaped."""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Keep OPSGUARD_* settings from the caller's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("OPSGUARD_"):
            monkeypatch.delenv(key, raising=False)

    from opsguard_core.config import reset_config
    reset_config()
    yield
    reset_config()
