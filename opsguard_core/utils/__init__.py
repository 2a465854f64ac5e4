"""Utilities module"""
from opsguard_core.utils.process import (
    is_process_alive,
    resolve_signal,
    send_signal,
    spawn,
    terminate_and_reap,
    wait_for_exit,
)
from opsguard_core.utils.signals import DEFAULT_TRAPPED_SIGNALS, SignalTrap

__all__ = [
    "is_process_alive",
    "resolve_signal",
    "send_signal",
    "spawn",
    "terminate_and_reap",
    "wait_for_exit",
    "DEFAULT_TRAPPED_SIGNALS",
    "SignalTrap",
]
