"""
Scoped signal trapping on the running event loop.

    with SignalTrap() as trap:
        ...
        if trap.triggered:
            handle(trap.first_signal)

Only the first signal is acted on; later deliveries are counted and
otherwise ignored, which is what makes teardown one-shot under repeated
Ctrl-C.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TRAPPED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


class SignalTrap:
    """Install loop signal handlers for the duration of a ``with`` block."""

    def __init__(
        self,
        signals: Iterable[signal.Signals] = DEFAULT_TRAPPED_SIGNALS,
        on_signal: Optional[Callable[[signal.Signals], None]] = None,
        name: str = "SignalTrap",
    ):
        self.signals = tuple(signals)
        self.on_signal = on_signal
        self.name = name
        self.first_signal: Optional[signal.Signals] = None
        self.received: List[signal.Signals] = []
        self._event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._installed: List[signal.Signals] = []

    @property
    def triggered(self) -> bool:
        return self.first_signal is not None

    def _handle(self, sig: signal.Signals) -> None:
        self.received.append(sig)
        if self.first_signal is not None:
            logger.debug(f"[{self.name}] ignoring repeated {sig.name}")
            return

        self.first_signal = sig
        self._event.set()
        if self.on_signal is not None:
            self.on_signal(sig)

    async def wait(self) -> signal.Signals:
        """Block until the first trapped signal arrives."""
        await self._event.wait()
        return self.first_signal

    def __enter__(self) -> "SignalTrap":
        self._loop = asyncio.get_running_loop()
        self._event = asyncio.Event()
        for sig in self.signals:
            try:
                self._loop.add_signal_handler(sig, self._handle, sig)
                self._installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Windows loops and non-main threads cannot trap signals
                logger.warning(f"[{self.name}] cannot trap {sig.name} on this platform")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for sig in self._installed:
            self._loop.remove_signal_handler(sig)
        self._installed.clear()


__all__ = ["DEFAULT_TRAPPED_SIGNALS", "SignalTrap"]
