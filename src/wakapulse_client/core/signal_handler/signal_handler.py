"""Exit signal handling for standalone runs of the client.

Editor-hosted clients leave signals to the host and call ``stop()`` from its
shutdown hook instead.
"""

from __future__ import annotations

import os
import signal
import sys
from types import FrameType
from typing import Callable

from loguru import logger

# Type alias for handler callbacks
CleanupFn = Callable[[], None]


class SignalHandler:
    """Install exit-related signal handlers and coordinate graceful shutdown."""

    #: Exit signals we *always* hook
    _BASE_SIGNALS = [signal.SIGINT, signal.SIGTERM]
    if hasattr(signal, "SIGHUP"):
        _BASE_SIGNALS.append(signal.SIGHUP)

    #: Windows-specific mapping (Ctrl-Break, log-off, shutdown)
    if os.name == "nt" and hasattr(signal, "SIGBREAK"):
        _BASE_SIGNALS.append(signal.SIGBREAK)  # type: ignore[attr-defined]

    def __init__(self, exit_on_signal: bool = True) -> None:
        self._cleanup_fns: list[CleanupFn] = []
        self.exit_on_signal = exit_on_signal
        self.signal_received = False
        self.received_signal: str | None = None
        self.installed = self._install_handlers()

    def register_cleanup(self, fn: CleanupFn) -> None:
        self._cleanup_fns.append(fn)

    def _install_handlers(self) -> bool:
        installed = True
        for sig in self._BASE_SIGNALS:
            try:
                signal.signal(sig, self._handle_exit)
            except (ValueError, OSError):  # not allowed in threads / rare OSes
                logger.warning(f"Could not hook signal {sig}")
                installed = False
        return installed

    def _handle_exit(self, signum: int, frame: FrameType | None) -> None:
        if self.signal_received:
            sys.exit(0)
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name} - flushing heartbeats and shutting down")
        self.signal_received = True
        self.received_signal = signal_name

        self.run_cleanup()

        if self.exit_on_signal:
            sys.exit(0)

    def run_cleanup(self) -> None:
        """Run registered cleanup functions once, newest first."""
        fns, self._cleanup_fns = self._cleanup_fns, []
        for fn in reversed(fns):
            try:
                fn()
            except Exception:  # noqa: BLE001
                logger.exception(f"Cleanup function {fn} raised")

    def is_signal_received(self) -> bool:
        return self.signal_received
