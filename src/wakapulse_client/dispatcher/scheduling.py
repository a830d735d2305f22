"""Backoff policy and cancellable scheduled background tasks."""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger


@dataclass
class BackoffPolicy:
    """Exponential backoff with multiplicative jitter.

    Delay for attempt ``n`` (0-based) is ``min(max_delay, base_delay * 2**n)``
    scaled by a random factor in ``[1, 1 + jitter_ratio)``. With
    ``jitter_ratio < 1`` uncapped delays are strictly increasing.
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter_ratio: float = 0.1

    def __post_init__(self) -> None:
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must not be smaller than base_delay")
        if not 0 <= self.jitter_ratio < 1:
            raise ValueError("jitter_ratio must be in [0, 1)")

    def delay_for(self, attempt: int) -> float:
        raw = min(self.max_delay, self.base_delay * (2**attempt))
        return raw * (1 + random.uniform(0, self.jitter_ratio))


class CancellationToken:
    """Cooperative cancellation shared between a task and its owner."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep for up to ``seconds``.

        Returns:
            True if cancelled before or during the wait
        """
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)


class ScheduledTask:
    """Runs a step function on a daemon thread until cancelled.

    The step returns how long to wait before it runs again. Exceptions are
    logged and the task backs off by ``error_delay`` instead of dying.
    """

    def __init__(
        self,
        name: str,
        step: Callable[[], float],
        token: Optional[CancellationToken] = None,
        error_delay: float = 1.0,
    ):
        self.name = name
        self.step = step
        self.token = token or CancellationToken()
        self.error_delay = error_delay
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            logger.warning(f"{self.name} is already running")
            return
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()
        logger.debug(f"Started {self.name}")

    def stop(self, grace_seconds: float) -> bool:
        """Cancel the task and wait for it to finish.

        Returns:
            True if the thread exited within the grace period
        """
        self.token.cancel()
        if self._thread is None:
            return True

        self._thread.join(timeout=grace_seconds)
        if self._thread.is_alive():
            logger.warning(f"{self.name} did not stop within {grace_seconds:.1f}s; abandoning it")
            return False

        logger.debug(f"Stopped {self.name}")
        return True

    def _run(self) -> None:
        while not self.token.is_cancelled:
            try:
                delay = self.step()
            except Exception as e:
                logger.exception(f"Error in {self.name}: {e}")
                delay = self.error_delay

            if self.token.wait(delay):
                break
