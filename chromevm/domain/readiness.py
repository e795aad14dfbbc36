"""
Readiness polling for asynchronously provisioned VMs.

A VM returned as ``initializing`` is advanced to ``ready`` or ``error`` by a
ReadinessPoller running in a daemon thread. The poller is bound to one
registry entry and is cancelled when that entry is deleted or replaced;
a cancelled poller never reports an outcome.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from chromevm.config.settings import READINESS_INTERVAL, READINESS_MAX_ATTEMPTS

logger = logging.getLogger("vm-orchestrator")


def poll_until(
    predicate: Callable[[], bool],
    max_attempts: int = READINESS_MAX_ATTEMPTS,
    interval: float = READINESS_INTERVAL,
    sleep: Callable[[float], object] = time.sleep,
) -> bool:
    """
    Invoke *predicate* until it returns True or attempts are exhausted.

    Exceptions raised by the predicate count as a failed attempt.

    Args:
        predicate: Readiness check
        max_attempts: Maximum number of predicate calls
        interval: Seconds to sleep between attempts
        sleep: Sleep function; returning a truthy value aborts polling

    Returns:
        True if the predicate succeeded, False otherwise
    """
    for attempt in range(1, max_attempts + 1):
        try:
            if predicate():
                return True
        except Exception as e:
            logger.debug(f"Readiness probe attempt {attempt} failed: {e}")
        if attempt < max_attempts and sleep(interval):
            return False
    return False


class ReadinessPoller:
    """Background bounded poll reporting through callbacks."""

    def __init__(
        self,
        vm_id: str,
        probe: Callable[[], bool],
        on_ready: Callable[[], None],
        on_failure: Callable[[str], None],
        max_attempts: int = READINESS_MAX_ATTEMPTS,
        interval: float = READINESS_INTERVAL,
        initial_delay: float = 0.0,
        failure_message: str = "failed to become ready",
    ) -> None:
        self.vm_id = vm_id
        self.probe = probe
        self.on_ready = on_ready
        self.on_failure = on_failure
        self.max_attempts = max_attempts
        self.interval = interval
        self.initial_delay = initial_delay
        self.failure_message = failure_message
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    @property
    def done(self) -> bool:
        return self._thread is not None and not self._thread.is_alive()

    def start(self) -> None:
        """Start polling in a daemon thread."""
        self._thread = threading.Thread(
            target=self._run, name=f"readiness-{self.vm_id}", daemon=True
        )
        self._thread.start()

    def cancel(self) -> None:
        """Stop polling; no callback fires after this returns."""
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        if self.initial_delay and self._stop_event.wait(self.initial_delay):
            return

        ready = poll_until(
            self._probe_unless_cancelled,
            max_attempts=self.max_attempts,
            interval=self.interval,
            sleep=self._stop_event.wait,
        )

        if self.cancelled:
            logger.debug(f"Readiness poll for VM {self.vm_id} cancelled")
            return

        try:
            if ready:
                self.on_ready()
            else:
                self.on_failure(self.failure_message)
        except Exception as e:
            logger.error(f"Readiness callback for VM {self.vm_id} failed: {e}")

    def _probe_unless_cancelled(self) -> bool:
        if self.cancelled:
            return False
        return self.probe()
