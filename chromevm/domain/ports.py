"""
Local port allocation for display-forwarding endpoints.
"""

from __future__ import annotations

import logging
import threading

from chromevm.config.settings import DISPLAY_PORT, MAX_PORT
from chromevm.domain.errors import FatalAllocationError

logger = logging.getLogger("vm-orchestrator")


class PortAllocator:
    """Thread-safe monotonic port counter.

    Ports are handed out in increasing order starting at ``base``. Released
    ports are not reused, so a port is never issued twice for the lifetime
    of the process.
    """

    def __init__(self, base: int = DISPLAY_PORT, max_port: int = MAX_PORT) -> None:
        if not 0 < base <= max_port <= MAX_PORT:
            raise ValueError(f"Invalid port range {base}-{max_port}")
        self.base = base
        self.max_port = max_port
        self._lock = threading.Lock()
        self._next = base
        self._in_use: set[int] = set()

    def allocate(self) -> int:
        """
        Allocate the next port.

        Returns:
            Port number

        Raises:
            FatalAllocationError: If the counter ran past ``max_port``
        """
        with self._lock:
            if self._next > self.max_port:
                raise FatalAllocationError(
                    f"Port range exhausted ({self.base}-{self.max_port})"
                )
            port = self._next
            self._next += 1
            self._in_use.add(port)
            return port

    def release(self, port: int | None) -> None:
        """Release a previously allocated port."""
        if port is None:
            return
        with self._lock:
            if port not in self._in_use:
                logger.debug(f"Release of unallocated port {port} ignored")
                return
            self._in_use.discard(port)

    def in_use(self) -> set[int]:
        """Snapshot of the currently allocated ports."""
        with self._lock:
            return set(self._in_use)
