"""
In-memory registry of VM descriptors.

The registry is the single shared mutable structure of the orchestrator.
Access to one VM id is serialised through :meth:`VMRegistry.locked`; the
registry-wide lock only guards the dictionaries and is never held while
a caller performs I/O.
"""

from __future__ import annotations

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Protocol

from chromevm.domain.types import VMDescriptor, VMState

logger = logging.getLogger("vm-orchestrator")


class BackgroundTask(Protocol):
    """Anything bound to an entry's lifetime (readiness pollers)."""

    def cancel(self) -> None:
        ...


@dataclass
class RegistryEntry:
    """One registered VM."""

    descriptor: VMDescriptor
    owner: str
    generation: int
    task: BackgroundTask | None = None


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class VMRegistry:
    """Thread-safe mapping from VM id to descriptor and owning provider."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, RegistryEntry] = {}
        self._key_locks: dict[str, _KeyLock] = {}
        self._generations = itertools.count(1)

    # ------------------------------------------------------------------
    # Per-key locking
    # ------------------------------------------------------------------

    @contextmanager
    def locked(self, vm_id: str) -> Iterator[None]:
        """Serialise access to *vm_id*. Re-entrant for the holding thread."""
        with self._lock:
            slot = self._key_locks.get(vm_id)
            if slot is None:
                slot = self._key_locks[vm_id] = _KeyLock()
            slot.users += 1
        slot.lock.acquire()
        try:
            yield
        finally:
            slot.lock.release()
            with self._lock:
                slot.users -= 1
                if slot.users == 0:
                    del self._key_locks[vm_id]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def put(self, descriptor: VMDescriptor, owner: str) -> int:
        """
        Register *descriptor*, replacing any previous entry for its id.

        Args:
            descriptor: VM descriptor (stored as a private copy)
            owner: Name of the owning provider

        Returns:
            Generation number of the new entry
        """
        with self.locked(descriptor.id):
            entry = RegistryEntry(
                descriptor=descriptor.copy(),
                owner=owner,
                generation=next(self._generations),
            )
            with self._lock:
                previous = self._entries.get(descriptor.id)
                self._entries[descriptor.id] = entry
            if previous is not None:
                logger.info(f"VM {descriptor.id} re-registered, previous entry replaced")
                self._cancel_task(previous)
            return entry.generation

    def attach_task(self, vm_id: str, generation: int, task: BackgroundTask) -> bool:
        """Bind *task* to the entry; returns False if the entry is gone."""
        with self.locked(vm_id):
            entry = self._entries.get(vm_id)
            if entry is None or entry.generation != generation:
                return False
            entry.task = task
            return True

    def update(
        self, vm_id: str, generation: int | None = None, **changes: Any
    ) -> VMDescriptor | None:
        """
        Apply *changes* to a registered descriptor.

        Writes to a missing id, or to an entry whose generation differs from
        *generation*, are ignored. A state change that would move the
        lifecycle backwards is dropped; the other fields still apply.

        Returns:
            Snapshot of the updated descriptor, or None when ignored
        """
        with self.locked(vm_id):
            entry = self._entries.get(vm_id)
            if entry is None or (generation is not None and entry.generation != generation):
                logger.debug(f"Ignoring update for VM {vm_id} (entry gone or replaced)")
                return None

            current = entry.descriptor
            state = changes.get("state")
            if state is not None and not current.state.can_transition(VMState(state)):
                logger.debug(
                    f"Ignoring transition {current.state.value} -> {VMState(state).value} for VM {vm_id}"
                )
                changes.pop("state")
                changes.pop("last_error", None)

            entry.descriptor = current.copy(**changes)
            return entry.descriptor.copy()

    def remove(self, vm_id: str) -> VMDescriptor | None:
        """Remove *vm_id* and cancel its background task."""
        with self.locked(vm_id):
            with self._lock:
                entry = self._entries.pop(vm_id, None)
            if entry is None:
                return None
            self._cancel_task(entry)
            return entry.descriptor.copy()

    def clear(self) -> None:
        """Drop every entry and cancel all background tasks."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            self._cancel_task(entry)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, vm_id: str) -> VMDescriptor | None:
        with self._lock:
            entry = self._entries.get(vm_id)
            return entry.descriptor.copy() if entry else None

    def owner(self, vm_id: str) -> str | None:
        with self._lock:
            entry = self._entries.get(vm_id)
            return entry.owner if entry else None

    def generation(self, vm_id: str) -> int | None:
        with self._lock:
            entry = self._entries.get(vm_id)
            return entry.generation if entry else None

    def list(self, owner: str | None = None) -> list[VMDescriptor]:
        """Snapshot of all descriptors, optionally filtered by owner."""
        with self._lock:
            return [
                e.descriptor.copy()
                for e in self._entries.values()
                if owner is None or e.owner == owner
            ]

    def counts(self) -> dict[str, int]:
        """Number of registered VMs per descriptor provider kind."""
        result: dict[str, int] = {}
        for descriptor in self.list():
            key = descriptor.provider.value
            result[key] = result.get(key, 0) + 1
        return result

    def __contains__(self, vm_id: object) -> bool:
        with self._lock:
            return vm_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _cancel_task(entry: RegistryEntry) -> None:
        if entry.task is not None:
            entry.task.cancel()
            entry.task = None
