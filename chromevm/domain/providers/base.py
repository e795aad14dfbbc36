"""
Base classes and protocols for VM providers.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from chromevm.domain.errors import BackendError, NotFoundError
from chromevm.domain.ports import PortAllocator
from chromevm.domain.registry import VMRegistry
from chromevm.domain.types import (
    ProviderKind,
    ProvisionResult,
    VMDescriptor,
    VMRequest,
    VMState,
)

logger = logging.getLogger("vm-orchestrator")


class VMProvider(Protocol):
    """Protocol defining the lifecycle contract every backend implements."""

    name: str
    kind: ProviderKind

    def is_available(self) -> bool:
        """
        Best-effort liveness probe. Never raises.

        Returns:
            True if create() is worth attempting
        """
        ...

    def create(self, request: VMRequest) -> ProvisionResult:
        """
        Provision a VM on the backend.

        Args:
            request: Creation request

        Returns:
            ProvisionResult with the initial descriptor and optional readiness plan

        Raises:
            BackendError: If the backend call failed (nothing is left allocated)
        """
        ...

    def degrade(self, request: VMRequest, reason: str) -> ProvisionResult:
        """
        Build a synthetic (mock) VM in place of a failed or unavailable backend.

        Args:
            request: Creation request
            reason: Why the backend could not be used

        Returns:
            Degraded ProvisionResult
        """
        ...

    def get_status(self, vm_id: str) -> VMDescriptor:
        """
        Get the current descriptor, refreshing from the backend when possible.

        Raises:
            NotFoundError: If the VM is not owned by this provider
        """
        ...

    def delete(self, vm_id: str) -> bool:
        """
        Tear down the VM, drop it from the registry and release its port.

        Raises:
            NotFoundError: If the VM is not owned by this provider
        """
        ...

    def list(self) -> list[VMDescriptor]:
        """Snapshot of the VMs owned by this provider."""
        ...

    def start(self, vm_id: str) -> VMDescriptor:
        ...

    def stop(self, vm_id: str) -> VMDescriptor:
        ...

    def restart(self, vm_id: str) -> VMDescriptor:
        ...


class BaseProvider:
    """Shared bookkeeping for providers.

    A provider's own bookkeeping is the set of registry entries it owns.
    Subclasses implement the backend calls (``create``, ``_teardown``,
    ``_refresh`` and ``_power``).
    """

    name: str = "base"
    kind: ProviderKind = ProviderKind.MOCK

    def __init__(self, registry: VMRegistry, ports: PortAllocator) -> None:
        self.registry = registry
        self.ports = ports

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return True

    def create(self, request: VMRequest) -> ProvisionResult:
        raise NotImplementedError

    def degrade(self, request: VMRequest, reason: str) -> ProvisionResult:
        return ProvisionResult.degrade(
            self.mock_descriptor(request, reason, state=VMState.READY), reason
        )

    def get_status(self, vm_id: str) -> VMDescriptor:
        descriptor = self._owned(vm_id)
        if descriptor.is_mock:
            return descriptor

        generation = self.registry.generation(vm_id)
        try:
            changes = self._refresh(descriptor)
        except BackendError as e:
            logger.warning(f"Status refresh for VM {vm_id} failed, returning cached state: {e}")
            return descriptor

        if not changes:
            return descriptor
        updated = self.registry.update(
            vm_id, generation=generation, last_activity_at=time.time(), **changes
        )
        return updated or descriptor

    def delete(self, vm_id: str) -> bool:
        descriptor = self._owned(vm_id)
        if not descriptor.is_mock:
            try:
                self._teardown(descriptor)
            except BackendError as e:
                logger.error(f"Backend teardown for VM {vm_id} failed: {e}")

        self.registry.remove(vm_id)
        self.ports.release(descriptor.allocated_port)
        logger.info(f"VM {vm_id} deleted from {self.name}")
        return True

    def list(self) -> list[VMDescriptor]:
        return self.registry.list(owner=self.name)

    def start(self, vm_id: str) -> VMDescriptor:
        return self._apply_power(vm_id, "start")

    def stop(self, vm_id: str) -> VMDescriptor:
        return self._apply_power(vm_id, "stop")

    def restart(self, vm_id: str) -> VMDescriptor:
        return self._apply_power(vm_id, "restart")

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def mock_descriptor(
        self,
        request: VMRequest,
        reason: str,
        state: VMState = VMState.READY,
        allocated_port: int | None = None,
    ) -> VMDescriptor:
        """Synthetic descriptor standing in for a VM this provider could not create."""
        display, control = self.endpoints(request.vm_id)
        return VMDescriptor(
            id=request.vm_id,
            display_name=request.name,
            provider=ProviderKind.MOCK,
            state=state,
            display_endpoint=display,
            control_endpoint=control,
            allocated_port=allocated_port,
            server_id=request.server_id,
            resource_profile=request.profile,
            last_error=reason,
        )

    def endpoints(self, vm_id: str) -> tuple[str, str]:
        """Return ``(display_endpoint, control_endpoint)`` for *vm_id*."""
        raise NotImplementedError

    def _owned(self, vm_id: str) -> VMDescriptor:
        descriptor = self.registry.get(vm_id)
        if descriptor is None or self.registry.owner(vm_id) != self.name:
            raise NotFoundError(vm_id)
        return descriptor

    def _apply_power(self, vm_id: str, action: str) -> VMDescriptor:
        descriptor = self._owned(vm_id)
        if descriptor.is_mock:
            if descriptor.state.is_terminal:
                logger.warning(f"Cannot {action} mock VM {vm_id} in state {descriptor.state.value}")
                return descriptor
            changes: dict[str, Any] = {"state": VMState.STOPPED} if action == "stop" else {}
        else:
            # The backend call is always issued; the recorded state stays forward-only
            if descriptor.state.is_terminal:
                logger.warning(
                    f"VM {vm_id} is {descriptor.state.value}; forwarding {action} to {self.name}, "
                    f"state unchanged"
                )
            changes = self._power(descriptor, action)

        updated = self.registry.update(vm_id, last_activity_at=time.time(), **changes)
        logger.info(f"VM {vm_id}: {action} requested on {self.name}")
        return updated or descriptor

    def _refresh(self, descriptor: VMDescriptor) -> dict[str, Any] | None:
        """Query the backend; return descriptor changes or None."""
        return None

    def _teardown(self, descriptor: VMDescriptor) -> None:
        """Release the backend resource behind *descriptor*."""

    def _power(self, descriptor: VMDescriptor, action: str) -> dict[str, Any]:
        """Issue a start/stop/restart on the backend; return descriptor changes."""
        return {}
