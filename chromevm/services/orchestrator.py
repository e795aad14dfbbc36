"""
VM lifecycle orchestration across providers.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping

from chromevm.config.models import OrchestratorSettings
from chromevm.domain.errors import (
    BackendError,
    FatalAllocationError,
    NotFoundError,
    UnsupportedOperationError,
)
from chromevm.domain.ports import PortAllocator
from chromevm.domain.providers.base import VMProvider
from chromevm.domain.providers.edge_worker import EdgeWorkerProvider
from chromevm.domain.readiness import ReadinessPoller
from chromevm.domain.registry import VMRegistry
from chromevm.domain.types import (
    ProvisionResult,
    ReadinessPlan,
    VMDescriptor,
    VMRequest,
    VMState,
)
from chromevm.observability import (
    ERRORS_TOTAL,
    PROVISIONING_DURATION,
    READINESS_OUTCOMES,
    VM_CREATIONS,
    collect_registry_metrics,
)

logger = logging.getLogger("vm-orchestrator")


class Orchestrator:
    """Routes VM requests to providers and owns the degrade-to-mock policy.

    Creation never fails because of a backend: an unavailable provider, or
    any error raised by its ``create``, is turned into the provider's mock
    descriptor carrying the reason in ``last_error``. Only port exhaustion
    (:class:`FatalAllocationError`) is surfaced to the caller.
    """

    def __init__(
        self,
        providers: Mapping[str, VMProvider],
        registry: VMRegistry,
        ports: PortAllocator,
        settings: OrchestratorSettings | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            providers: Provider instances by name
            registry: Shared VM registry
            ports: Shared port allocator
            settings: Settings used for server -> provider routing
        """
        if not providers:
            raise ValueError("At least one provider is required")
        self.providers = dict(providers)
        self.registry = registry
        self.ports = ports
        self.settings = settings or OrchestratorSettings()

    # ------------------------------------------------------------------
    # Provider selection
    # ------------------------------------------------------------------

    def provider_for(self, server_id: str | None) -> VMProvider:
        """Select exactly one provider for a logical server id."""
        name = self.settings.provider_for_server(server_id)
        provider = self.providers.get(name)
        if provider is None:
            fallback = next(iter(self.providers))
            logger.warning(f"Provider '{name}' for server {server_id} not enabled, using {fallback}")
            provider = self.providers[fallback]
        return provider

    def _owner(self, vm_id: str) -> VMProvider:
        owner = self.registry.owner(vm_id)
        if owner is None or owner not in self.providers:
            raise NotFoundError(vm_id)
        return self.providers[owner]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_vm(
        self,
        vm_id: str,
        name: str,
        server_id: str | None = None,
        sizing_hint: str | None = None,
    ) -> VMDescriptor:
        """
        Create a VM on the provider that owns *server_id*.

        An existing VM with the same id is deleted first (best effort).

        Returns:
            Snapshot of the registered descriptor

        Raises:
            FatalAllocationError: If no local port can be allocated
        """
        request = VMRequest(vm_id=vm_id, name=name, server_id=server_id, sizing_hint=sizing_hint)
        provider = self.provider_for(server_id)
        started = time.monotonic()

        with self.registry.locked(vm_id):
            if vm_id in self.registry:
                self._replace_existing(vm_id)

            result = self._provision(provider, request)
            generation = self.registry.put(result.descriptor, owner=provider.name)
            if result.readiness is not None:
                self._start_readiness(vm_id, generation, result.readiness)
            descriptor = self.registry.get(vm_id)

        outcome = "degraded" if result.degraded else "ok"
        VM_CREATIONS.labels(provider=provider.name, outcome=outcome).inc()
        PROVISIONING_DURATION.observe(time.monotonic() - started)
        collect_registry_metrics(self.registry)

        logger.info(
            f"VM {vm_id} created via {provider.name} "
            f"(provider={descriptor.provider.value}, state={descriptor.state.value}, outcome={outcome})"
        )
        return descriptor

    def _provision(self, provider: VMProvider, request: VMRequest) -> ProvisionResult:
        """Invoke the provider, degrading to its mock on any backend problem."""
        if not provider.is_available():
            reason = f"{provider.name} service not available"
            logger.warning(f"{reason}, creating mock VM {request.vm_id}")
            return provider.degrade(request, reason)

        try:
            return provider.create(request)
        except FatalAllocationError:
            raise
        except Exception as e:
            ERRORS_TOTAL.labels(operation="create").inc()
            logger.error(f"Failed to create VM {request.vm_id} on {provider.name}: {e}")
            return provider.degrade(request, str(e))

    def _replace_existing(self, vm_id: str) -> None:
        try:
            self._owner(vm_id).delete(vm_id)
            logger.info(f"Existing VM {vm_id} deleted before re-creation")
        except Exception as e:
            ERRORS_TOTAL.labels(operation="replace").inc()
            logger.error(f"Failed to delete previous VM {vm_id}: {e}")
            released = self.registry.remove(vm_id)
            if released is not None:
                self.ports.release(released.allocated_port)

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def _start_readiness(self, vm_id: str, generation: int, plan: ReadinessPlan) -> None:
        poller = ReadinessPoller(
            vm_id,
            plan.probe,
            on_ready=lambda: self._on_ready(vm_id, generation),
            on_failure=lambda message: self._on_failure(vm_id, generation, message),
            max_attempts=plan.max_attempts,
            interval=plan.interval,
            initial_delay=plan.initial_delay,
            failure_message=plan.failure_message,
        )
        if self.registry.attach_task(vm_id, generation, poller):
            poller.start()

    def _on_ready(self, vm_id: str, generation: int) -> None:
        updated = self.registry.update(
            vm_id, generation=generation, state=VMState.READY, last_activity_at=time.time()
        )
        if updated is not None:
            READINESS_OUTCOMES.labels(outcome="ready").inc()
            logger.info(f"VM {vm_id} is now ready")

    def _on_failure(self, vm_id: str, generation: int, message: str) -> None:
        updated = self.registry.update(
            vm_id, generation=generation, state=VMState.ERROR, last_error=message
        )
        if updated is not None:
            READINESS_OUTCOMES.labels(outcome="error").inc()
            logger.error(f"VM {vm_id}: {message}")

    # ------------------------------------------------------------------
    # Queries and lifecycle operations
    # ------------------------------------------------------------------

    def get_vm(self, vm_id: str) -> VMDescriptor | None:
        """Current descriptor of *vm_id*, or None when it is not registered."""
        with self.registry.locked(vm_id):
            try:
                return self._owner(vm_id).get_status(vm_id)
            except NotFoundError:
                return None

    def list_vms(self) -> list[VMDescriptor]:
        return self.registry.list()

    def delete_vm(self, vm_id: str) -> bool:
        """
        Delete *vm_id*.

        Raises:
            NotFoundError: If the VM is not registered
        """
        with self.registry.locked(vm_id):
            result = self._owner(vm_id).delete(vm_id)
        collect_registry_metrics(self.registry)
        return result

    def start_vm(self, vm_id: str) -> VMDescriptor:
        with self.registry.locked(vm_id):
            return self._owner(vm_id).start(vm_id)

    def stop_vm(self, vm_id: str) -> VMDescriptor:
        with self.registry.locked(vm_id):
            return self._owner(vm_id).stop(vm_id)

    def restart_vm(self, vm_id: str) -> VMDescriptor:
        with self.registry.locked(vm_id):
            return self._owner(vm_id).restart(vm_id)

    def worker_call(
        self, vm_id: str, resource: str, method: str = "GET", payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Pass a scripts, metrics, events or logs call through to the VM's edge worker.

        Raises:
            NotFoundError: If the VM is not registered
            UnsupportedOperationError: If the VM is not hosted on an edge worker
        """
        with self.registry.locked(vm_id):
            provider = self._owner(vm_id)
            if not isinstance(provider, EdgeWorkerProvider):
                raise UnsupportedOperationError(
                    f"VM {vm_id} runs on {provider.name}, which has no {resource} endpoint"
                )
            try:
                return provider.worker_call(vm_id, resource, method, payload)
            except BackendError:
                ERRORS_TOTAL.labels(operation=resource).inc()
                raise

    def provider_health(self) -> dict[str, bool]:
        return {name: provider.is_available() for name, provider in self.providers.items()}

    def shutdown(self) -> None:
        """Cancel all readiness polls and forget every VM (backends untouched)."""
        self.registry.clear()
        logger.info("Orchestrator shut down")
