"""
Edge worker implementation of the VM provider.

The edge worker API exposes ``/vms`` CRUD plus ``/vms/{id}/start|stop|restart``
and ``/vms/{id}/status``. VMs come back ``initializing`` and are polled until
the worker reports them running.

Besides the lifecycle, the worker keeps per-VM scripts, metrics, events and
logs under ``/vms/{id}/<resource>``; those calls are passed through as-is.
"""

from __future__ import annotations

import logging
from typing import Any

from chromevm.domain.errors import UnsupportedOperationError
from chromevm.domain.providers.remote import RemoteProvider
from chromevm.domain.types import ProviderKind

logger = logging.getLogger("vm-orchestrator")

# Per-VM worker resources and the methods the worker accepts on them
WORKER_RESOURCES: dict[str, frozenset[str]] = {
    "scripts": frozenset({"GET", "POST"}),
    "metrics": frozenset({"GET", "POST"}),
    "events": frozenset({"GET"}),
    "logs": frozenset({"GET"}),
}


class EdgeWorkerProvider(RemoteProvider):
    """Cloudflare-style edge worker provider."""

    name = "edge_worker"
    kind = ProviderKind.EDGE_WORKER
    polls_readiness = True
    available_on_probe_error = True

    def worker_call(
        self, vm_id: str, resource: str, method: str = "GET", payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Read or write a per-VM worker resource.

        Mock VMs have nothing on the worker: reads return an empty list,
        writes are refused.

        Raises:
            NotFoundError: If the VM is not owned by this provider
            UnsupportedOperationError: For unknown resources or methods, and writes to mock VMs
            BackendError: If the worker call failed
        """
        method = method.upper()
        if method not in WORKER_RESOURCES.get(resource, frozenset()):
            raise UnsupportedOperationError(f"{method} {resource} is not supported by {self.name}")

        descriptor = self._owned(vm_id)
        if descriptor.is_mock:
            if method != "GET":
                raise UnsupportedOperationError(f"VM {vm_id} is a mock VM; cannot {method} {resource}")
            return {resource: []}

        path = f"{self.resource_path(descriptor.backend_handle)}/{resource}"
        logger.info(f"{method} {resource} for VM {vm_id} via {self.name}")
        if method == "GET":
            return self.client.get(path)
        return self.client.post(path, json=payload or {})

    def run_script(self, vm_id: str, script: dict[str, Any]) -> dict[str, Any]:
        return self.worker_call(vm_id, "scripts", "POST", script)

    def list_scripts(self, vm_id: str) -> dict[str, Any]:
        return self.worker_call(vm_id, "scripts")

    def get_metrics(self, vm_id: str) -> dict[str, Any]:
        return self.worker_call(vm_id, "metrics")

    def record_metrics(self, vm_id: str, metrics: dict[str, Any]) -> dict[str, Any]:
        return self.worker_call(vm_id, "metrics", "POST", metrics)

    def get_events(self, vm_id: str) -> dict[str, Any]:
        return self.worker_call(vm_id, "events")

    def get_logs(self, vm_id: str) -> dict[str, Any]:
        return self.worker_call(vm_id, "logs")
