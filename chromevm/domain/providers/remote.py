"""
Shared behaviour of the HTTP-backed providers.
"""

from __future__ import annotations

import logging
from typing import Any

from chromevm.config.models import RemoteProviderConfig
from chromevm.domain.errors import BackendError, ProvisionError
from chromevm.domain.http_client import AuthenticatedHTTPClient
from chromevm.domain.ports import PortAllocator
from chromevm.domain.providers.base import BaseProvider
from chromevm.domain.registry import VMRegistry
from chromevm.domain.types import (
    ProvisionResult,
    ReadinessPlan,
    VMDescriptor,
    VMRequest,
    VMState,
)

logger = logging.getLogger("vm-orchestrator")

# Remote status vocabularies (edge workers, GCE, platform proxies) -> VMState
_STATUS_MAP: dict[str, VMState] = {
    "pending": VMState.INITIALIZING,
    "creating": VMState.INITIALIZING,
    "initializing": VMState.INITIALIZING,
    "provisioning": VMState.INITIALIZING,
    "staging": VMState.INITIALIZING,
    "starting": VMState.INITIALIZING,
    "ready": VMState.READY,
    "running": VMState.READY,
    "active": VMState.READY,
    "stopping": VMState.STOPPED,
    "stopped": VMState.STOPPED,
    "suspended": VMState.STOPPED,
    "terminated": VMState.STOPPED,
    "error": VMState.ERROR,
    "failed": VMState.ERROR,
}


def map_remote_status(value: Any) -> VMState | None:
    """Translate a provider status string; unknown values map to None."""
    if not isinstance(value, str):
        return None
    return _STATUS_MAP.get(value.strip().lower())


class RemoteProvider(BaseProvider):
    """Provider backed by an HTTP provisioning API.

    Subclasses describe the API shape (paths, payloads, status field) and
    whether creation finishes asynchronously (``polls_readiness``).
    """

    polls_readiness: bool = True
    # Whether a failed health probe means "unavailable" (False) or is advisory (True)
    available_on_probe_error: bool = True
    health_path: str = "health"

    def __init__(
        self,
        registry: VMRegistry,
        ports: PortAllocator,
        config: RemoteProviderConfig,
        client: AuthenticatedHTTPClient,
    ) -> None:
        super().__init__(registry, ports)
        self.config = config
        self.client = client

    # ------------------------------------------------------------------
    # API shape (overridden per provider)
    # ------------------------------------------------------------------

    def resource_path(self, handle: str) -> str:
        return f"vms/{handle}"

    def collection_path(self) -> str:
        return "vms"

    def status_path(self, handle: str) -> str:
        return f"{self.resource_path(handle)}/status"

    def power_path(self, handle: str, action: str) -> str:
        return f"{self.resource_path(handle)}/{action}"

    def create_payload(self, request: VMRequest) -> dict[str, Any]:
        profile = request.profile
        return {
            "id": request.vm_id,
            "name": request.name,
            "serverId": request.server_id,
            "instanceType": profile.instance_type,
            "memoryMb": profile.memory_mb,
            "cpus": profile.cpus,
        }

    def default_handle(self, request: VMRequest) -> str:
        """Backend handle to assume when the create response carries none."""
        return request.vm_id

    def vm_body(self, data: dict[str, Any]) -> dict[str, Any]:
        """The VM object of a response, either nested under ``vm`` or at the top level."""
        vm = data.get("vm", data)
        if not isinstance(vm, dict):
            raise BackendError(f"{self.name} returned a malformed VM object: {vm!r}")
        return vm

    def handle_from(self, request: VMRequest, data: dict[str, Any]) -> str:
        return str(self.vm_body(data).get("id") or self.default_handle(request))

    def status_from(self, data: dict[str, Any]) -> VMState | None:
        return map_remote_status(self.vm_body(data).get("status"))

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        try:
            self.client.request("GET", self.health_path, timeout=self.config.health_timeout)
            return True
        except Exception as e:
            logger.warning(f"{self.name} service not available: {e}")
            return self.available_on_probe_error

    def endpoints(self, vm_id: str) -> tuple[str, str]:
        root = self.config.endpoints_root
        return (
            self.config.display_url_template.format(base_url=root, vm_id=vm_id),
            self.config.control_url_template.format(base_url=root, vm_id=vm_id),
        )

    def create(self, request: VMRequest) -> ProvisionResult:
        logger.info(f"Creating {self.name} VM {request.vm_id} with name {request.name}")
        data = self.client.post(self.collection_path(), json=self.create_payload(request))

        handle = None
        try:
            handle = self.handle_from(request, data)
            initial = VMState.INITIALIZING if self.polls_readiness else VMState.READY
            display, control = self.endpoints(request.vm_id)
            descriptor = VMDescriptor(
                id=request.vm_id,
                display_name=request.name,
                provider=self.kind,
                state=initial,
                backend_handle=handle,
                display_endpoint=display,
                control_endpoint=control,
                server_id=request.server_id,
                resource_profile=request.profile,
            )
        except Exception as e:
            self._discard(handle or self.default_handle(request))
            raise ProvisionError(f"Invalid {self.name} create response for VM {request.vm_id}: {e}") from e

        readiness = None
        if self.polls_readiness:
            readiness = ReadinessPlan(
                probe=lambda: self._remote_ready(handle),
                max_attempts=self.config.readiness.max_attempts,
                interval=self.config.readiness.interval,
                initial_delay=self.config.readiness.initial_delay,
                failure_message=f"{self.name} VM {request.vm_id} failed to become ready",
            )
        return ProvisionResult.ok(descriptor, readiness)

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    def _refresh(self, descriptor: VMDescriptor) -> dict[str, Any] | None:
        data = self.client.get(self.status_path(descriptor.backend_handle))
        state = self.status_from(data)
        if state is None:
            return None
        changes: dict[str, Any] = {"state": state}
        if state == VMState.ERROR:
            changes["last_error"] = str(data.get("error") or f"{self.name} reported an error")
        return changes

    def _teardown(self, descriptor: VMDescriptor) -> None:
        self.client.delete(self.resource_path(descriptor.backend_handle))

    def _power(self, descriptor: VMDescriptor, action: str) -> dict[str, Any]:
        self.client.post(self.power_path(descriptor.backend_handle, action))
        return {"state": VMState.STOPPED} if action == "stop" else {}

    def _remote_ready(self, handle: str) -> bool:
        return self.status_from(self.client.get(self.status_path(handle))) == VMState.READY

    def _discard(self, handle: str) -> None:
        """Best-effort removal of a remote resource we could not register."""
        try:
            self.client.delete(self.resource_path(handle))
        except BackendError as e:
            logger.error(f"Could not discard {self.name} resource {handle}: {e}")
