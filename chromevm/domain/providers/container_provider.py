"""
Docker implementation of the VM provider.

Each VM is a container running Xvfb, websockify (noVNC) and Chrome with
remote debugging enabled. The noVNC port is taken from the PortAllocator;
the debug/control port is chosen by Docker.
"""

from __future__ import annotations

import logging
from typing import Any

import docker
import docker.errors
import requests

from chromevm.config.models import ContainerProviderConfig
from chromevm.config.settings import CONTROL_PORT, DISPLAY_PORT
from chromevm.domain.errors import BackendError, ProvisionError
from chromevm.domain.ports import PortAllocator
from chromevm.domain.providers.base import BaseProvider
from chromevm.domain.registry import VMRegistry
from chromevm.domain.types import (
    ProviderKind,
    ProvisionResult,
    ReadinessPlan,
    ResourceProfile,
    VMDescriptor,
    VMRequest,
    VMState,
)

logger = logging.getLogger("vm-orchestrator")

CONTAINER_SCRIPT = """
Xvfb :99 -screen 0 {resolution} &
websockify --web /usr/share/novnc/ {display_port} localhost:5900 &
x11vnc -display :99 -nopw -forever -shared -rfbport 5900 &
google-chrome --no-sandbox --disable-dev-shm-usage --disable-gpu \
  --remote-debugging-address=0.0.0.0 --remote-debugging-port={control_port} \
  --user-data-dir=/tmp/chrome-user-data &
wait
"""


def connect_docker(socket_url: str | None = None) -> docker.DockerClient | None:
    """
    Connect to the Docker daemon.

    Returns:
        Docker client, or None when the daemon is unreachable
    """
    try:
        client = docker.DockerClient(base_url=socket_url) if socket_url else docker.from_env()
        client.ping()
        return client
    except docker.errors.DockerException as e:
        logger.warning(f"Docker not available, container VMs will be mocked: {e}")
        return None


class ContainerProvider(BaseProvider):
    """Docker-based VM provider."""

    name = "container"
    kind = ProviderKind.CONTAINER

    def __init__(
        self,
        registry: VMRegistry,
        ports: PortAllocator,
        config: ContainerProviderConfig | None = None,
        client: docker.DockerClient | None = None,
        http: requests.Session | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            registry: Shared VM registry
            ports: Shared port allocator
            config: Container settings
            client: Docker client (None when the daemon was unreachable)
            http: Session used for the Chrome debug endpoint probe
        """
        super().__init__(registry, ports)
        self.config = config or ContainerProviderConfig()
        self._client = client
        self._http = http or requests.Session()

    @property
    def client(self) -> docker.DockerClient | None:
        """Get the Docker client."""
        return self._client

    def is_available(self) -> bool:
        if self._client is None:
            return False
        try:
            self._client.ping()
            return True
        except Exception as e:
            logger.warning(f"Docker not available, using mock VMs: {e}")
            return False

    def endpoints(self, vm_id: str) -> tuple[str, str]:
        base = self.config.public_base_url.rstrip("/")
        return f"{base}/vnc/{vm_id}", f"{base}/agent/{vm_id}"

    def profile(self) -> ResourceProfile:
        return ResourceProfile(
            memory_mb=self.config.memory_mb,
            cpus=self.config.cpu_shares / 1024,
            instance_type="container",
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: VMRequest) -> ProvisionResult:
        if self._client is None:
            raise ProvisionError("Docker client not initialized")

        vm_id = request.vm_id
        container_name = f"chrome-vm-{vm_id}"
        display_port = self.ports.allocate()
        container = None

        try:
            container = self._client.containers.run(
                self.config.image,
                command=["sh", "-c", CONTAINER_SCRIPT.format(
                    resolution=self.config.resolution,
                    display_port=DISPLAY_PORT,
                    control_port=CONTROL_PORT,
                )],
                name=container_name,
                detach=True,
                environment={
                    "DISPLAY": ":99",
                    "NOVNC_PORT": str(DISPLAY_PORT),
                    "CHROME_FLAGS": f"--no-sandbox --disable-dev-shm-usage --remote-debugging-port={CONTROL_PORT}",
                },
                ports={f"{DISPLAY_PORT}/tcp": display_port, f"{CONTROL_PORT}/tcp": None},
                labels={
                    "chromevm.managed": "true",
                    "chromevm.vm.id": vm_id,
                    "chromevm.server.id": request.server_id or "",
                },
                mem_limit=self.config.memory_limit,
                cpu_shares=self.config.cpu_shares,
                security_opt=["seccomp=unconfined"],
                auto_remove=False,
            )

            container.reload()
            control_port = self._host_port(container, CONTROL_PORT)
            display, control = self.endpoints(vm_id)
            descriptor = VMDescriptor(
                id=vm_id,
                display_name=request.name,
                provider=ProviderKind.CONTAINER,
                state=VMState.INITIALIZING,
                backend_handle=container.id,
                display_endpoint=display,
                control_endpoint=control,
                allocated_port=display_port,
                server_id=request.server_id,
                resource_profile=self.profile(),
            )
        except Exception as e:
            if container is not None:
                self._remove_container(container.id)
            self.ports.release(display_port)
            raise ProvisionError(f"Failed to create container for VM {vm_id}: {e}") from e

        logger.info(
            f"Container {container_name} started (display port {display_port}, "
            f"control port {control_port})"
        )
        readiness = ReadinessPlan(
            probe=lambda: self._probe(container.id, control_port),
            max_attempts=self.config.readiness.max_attempts,
            interval=self.config.readiness.interval,
            initial_delay=self.config.readiness.initial_delay,
            failure_message=f"Container for VM {vm_id} failed to become ready",
        )
        return ProvisionResult.ok(descriptor, readiness)

    def degrade(self, request: VMRequest, reason: str) -> ProvisionResult:
        """Mock VM with a real display port that turns ready after a short delay."""
        port = self.ports.allocate()
        descriptor = self.mock_descriptor(
            request, reason, state=VMState.INITIALIZING, allocated_port=port
        )
        descriptor.resource_profile = self.profile()
        readiness = ReadinessPlan(
            probe=lambda: True,
            max_attempts=1,
            interval=0.0,
            initial_delay=self.config.mock_ready_delay,
        )
        return ProvisionResult.degrade(descriptor, reason, readiness)

    # ------------------------------------------------------------------
    # Status / teardown
    # ------------------------------------------------------------------

    def _refresh(self, descriptor: VMDescriptor) -> dict[str, Any] | None:
        if self._client is None or descriptor.backend_handle is None:
            return None
        try:
            container = self._client.containers.get(descriptor.backend_handle)
        except docker.errors.NotFound:
            return {"state": VMState.ERROR, "last_error": "Container no longer exists"}
        except docker.errors.DockerException as e:
            raise BackendError(f"Docker inspect failed: {e}") from e

        if container.status == "running":
            # Readiness is decided by the poller, not by the container status
            return None
        if descriptor.state == VMState.READY:
            return {"state": VMState.STOPPED}
        return {"state": VMState.ERROR, "last_error": f"Container exited ({container.status})"}

    def _teardown(self, descriptor: VMDescriptor) -> None:
        if self._client is None or descriptor.backend_handle is None:
            return
        self._remove_container(descriptor.backend_handle)

    def _apply_power(self, vm_id: str, action: str) -> VMDescriptor:
        # Containers are created fresh per VM; power actions leave them untouched
        descriptor = self._owned(vm_id)
        logger.info(f"VM {vm_id}: {action} ignored for container VMs")
        return descriptor

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _remove_container(self, container_id: str) -> None:
        try:
            container = self._client.containers.get(container_id)
            container.stop(timeout=10)
            container.remove(force=True)
            logger.info(f"Container {container_id[:12]} destroyed")
        except docker.errors.NotFound:
            pass
        except docker.errors.DockerException as e:
            raise BackendError(f"Error destroying container {container_id[:12]}: {e}") from e

    @staticmethod
    def _host_port(container: Any, container_port: int) -> int:
        bindings = container.attrs["NetworkSettings"]["Ports"].get(f"{container_port}/tcp") or []
        if not bindings:
            raise ProvisionError(f"Port {container_port}/tcp is not published")
        return int(bindings[0]["HostPort"])

    def _probe(self, container_id: str, control_port: int) -> bool:
        """Chrome's debug endpoint answers once the browser is up."""
        container = self._client.containers.get(container_id)
        if container.status != "running":
            return False
        resp = self._http.get(
            f"http://{self.config.probe_host}:{control_port}/json/version",
            timeout=self.config.probe_timeout,
        )
        return resp.ok
