"""
Cloud compute (Google Compute Engine) implementation of the VM provider.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from chromevm.config.models import CloudComputeConfig
from chromevm.domain.http_client import AuthenticatedHTTPClient
from chromevm.domain.ports import PortAllocator
from chromevm.domain.providers.remote import RemoteProvider
from chromevm.domain.registry import VMRegistry
from chromevm.domain.types import ProviderKind, VMRequest

logger = logging.getLogger("vm-orchestrator")

MACHINE_TYPES = {
    "e2-micro",
    "e2-small",
    "e2-medium",
    "e2-standard-2",
    "e2-standard-4",
    "e2-standard-8",
}
DEFAULT_MACHINE_TYPE = "e2-medium"

# GCE restarts an instance through the "reset" verb
_POWER_VERBS = {"start": "start", "stop": "stop", "restart": "reset"}

_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]+")

STARTUP_SCRIPT = """#!/bin/bash
apt-get update
apt-get install -y wget gnupg xvfb x11vnc git
wget -q -O - https://dl.google.com/linux/linux_signing_key.pub | apt-key add -
echo "deb [arch=amd64] http://dl.google.com/linux/chrome/deb/ stable main" > /etc/apt/sources.list.d/google-chrome.list
apt-get update
apt-get install -y google-chrome-stable
git clone https://github.com/novnc/noVNC.git /opt/novnc
git clone https://github.com/novnc/websockify.git /opt/novnc/utils/websockify

export DISPLAY=:1
Xvfb :1 -screen 0 1920x1080x24 &
x11vnc -display :1 -nopw -listen localhost -xkb -forever &
/opt/novnc/utils/novnc_proxy --vnc localhost:5900 --listen 6080 &
google-chrome --no-sandbox --disable-dev-shm-usage --remote-debugging-port=9222 &
"""


def machine_type(instance_type: str | None) -> str:
    """Map an instance type to a supported machine type (default ``e2-medium``)."""
    if instance_type in MACHINE_TYPES:
        return instance_type
    return DEFAULT_MACHINE_TYPE


def instance_name(vm_id: str) -> str:
    """GCE names: lowercase letters, digits and dashes, starting with a letter, at most 63 chars."""
    slug = _INVALID_NAME_CHARS.sub("-", vm_id.lower()).strip("-")
    return f"chrome-vm-{slug}"[:63].rstrip("-")


class CloudComputeProvider(RemoteProvider):
    """Compute Engine provider."""

    name = "cloud_compute"
    kind = ProviderKind.CLOUD_COMPUTE
    polls_readiness = True
    available_on_probe_error = True

    def __init__(
        self,
        registry: VMRegistry,
        ports: PortAllocator,
        config: CloudComputeConfig,
        client: AuthenticatedHTTPClient,
    ) -> None:
        super().__init__(registry, ports, config, client)
        self.config: CloudComputeConfig = config

    # ------------------------------------------------------------------
    # API shape
    # ------------------------------------------------------------------

    def collection_path(self) -> str:
        return f"projects/{self.config.project_id}/zones/{self.config.zone}/instances"

    def resource_path(self, handle: str) -> str:
        return f"{self.collection_path()}/{handle}"

    def status_path(self, handle: str) -> str:
        return self.resource_path(handle)

    def power_path(self, handle: str, action: str) -> str:
        return f"{self.resource_path(handle)}/{_POWER_VERBS[action]}"

    def create_payload(self, request: VMRequest) -> dict[str, Any]:
        zone = self.config.zone
        return {
            "name": instance_name(request.vm_id),
            "machineType": f"zones/{zone}/machineTypes/{machine_type(request.sizing_hint)}",
            "labels": {"chromevm-managed": "true"},
            "disks": [{
                "boot": True,
                "autoDelete": True,
                "initializeParams": {
                    "sourceImage": self.config.image,
                    "diskSizeGb": str(self.config.disk_size_gb),
                },
            }],
            "networkInterfaces": [{
                "network": "global/networks/default",
                "accessConfigs": [{"type": "ONE_TO_ONE_NAT", "name": "External NAT"}],
            }],
            "metadata": {"items": [
                {"key": "startup-script", "value": STARTUP_SCRIPT},
                {"key": "chromevm-id", "value": request.vm_id},
            ]},
            "tags": {"items": ["chrome-vm", "novnc"]},
        }

    def default_handle(self, request: VMRequest) -> str:
        return instance_name(request.vm_id)

    def handle_from(self, request: VMRequest, data: dict[str, Any]) -> str:
        # The insert call answers with an Operation; the instance is addressed by name
        if data.get("error"):
            raise ValueError(f"operation failed: {data['error']}")
        return self.default_handle(request)

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        try:
            if not self.client.has_credentials:
                logger.warning("Cloud compute credentials not available")
                return False
            self.client.request(
                "GET", self.collection_path(),
                params={"maxResults": 1}, timeout=self.config.health_timeout,
            )
            return True
        except Exception as e:
            logger.warning(f"Cloud compute service not available: {e}")
            return self.available_on_probe_error
