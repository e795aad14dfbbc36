"""
Pydantic models for orchestrator configuration.

Typed access to every orchestrator.yml setting via
OrchestratorConfig.settings(); the model defaults are the built-in
configuration used when no file is present.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from chromevm.config.settings import (
    DISPLAY_PORT,
    MAX_PORT,
    MOCK_READY_DELAY,
    READINESS_INTERVAL,
    READINESS_MAX_ATTEMPTS,
)


class PortsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    base: int = DISPLAY_PORT
    max_port: int = MAX_PORT


class ReadinessConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    max_attempts: int = READINESS_MAX_ATTEMPTS
    interval: float = READINESS_INTERVAL
    initial_delay: float = 0.0


class ContainerProviderConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    image: str = "browserless/chrome:latest"
    docker_socket: str = "unix:///var/run/docker.sock"
    memory_limit: str = "2g"
    memory_mb: int = 2048
    cpu_shares: int = 1024
    resolution: str = "1920x1080x24"
    probe_host: str = "localhost"
    probe_timeout: float = 2.0
    public_base_url: str = "http://localhost:3001"
    mock_ready_delay: float = MOCK_READY_DELAY
    readiness: ReadinessConfig = ReadinessConfig()


class RemoteProviderConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = True
    base_url: str = ""
    endpoint_base_url: str = ""
    display_url_template: str = "{base_url}/vms/{vm_id}/novnc"
    control_url_template: str = "{base_url}/vms/{vm_id}/agent"
    timeout: float = 10.0
    health_timeout: float = 5.0
    token_env: str = ""
    readiness: ReadinessConfig = ReadinessConfig(max_attempts=30, interval=2.0)

    @property
    def endpoints_root(self) -> str:
        """Base URL the display/control endpoint templates are rooted at."""
        return (self.endpoint_base_url or self.base_url).rstrip("/")


class EdgeWorkerConfig(RemoteProviderConfig):
    base_url: str = "http://localhost:8787"
    timeout: float = 10.0
    token_env: str = "edge_worker_api_token"


class CloudComputeConfig(RemoteProviderConfig):
    base_url: str = "https://compute.googleapis.com/compute/v1"
    endpoint_base_url: str = "http://localhost:3001"
    project_id: str = "chrome-vm-dashboard"
    zone: str = "us-central1-a"
    image: str = "projects/debian-cloud/global/images/family/debian-12"
    disk_size_gb: int = 20
    timeout: float = 30.0
    token_env: str = "cloud_compute_access_token"
    readiness: ReadinessConfig = ReadinessConfig(max_attempts=60, interval=5.0)


class PlatformProxyConfig(RemoteProviderConfig):
    base_url: str = "http://localhost:3002"
    timeout: float = 15.0
    token_env: str = "platform_proxy_api_key"


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    provider: str = "container"


class ResilienceConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    failure_threshold: int = 5
    recovery_timeout: float = 30.0


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    level: str = "INFO"


def _default_servers() -> list[ServerConfig]:
    return [
        ServerConfig(id="default-cloud-server", name="Cloud VM Server", provider="container"),
        ServerConfig(id="default-cloudflare-server", name="Cloudflare Workers", provider="edge_worker"),
        ServerConfig(id="default-google-cloud-server", name="Google Cloud Platform", provider="cloud_compute"),
        ServerConfig(id="default-railway-server", name="Railway VM Hosting", provider="platform_proxy"),
    ]


class OrchestratorSettings(BaseModel):
    """Root settings model mirroring orchestrator.yml structure."""

    model_config = ConfigDict(extra="ignore")

    ports: PortsConfig = PortsConfig()
    container: ContainerProviderConfig = ContainerProviderConfig()
    edge_worker: EdgeWorkerConfig = EdgeWorkerConfig()
    cloud_compute: CloudComputeConfig = CloudComputeConfig()
    platform_proxy: PlatformProxyConfig = PlatformProxyConfig()
    servers: list[ServerConfig] = _default_servers()
    default_server: str = "default-cloud-server"
    resilience: ResilienceConfig = ResilienceConfig()
    logging: LoggingConfig = LoggingConfig()

    def provider_for_server(self, server_id: str | None) -> str:
        """Resolve the provider name that owns *server_id*."""
        by_id = {s.id: s.provider for s in self.servers}
        if server_id and server_id in by_id:
            return by_id[server_id]
        return by_id.get(self.default_server, "container")
