"""
Factory for creating VM providers.
"""

from __future__ import annotations

import logging
from typing import Callable

import docker
import requests

from chromevm.config.models import OrchestratorSettings, RemoteProviderConfig
from chromevm.config.settings import get_env
from chromevm.domain.http_client import AuthenticatedHTTPClient
from chromevm.domain.ports import PortAllocator
from chromevm.domain.providers.base import VMProvider
from chromevm.domain.providers.cloud_compute import CloudComputeProvider
from chromevm.domain.providers.container_provider import ContainerProvider, connect_docker
from chromevm.domain.providers.edge_worker import EdgeWorkerProvider
from chromevm.domain.providers.platform_proxy import PlatformProxyProvider
from chromevm.domain.registry import VMRegistry
from chromevm.resilience import CircuitBreaker

logger = logging.getLogger("vm-orchestrator")

_REMOTE_PROVIDERS = {
    "edge_worker": EdgeWorkerProvider,
    "cloud_compute": CloudComputeProvider,
    "platform_proxy": PlatformProxyProvider,
}


def env_token(key: str) -> Callable[[], str | None]:
    """Token provider reading *key* from the environment on every call."""
    return lambda: get_env(key) if key else None


def build_http_client(
    name: str,
    config: RemoteProviderConfig,
    settings: OrchestratorSettings,
    session: requests.Session | None = None,
    token_provider: Callable[[], str | None] | None = None,
) -> AuthenticatedHTTPClient:
    return AuthenticatedHTTPClient(
        base_url=config.base_url,
        token_provider=token_provider or env_token(config.token_env),
        timeout=config.timeout,
        session=session,
        circuit_breaker=CircuitBreaker(
            name=name,
            failure_threshold=settings.resilience.failure_threshold,
            recovery_timeout=settings.resilience.recovery_timeout,
        ),
        name=name,
    )


def build_providers(
    settings: OrchestratorSettings,
    registry: VMRegistry,
    ports: PortAllocator,
    docker_client: docker.DockerClient | None = None,
    session: requests.Session | None = None,
    token_providers: dict[str, Callable[[], str | None]] | None = None,
    connect: bool = True,
) -> dict[str, VMProvider]:
    """
    Build every enabled provider.

    Args:
        settings: Orchestrator settings
        registry: Shared VM registry
        ports: Shared port allocator
        docker_client: Docker client; when None and *connect* is set, one is
            created from the configured socket
        session: requests session shared by the remote providers
        token_providers: Per-provider token callables overriding the env lookup
        connect: Whether to connect to Docker when no client is given

    Returns:
        Mapping of provider name to provider
    """
    providers: dict[str, VMProvider] = {}
    token_providers = token_providers or {}

    if settings.container.enabled:
        client = docker_client
        if client is None and connect:
            client = connect_docker(settings.container.docker_socket)
        providers["container"] = ContainerProvider(
            registry, ports, settings.container, client=client, http=session
        )

    for name, provider_cls in _REMOTE_PROVIDERS.items():
        config = getattr(settings, name)
        if not config.enabled:
            continue
        http = build_http_client(
            name, config, settings, session=session, token_provider=token_providers.get(name)
        )
        providers[name] = provider_cls(registry, ports, config, http)

    logger.info(f"Initialized providers: {', '.join(providers) or 'none'}")
    return providers
