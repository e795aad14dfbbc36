"""
Lightweight DI container for orchestrator services.

Stored in ``app.extensions['services']`` during Flask context,
with a global fallback for readiness threads and scripts that run
outside Flask request context.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chromevm.config.models import OrchestratorSettings
    from chromevm.services.orchestrator import Orchestrator


class ServiceContainer:
    """Lightweight service container holding shared service instances."""

    def __init__(self, settings: OrchestratorSettings | None = None) -> None:
        self._settings = settings
        self._orchestrator: Orchestrator | None = None

    @property
    def settings(self) -> OrchestratorSettings:
        if self._settings is None:
            from chromevm.config.loader import OrchestratorConfig

            self._settings = OrchestratorConfig.settings()
        return self._settings

    @property
    def orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            from chromevm.domain.ports import PortAllocator
            from chromevm.domain.providers.factory import build_providers
            from chromevm.domain.registry import VMRegistry
            from chromevm.services.orchestrator import Orchestrator

            settings = self.settings
            registry = VMRegistry()
            ports = PortAllocator(base=settings.ports.base, max_port=settings.ports.max_port)
            self._orchestrator = Orchestrator(
                build_providers(settings, registry, ports),
                registry,
                ports,
                settings,
            )
        return self._orchestrator

    def shutdown(self) -> None:
        if self._orchestrator is not None:
            self._orchestrator.shutdown()
            self._orchestrator = None


# Fallback for code running outside Flask context (set once at startup in app.py)
_global_container: ServiceContainer | None = None


def get_services() -> ServiceContainer:
    """Return the service container.

    Tries ``current_app.extensions['services']`` first, then falls back
    to the module-level ``_global_container``.
    """
    try:
        from flask import current_app

        return current_app.extensions["services"]
    except (RuntimeError, KeyError):
        pass
    if _global_container is not None:
        return _global_container
    raise RuntimeError("ServiceContainer not initialized")
