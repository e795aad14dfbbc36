"""
Typed data structures for the orchestrator domain.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Callable


class ProviderKind(str, Enum):
    """Backend that provisioned a VM."""
    CONTAINER = "container"
    EDGE_WORKER = "edge_worker"
    CLOUD_COMPUTE = "cloud_compute"
    PLATFORM_PROXY = "platform_proxy"
    MOCK = "mock"


class VMState(str, Enum):
    """Lifecycle state of a VM."""
    INITIALIZING = "initializing"
    READY = "ready"
    STOPPED = "stopped"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (VMState.STOPPED, VMState.ERROR)

    def can_transition(self, target: VMState) -> bool:
        """Whether moving from this state to *target* keeps the lifecycle forward-only."""
        if target == self:
            return True
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[VMState, frozenset[VMState]] = {
    VMState.INITIALIZING: frozenset({VMState.READY, VMState.ERROR}),
    VMState.READY: frozenset({VMState.STOPPED, VMState.ERROR}),
    VMState.STOPPED: frozenset(),
    VMState.ERROR: frozenset(),
}


@dataclass(frozen=True)
class ResourceProfile:
    """Provider-independent sizing of a VM."""

    memory_mb: int
    cpus: float
    storage_gb: int | None = None
    instance_type: str | None = None


# Known sizing hints (GCP machine types and the AWS names the dashboard sends)
SIZING_PROFILES: dict[str, ResourceProfile] = {
    "e2-micro": ResourceProfile(memory_mb=1024, cpus=2, storage_gb=10, instance_type="e2-micro"),
    "e2-small": ResourceProfile(memory_mb=2048, cpus=2, storage_gb=10, instance_type="e2-small"),
    "e2-medium": ResourceProfile(memory_mb=4096, cpus=2, storage_gb=20, instance_type="e2-medium"),
    "e2-standard-2": ResourceProfile(memory_mb=8192, cpus=2, storage_gb=20, instance_type="e2-standard-2"),
    "e2-standard-4": ResourceProfile(memory_mb=16384, cpus=4, storage_gb=40, instance_type="e2-standard-4"),
    "e2-standard-8": ResourceProfile(memory_mb=32768, cpus=8, storage_gb=80, instance_type="e2-standard-8"),
    "t3.small": ResourceProfile(memory_mb=2048, cpus=2, storage_gb=10, instance_type="t3.small"),
    "t3.medium": ResourceProfile(memory_mb=4096, cpus=2, storage_gb=20, instance_type="t3.medium"),
    "t3.large": ResourceProfile(memory_mb=8192, cpus=2, storage_gb=40, instance_type="t3.large"),
}

DEFAULT_SIZING = "e2-medium"


def resolve_profile(sizing_hint: str | None) -> ResourceProfile:
    """Map a sizing hint to a ResourceProfile, defaulting to ``e2-medium``."""
    if sizing_hint and sizing_hint in SIZING_PROFILES:
        return SIZING_PROFILES[sizing_hint]
    return SIZING_PROFILES[DEFAULT_SIZING]


@dataclass
class VMDescriptor:
    """Canonical record of one VM's identity, state and endpoints."""

    id: str
    display_name: str
    provider: ProviderKind
    state: VMState = VMState.INITIALIZING
    backend_handle: str | None = None
    display_endpoint: str | None = None
    control_endpoint: str | None = None
    allocated_port: int | None = None
    server_id: str | None = None
    created_at: float = field(default_factory=time.time)
    last_activity_at: float = field(default_factory=time.time)
    resource_profile: ResourceProfile | None = None
    last_error: str | None = None

    def __post_init__(self) -> None:
        if self.provider == ProviderKind.MOCK and self.backend_handle is not None:
            raise ValueError("Mock descriptors cannot hold a backend handle")

    @property
    def is_mock(self) -> bool:
        return self.provider == ProviderKind.MOCK

    def copy(self, **changes: Any) -> VMDescriptor:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["provider"] = self.provider.value
        data["state"] = self.state.value
        return data


@dataclass(frozen=True)
class VMRequest:
    """A creation request as handed to a provider."""

    vm_id: str
    name: str
    server_id: str | None = None
    sizing_hint: str | None = None

    @property
    def profile(self) -> ResourceProfile:
        return resolve_profile(self.sizing_hint)


@dataclass(frozen=True)
class ReadinessPlan:
    """How to decide that an Initializing VM has become Ready."""

    probe: Callable[[], bool]
    max_attempts: int
    interval: float
    initial_delay: float = 0.0
    failure_message: str = "failed to become ready"


@dataclass(frozen=True)
class ProvisionResult:
    """Outcome of a provider create: ``ok`` or ``degraded`` (mock fallback)."""

    descriptor: VMDescriptor
    readiness: ReadinessPlan | None = None
    degraded_reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None

    @classmethod
    def ok(cls, descriptor: VMDescriptor, readiness: ReadinessPlan | None = None) -> ProvisionResult:
        return cls(descriptor=descriptor, readiness=readiness)

    @classmethod
    def degrade(
        cls,
        descriptor: VMDescriptor,
        reason: str,
        readiness: ReadinessPlan | None = None,
    ) -> ProvisionResult:
        return cls(descriptor=descriptor, readiness=readiness, degraded_reason=reason)
