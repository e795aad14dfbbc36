"""Domain module containing the orchestration core."""

from chromevm.domain.errors import (
    OrchestratorError,
    BackendError,
    ProvisionError,
    BackendTimeoutError,
    NotFoundError,
    FatalAllocationError,
)
from chromevm.domain.ports import PortAllocator
from chromevm.domain.readiness import ReadinessPoller, poll_until
from chromevm.domain.registry import VMRegistry
from chromevm.domain.types import (
    ProviderKind,
    VMState,
    ResourceProfile,
    VMDescriptor,
    VMRequest,
    ReadinessPlan,
    ProvisionResult,
)

__all__ = [
    "OrchestratorError",
    "BackendError",
    "ProvisionError",
    "BackendTimeoutError",
    "NotFoundError",
    "FatalAllocationError",
    "PortAllocator",
    "ReadinessPoller",
    "poll_until",
    "VMRegistry",
    "ProviderKind",
    "VMState",
    "ResourceProfile",
    "VMDescriptor",
    "VMRequest",
    "ReadinessPlan",
    "ProvisionResult",
]
