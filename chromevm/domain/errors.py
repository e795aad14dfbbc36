"""
Exceptions raised by the orchestration core.
"""


class OrchestratorError(Exception):
    """Base class for orchestrator errors."""


class BackendError(OrchestratorError):
    """A backend call (Docker API, remote HTTP API) failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ProvisionError(BackendError):
    """The backend create call failed."""


class BackendTimeoutError(BackendError):
    """A backend call exceeded its timeout."""


class NotFoundError(OrchestratorError):
    """The VM id is unknown."""

    def __init__(self, vm_id: str) -> None:
        self.vm_id = vm_id
        super().__init__(f"VM {vm_id} not found")


class FatalAllocationError(OrchestratorError):
    """The local port space is exhausted."""


class UnsupportedOperationError(OrchestratorError):
    """The VM's provider does not offer the requested operation."""
