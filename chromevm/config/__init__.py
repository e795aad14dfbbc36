"""Configuration module for the VM orchestrator."""

from chromevm.config.settings import (
    DISPLAY_PORT,
    CONTROL_PORT,
    MAX_PORT,
    READINESS_MAX_ATTEMPTS,
    READINESS_INTERVAL,
    MOCK_READY_DELAY,
    VM_ID_PATTERN,
    MAX_VM_ID_LENGTH,
    MAX_VM_NAME_LENGTH,
    get_env,
)
from chromevm.config.loader import (
    OrchestratorConfig,
    CONFIG_PATH,
    ORCHESTRATOR_CONFIG_FILE,
)

__all__ = [
    "DISPLAY_PORT",
    "CONTROL_PORT",
    "MAX_PORT",
    "READINESS_MAX_ATTEMPTS",
    "READINESS_INTERVAL",
    "MOCK_READY_DELAY",
    "VM_ID_PATTERN",
    "MAX_VM_ID_LENGTH",
    "MAX_VM_NAME_LENGTH",
    "get_env",
    "OrchestratorConfig",
    "CONFIG_PATH",
    "ORCHESTRATOR_CONFIG_FILE",
]
