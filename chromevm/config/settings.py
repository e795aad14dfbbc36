"""
Constants and settings for the VM orchestrator.
"""

import os
import re

# =============================================================================
# Constants
# =============================================================================

DISPLAY_PORT = 6080
CONTROL_PORT = 9222
MAX_PORT = 65535

READINESS_MAX_ATTEMPTS = 30
READINESS_INTERVAL = 1.0
MOCK_READY_DELAY = 5.0

# VM id validation pattern (alphanumeric, dash, underscore, dot)
VM_ID_PATTERN = re.compile(r'^[a-zA-Z0-9._-]+$')
MAX_VM_ID_LENGTH = 128
MAX_VM_NAME_LENGTH = 255


def get_env(key: str, default: str = None, required: bool = False) -> str:
    """
    Retrieve a configuration value from the environment.

    Args:
        key: Configuration key (``cloud_compute_access_token`` is read from
            ``CLOUD_COMPUTE_ACCESS_TOKEN``)
        default: Default value
        required: Whether the value is required

    Returns:
        Configuration value

    Raises:
        ValueError: If required value is missing
    """
    env_key = key.upper().replace("-", "_")
    value = os.environ.get(env_key, default)
    if required and not value:
        raise ValueError(f"Required configuration missing: {key}")
    return value
