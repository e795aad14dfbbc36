"""API module for Flask routes and helpers."""

from chromevm.api.validators import (
    ValidationError,
    validate_vm_id,
    validate_vm_name,
)
from chromevm.api.responses import api_success, api_error

__all__ = [
    "ValidationError",
    "validate_vm_id",
    "validate_vm_name",
    "api_success",
    "api_error",
]
