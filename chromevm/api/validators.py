"""
Input validation functions for the API.
"""

from chromevm.config.settings import (
    VM_ID_PATTERN,
    MAX_VM_ID_LENGTH,
    MAX_VM_NAME_LENGTH,
)


class ValidationError(Exception):
    """Raised when input validation fails."""
    pass


def validate_vm_id(vm_id: object) -> str:
    """
    Validate a VM identifier.

    Args:
        vm_id: The identifier to validate

    Returns:
        The identifier

    Raises:
        ValidationError: If the identifier is invalid
    """
    if vm_id is None or vm_id == "":
        raise ValidationError("VM id is required")

    if not isinstance(vm_id, str):
        raise ValidationError("VM id must be a string")

    if len(vm_id) > MAX_VM_ID_LENGTH:
        raise ValidationError(f"VM id exceeds maximum length of {MAX_VM_ID_LENGTH}")

    if not VM_ID_PATTERN.fullmatch(vm_id):
        raise ValidationError("VM id contains invalid characters")

    return vm_id


def validate_vm_name(name: str) -> str:
    """Validate a display name; surrounding whitespace is stripped."""
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("VM name is required")

    name = name.strip()
    if len(name) > MAX_VM_NAME_LENGTH:
        raise ValidationError(f"VM name exceeds maximum length of {MAX_VM_NAME_LENGTH}")

    return name


def validate_optional_str(value, field: str) -> str | None:
    """Accept None or a non-empty string for optional request fields."""
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string")
    return value.strip()
