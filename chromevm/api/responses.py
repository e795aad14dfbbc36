"""
API response helpers for standardized responses.
"""

from typing import Any

from flask import jsonify, Response


def api_success(data: Any = None, message: str = None, status_code: int = 200) -> tuple[Response, int]:
    """
    Create a standardized success API response.

    Args:
        data: Response payload
        message: Optional human readable message
        status_code: HTTP status code

    Returns:
        Tuple of (response, status_code)
    """
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status_code


def api_error(message: str, status_code: int = 400, details: Any = None) -> tuple[Response, int]:
    """Create a standardized error API response."""
    body = {"success": False, "error": message}
    if details:
        body["details"] = details
    return jsonify(body), status_code
