"""
Flask API routes for the VM orchestrator.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, jsonify, request

from chromevm.api.responses import api_error, api_success
from chromevm.api.validators import (
    ValidationError,
    validate_optional_str,
    validate_vm_id,
    validate_vm_name,
)
from chromevm.container import get_services

logger = logging.getLogger("vm-orchestrator")

# Type alias for Flask route returns
RouteResponse = tuple[Response, int]

api = Blueprint("api", __name__)


# =============================================================================
# Health
# =============================================================================

@api.route("/health")
def health() -> RouteResponse:
    """Health check endpoint; provider probes are informational."""
    orchestrator = get_services().orchestrator
    return jsonify({
        "status": "healthy",
        "providers": orchestrator.provider_health(),
        "vms": len(orchestrator.registry),
    }), 200


# =============================================================================
# VMs
# =============================================================================

@api.route("/api/vms")
def list_vms() -> RouteResponse:
    """List all registered VMs."""
    vms = get_services().orchestrator.list_vms()
    return api_success({"vms": [vm.to_dict() for vm in vms], "count": len(vms)})


@api.route("/api/vms", methods=["POST"])
def create_vm() -> RouteResponse:
    """Create a VM. Backend failures produce a mock VM, not an error."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON body required")

    vm_id = validate_vm_id(data.get("id") or data.get("vm_id") or "")
    name = validate_vm_name(data.get("name"))
    server_id = validate_optional_str(data.get("server_id") or data.get("serverId"), "server_id")
    sizing = validate_optional_str(data.get("instance_type") or data.get("instanceType"), "instance_type")

    vm = get_services().orchestrator.create_vm(vm_id, name, server_id=server_id, sizing_hint=sizing)
    return api_success({"vm": vm.to_dict()}, status_code=201)


@api.route("/api/vms/<vm_id>")
def get_vm(vm_id: str) -> RouteResponse:
    """Get a VM descriptor, refreshed from its backend."""
    validate_vm_id(vm_id)
    vm = get_services().orchestrator.get_vm(vm_id)
    if vm is None:
        return api_error(f"VM {vm_id} not found", 404)
    return api_success({"vm": vm.to_dict()})


@api.route("/api/vms/<vm_id>/status")
def get_vm_status(vm_id: str) -> RouteResponse:
    """Get only the lifecycle state of a VM."""
    validate_vm_id(vm_id)
    vm = get_services().orchestrator.get_vm(vm_id)
    if vm is None:
        return api_error(f"VM {vm_id} not found", 404)
    return api_success({
        "id": vm.id,
        "status": vm.state.value,
        "provider": vm.provider.value,
        "last_error": vm.last_error,
    })


@api.route("/api/vms/<vm_id>", methods=["DELETE"])
def delete_vm(vm_id: str) -> RouteResponse:
    """Delete a VM and release its resources."""
    validate_vm_id(vm_id)
    get_services().orchestrator.delete_vm(vm_id)
    logger.info(f"VM {vm_id} deleted via API")
    return api_success(message=f"VM {vm_id} deleted")


@api.route("/api/vms/<vm_id>/<action>", methods=["POST"])
def power_vm(vm_id: str, action: str) -> RouteResponse:
    """Start, stop or restart a VM."""
    validate_vm_id(vm_id)
    orchestrator = get_services().orchestrator
    handlers = {
        "start": orchestrator.start_vm,
        "stop": orchestrator.stop_vm,
        "restart": orchestrator.restart_vm,
    }
    if action not in handlers:
        return api_error(f"Unknown action: {action}", 404)
    vm = handlers[action](vm_id)
    return api_success({"vm": vm.to_dict()})


# =============================================================================
# Edge worker resources
# =============================================================================

def _worker_resource(vm_id: str, resource: str) -> RouteResponse:
    validate_vm_id(vm_id)
    payload = None
    if request.method == "POST":
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise ValidationError("JSON body required")
    data = get_services().orchestrator.worker_call(vm_id, resource, request.method, payload)
    return api_success(data)


@api.route("/api/vms/<vm_id>/scripts", methods=["GET", "POST"])
def vm_scripts(vm_id: str) -> RouteResponse:
    """List or execute scripts on an edge worker VM."""
    return _worker_resource(vm_id, "scripts")


@api.route("/api/vms/<vm_id>/metrics", methods=["GET", "POST"])
def vm_metrics(vm_id: str) -> RouteResponse:
    """Fetch or record metrics of an edge worker VM."""
    return _worker_resource(vm_id, "metrics")


@api.route("/api/vms/<vm_id>/events")
def vm_events(vm_id: str) -> RouteResponse:
    return _worker_resource(vm_id, "events")


@api.route("/api/vms/<vm_id>/logs")
def vm_logs(vm_id: str) -> RouteResponse:
    return _worker_resource(vm_id, "logs")
