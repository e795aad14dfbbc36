"""
Chrome VM Orchestrator.

Creates and tracks browser VMs across heterogeneous backends:
- Local Docker containers (noVNC display + Chrome remote debugging)
- Edge worker provisioning API
- Google Compute Engine instances
- Platform proxy provisioning API

Any backend failure during creation degrades to a mock VM so callers
always receive a descriptor.
"""

import atexit
import logging
import os

from flask import Flask

# =============================================================================
# Logging Setup
# =============================================================================

from chromevm.config.loader import OrchestratorConfig
from chromevm.observability import setup_json_logging

_log_level = (os.environ.get("LOG_LEVEL") or OrchestratorConfig.settings().logging.level).upper()
setup_json_logging(level=_log_level)
logger = logging.getLogger("vm-orchestrator")

# =============================================================================
# Flask Application
# =============================================================================

app = Flask(__name__)

# Initialize Prometheus metrics (auto-instruments all routes, exposes /metrics)
from chromevm.observability import init_metrics
init_metrics(app)

from chromevm.api.routes import api
from chromevm.api.validators import ValidationError
from chromevm.api.responses import api_error
from chromevm.domain.errors import (
    BackendError,
    FatalAllocationError,
    NotFoundError,
    UnsupportedOperationError,
)

app.register_blueprint(api)

# Initialize DI container (providers are built lazily on first use)
from chromevm.container import ServiceContainer
import chromevm.container as container_mod

container = ServiceContainer()
app.extensions["services"] = container
container_mod._global_container = container
atexit.register(container.shutdown)

# =============================================================================
# Error Handlers
# =============================================================================

@app.errorhandler(ValidationError)
def handle_validation_error(e: ValidationError) -> tuple:
    """Handle validation errors."""
    return api_error(str(e), 400)


@app.errorhandler(NotFoundError)
def handle_vm_not_found(e: NotFoundError) -> tuple:
    return api_error(str(e), 404)


@app.errorhandler(FatalAllocationError)
def handle_allocation_error(e: FatalAllocationError) -> tuple:
    """Port exhaustion is the only creation failure surfaced to callers."""
    logger.error(f"Allocation failed: {e}")
    return api_error(str(e), 503)


@app.errorhandler(UnsupportedOperationError)
def handle_unsupported(e: UnsupportedOperationError) -> tuple:
    return api_error(str(e), 409)


@app.errorhandler(BackendError)
def handle_backend_error(e: BackendError) -> tuple:
    logger.error(f"Backend error: {e}")
    return api_error(str(e), 502)


@app.errorhandler(404)
def handle_not_found(e: Exception) -> tuple:
    """Handle 404 errors."""
    return api_error("Resource not found", 404)


@app.errorhandler(500)
def handle_server_error(e: Exception) -> tuple:
    """Handle 500 errors."""
    from chromevm.observability import ERRORS_TOTAL
    ERRORS_TOTAL.labels(operation="app_500").inc()
    logger.error(f"Internal server error: {e}")
    return api_error("Internal server error", 500)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", "5000")), debug=False)
