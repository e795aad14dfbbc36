"""
Observability module: Prometheus metrics and structured JSON logging.

- Custom orchestration metrics (Gauges, Counters, Histogram)
- PrometheusMetrics integration for automatic Flask instrumentation
- JSON structured logging via python-json-logger
- Registry gauge collection (called after each registry mutation)
"""

from __future__ import annotations

import logging
import re
import sys
from typing import TYPE_CHECKING

from flask import Flask
from prometheus_client import Counter, Gauge, Histogram
from prometheus_flask_exporter import PrometheusMetrics

if TYPE_CHECKING:
    from chromevm.domain.registry import VMRegistry

# =============================================================================
# Prometheus Custom Metrics
# =============================================================================

REGISTERED_VMS = Gauge(
    "chromevm_vms",
    "Number of registered VMs by provider kind",
    ["provider"],
)

VM_CREATIONS = Counter(
    "chromevm_vm_creations_total",
    "VM creations by requested provider and outcome (ok/degraded)",
    ["provider", "outcome"],
)

PROVISIONING_DURATION = Histogram(
    "chromevm_provisioning_duration_seconds",
    "Latency of the synchronous part of VM creation",
    buckets=(0.1, 0.5, 1, 2, 5, 10, 20, 30, 60),
)

READINESS_OUTCOMES = Counter(
    "chromevm_readiness_total",
    "Readiness poll outcomes (ready/error)",
    ["outcome"],
)

ERRORS_TOTAL = Counter(
    "chromevm_errors_total",
    "Total number of errors by operation",
    ["operation"],
)


# =============================================================================
# Metrics Initialization
# =============================================================================

def init_metrics(app: Flask) -> PrometheusMetrics:
    """
    Initialize PrometheusMetrics on the Flask app.

    Auto-instruments all routes with flask_http_request_duration_seconds
    and flask_http_request_total. Exposes /metrics endpoint.
    """
    return PrometheusMetrics(app, path="/metrics")


def collect_registry_metrics(registry: VMRegistry) -> None:
    """Update the per-provider VM gauge from the registry."""
    counts = registry.counts()
    for provider in ("container", "edge_worker", "cloud_compute", "platform_proxy", "mock"):
        REGISTERED_VMS.labels(provider=provider).set(counts.get(provider, 0))


# =============================================================================
# JSON Structured Logging
# =============================================================================

class SensitiveDataFilter(logging.Filter):
    """Filter to mask credentials in log messages."""

    SENSITIVE_PATTERNS = [
        (re.compile(r'bearer\s+[A-Za-z0-9._~+/=-]+', re.I), 'Bearer ***'),
        (re.compile(r'token["\']?\s*[:=]\s*["\']?[^"\'}\s]+', re.I), 'token=***'),
        (re.compile(r'api[_-]?key["\']?\s*[:=]\s*["\']?[^"\'}\s]+', re.I), 'api_key=***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            for pattern, replacement in self.SENSITIVE_PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)
        return True


def setup_json_logging(level: str = "INFO") -> None:
    """
    Configure the root logger with JSON structured output.

    Uses python-json-logger's JsonFormatter; the SensitiveDataFilter is
    attached to the handler so every logger is covered.
    """
    from pythonjsonlogger.json import JsonFormatter

    handler = logging.StreamHandler(sys.stderr)
    formatter = JsonFormatter(
        fmt="%(timestamp)s %(name)s %(levelname)s %(message)s",
        rename_fields={"levelname": "level", "asctime": "timestamp"},
        timestamp=True,
    )
    handler.setFormatter(formatter)
    handler.addFilter(SensitiveDataFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())
