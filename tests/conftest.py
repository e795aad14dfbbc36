"""
Shared pytest fixtures for the orchestrator test suite.
"""

import json
import os
import time
from unittest.mock import MagicMock

import pytest
import requests

# ---------------------------------------------------------------------------
# Environment stubs – must be set BEFORE any chromevm module is imported so
# that module-level config paths and tokens resolve to test values.
# ---------------------------------------------------------------------------

os.environ.setdefault("CONFIG_PATH", "/tmp/chromevm-tests/config")
os.environ.setdefault("EDGE_WORKER_API_TOKEN", "edge-test-token")
os.environ.setdefault("PLATFORM_PROXY_API_KEY", "platform-test-key")
os.environ.setdefault("CLOUD_COMPUTE_ACCESS_TOKEN", "gce-test-token")

# Import chromevm modules AFTER env vars are set
from chromevm.config.models import OrchestratorSettings  # noqa: E402
from chromevm.domain.ports import PortAllocator  # noqa: E402
from chromevm.domain.providers.factory import build_providers  # noqa: E402
from chromevm.domain.registry import VMRegistry  # noqa: E402
from chromevm.domain.types import VMRequest  # noqa: E402
from chromevm.services.orchestrator import Orchestrator  # noqa: E402


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_response(status_code: int = 200, body=None) -> requests.Response:
    """Build a real requests.Response with a JSON body."""
    resp = requests.Response()
    resp.status_code = status_code
    resp._content = b"" if body is None else json.dumps(body).encode()
    resp.headers["Content-Type"] = "application/json"
    return resp


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll *predicate* until it is truthy or *timeout* elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


class FakeBackend:
    """Callable standing in for ``requests.Session.request``.

    Routes are matched on HTTP method and URL suffix (longest suffix wins).
    Each route holds a list of responses consumed in order; the last one
    repeats. A response may be an exception instance, which is raised.
    Unmatched requests answer 404.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list] = {}
        self.calls: list[tuple[str, str, dict]] = []

    def on(self, method: str, suffix: str, *responses) -> "FakeBackend":
        self.routes[(method.upper(), suffix)] = list(responses)
        return self

    def calls_to(self, method: str, suffix: str) -> list:
        return [c for c in self.calls if c[0] == method.upper() and c[1].endswith(suffix)]

    def __call__(self, method, url, **kwargs):
        self.calls.append((method.upper(), url, kwargs))
        matches = [
            (suffix, queue) for (m, suffix), queue in self.routes.items()
            if m == method.upper() and url.endswith(suffix)
        ]
        if not matches:
            return make_response(404, {"error": "not found"})
        _, queue = max(matches, key=lambda item: len(item[0]))
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        return result


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_FAST_READINESS = {"max_attempts": 3, "interval": 0.01, "initial_delay": 0.0}


@pytest.fixture
def test_settings():
    """Settings with fast readiness polling and test-only server ids."""
    return OrchestratorSettings(
        ports={"base": 6080, "max_port": 6200},
        container={
            "public_base_url": "http://vms.test",
            "mock_ready_delay": 0.05,
            "readiness": _FAST_READINESS,
        },
        edge_worker={"base_url": "http://edge.test", "readiness": _FAST_READINESS},
        cloud_compute={
            "base_url": "http://gce.test/compute/v1",
            "endpoint_base_url": "http://vms.test",
            "project_id": "test-project",
            "zone": "europe-west1-b",
            "readiness": _FAST_READINESS,
        },
        platform_proxy={"base_url": "http://platform.test"},
        servers=[
            {"id": "srv-local", "name": "Local", "provider": "container"},
            {"id": "srv-cf", "name": "Edge", "provider": "edge_worker"},
            {"id": "srv-gcp", "name": "GCP", "provider": "cloud_compute"},
            {"id": "srv-rw", "name": "Platform", "provider": "platform_proxy"},
        ],
        default_server="srv-local",
        resilience={"failure_threshold": 50, "recovery_timeout": 30},
    )


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def registry():
    reg = VMRegistry()
    yield reg
    reg.clear()


@pytest.fixture
def ports():
    return PortAllocator(base=6080, max_port=6200)


@pytest.fixture
def vm_request():
    """Factory for VMRequest instances."""
    def _make(vm_id="vm-1", name="Test VM", server_id=None, sizing_hint=None) -> VMRequest:
        return VMRequest(vm_id=vm_id, name=name, server_id=server_id, sizing_hint=sizing_hint)
    return _make


# ---------------------------------------------------------------------------
# Docker mock
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_container():
    container = MagicMock()
    container.id = "cnt-abc123def456"
    container.status = "running"
    container.attrs = {
        "NetworkSettings": {
            "Ports": {
                "6080/tcp": [{"HostIp": "0.0.0.0", "HostPort": "6080"}],
                "9222/tcp": [{"HostIp": "0.0.0.0", "HostPort": "49222"}],
            }
        }
    }
    return container


@pytest.fixture
def mock_docker(mock_container):
    """Docker client whose containers.run/get return ``mock_container``."""
    client = MagicMock()
    client.ping.return_value = True
    client.containers.run.return_value = mock_container
    client.containers.get.return_value = mock_container
    return client


# ---------------------------------------------------------------------------
# HTTP mock
# ---------------------------------------------------------------------------

@pytest.fixture
def backend():
    """Fake remote APIs with healthy probes for every provider."""
    fake = FakeBackend()
    fake.on("GET", "/health", make_response(200, {"status": "ok"}))
    fake.on("GET", "/instances", make_response(200, {"items": []}))
    return fake


@pytest.fixture
def mock_session(backend):
    """requests.Session mock: ``request`` goes to ``backend``, ``get`` is the Chrome probe."""
    session = MagicMock()
    session.request.side_effect = backend
    session.get.return_value = make_response(200, {"Browser": "Chrome/120.0"})
    return session


# ---------------------------------------------------------------------------
# Providers / orchestrator
# ---------------------------------------------------------------------------

@pytest.fixture
def providers(test_settings, registry, ports, mock_docker, mock_session):
    return build_providers(
        test_settings,
        registry,
        ports,
        docker_client=mock_docker,
        session=mock_session,
        connect=False,
    )


@pytest.fixture
def orchestrator(providers, registry, ports, test_settings):
    orch = Orchestrator(providers, registry, ports, test_settings)
    yield orch
    orch.shutdown()


# ---------------------------------------------------------------------------
# Flask test client
# ---------------------------------------------------------------------------

@pytest.fixture
def services(mocker, orchestrator, test_settings):
    """ServiceContainer pre-wired with the test orchestrator."""
    from chromevm.container import ServiceContainer

    container = ServiceContainer(settings=test_settings)
    container._orchestrator = orchestrator
    mocker.patch("chromevm.container._global_container", container)
    return container


@pytest.fixture
def app_client(services):
    """Create a Flask test_client backed by the test orchestrator."""
    from chromevm.app import app

    app.config["TESTING"] = True
    app.extensions["services"] = services
    return app.test_client()
