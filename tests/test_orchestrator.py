"""
Tests for chromevm.services.orchestrator (Orchestrator).
"""

import threading
import time

import docker.errors
import pytest
import requests

from chromevm.domain.errors import FatalAllocationError, NotFoundError, UnsupportedOperationError
from chromevm.domain.ports import PortAllocator
from chromevm.domain.providers.factory import build_providers
from chromevm.domain.registry import VMRegistry
from chromevm.domain.types import ProviderKind, VMState
from chromevm.observability import VM_CREATIONS
from chromevm.services.orchestrator import Orchestrator

from conftest import make_response, wait_for


def _state(orchestrator, vm_id):
    vm = orchestrator.registry.get(vm_id)
    return vm.state if vm else None


# ---------------------------------------------------------------------------
# Create / get
# ---------------------------------------------------------------------------

class TestCreateAndGet:

    def test_create_then_get(self, orchestrator):
        created = orchestrator.create_vm("vm-1", "Test VM")

        fetched = orchestrator.get_vm("vm-1")
        assert fetched.id == created.id == "vm-1"
        assert fetched.display_name == "Test VM"
        assert fetched.state in (VMState.INITIALIZING, VMState.READY)

    def test_default_server_routes_to_container(self, orchestrator, mock_docker):
        vm = orchestrator.create_vm("vm-1", "Test VM")

        assert vm.provider == ProviderKind.CONTAINER
        assert orchestrator.registry.owner("vm-1") == "container"
        mock_docker.containers.run.assert_called_once()

    def test_container_becomes_ready(self, orchestrator):
        orchestrator.create_vm("vm-1", "Test VM")
        assert wait_for(lambda: _state(orchestrator, "vm-1") == VMState.READY)

    def test_container_probe_failure_marks_error(self, orchestrator, mock_session):
        mock_session.get.return_value = make_response(500)

        orchestrator.create_vm("vm-1", "Test VM")

        assert wait_for(lambda: _state(orchestrator, "vm-1") == VMState.ERROR)
        assert "failed to become ready" in orchestrator.get_vm("vm-1").last_error

    def test_get_unknown_returns_none(self, orchestrator):
        assert orchestrator.get_vm("nope") is None

    def test_list_vms(self, orchestrator):
        orchestrator.create_vm("vm-1", "One")
        orchestrator.create_vm("vm-2", "Two", server_id="srv-rw")

        assert {vm.id for vm in orchestrator.list_vms()} == {"vm-1", "vm-2"}

    def test_unknown_server_uses_default(self, orchestrator):
        vm = orchestrator.create_vm("vm-1", "Test VM", server_id="srv-unknown")
        assert vm.provider == ProviderKind.CONTAINER

    def test_creation_metric(self, orchestrator, backend):
        backend.on("POST", "/vms", make_response(201, {"id": "rw-1", "status": "running"}))
        counter = VM_CREATIONS.labels(provider="platform_proxy", outcome="ok")
        before = counter._value.get()

        orchestrator.create_vm("vm-1", "Test VM", server_id="srv-rw")

        assert counter._value.get() == before + 1


# ---------------------------------------------------------------------------
# Edge worker scenario
# ---------------------------------------------------------------------------

class TestEdgeWorkerScenario:

    def test_initializing_then_ready(self, orchestrator, backend):
        """Edge VM starts initializing and turns ready once the worker says so."""
        backend.on("POST", "/vms", make_response(201, {"vm": {"id": "edge-1", "status": "creating"}}))
        backend.on(
            "GET", "/vms/edge-1/status",
            make_response(200, {"status": "initializing"}),
            make_response(200, {"status": "running"}),
        )

        created = orchestrator.create_vm("vm-1", "Test", server_id="srv-cf")

        assert created.provider == ProviderKind.EDGE_WORKER
        assert created.state == VMState.INITIALIZING

        assert wait_for(lambda: _state(orchestrator, "vm-1") == VMState.READY)
        fetched = orchestrator.get_vm("vm-1")
        assert fetched.state == VMState.READY
        assert fetched.id == created.id
        assert fetched.display_endpoint == created.display_endpoint

    def test_never_ready_marks_error(self, orchestrator, backend):
        backend.on("POST", "/vms", make_response(201, {"vm": {"id": "edge-1"}}))
        backend.on("GET", "/vms/edge-1/status", make_response(200, {"status": "creating"}))

        orchestrator.create_vm("vm-1", "Test", server_id="srv-cf")

        assert wait_for(lambda: _state(orchestrator, "vm-1") == VMState.ERROR)


# ---------------------------------------------------------------------------
# Degrade to mock
# ---------------------------------------------------------------------------

class TestFallback:

    def test_remote_timeout_yields_mock(self, orchestrator, backend):
        backend.on("POST", "/vms", requests.Timeout("read timed out"))

        vm = orchestrator.create_vm("vm-1", "Test", server_id="srv-cf")

        assert vm.provider == ProviderKind.MOCK
        assert vm.state == VMState.READY
        assert vm.state != VMState.ERROR
        assert vm.last_error
        assert vm.backend_handle is None
        assert orchestrator.registry.owner("vm-1") == "edge_worker"

    def test_remote_http_error_yields_mock(self, orchestrator, backend):
        backend.on("POST", "/instances", make_response(500, {"error": "backend exploded"}))

        vm = orchestrator.create_vm("vm-1", "Test", server_id="srv-gcp")

        assert vm.provider == ProviderKind.MOCK
        assert "500" in vm.last_error

    def test_docker_unavailable_yields_delayed_mock(self, orchestrator, mock_docker, ports):
        mock_docker.ping.side_effect = docker.errors.APIError("daemon down")

        vm = orchestrator.create_vm("vm-1", "Test")

        assert vm.provider == ProviderKind.MOCK
        assert vm.state == VMState.INITIALIZING
        assert vm.allocated_port in ports.in_use()
        assert "not available" in vm.last_error
        mock_docker.containers.run.assert_not_called()
        assert wait_for(lambda: _state(orchestrator, "vm-1") == VMState.READY)

    def test_docker_run_failure_yields_mock(self, orchestrator, mock_docker):
        mock_docker.containers.run.side_effect = docker.errors.APIError("pull access denied")

        vm = orchestrator.create_vm("vm-1", "Test")

        assert vm.provider == ProviderKind.MOCK
        assert "pull access denied" in vm.last_error

    def test_gce_without_credentials_yields_mock(self, test_settings, registry, ports, mock_session):
        providers = build_providers(
            test_settings, registry, ports,
            session=mock_session,
            token_providers={"cloud_compute": lambda: None},
            connect=False,
        )
        orch = Orchestrator(providers, registry, ports, test_settings)

        vm = orch.create_vm("vm-1", "Test", server_id="srv-gcp")

        assert vm.provider == ProviderKind.MOCK
        assert vm.state == VMState.READY
        orch.shutdown()

    def test_port_exhaustion_is_fatal(self, test_settings, mock_docker, mock_session):
        registry = VMRegistry()
        ports = PortAllocator(base=7000, max_port=7000)
        providers = build_providers(
            test_settings, registry, ports, docker_client=mock_docker, session=mock_session, connect=False
        )
        orch = Orchestrator(providers, registry, ports, test_settings)

        orch.create_vm("vm-1", "One")
        with pytest.raises(FatalAllocationError):
            orch.create_vm("vm-2", "Two")
        assert "vm-2" not in registry
        orch.shutdown()


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

class TestDelete:

    def test_double_delete(self, orchestrator):
        orchestrator.create_vm("vm-1", "Test")

        assert orchestrator.delete_vm("vm-1") is True
        with pytest.raises(NotFoundError):
            orchestrator.delete_vm("vm-1")

    def test_delete_missing(self, orchestrator):
        with pytest.raises(NotFoundError) as exc_info:
            orchestrator.delete_vm("missing-id")
        assert exc_info.value.vm_id == "missing-id"

    def test_delete_releases_port(self, orchestrator, ports):
        vm = orchestrator.create_vm("vm-1", "Test")
        orchestrator.delete_vm("vm-1")
        assert vm.allocated_port not in ports.in_use()

    def test_delete_cancels_readiness(self, orchestrator, mock_docker):
        """A VM deleted while its poll is pending is never resurrected."""
        mock_docker.ping.side_effect = docker.errors.APIError("down")
        orchestrator.create_vm("vm-1", "Test")

        orchestrator.delete_vm("vm-1")
        time.sleep(0.15)

        assert "vm-1" not in orchestrator.registry

    def test_recreate_replaces_previous(self, orchestrator, mock_container, ports):
        first = orchestrator.create_vm("vm-1", "First")
        second = orchestrator.create_vm("vm-1", "Second")

        assert len(orchestrator.registry) == 1
        assert orchestrator.get_vm("vm-1").display_name == "Second"
        mock_container.remove.assert_called_with(force=True)
        assert first.allocated_port not in ports.in_use()
        assert second.allocated_port in ports.in_use()


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

class TestConcurrency:

    def test_concurrent_creates(self, orchestrator):
        """N parallel creates give N entries with N distinct ports."""
        n = 20
        errors = []

        def create(i):
            try:
                orchestrator.create_vm(f"vm-{i}", f"VM {i}")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=create, args=(i,)) for i in range(n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        vms = orchestrator.list_vms()
        assert len(vms) == n
        live_ports = [vm.allocated_port for vm in vms]
        assert len(set(live_ports)) == n

    def test_mixed_providers_never_share_ports(self, orchestrator, mock_docker):
        mock_docker.ping.side_effect = [True, docker.errors.APIError("down"), True]
        orchestrator.create_vm("a", "A")
        orchestrator.create_vm("b", "B")
        orchestrator.create_vm("c", "C")

        ports = [vm.allocated_port for vm in orchestrator.list_vms() if vm.allocated_port is not None]
        assert len(ports) == 3
        assert len(set(ports)) == 3


# ---------------------------------------------------------------------------
# Lifecycle operations
# ---------------------------------------------------------------------------

class TestLifecycle:

    def test_stop_mock(self, orchestrator, backend):
        backend.on("POST", "/vms", requests.ConnectionError("down"))
        orchestrator.create_vm("vm-1", "Test", server_id="srv-cf")

        assert orchestrator.stop_vm("vm-1").state == VMState.STOPPED
        assert orchestrator.start_vm("vm-1").state == VMState.STOPPED

    def test_power_unknown_vm(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.restart_vm("nope")

    def test_provider_health(self, orchestrator, mock_docker):
        mock_docker.ping.side_effect = docker.errors.APIError("down")
        health = orchestrator.provider_health()
        assert health == {
            "container": False,
            "edge_worker": True,
            "cloud_compute": True,
            "platform_proxy": True,
        }

    def test_shutdown_clears_registry(self, orchestrator):
        orchestrator.create_vm("vm-1", "Test")
        orchestrator.shutdown()
        assert len(orchestrator.registry) == 0

    def test_requires_providers(self, registry, ports):
        with pytest.raises(ValueError):
            Orchestrator({}, registry, ports)


class TestRemoteRefreshAndPower:

    def _platform_vm(self, orchestrator, backend):
        backend.on("POST", "/vms", make_response(201, {"id": "rw-1", "status": "running"}))
        return orchestrator.create_vm("vm-1", "Test VM", server_id="srv-rw")

    def test_malformed_status_keeps_cached_descriptor(self, orchestrator, backend):
        self._platform_vm(orchestrator, backend)
        backend.on("GET", "/vms/rw-1/status", make_response(200, {"vm": "gone"}))

        vm = orchestrator.get_vm("vm-1")

        assert vm is not None
        assert vm.state == VMState.READY

    def test_start_after_stop_reaches_backend(self, orchestrator, backend):
        self._platform_vm(orchestrator, backend)
        backend.on("POST", "/vms/rw-1/stop", make_response(200, {}))
        backend.on("POST", "/vms/rw-1/start", make_response(200, {}))

        orchestrator.stop_vm("vm-1")
        vm = orchestrator.start_vm("vm-1")

        assert len(backend.calls_to("POST", "/vms/rw-1/start")) == 1
        assert vm.state == VMState.STOPPED


class TestWorkerResources:

    def test_delegates_to_edge_worker(self, orchestrator, backend):
        backend.on("POST", "/vms", make_response(201, {"vm": {"id": "edge-1"}}))
        backend.on("GET", "/vms/edge-1/events", make_response(200, {"events": [{"type": "boot"}]}))
        orchestrator.create_vm("vm-1", "Edge", server_id="srv-cf")

        assert orchestrator.worker_call("vm-1", "events") == {"events": [{"type": "boot"}]}

    def test_mock_edge_vm_returns_empty(self, orchestrator, backend):
        backend.on("POST", "/vms", requests.ConnectionError("down"))
        orchestrator.create_vm("vm-1", "Edge", server_id="srv-cf")

        assert orchestrator.worker_call("vm-1", "logs") == {"logs": []}

    def test_container_vm_unsupported(self, orchestrator):
        orchestrator.create_vm("vm-1", "Local")
        with pytest.raises(UnsupportedOperationError):
            orchestrator.worker_call("vm-1", "scripts")

    def test_unknown_vm(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.worker_call("nope", "metrics")
