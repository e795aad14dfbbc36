"""
Tests for chromevm.domain.providers.container_provider (ContainerProvider).
"""

from unittest.mock import MagicMock

import docker.errors
import pytest

from chromevm.domain.errors import BackendError, NotFoundError, ProvisionError
from chromevm.domain.providers.container_provider import ContainerProvider, connect_docker
from chromevm.domain.types import ProviderKind, VMState


@pytest.fixture
def provider(providers) -> ContainerProvider:
    return providers["container"]


def _register(provider, result):
    provider.registry.put(result.descriptor, owner=provider.name)
    return result.descriptor


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------

class TestAvailability:

    def test_available_when_ping_ok(self, provider):
        assert provider.is_available() is True

    def test_unavailable_without_client(self, registry, ports, test_settings):
        assert ContainerProvider(registry, ports, test_settings.container, client=None).is_available() is False

    def test_unavailable_when_ping_fails(self, provider, mock_docker):
        mock_docker.ping.side_effect = docker.errors.APIError("daemon gone")
        assert provider.is_available() is False

    def test_connect_docker_failure_returns_none(self, mocker):
        mocker.patch(
            "chromevm.domain.providers.container_provider.docker.DockerClient",
            side_effect=docker.errors.DockerException("no socket"),
        )
        assert connect_docker("unix:///nowhere.sock") is None


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

class TestCreate:

    def test_create_runs_container(self, provider, mock_docker, vm_request):
        result = provider.create(vm_request("vm-1", server_id="srv-local"))

        vm = result.descriptor
        assert result.degraded is False
        assert vm.provider == ProviderKind.CONTAINER
        assert vm.state == VMState.INITIALIZING
        assert vm.backend_handle == "cnt-abc123def456"
        assert vm.allocated_port == 6080
        assert vm.display_endpoint == "http://vms.test/vnc/vm-1"
        assert vm.control_endpoint == "http://vms.test/agent/vm-1"

        _, kwargs = mock_docker.containers.run.call_args
        assert kwargs["name"] == "chrome-vm-vm-1"
        assert kwargs["detach"] is True
        assert kwargs["ports"]["6080/tcp"] == 6080
        assert kwargs["labels"]["chromevm.vm.id"] == "vm-1"
        assert kwargs["labels"]["chromevm.server.id"] == "srv-local"

    def test_create_returns_readiness_plan(self, provider, vm_request, mock_session):
        result = provider.create(vm_request())

        plan = result.readiness
        assert plan is not None
        assert plan.max_attempts == 3
        assert plan.probe() is True
        url = mock_session.get.call_args.args[0]
        assert url == "http://localhost:49222/json/version"

    def test_probe_false_when_container_not_running(self, provider, vm_request, mock_container):
        plan = provider.create(vm_request()).readiness
        mock_container.status = "exited"
        assert plan.probe() is False

    def test_create_distinct_ports(self, provider, vm_request):
        a = provider.create(vm_request("vm-a")).descriptor
        b = provider.create(vm_request("vm-b")).descriptor
        assert a.allocated_port != b.allocated_port

    def test_run_failure_releases_port(self, provider, mock_docker, vm_request, ports):
        mock_docker.containers.run.side_effect = docker.errors.APIError("image not found")

        with pytest.raises(ProvisionError):
            provider.create(vm_request())

        assert ports.in_use() == set()

    def test_unpublished_port_removes_container(self, provider, mock_container, vm_request, ports):
        mock_container.attrs = {"NetworkSettings": {"Ports": {}}}

        with pytest.raises(ProvisionError):
            provider.create(vm_request())

        mock_container.remove.assert_called_once_with(force=True)
        assert ports.in_use() == set()

    def test_create_without_client(self, registry, ports, vm_request):
        with pytest.raises(ProvisionError):
            ContainerProvider(registry, ports, client=None).create(vm_request())


# ---------------------------------------------------------------------------
# Degrade
# ---------------------------------------------------------------------------

class TestDegrade:

    def test_degrade_allocates_port_and_schedules_ready(self, provider, vm_request, ports):
        result = provider.degrade(vm_request(), "Docker not available")

        vm = result.descriptor
        assert result.degraded is True
        assert vm.provider == ProviderKind.MOCK
        assert vm.state == VMState.INITIALIZING
        assert vm.backend_handle is None
        assert vm.allocated_port in ports.in_use()
        assert vm.last_error == "Docker not available"
        assert result.readiness.initial_delay == pytest.approx(0.05)
        assert result.readiness.probe() is True


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

class TestStatus:

    def test_running_keeps_state(self, provider, vm_request):
        _register(provider, provider.create(vm_request()))
        assert provider.get_status("vm-1").state == VMState.INITIALIZING

    def test_missing_container_is_error(self, provider, vm_request, mock_docker):
        _register(provider, provider.create(vm_request()))
        mock_docker.containers.get.side_effect = docker.errors.NotFound("gone")

        vm = provider.get_status("vm-1")

        assert vm.state == VMState.ERROR
        assert vm.last_error == "Container no longer exists"

    def test_exited_ready_container_is_stopped(self, provider, vm_request, mock_container, registry):
        _register(provider, provider.create(vm_request()))
        registry.update("vm-1", state=VMState.READY)
        mock_container.status = "exited"

        assert provider.get_status("vm-1").state == VMState.STOPPED

    def test_docker_error_returns_cached(self, provider, vm_request, mock_docker):
        _register(provider, provider.create(vm_request()))
        mock_docker.containers.get.side_effect = docker.errors.APIError("timeout")

        assert provider.get_status("vm-1").state == VMState.INITIALIZING

    def test_unknown_vm(self, provider):
        with pytest.raises(NotFoundError):
            provider.get_status("nope")


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

class TestDelete:

    def test_delete_stops_and_removes(self, provider, vm_request, mock_container, ports, registry):
        vm = _register(provider, provider.create(vm_request()))

        assert provider.delete("vm-1") is True

        mock_container.stop.assert_called_once_with(timeout=10)
        mock_container.remove.assert_called_once_with(force=True)
        assert vm.allocated_port not in ports.in_use()
        assert "vm-1" not in registry

    def test_delete_tolerates_missing_container(self, provider, vm_request, mock_docker, registry):
        _register(provider, provider.create(vm_request()))
        mock_docker.containers.get.side_effect = docker.errors.NotFound("gone")

        assert provider.delete("vm-1") is True
        assert "vm-1" not in registry

    def test_delete_docker_error_still_unregisters(self, provider, vm_request, mock_container, registry):
        _register(provider, provider.create(vm_request()))
        mock_container.stop.side_effect = docker.errors.APIError("busy")

        assert provider.delete("vm-1") is True
        assert "vm-1" not in registry

    def test_delete_mock_skips_docker(self, provider, vm_request, mock_docker):
        _register(provider, provider.degrade(vm_request(), "down"))

        provider.delete("vm-1")

        mock_docker.containers.get.assert_not_called()

    def test_delete_unknown(self, provider):
        with pytest.raises(NotFoundError):
            provider.delete("nope")


class TestPower:

    @pytest.mark.parametrize("action", ["start", "stop", "restart"])
    def test_power_is_noop(self, provider, vm_request, mock_container, action):
        before = _register(provider, provider.create(vm_request()))

        after = getattr(provider, action)("vm-1")

        assert after.state == before.state
        mock_container.stop.assert_not_called()
        mock_container.restart.assert_not_called()

    def test_stop_mock_is_noop(self, provider, vm_request):
        _register(provider, provider.degrade(vm_request(), "down"))
        assert provider.stop("vm-1").state == VMState.INITIALIZING

    def test_power_unknown_vm(self, provider):
        with pytest.raises(NotFoundError):
            provider.stop("nope")


class TestRemoveContainer:

    def test_docker_error_raises_backend_error(self, provider, mock_docker):
        mock_docker.containers.get.side_effect = docker.errors.APIError("boom")
        with pytest.raises(BackendError):
            provider._remove_container("cnt-abc123def456")

    def test_owned_by_other_provider(self, provider, registry):
        from chromevm.domain.types import VMDescriptor

        registry.put(
            VMDescriptor(id="vm-x", display_name="X", provider=ProviderKind.EDGE_WORKER, backend_handle="h"),
            owner="edge_worker",
        )
        with pytest.raises(NotFoundError):
            provider.delete("vm-x")
        assert "vm-x" in registry
