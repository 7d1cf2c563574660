"""Tests for container updates (webui_ops/services/update_engine.py)."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, NotFound

from webui_ops.exceptions import ContainerOperationFailed, PreconditionFailed, ServiceUnavailable, UpdateFailed
from webui_ops.services.archive_writer import ArchiveWriter
from webui_ops.services.backup_service import BackupService
from webui_ops.services.container_service import ContainerService
from webui_ops.services.health import HealthChecker
from webui_ops.services.update_engine import NetworkMode, OllamaMode, UpdateEngine
from webui_ops.services.volume_locator import VolumeLocator
from tests.conftest import make_container


@pytest.fixture
def ollama_health():
    health = MagicMock(spec=HealthChecker)
    health.is_up.return_value = True
    health.wait_until_up.return_value = '{"version":"0.5.7"}'
    return health


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def engine(settings, docker_client, runner, ollama_health, sleeps):
    writer = ArchiveWriter(runner, owner="1000:1000", clock=lambda: datetime(2025, 3, 1, 12, 0, 0))
    backups = BackupService(settings, VolumeLocator(docker_client), writer, runner)
    return UpdateEngine(
        settings,
        ContainerService(client=docker_client),
        backups,
        runner,
        ollama_health=ollama_health,
        sleep=sleeps.append,
    )


@pytest.fixture
def starts_container(docker_client, webui_container):
    """containers.run brings the recreated container up."""

    def run(image, name, **kwargs):
        webui_container.attrs["State"]["Running"] = True
        return webui_container

    docker_client.containers.run.side_effect = run
    return docker_client.containers.run


class TestUpdateOpenWebUI:
    """Test suite for UpdateEngine.update_open_webui."""

    def test_backup_taken_before_container_removed(self, engine, settings, webui_container, starts_container):
        """Test the data volume is archived before the old container goes away."""
        archives_at_removal = []
        webui_container.remove.side_effect = lambda: archives_at_removal.extend(
            settings.local_backup_dir.glob("*.tar.gz")
        )

        result = engine.update_open_webui()

        assert len(archives_at_removal) == 1
        assert result.backup.destination_path == archives_at_removal[0]

    def test_recreates_with_latest_image(self, engine, docker_client, starts_container, sleeps):
        """Test pull then run with the volume, port and restart policy."""
        result = engine.update_open_webui(NetworkMode.BRIDGE)

        docker_client.images.pull.assert_called_once_with("ghcr.io/open-webui/open-webui:cuda")
        args, kwargs = starts_container.call_args
        assert args == ("ghcr.io/open-webui/open-webui:cuda",)
        assert kwargs["name"] == "open-webui"
        assert kwargs["detach"] is True
        assert kwargs["volumes"] == {"open-webui": {"bind": "/app/backend/data", "mode": "rw"}}
        assert kwargs["ports"] == {"8080/tcp": 3000}
        assert kwargs["extra_hosts"] == {"host.docker.internal": "host-gateway"}
        assert kwargs["environment"]["OLLAMA_BASE_URL"] == "http://host.docker.internal:11434"
        assert kwargs["restart_policy"] == {"Name": "always"}
        assert sleeps == [5.0]
        assert result.url == "http://localhost:3000"
        assert result.mode == "bridge"

    def test_host_network(self, engine, starts_container):
        """Test host networking reaches Ollama on localhost and publishes no ports."""
        engine.update_open_webui(NetworkMode.HOST)

        kwargs = starts_container.call_args.kwargs
        assert kwargs["network_mode"] == "host"
        assert "ports" not in kwargs
        assert kwargs["environment"] == {"OLLAMA_BASE_URL": "http://localhost:11434", "PORT": "3000"}

    def test_gpu_detection(self, engine, runner, starts_container):
        """Test GPU devices are requested only when nvidia-smi is present."""
        assert engine.update_open_webui().gpu is True
        assert starts_container.call_args.kwargs["device_requests"][0]["Capabilities"] == [["gpu"]]

        runner.missing_tools.add("nvidia-smi")
        assert "device_requests" not in engine.webui_run_options(NetworkMode.BRIDGE, engine.gpu_available())

    def test_ollama_down_aborts_before_changes(self, engine, ollama_health, webui_container, settings, runner):
        """Test Open WebUI is left alone when Ollama is not answering."""
        ollama_health.is_up.return_value = False

        with pytest.raises(ServiceUnavailable, match="Ollama is not running"):
            engine.update_open_webui()

        webui_container.remove.assert_not_called()
        assert runner.calls == []

    def test_missing_container(self, engine, docker_client):
        """Test updating without an existing container fails the precondition."""
        docker_client.containers.get.side_effect = NotFound("gone")

        with pytest.raises(PreconditionFailed, match="open-webui container not found"):
            engine.update_open_webui()

    def test_container_not_running_after_start(self, engine, docker_client):
        """Test a container that exits right away reports logs and backup location."""
        docker_client.containers.run.return_value = MagicMock()

        with pytest.raises(UpdateFailed) as exc_info:
            engine.update_open_webui()

        assert "status: exited, exit code: 137" in exc_info.value.message
        hints = " ".join(exc_info.value.hints)
        assert "docker logs open-webui" in hints
        assert "open-webui_backup_20250301_120000.tar.gz" in hints

    def test_remove_refused(self, engine, webui_container, docker_client):
        """Test a daemon refusing to remove the old container is reported before pulling."""
        webui_container.remove.side_effect = APIError("removal already in progress")

        with pytest.raises(ContainerOperationFailed, match="Failed to remove open-webui") as exc_info:
            engine.update_open_webui()

        assert "docker logs open-webui" in exc_info.value.hints[0]
        docker_client.images.pull.assert_not_called()

    def test_pull_failure(self, engine, docker_client):
        docker_client.images.pull.side_effect = APIError("registry unreachable")

        with pytest.raises(UpdateFailed, match="Failed to pull"):
            engine.update_open_webui()


class TestUpdateOllama:
    """Test suite for UpdateEngine.update_ollama."""

    def test_local_install_runs_installer(self, engine, runner, ollama_health):
        """Test a host without an Ollama container runs the install script."""
        result = engine.update_ollama()

        assert result.mode == OllamaMode.LOCAL.value
        assert runner.commands == [["sh", "-c", "curl -fsSL https://ollama.com/install.sh | sh"]]
        ollama_health.wait_until_up.assert_called_once()

    def test_installer_failure(self, engine, runner):
        runner.fail(["sh"], stderr="curl: (6) Could not resolve host")

        with pytest.raises(UpdateFailed, match="Ollama installer"):
            engine.update_ollama()

    def test_container_mode(self, engine, docker_client, webui_container, runner):
        """Test an existing Ollama container is recreated from the latest image."""
        ollama = make_container(running=False)

        def get_container(name):
            return {"open-webui": webui_container, "ollama": ollama}[name]

        docker_client.containers.get.side_effect = get_container
        runner.missing_tools.add("nvidia-smi")

        result = engine.update_ollama()

        assert result.mode == OllamaMode.CONTAINER.value
        assert result.gpu is False
        ollama.remove.assert_called_once()
        docker_client.images.pull.assert_called_once_with("ollama/ollama")
        kwargs = docker_client.containers.run.call_args.kwargs
        assert kwargs["volumes"] == {"ollama": {"bind": "/root/.ollama", "mode": "rw"}}
        assert kwargs["ports"] == {"11434/tcp": 11434}
        assert "device_requests" not in kwargs
        assert runner.commands == []

    def test_api_not_back(self, engine, ollama_health):
        """Test an API that never answers after the update is reported."""
        ollama_health.wait_until_up.side_effect = ServiceUnavailable("no answer after 5 attempts")

        with pytest.raises(ServiceUnavailable, match="failed to respond after update"):
            engine.update_ollama()

