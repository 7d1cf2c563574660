"""Recreate the Open WebUI and Ollama containers from their latest images."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx
from docker.types import DeviceRequest

from webui_ops.config import Settings
from webui_ops.exceptions import CommandFailed, ServiceUnavailable, UpdateFailed
from webui_ops.services.archive_writer import BackupRecord
from webui_ops.services.backup_service import BackupService
from webui_ops.services.container_service import ContainerService
from webui_ops.services.health import HealthChecker
from webui_ops.utils.commands import CommandRunner

logger = logging.getLogger(__name__)

OLLAMA_DATA_TARGET = "/root/.ollama"
OLLAMA_PORT = 11434
WEBUI_INTERNAL_PORT = 8080


class NetworkMode(str, Enum):
    BRIDGE = "bridge"  # published port, Ollama reached through host.docker.internal
    HOST = "host"  # host networking, Ollama reached on localhost


class OllamaMode(str, Enum):
    CONTAINER = "container"
    LOCAL = "local"


@dataclass(frozen=True)
class UpdateResult:
    container: str
    mode: str
    gpu: bool
    url: str
    backup: Optional[BackupRecord] = None


class UpdateEngine:
    """Pull-and-recreate updates with a data backup taken first."""

    def __init__(
        self,
        settings: Settings,
        containers: ContainerService,
        backups: BackupService,
        runner: CommandRunner,
        ollama_health: Optional[HealthChecker] = None,
        startup_delay: float = 5.0,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.settings = settings
        self.containers = containers
        self.backups = backups
        self.runner = runner
        self.ollama_health = ollama_health or HealthChecker(settings.ollama_version_url)
        self.startup_delay = startup_delay
        self.sleep = sleep

    def gpu_available(self) -> bool:
        return self.runner.which("nvidia-smi") is not None

    @staticmethod
    def _gpu_requests() -> list:
        return [DeviceRequest(count=-1, capabilities=[["gpu"]])]

    def _ollama_port(self) -> int:
        return httpx.URL(self.settings.ollama_url).port or OLLAMA_PORT

    def webui_run_options(self, network: NetworkMode, gpu: bool) -> Dict[str, Any]:
        """Keyword arguments for ``containers.run`` of the Open WebUI container."""
        settings = self.settings
        options: Dict[str, Any] = {
            "volumes": {settings.webui_volume: {"bind": settings.webui_data_target, "mode": "rw"}},
            "restart_policy": {"Name": "always"},
        }
        if network is NetworkMode.HOST:
            options["network_mode"] = "host"
            options["environment"] = {
                "OLLAMA_BASE_URL": f"http://localhost:{self._ollama_port()}",
                "PORT": str(settings.webui_port),
            }
        else:
            options["ports"] = {f"{WEBUI_INTERNAL_PORT}/tcp": settings.webui_port}
            options["extra_hosts"] = {"host.docker.internal": "host-gateway"}
            options["environment"] = {
                "OLLAMA_BASE_URL": f"http://host.docker.internal:{self._ollama_port()}",
            }
        if gpu:
            options["device_requests"] = self._gpu_requests()
        return options

    def update_open_webui(self, network: NetworkMode = NetworkMode.BRIDGE) -> UpdateResult:
        """Back up the data volume, then replace the container with the latest image.

        Raises:
            PreconditionFailed: Docker or the container is missing
            ServiceUnavailable: Ollama is not answering
            UpdateFailed: Pull, start or post-start check failed
        """
        settings = self.settings
        network = NetworkMode(network)
        name = settings.webui_container

        self.containers.ping()
        self.containers.require(name)

        if not self.ollama_health.is_up():
            raise ServiceUnavailable(
                f"Ollama is not running on {settings.ollama_url}",
                hints=["Please ensure Ollama is running before updating Open WebUI"],
            )

        gpu = self.gpu_available()
        if gpu:
            logger.info("GPU support detected, enabling CUDA")
        else:
            logger.warning("NVIDIA drivers not found. Continuing without GPU support...")

        record = self.backups.backup_local()

        self.containers.remove(name)
        self.containers.pull(settings.webui_image)
        self.containers.run(settings.webui_image, name, **self.webui_run_options(network, gpu))

        logger.info("Waiting for service to start...")
        self.sleep(self.startup_delay)

        if not self.containers.is_running(name):
            state = self.containers.state(name)
            raise UpdateFailed(
                f"Container failed to start properly "
                f"(status: {state.get('status')}, exit code: {state.get('exit_code')})",
                hints=[
                    f"Please check docker logs for more information: docker logs {name}",
                    f"Your data is safely backed up in {record.destination_path}",
                ],
            )

        logger.info(f"{name} updated ({network.value} network, gpu={gpu})")
        return UpdateResult(
            container=name,
            mode=network.value,
            gpu=gpu,
            url=f"http://localhost:{settings.webui_port}",
            backup=record,
        )

    def detect_ollama_mode(self) -> OllamaMode:
        """Container mode when an Ollama container exists (running or not), else local."""
        if self.containers.exists(self.settings.ollama_container):
            return OllamaMode.CONTAINER
        return OllamaMode.LOCAL

    def update_ollama(self) -> UpdateResult:
        """Update Ollama in whichever way it is installed, then wait for its API.

        Raises:
            UpdateFailed: The installer, pull or start failed
            ServiceUnavailable: The API did not come back
        """
        settings = self.settings
        self.containers.ping()
        mode = self.detect_ollama_mode()
        gpu = False

        if mode is OllamaMode.LOCAL:
            logger.info("Found local Ollama installation, running the installer")
            try:
                self.runner.run(["sh", "-c", f"curl -fsSL {settings.ollama_install_url} | sh"])
            except CommandFailed as e:
                raise UpdateFailed(f"Failed to download or run Ollama installer: {e.message}")
        else:
            logger.info("Found containerized Ollama")
            name = settings.ollama_container
            self.containers.remove(name)
            self.containers.pull(settings.ollama_image)
            gpu = self.gpu_available()
            options: Dict[str, Any] = {
                "volumes": {settings.ollama_volume: {"bind": OLLAMA_DATA_TARGET, "mode": "rw"}},
                "ports": {f"{OLLAMA_PORT}/tcp": self._ollama_port()},
                "restart_policy": {"Name": "always"},
            }
            if gpu:
                options["device_requests"] = self._gpu_requests()
            self.containers.run(settings.ollama_image, name, **options)

        logger.info("Waiting for Ollama to start...")
        try:
            self.ollama_health.wait_until_up()
        except ServiceUnavailable as e:
            raise ServiceUnavailable(f"Ollama failed to respond after update: {e.message}")

        return UpdateResult(
            container=settings.ollama_container,
            mode=mode.value,
            gpu=gpu,
            url=settings.ollama_url,
        )
