"""Container and image operations through the Docker SDK."""

import logging
from typing import Dict, Optional

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.models.containers import Container

from webui_ops.exceptions import ContainerOperationFailed, PreconditionFailed, UpdateFailed
from webui_ops.utils.validators import validate_container_name

logger = logging.getLogger(__name__)


class ContainerService:
    """Inspect, stop, start and recreate containers."""

    def __init__(self, client: Optional[docker.DockerClient] = None, docker_host: Optional[str] = None) -> None:
        if client is None:
            try:
                client = docker.DockerClient(base_url=docker_host or "unix:///var/run/docker.sock")
            except DockerException as e:
                raise PreconditionFailed(
                    f"Docker is not running or you don't have permissions: {e}"
                )
        self.client = client

    def ping(self) -> None:
        """Check that the Docker daemon answers.

        Raises:
            PreconditionFailed: If the daemon is unreachable
        """
        try:
            self.client.ping()
        except DockerException as e:
            raise PreconditionFailed(
                f"Docker is not running or you don't have permissions: {e}"
            )

    def get(self, name: str) -> Optional[Container]:
        """Return the container called ``name`` or None if it does not exist."""
        validate_container_name(name)
        try:
            return self.client.containers.get(name)
        except NotFound:
            return None
        except DockerException as e:
            raise PreconditionFailed(f"Docker error inspecting {name}: {e}")

    def exists(self, name: str) -> bool:
        return self.get(name) is not None

    def is_running(self, name: str) -> bool:
        container = self.get(name)
        if container is None:
            return False
        state = container.attrs.get("State", {})
        return bool(state.get("Running", container.status == "running"))

    def require(self, name: str) -> Container:
        """Return the container or raise ``PreconditionFailed`` naming it."""
        container = self.get(name)
        if container is None:
            raise PreconditionFailed(f"{name} container not found")
        return container

    def stop(self, name: str) -> bool:
        """Stop the container if it is running.

        Returns:
            True if the container was running and has been stopped

        Raises:
            ContainerOperationFailed: The daemon refused to stop it
        """
        container = self.get(name)
        if container is None or not self.is_running(name):
            return False
        logger.info(f"Stopping container {name}")
        try:
            container.stop()
        except APIError as e:
            raise ContainerOperationFailed(name, "stop", str(e))
        return True

    def start(self, name: str) -> None:
        """Start an existing container.

        Raises:
            docker.errors.APIError: The daemon refused to start it (port in use, ...)
            PreconditionFailed: The container no longer exists
        """
        container = self.get(name)
        if container is None:
            raise PreconditionFailed(f"{name} container not found")
        logger.info(f"Starting container {name}")
        container.start()

    def remove(self, name: str) -> None:
        """Stop and remove a container, ignoring one that does not exist.

        Raises:
            ContainerOperationFailed: The daemon refused to remove it
        """
        container = self.get(name)
        if container is None:
            return
        try:
            container.stop()
        except APIError as e:
            logger.warning(f"Failed to stop {name} before removal: {e}")
        try:
            container.remove()
        except NotFound:
            pass
        except APIError as e:
            raise ContainerOperationFailed(name, "remove", str(e))
        logger.info(f"Removed container {name}")

    def pull(self, image: str) -> None:
        """Pull ``image``.

        Raises:
            UpdateFailed: If the registry or daemon rejects the pull
        """
        logger.info(f"Pulling image {image}")
        try:
            self.client.images.pull(image)
        except (ImageNotFound, APIError) as e:
            raise UpdateFailed(f"Failed to pull image {image}: {e}")

    def run(self, image: str, name: str, **kwargs) -> Container:
        """Create and start a detached container.

        Raises:
            UpdateFailed: If the container cannot be created or started
        """
        validate_container_name(name)
        logger.info(f"Starting new container {name} from {image}")
        try:
            return self.client.containers.run(image, name=name, detach=True, **kwargs)
        except (ImageNotFound, APIError) as e:
            raise UpdateFailed(
                f"Failed to start container {name}: {e}",
                hints=[f"Check the container logs: docker logs {name}"],
            )

    def state(self, name: str) -> Dict:
        """Summarise the container state for diagnostics."""
        container = self.get(name)
        if container is None:
            return {"error": "Container not found", "running": False}
        state = container.attrs.get("State", {})
        return {
            "status": state.get("Status"),
            "running": state.get("Running", False),
            "exit_code": state.get("ExitCode"),
            "error": state.get("Error", ""),
        }
