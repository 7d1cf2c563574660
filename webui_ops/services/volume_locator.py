"""Resolve named Docker volumes to their backing filesystem path."""

import logging
from pathlib import Path

import docker
from docker.errors import DockerException, NotFound

from webui_ops.exceptions import PreconditionFailed, VolumeNotFound
from webui_ops.utils.validators import validate_container_name

logger = logging.getLogger(__name__)


class VolumeLocator:
    """Read-only volume inspection, plus creation for restores."""

    def __init__(self, client: docker.DockerClient) -> None:
        self.client = client

    def _get(self, name: str):
        validate_container_name(name)
        try:
            return self.client.volumes.get(name)
        except NotFound:
            raise VolumeNotFound(name)
        except DockerException as e:
            raise PreconditionFailed(f"Docker error inspecting volume {name}: {e}")

    def locate(self, name: str) -> Path:
        """Return the mount point of volume ``name``.

        Raises:
            VolumeNotFound: If the volume is not registered with Docker
        """
        volume = self._get(name)
        mountpoint = volume.attrs.get("Mountpoint")
        if not mountpoint:
            raise VolumeNotFound(name)
        return Path(mountpoint)

    def exists(self, name: str) -> bool:
        try:
            self._get(name)
        except VolumeNotFound:
            return False
        return True

    def ensure(self, name: str) -> Path:
        """Create the volume when it does not exist and return its path."""
        if not self.exists(name):
            logger.info(f"Creating volume {name}")
            try:
                self.client.volumes.create(name=name)
            except DockerException as e:
                raise PreconditionFailed(f"Failed to create volume {name}: {e}")
        return self.locate(name)
