"""Restore an archive over the live Open WebUI volume.

A restore walks a fixed sequence of states::

    IDLE -> CONFIRMED -> CONTAINER_STOPPED -> VOLUME_CLEARED -> EXTRACTED
         -> OWNERSHIP_FIXED -> CONTAINER_RESTARTED -> DONE

``CANCELLED`` is only reachable from ``IDLE``. Once the container has been
stopped there is no way back; any error moves the executor to ``FAILED``.
Clearing the volume happens before extraction, so an archive that fails to
extract leaves the volume empty. The archive is listed with ``tar tzf``
before anything destructive happens to keep that case rare.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional

from docker.errors import APIError

from webui_ops.exceptions import (
    CommandFailed,
    InvalidInput,
    PreconditionFailed,
    RestartExhausted,
    RestoreFailed,
)
from webui_ops.services.container_service import ContainerService
from webui_ops.services.volume_locator import VolumeLocator
from webui_ops.utils.commands import CommandRunner
from webui_ops.utils.retry import RetryPolicy
from webui_ops.utils.security import sanitize_log_message
from webui_ops.utils.validators import is_affirmative

logger = logging.getLogger(__name__)


class RestoreState(str, Enum):
    IDLE = "idle"
    CONFIRMED = "confirmed"
    CONTAINER_STOPPED = "container_stopped"
    VOLUME_CLEARED = "volume_cleared"
    EXTRACTED = "extracted"
    OWNERSHIP_FIXED = "ownership_fixed"
    CONTAINER_RESTARTED = "container_restarted"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


def default_restart_policy() -> RetryPolicy:
    """Wait 2s for the port to be released, start; on failure wait 5s and try once more."""
    return RetryPolicy(max_attempts=2, base_delay=2.0, backoff_factor=2.5, initial_delay=True)


class RestoreExecutor:
    """Run one restore attempt and remember which states it went through."""

    def __init__(
        self,
        containers: ContainerService,
        volumes: VolumeLocator,
        runner: CommandRunner,
        container_name: str = "open-webui",
        volume_name: str = "open-webui",
        volume_owner: str = "root:root",
        port: int = 3000,
        restart_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.containers = containers
        self.volumes = volumes
        self.runner = runner
        self.container_name = container_name
        self.volume_name = volume_name
        self.volume_owner = volume_owner
        self.port = port
        self.restart_policy = restart_policy or default_restart_policy()
        self.state = RestoreState.IDLE
        self.history: List[RestoreState] = [RestoreState.IDLE]

    def _advance(self, state: RestoreState) -> None:
        logger.debug(f"Restore state {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def restore(self, archive: Path, confirmation: str) -> RestoreState:
        """Restore ``archive`` into the volume if ``confirmation`` is affirmative.

        Returns:
            ``RestoreState.DONE`` or ``RestoreState.CANCELLED``

        Raises:
            InvalidInput: The archive does not exist or cannot be read
            RestoreFailed: Clearing or extracting failed
            RestartExhausted: The container did not come back up
        """
        if self.state is not RestoreState.IDLE:
            raise RuntimeError("A RestoreExecutor runs a single restore")

        archive = Path(archive)
        if not is_affirmative(confirmation):
            logger.info("Restore cancelled by operator")
            self._advance(RestoreState.CANCELLED)
            return self.state

        self._check_archive(archive)
        self._advance(RestoreState.CONFIRMED)

        try:
            was_running = self._stop_container()
            volume_path = self._clear_volume()
            self._extract(archive, volume_path)
            self._fix_ownership(volume_path)
            if was_running:
                self._restart_container()
            else:
                logger.info(f"{self.container_name} was not running before the restore, leaving it stopped")
        except Exception:
            self._advance(RestoreState.FAILED)
            raise

        self._advance(RestoreState.DONE)
        logger.info(f"Restore of {sanitize_log_message(archive.name)} completed")
        return self.state

    def _check_archive(self, archive: Path) -> None:
        if not archive.is_file():
            raise InvalidInput(f"Backup file not found: {archive}")
        try:
            self.runner.run(["tar", "tzf", str(archive)], privileged=True)
        except CommandFailed as e:
            raise InvalidInput(f"Backup archive {archive} is unreadable: {e.message}")

    def _stop_container(self) -> bool:
        was_running = self.containers.stop(self.container_name)
        if not was_running:
            logger.info(f"{self.container_name} is not running, nothing to stop")
        self._advance(RestoreState.CONTAINER_STOPPED)
        return was_running

    def _clear_volume(self) -> Path:
        try:
            volume_path = self.volumes.ensure(self.volume_name)
            logger.info(f"Clearing {volume_path}")
            self.runner.run(
                ["find", str(volume_path), "-mindepth", "1", "-delete"], privileged=True
            )
        except (CommandFailed, PreconditionFailed) as e:
            raise RestoreFailed(f"Failed to clear volume {self.volume_name}: {e.message}")
        self._advance(RestoreState.VOLUME_CLEARED)
        return volume_path

    def _extract(self, archive: Path, volume_path: Path) -> None:
        logger.info(f"Restoring from backup to {volume_path}")
        try:
            self.runner.run(["tar", "xzf", str(archive), "-C", str(volume_path)], privileged=True)
        except CommandFailed as e:
            raise RestoreFailed(
                f"Restore into {volume_path} failed: {e.message}",
                target_path=volume_path,
                hints=[f"The volume at {volume_path} is now empty; restore another backup"],
            )
        self._advance(RestoreState.EXTRACTED)

    def _fix_ownership(self, volume_path: Path) -> None:
        try:
            self.runner.run(["chown", "-R", self.volume_owner, str(volume_path)], privileged=True)
        except CommandFailed as e:
            raise RestoreFailed(
                f"Failed to set ownership of {volume_path}: {e.message}",
                target_path=volume_path,
            )
        self._advance(RestoreState.OWNERSHIP_FIXED)

    def _restart_container(self) -> None:
        def on_retry(error: Exception, attempt: int) -> None:
            logger.warning(
                f"Failed to start {self.container_name}. Waiting longer for port to be released..."
            )

        try:
            self.restart_policy.call(
                lambda: self.containers.start(self.container_name),
                exceptions=(APIError,),
                on_retry=on_retry,
                description=f"start {self.container_name}",
            )
        except Exception as e:
            raise RestartExhausted(
                f"Still unable to start {self.container_name}: {e}",
                hints=[
                    f"Check if any process is using port {self.port}: sudo lsof -i :{self.port}",
                    "Stop the process if needed",
                    f"Then manually start the container: docker start {self.container_name}",
                ],
            ) from e
        self._advance(RestoreState.CONTAINER_RESTARTED)
