"""Host and runtime checks run before any wizard step."""

import logging
from typing import Dict, List

from webui_ops.exceptions import PreconditionFailed
from webui_ops.services.container_service import ContainerService
from webui_ops.utils.commands import CommandRunner

logger = logging.getLogger(__name__)

# program -> package that provides it
SMB_TOOLS: Dict[str, str] = {"mount.cifs": "cifs-utils"}
SCHEDULE_TOOLS: Dict[str, str] = {"crontab": "cron"}


class PreconditionChecker:
    def __init__(self, containers: ContainerService, runner: CommandRunner) -> None:
        self.containers = containers
        self.runner = runner

    def check_docker(self) -> None:
        self.containers.ping()

    def check_container(self, name: str) -> None:
        self.containers.require(name)

    def check_tools(self, tools: Dict[str, str]) -> None:
        """Require host programs, naming the packages that provide missing ones."""
        missing: List[str] = [pkg for prog, pkg in tools.items() if not self.runner.which(prog)]
        if missing:
            raise PreconditionFailed(
                f"Missing required dependencies: {' '.join(missing)}",
                hints=[f"Install them first: sudo apt-get install -y {' '.join(missing)}"],
            )
