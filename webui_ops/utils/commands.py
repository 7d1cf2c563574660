"""Execution of external host tools (tar, mount, chown, crontab, ...)."""

import logging
import os
import shutil
import subprocess
from typing import List, Optional, Sequence

from webui_ops.exceptions import CommandFailed, PreconditionFailed
from webui_ops.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


class CommandRunner:
    """Run external commands, optionally with elevated privileges.

    Volume data under the Docker root is owned by root, so archive, extract,
    mount and ownership commands run through ``sudo`` unless the process is
    already root.
    """

    def __init__(self, use_sudo: Optional[bool] = None, timeout: Optional[float] = None):
        self.use_sudo = (os.geteuid() != 0) if use_sudo is None else use_sudo
        self.timeout = timeout

    def build(self, args: Sequence[str], privileged: bool = False) -> List[str]:
        """Return the argument vector that will actually be executed."""
        cmd = [str(a) for a in args]
        if privileged and self.use_sudo:
            cmd = ["sudo"] + cmd
        return cmd

    def run(
        self,
        args: Sequence[str],
        privileged: bool = False,
        check: bool = True,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """Run a command to completion and capture its output.

        Args:
            args: Program and arguments
            privileged: Run through sudo when not root
            check: Raise ``CommandFailed`` on a non-zero exit status
            input: Text passed on standard input

        Returns:
            The completed process with text stdout/stderr

        Raises:
            CommandFailed: Non-zero exit status and ``check`` is set
            PreconditionFailed: The program is not installed
        """
        cmd = self.build(args, privileged=privileged)
        logger.debug(f"Running: {sanitize_log_message(' '.join(cmd))}")

        try:
            result = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            raise PreconditionFailed(f"Required program not found: {cmd[0]}")
        except subprocess.TimeoutExpired:
            raise CommandFailed(cmd, -1, f"timed out after {self.timeout} seconds")

        if check and result.returncode != 0:
            raise CommandFailed(cmd, result.returncode, result.stderr or result.stdout or "")
        return result

    def which(self, program: str) -> Optional[str]:
        """Locate a program on PATH."""
        return shutil.which(program)
