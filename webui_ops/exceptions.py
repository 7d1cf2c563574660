"""Custom exceptions for webui-ops.

Every failure is terminal for the current invocation. The command line layer
catches ``WebUIOpsError``, prints the message together with any remediation
hints and exits with ``exit_code``.
"""

from typing import List, Optional


class WebUIOpsError(Exception):
    """Base class for all webui-ops failures."""

    exit_code = 1

    def __init__(self, message: str, hints: Optional[List[str]] = None):
        self.message = message
        self.hints = list(hints or [])
        super().__init__(message)


class PreconditionFailed(WebUIOpsError):
    """Raised when the container runtime, a container or a host tool is missing."""

    pass


class InvalidInput(WebUIOpsError):
    """Raised for malformed share addresses, menu selections or settings."""

    pass


class VolumeNotFound(WebUIOpsError):
    """Raised when a named volume is not registered with the container runtime."""

    def __init__(self, volume_name: str):
        self.volume_name = volume_name
        super().__init__(f"Volume '{volume_name}' not found")


class CommandFailed(WebUIOpsError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, command: List[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(
            f"Command '{' '.join(self.command)}' exited with status {returncode}{detail}"
        )


class BackupFailed(WebUIOpsError):
    """Raised when an archive could not be produced."""

    pass


class BackupVerificationFailed(BackupFailed):
    """Raised when an archive is missing or empty after creation.

    A partial file is always deleted before this is raised, so a zero-byte
    archive is never left behind looking like a successful backup.
    """

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Backup verification failed for {path}: {reason}")


class RemoteAccessFailed(WebUIOpsError):
    """Raised when mounting, writing to or reading from a remote share fails."""

    pass


class RestoreFailed(WebUIOpsError):
    """Raised when clearing the volume or extracting the archive fails."""

    def __init__(self, message: str, target_path=None, hints: Optional[List[str]] = None):
        self.target_path = target_path
        super().__init__(message, hints)


class ContainerOperationFailed(WebUIOpsError):
    """Raised when the Docker daemon refuses to stop or remove a container."""

    def __init__(self, container_name: str, action: str, detail: str):
        self.container_name = container_name
        self.action = action
        super().__init__(
            f"Failed to {action} {container_name}: {detail}",
            hints=[f"Check the container logs: docker logs {container_name}"],
        )


class RestartExhausted(WebUIOpsError):
    """Raised when a container does not come back up within its retry budget."""

    pass


class ServiceUnavailable(WebUIOpsError):
    """Raised when a dependent service fails its health check."""

    pass


class UpdateFailed(WebUIOpsError):
    """Raised when a container update cannot be completed."""

    pass
