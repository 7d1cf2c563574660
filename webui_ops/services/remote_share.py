"""SMB share mounting, write probing and archive transfer.

A share is only ever mounted inside ``RemoteShare.mounted()``; leaving that
block by any route unmounts it and removes the mount point directory.
"""

import logging
import os
import secrets
import shutil
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterator, Optional

from pydantic import BaseModel, Field, ValidationError

from webui_ops.exceptions import CommandFailed, InvalidInput, RemoteAccessFailed
from webui_ops.services.archive_writer import BackupRecord
from webui_ops.utils.commands import CommandRunner
from webui_ops.utils.security import sanitize_log_message
from webui_ops.utils.validators import validate_smb_path

logger = logging.getLogger(__name__)

PROBE_PREFIX = ".webui-ops-probe-"
MOUNT_OPTIONS = "iocharset=utf8,file_mode=0777,dir_mode=0777"


class SmbCredentials(BaseModel):
    """Login for an SMB share, stored as a key=value credentials file."""

    username: str = Field(min_length=1)
    password: str = Field(repr=False)
    domain: Optional[str] = None

    def render(self) -> str:
        lines = [f"username={self.username}", f"password={self.password}"]
        if self.domain:
            lines.append(f"domain={self.domain}")
        return "\n".join(lines) + "\n"

    @classmethod
    def parse(cls, text: str) -> "SmbCredentials":
        """Parse credentials file content.

        Raises:
            InvalidInput: If username or password is missing
        """
        values = {}
        for line in text.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            values[key.strip()] = value.strip()
        try:
            return cls(
                username=values.get("username", ""),
                password=values["password"],
                domain=values.get("domain") or None,
            )
        except (KeyError, ValidationError):
            raise InvalidInput("Credentials file must contain username and password")


def write_credentials_file(runner: CommandRunner, path: Path, credentials: SmbCredentials) -> None:
    """Write ``credentials`` to ``path`` readable by its owner only.

    The file is created with mode 0600 before any secret is written to it.
    """
    runner.run(["install", "-m", "600", "/dev/null", str(path)], privileged=True)
    runner.run(["tee", str(path)], privileged=True, input=credentials.render())
    logger.info(f"Stored SMB credentials in {sanitize_log_message(str(path))}")


def load_credentials_file(runner: CommandRunner, path: Path) -> SmbCredentials:
    """Read a credentials file written by ``write_credentials_file``."""
    try:
        result = runner.run(["cat", str(path)], privileged=True)
    except CommandFailed:
        raise RemoteAccessFailed(
            f"SMB credentials file not readable: {path}",
            hints=["Run the interactive backup wizard once to store share credentials"],
        )
    return SmbCredentials.parse(result.stdout)


@dataclass(frozen=True)
class MountHandle:
    """A live mount. Valid only inside ``RemoteShare.mounted()``."""

    share_address: str
    mount_point: Path
    credentials_file: Path


class RemoteShare:
    """One SMB share used as a backup destination or restore source."""

    def __init__(
        self,
        share_address: str,
        credentials_file: Path,
        mount_point: Path,
        runner: CommandRunner,
        backup_subdir: str = "open-webui-backups",
        owner: Optional[str] = None,
    ) -> None:
        self.share_address = validate_smb_path(share_address)
        self.credentials_file = Path(credentials_file)
        self.mount_point = Path(mount_point)
        self.runner = runner
        self.backup_subdir = backup_subdir
        self.owner = owner or f"{os.getuid()}:{os.getgid()}"

    @contextmanager
    def mounted(self) -> Iterator[MountHandle]:
        """Mount the share read-write for the duration of the block.

        Raises:
            RemoteAccessFailed: If the share cannot be mounted
        """
        mount_point = self.mount_point
        is_mounted = False
        try:
            try:
                self.runner.run(["mkdir", "-p", str(mount_point)], privileged=True)
            except CommandFailed as e:
                raise RemoteAccessFailed(
                    f"Failed to prepare mount point {mount_point}: {e.message}"
                )

            if os.path.ismount(mount_point):
                logger.warning(f"{mount_point} is already mounted, unmounting it first")
                try:
                    self.runner.run(["umount", str(mount_point)], privileged=True)
                except CommandFailed as e:
                    raise RemoteAccessFailed(
                        f"Failed to unmount existing share at {mount_point}: {e.message}"
                    )

            logger.info(f"Mounting {sanitize_log_message(self.share_address)} at {mount_point}")
            try:
                self.runner.run(
                    [
                        "mount", "-t", "cifs", self.share_address, str(mount_point),
                        "-o", f"rw,credentials={self.credentials_file},{MOUNT_OPTIONS}",
                    ],
                    privileged=True,
                )
            except CommandFailed as e:
                raise RemoteAccessFailed(
                    f"Failed to mount SMB share {self.share_address}: {e.message}",
                    hints=["Please check your credentials and network connectivity"],
                )
            is_mounted = True

            yield MountHandle(
                share_address=self.share_address,
                mount_point=mount_point,
                credentials_file=self.credentials_file,
            )
        finally:
            self._release(mount_point, is_mounted)

    def _release(self, mount_point: Path, is_mounted: bool) -> None:
        if is_mounted:
            result = self.runner.run(["umount", str(mount_point)], privileged=True, check=False)
            if result.returncode != 0:
                logger.warning(f"umount {mount_point} failed, detaching lazily")
                result = self.runner.run(
                    ["umount", "-l", str(mount_point)], privileged=True, check=False
                )
                if result.returncode != 0:
                    logger.error(
                        f"Could not unmount {mount_point}; run 'sudo umount {mount_point}' manually"
                    )
                    return
        self.runner.run(["rmdir", str(mount_point)], privileged=True, check=False)
        logger.info(f"Released mount point {mount_point}")

    def probe(self, handle: MountHandle) -> None:
        """Write a probe file to the share, read it back and compare.

        Raises:
            RemoteAccessFailed: On a write or read error or a content mismatch
        """
        probe_file = handle.mount_point / f"{PROBE_PREFIX}{uuid.uuid4().hex}"
        payload = secrets.token_bytes(32)
        try:
            probe_file.write_bytes(payload)
            echoed = probe_file.read_bytes()
        except OSError as e:
            raise RemoteAccessFailed(
                f"Write test on {handle.share_address} failed: {e}",
                hints=["Make sure the SMB user has write access to the share"],
            )
        finally:
            try:
                probe_file.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove probe file {probe_file}: {e}")

        if echoed != payload:
            raise RemoteAccessFailed(
                f"Write test on {handle.share_address} failed: read-back content differs"
            )
        logger.info(f"Write test on {sanitize_log_message(handle.share_address)} passed")

    def backup_dir(self, handle: MountHandle) -> Path:
        """Ensure the backup sub-directory exists on the share and return it."""
        directory = handle.mount_point / self.backup_subdir
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise RemoteAccessFailed(f"Failed to create backup directory in SMB share: {e}")
        return directory

    @contextmanager
    def open_backup_dir(self) -> Iterator[Path]:
        """Mount, verify write access and yield the share's backup directory."""
        with self.mounted() as handle:
            self.probe(handle)
            yield self.backup_dir(handle)

    def transfer(self, record: BackupRecord, backup_dir: Path) -> BackupRecord:
        """Copy a local archive onto the share, then delete the local copy.

        The local file is only removed once the copy is verified, so a failed
        transfer leaves the local archive in place.

        Raises:
            RemoteAccessFailed: If the copy fails or cannot be verified
        """
        source = record.destination_path
        target = Path(backup_dir) / source.name

        logger.info(f"Copying {source.name} to {sanitize_log_message(self.share_address)}")
        try:
            shutil.copyfile(source, target)
        except OSError as e:
            raise RemoteAccessFailed(f"Failed to copy {source} to {target}: {e}")

        if not target.is_file():
            raise RemoteAccessFailed(f"Backup not found on share after copy: {target}")
        copied_size = target.stat().st_size
        if copied_size != record.size_bytes:
            raise RemoteAccessFailed(
                f"Backup on share has {copied_size} bytes, expected {record.size_bytes}: {target}"
            )

        result = self.runner.run(["chown", self.owner, str(target)], privileged=True, check=False)
        if result.returncode != 0:
            # CIFS mounts map ownership through mount options; not fatal
            logger.warning(f"Could not change owner of {target}: {result.stderr.strip()}")

        source.unlink()
        return replace(record, destination_path=target)
