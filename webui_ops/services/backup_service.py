"""Backups of the Open WebUI volume to a local directory or an SMB share."""

import logging
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from webui_ops.config import Settings
from webui_ops.exceptions import RemoteAccessFailed
from webui_ops.services.archive_writer import ArchiveWriter, BackupRecord
from webui_ops.services.remote_share import RemoteShare, load_credentials_file
from webui_ops.services.volume_locator import VolumeLocator
from webui_ops.utils.commands import CommandRunner
from webui_ops.utils.validators import is_smb_path

logger = logging.getLogger(__name__)


class BackupService:
    """Tie the volume locator, archive writer and remote share together.

    Destinations are plain strings: an SMB address (``//host/share``) means
    the share is mounted for the duration of the operation using the stored
    credentials file, anything else is a local directory.
    """

    def __init__(
        self,
        settings: Settings,
        volumes: VolumeLocator,
        writer: ArchiveWriter,
        runner: CommandRunner,
    ) -> None:
        self.settings = settings
        self.volumes = volumes
        self.writer = writer
        self.runner = runner

    def make_share(self, share_address: str) -> RemoteShare:
        """Build a share backed by the stored credentials file.

        Raises:
            RemoteAccessFailed: The credentials file is missing or unreadable
            InvalidInput: The address or the stored credentials are malformed
        """
        load_credentials_file(self.runner, self.settings.smb_credentials_file)
        return RemoteShare(
            share_address,
            credentials_file=self.settings.smb_credentials_file,
            mount_point=self.settings.smb_mount_point,
            runner=self.runner,
            backup_subdir=self.settings.smb_backup_subdir,
            owner=self.writer.owner,
        )

    def backup_local(self, destination_dir: Optional[Path] = None) -> BackupRecord:
        source = self.volumes.locate(self.settings.webui_volume)
        return self.writer.create_backup(source, Path(destination_dir or self.settings.local_backup_dir))

    def backup_remote(self, share: RemoteShare) -> BackupRecord:
        """Archive locally, then move the archive onto the share.

        The share is mounted and write-tested before the archive is created.
        If the transfer fails the staged archive is kept and its path is
        added to the error hints.
        """
        source = self.volumes.locate(self.settings.webui_volume)
        with share.open_backup_dir() as backup_dir:
            staging = Path(tempfile.mkdtemp(prefix="webui-ops-"))
            try:
                record = self.writer.create_backup(source, staging)
            except Exception:
                shutil.rmtree(staging, ignore_errors=True)
                raise

            try:
                moved = share.transfer(record, backup_dir)
            except RemoteAccessFailed as e:
                logger.error(f"Transfer failed, keeping {record.destination_path}")
                raise RemoteAccessFailed(
                    e.message,
                    hints=e.hints + [f"The backup was kept locally at {record.destination_path}"],
                ) from e

            shutil.rmtree(staging, ignore_errors=True)
            return moved

    def backup_to(self, destination: str) -> BackupRecord:
        """Back up to a local directory or an SMB address."""
        if is_smb_path(destination):
            return self.backup_remote(self.make_share(destination))
        return self.backup_local(Path(destination).expanduser())

    @contextmanager
    def backup_location(self, source: str) -> Iterator[Path]:
        """Yield the directory holding backups for ``source``, mounting a share if needed."""
        if is_smb_path(source):
            with self.make_share(source).open_backup_dir() as backup_dir:
                yield backup_dir
        else:
            yield Path(source).expanduser()
