"""Timestamped, verified tar.gz archives of a volume's contents.

Archive names follow ``<prefix>_backup_<YYYYMMDD_HHMMSS>.tar.gz`` so sorting
by name sorts by creation time. Directories written by the older shell
tooling (``<prefix>_backup_<ts>/open-webui-data.tar.gz``) are still listed so
they stay restorable.
"""

import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from webui_ops.exceptions import BackupFailed, BackupVerificationFailed, CommandFailed
from webui_ops.utils.commands import CommandRunner
from webui_ops.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"
LEGACY_ARCHIVE_NAME = "open-webui-data.tar.gz"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
BACKUP_NAME_PATTERN = re.compile(r"^(?P<prefix>.+)_backup_(?P<stamp>\d{8}_\d{6})$")


@dataclass(frozen=True)
class BackupRecord:
    """A finished archive."""

    name: str
    source_volume_path: Optional[Path]  # None when discovered by listing
    destination_path: Path
    size_bytes: int
    created_at: datetime


def backup_name(prefix: str, created_at: datetime) -> str:
    return f"{prefix}_backup_{created_at.strftime(TIMESTAMP_FORMAT)}"


def parse_backup_name(name: str) -> Optional[tuple[str, datetime]]:
    """Split a backup name into its prefix and timestamp, or None if it is not one."""
    match = BACKUP_NAME_PATTERN.match(name)
    if not match:
        return None
    try:
        created_at = datetime.strptime(match.group("stamp"), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return match.group("prefix"), created_at


class ArchiveWriter:
    """Create and list backups of a single volume."""

    def __init__(
        self,
        runner: CommandRunner,
        prefix: str = "open-webui",
        owner: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.runner = runner
        self.prefix = prefix
        # Archives are written as root and handed back to the invoking user
        self.owner = owner or f"{os.getuid()}:{os.getgid()}"
        self.clock = clock

    def create_backup(self, source_volume_path: Path, destination_dir: Path) -> BackupRecord:
        """Archive everything under ``source_volume_path`` into ``destination_dir``.

        Returns:
            The verified record of the new archive

        Raises:
            BackupFailed: tar or chown failed
            BackupVerificationFailed: the archive is missing or empty afterwards
        """
        source_volume_path = Path(source_volume_path)
        destination_dir = Path(destination_dir)
        created_at = self.clock()
        name = backup_name(self.prefix, created_at)
        archive = destination_dir / f"{name}{ARCHIVE_SUFFIX}"

        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackupFailed(f"Cannot create backup directory {destination_dir}: {e}")

        if archive.exists():
            raise BackupFailed(f"Backup {archive} already exists")

        logger.info(
            f"Creating backup from {sanitize_log_message(str(source_volume_path))} "
            f"in {sanitize_log_message(str(archive))}"
        )
        try:
            self.runner.run(
                ["tar", "czf", str(archive), "-C", str(source_volume_path), "."],
                privileged=True,
            )
        except CommandFailed as e:
            self._discard(archive)
            raise BackupFailed(f"Failed to archive {source_volume_path}: {e.message}")

        size = self._verify(archive)

        try:
            self.runner.run(["chown", self.owner, str(archive)], privileged=True)
        except CommandFailed as e:
            self._discard(archive)
            raise BackupFailed(f"Failed to hand {archive} to {self.owner}: {e.message}")

        logger.info(f"Backup completed: {sanitize_log_message(str(archive))} ({size} bytes)")
        return BackupRecord(
            name=name,
            source_volume_path=source_volume_path,
            destination_path=archive,
            size_bytes=size,
            created_at=created_at,
        )

    def _verify(self, archive: Path) -> int:
        if not archive.is_file():
            self._discard(archive)
            raise BackupVerificationFailed(archive, "archive was not created")
        size = archive.stat().st_size
        if size == 0:
            self._discard(archive)
            raise BackupVerificationFailed(archive, "archive is empty")
        return size

    def _discard(self, archive: Path) -> None:
        """Remove a partial archive, escalating to root when it is root-owned."""
        try:
            archive.unlink(missing_ok=True)
        except PermissionError:
            self.runner.run(["rm", "-f", str(archive)], privileged=True, check=False)
        if archive.exists():
            logger.error(f"Could not remove partial archive {sanitize_log_message(str(archive))}")

    def list_backups(self, directory: Path) -> List[BackupRecord]:
        """List this writer's backups in ``directory``, most recent first."""
        directory = Path(directory)
        if not directory.is_dir():
            return []

        records = []
        for entry in directory.iterdir():
            if entry.is_file() and entry.name.endswith(ARCHIVE_SUFFIX):
                name = entry.name[: -len(ARCHIVE_SUFFIX)]
                archive = entry
            elif entry.is_dir() and (entry / LEGACY_ARCHIVE_NAME).is_file():
                name = entry.name
                archive = entry / LEGACY_ARCHIVE_NAME
            else:
                continue

            parsed = parse_backup_name(name)
            if parsed is None or parsed[0] != self.prefix:
                continue

            records.append(
                BackupRecord(
                    name=name,
                    source_volume_path=None,
                    destination_path=archive,
                    size_bytes=archive.stat().st_size,
                    created_at=parsed[1],
                )
            )

        records.sort(key=lambda r: r.name, reverse=True)
        return records
