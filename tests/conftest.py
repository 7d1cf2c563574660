"""Pytest configuration and fixtures."""

import os
import shutil
import subprocess
import tarfile
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
from unittest.mock import MagicMock

import pytest
from docker.errors import NotFound

from webui_ops.config import Settings
from webui_ops.exceptions import CommandFailed, PreconditionFailed
from webui_ops.utils.commands import CommandRunner

# Captured before tests patch shutil.copyfile, so the fake share keeps working.
_real_copyfile = shutil.copyfile


def _harness_copy(src, dst, *, follow_symlinks=True):
    return _real_copyfile(src, dst, follow_symlinks=follow_symlinks)


class FakeRunner(CommandRunner):
    """CommandRunner that records calls and simulates the host tools on tmp_path.

    * ``tar czf/tzf/xzf`` use the tarfile module
    * ``mount``/``umount`` copy the contents of ``share_root`` in and out of
      the mount point, so files written to a mounted share end up in
      ``share_root`` after unmounting
    * ``crontab -l``/``crontab -`` read and write ``self.crontab``
    """

    def __init__(self, share_root: Optional[Path] = None) -> None:
        super().__init__(use_sudo=False)
        self.share_root = share_root
        self.calls: List[Tuple[List[str], bool]] = []
        self.crontab: Optional[str] = None
        self.failures: List[Tuple[Tuple[str, ...], int, str]] = []
        self.missing_tools: set = set()
        self.empty_archives = False
        self.skip_archives = False

    @property
    def commands(self) -> List[List[str]]:
        return [cmd for cmd, _ in self.calls]

    def fail(self, prefix: Sequence[str], returncode: int = 1, stderr: str = "simulated failure") -> None:
        """Make every command starting with ``prefix`` exit with ``returncode``."""
        self.failures.append((tuple(prefix), returncode, stderr))

    def which(self, program: str) -> Optional[str]:
        if program in self.missing_tools:
            return None
        return f"/usr/bin/{program}"

    def run(self, args, privileged=False, check=True, input=None):
        cmd = [str(a) for a in args]
        self.calls.append((cmd, privileged))
        if cmd[0] in self.missing_tools:
            raise PreconditionFailed(f"Required program not found: {cmd[0]}")

        for prefix, returncode, stderr in self.failures:
            if tuple(cmd[: len(prefix)]) == prefix:
                result = subprocess.CompletedProcess(cmd, returncode, "", stderr)
                break
        else:
            handler = getattr(self, "_" + cmd[0].replace(".", "_"), None)
            stdout, returncode = handler(cmd, input) if handler else ("", 0)
            result = subprocess.CompletedProcess(cmd, returncode, stdout, "")

        if check and result.returncode != 0:
            raise CommandFailed(cmd, result.returncode, result.stderr)
        return result

    def _tar(self, cmd, input):
        mode, archive = cmd[1], Path(cmd[2])
        if mode == "czf":
            if self.skip_archives:
                return "", 0
            if self.empty_archives:
                archive.write_bytes(b"")
                return "", 0
            with tarfile.open(archive, "w:gz") as tar:
                tar.add(cmd[4], arcname=".")
            return "", 0
        if mode == "tzf":
            if not tarfile.is_tarfile(archive):
                return "", 2
            with tarfile.open(archive, "r:gz") as tar:
                return "\n".join(tar.getnames()), 0
        if mode == "xzf":
            with tarfile.open(archive, "r:gz") as tar:
                tar.extractall(cmd[4])
            return "", 0
        return "", 2

    def _find(self, cmd, input):
        for child in Path(cmd[1]).iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()
        return "", 0

    def _rm(self, cmd, input):
        Path(cmd[-1]).unlink(missing_ok=True)
        return "", 0

    def _mkdir(self, cmd, input):
        Path(cmd[-1]).mkdir(parents=True, exist_ok=True)
        return "", 0

    def _rmdir(self, cmd, input):
        try:
            os.rmdir(cmd[-1])
        except OSError:
            return "", 1
        return "", 0

    def _mount(self, cmd, input):
        mount_point = Path(cmd[4])
        if self.share_root is not None and self.share_root.exists():
            shutil.copytree(self.share_root, mount_point, dirs_exist_ok=True, copy_function=_harness_copy)
        return "", 0

    def _umount(self, cmd, input):
        mount_point = Path(cmd[-1])
        if self.share_root is not None:
            if self.share_root.exists():
                shutil.rmtree(self.share_root)
            shutil.copytree(mount_point, self.share_root, copy_function=_harness_copy)
        for child in mount_point.iterdir():
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()
        return "", 0

    def _install(self, cmd, input):
        target = Path(cmd[-1])
        target.write_text("")
        target.chmod(int(cmd[2], 8))
        return "", 0

    def _tee(self, cmd, input):
        Path(cmd[-1]).write_text(input or "")
        return input or "", 0

    def _cat(self, cmd, input):
        path = Path(cmd[-1])
        if not path.exists():
            return "", 1
        return path.read_text(), 0

    def _crontab(self, cmd, input):
        if cmd[1] == "-l":
            if self.crontab is None:
                return "", 1
            return self.crontab, 0
        self.crontab = input
        return "", 0


def make_container(running: bool = True) -> MagicMock:
    """Container mock whose stop/start flip its State.Running flag."""
    container = MagicMock()
    container.attrs = {"State": {"Running": running, "Status": "running" if running else "exited"}}

    def stop():
        container.attrs["State"].update(Running=False, Status="exited", ExitCode=137)

    def start():
        container.attrs["State"].update(Running=True, Status="running", ExitCode=0)

    container.stop.side_effect = stop
    container.start.side_effect = start
    return container


@pytest.fixture
def runner(tmp_path) -> FakeRunner:
    return FakeRunner(share_root=tmp_path / "share")


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        local_backup_dir=tmp_path / "backups",
        smb_mount_point=tmp_path / "mnt" / "open-webui-backup",
        smb_credentials_file=tmp_path / "smb-credentials",
    )


@pytest.fixture
def volume_dir(tmp_path) -> Path:
    """A populated stand-in for the open-webui volume."""
    volume = tmp_path / "volume"
    (volume / "uploads").mkdir(parents=True)
    (volume / "webui.db").write_bytes(b"SQLite format 3\x00" + b"\x01" * 4096)
    (volume / "uploads" / "notes.txt").write_text("hello")
    (volume / ".hidden").write_text("dotfile")
    return volume


@pytest.fixture
def webui_container() -> MagicMock:
    return make_container(running=True)


@pytest.fixture
def docker_client(volume_dir, webui_container) -> MagicMock:
    """Docker client mock knowing the open-webui volume and container."""
    client = MagicMock()
    volume = MagicMock()
    volume.attrs = {"Name": "open-webui", "Mountpoint": str(volume_dir)}

    def get_volume(name):
        if name == "open-webui":
            return volume
        raise NotFound(f"volume {name} not found")

    def get_container(name):
        if name == "open-webui":
            return webui_container
        raise NotFound(f"container {name} not found")

    client.volumes.get.side_effect = get_volume
    client.containers.get.side_effect = get_container
    return client
