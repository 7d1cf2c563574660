"""Register unattended backups in the invoking user's crontab."""

import logging
import shutil
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from webui_ops.exceptions import PreconditionFailed
from webui_ops.utils.commands import CommandRunner
from webui_ops.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


CRON_EXPRESSIONS = {
    Frequency.DAILY: "0 0 * * *",  # every day at midnight
    Frequency.WEEKLY: "0 0 * * 0",  # every Sunday at midnight
    Frequency.MONTHLY: "0 0 1 * *",  # first day of each month at midnight
}


@dataclass(frozen=True)
class ScheduleEntry:
    cron_expression: str
    invocation_command: str

    @property
    def line(self) -> str:
        return f"{self.cron_expression} {self.invocation_command}"


def default_script_path() -> Path:
    """Absolute path of the installed ``webui-ops`` entry point."""
    found = shutil.which("webui-ops")
    if found:
        return Path(found).resolve()
    return Path(sys.argv[0]).resolve()


class ScheduleRegistrar:
    """Append periodic ``--auto-backup`` invocations to the crontab.

    Entries are only ever appended. Registering the same frequency and
    destination twice leaves two identical lines in the table.
    """

    def __init__(self, runner: CommandRunner, script_path: Optional[Path] = None) -> None:
        self.runner = runner
        self.script_path = Path(script_path) if script_path else default_script_path()

    def read_table(self) -> List[str]:
        """Return the current crontab lines; a missing crontab is an empty table."""
        try:
            result = self.runner.run(["crontab", "-l"], check=False)
        except PreconditionFailed:
            raise PreconditionFailed(
                "crontab is not installed",
                hints=["Install the cron package, e.g. sudo apt-get install -y cron"],
            )
        if result.returncode != 0:
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]

    def build_entry(self, frequency: Frequency, destination: str) -> ScheduleEntry:
        frequency = Frequency(frequency)
        return ScheduleEntry(
            cron_expression=CRON_EXPRESSIONS[frequency],
            invocation_command=f'{self.script_path} --auto-backup "{destination}"',
        )

    def register_periodic(self, frequency: Frequency, destination: str) -> ScheduleEntry:
        """Append a backup entry for ``frequency`` writing to ``destination``.

        Raises:
            PreconditionFailed: crontab is unavailable
            CommandFailed: the new table could not be installed
        """
        entry = self.build_entry(frequency, destination)
        lines = self.read_table()
        if entry.line in lines:
            logger.warning(
                f"An identical backup schedule already exists: {sanitize_log_message(entry.line)}"
            )
        lines.append(entry.line)

        self.runner.run(["crontab", "-"], input="\n".join(lines) + "\n")
        logger.info(f"Backup schedule set: {sanitize_log_message(entry.line)}")
        return entry
