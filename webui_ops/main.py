"""webui-ops - command line entry point.

Interactive wizard (no arguments), individual commands, and the unattended
``--auto-backup DESTINATION`` mode used by the cron entries this tool writes.
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple, TypeVar

import docker
import typer

from webui_ops.config import Settings
from webui_ops.exceptions import InvalidInput, WebUIOpsError
from webui_ops.services.archive_writer import ArchiveWriter, BackupRecord
from webui_ops.services.backup_service import BackupService
from webui_ops.services.container_service import ContainerService
from webui_ops.services.preconditions import SCHEDULE_TOOLS, SMB_TOOLS, PreconditionChecker
from webui_ops.services.remote_share import SmbCredentials, write_credentials_file
from webui_ops.services.restore_executor import RestoreExecutor, RestoreState
from webui_ops.services.schedule_registrar import Frequency, ScheduleRegistrar
from webui_ops.services.update_engine import NetworkMode, UpdateEngine
from webui_ops.services.volume_locator import VolumeLocator
from webui_ops.utils.commands import CommandRunner
from webui_ops.utils.validators import parse_menu_choice, validate_smb_path

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_version() -> str:
    """Installed package version, or a dev marker when running from a checkout."""
    try:
        return version("webui-ops")
    except PackageNotFoundError:
        return "0.0.0-dev"


@dataclass
class Toolbench:
    """Every collaborator a command needs, built once per invocation."""

    settings: Settings
    runner: CommandRunner
    containers: ContainerService
    volumes: VolumeLocator
    writer: ArchiveWriter
    backups: BackupService
    registrar: ScheduleRegistrar
    checker: PreconditionChecker
    updates: UpdateEngine

    @classmethod
    def build(
        cls,
        settings: Settings,
        runner: Optional[CommandRunner] = None,
        client: Optional[docker.DockerClient] = None,
    ) -> "Toolbench":
        runner = runner or CommandRunner()
        containers = ContainerService(client=client, docker_host=settings.docker_host)
        volumes = VolumeLocator(containers.client)
        writer = ArchiveWriter(runner, prefix=settings.webui_volume)
        backups = BackupService(settings, volumes, writer, runner)
        return cls(
            settings=settings,
            runner=runner,
            containers=containers,
            volumes=volumes,
            writer=writer,
            backups=backups,
            registrar=ScheduleRegistrar(runner),
            checker=PreconditionChecker(containers, runner),
            updates=UpdateEngine(settings, containers, backups, runner),
        )

    def restore_executor(self) -> RestoreExecutor:
        settings = self.settings
        return RestoreExecutor(
            self.containers,
            self.volumes,
            self.runner,
            container_name=settings.webui_container,
            volume_name=settings.webui_volume,
            volume_owner=settings.volume_owner,
            port=settings.webui_port,
        )


app = typer.Typer(
    add_completion=False,
    help="Backup, restore and update Open WebUI and Ollama containers.",
)


# -------------------------
# Output helpers
# -------------------------

def say(msg: str) -> None:
    typer.secho(msg, fg=typer.colors.BLUE)


def ok(msg: str) -> None:
    typer.secho(f"✅ {msg}", fg=typer.colors.GREEN)


def fail(msg: str) -> None:
    typer.secho(f"Error: {msg}", fg=typer.colors.RED, err=True)


@contextmanager
def reported_errors() -> Iterator[None]:
    """Turn webui-ops errors into a message and a non-zero exit."""
    try:
        yield
    except WebUIOpsError as e:
        fail(e.message)
        for hint in e.hints:
            typer.secho(f"  {hint}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=e.exit_code)


def get_tools(ctx: typer.Context) -> Toolbench:
    """Get the tool bench from the context, building it on first use."""
    ctx.ensure_object(dict)
    if "tools" not in ctx.obj:
        ctx.obj["tools"] = Toolbench.build(Settings.from_env())
    return ctx.obj["tools"]


def choose(title: str, options: Sequence[Tuple[str, T]]) -> T:
    """Print a numbered menu and return the value of the chosen entry."""
    typer.echo(f"\n{title}:")
    for index, (label, _) in enumerate(options, start=1):
        typer.echo(f"{index}) {label}")
    raw = typer.prompt(f"Enter your choice (1-{len(options)})")
    return parse_menu_choice(raw, [value for _, value in options])


def prompt_share(tools: Toolbench) -> str:
    """Ask for an SMB share and its login, store the login and return the address."""
    tools.checker.check_tools(SMB_TOOLS)
    say("Please enter SMB share details:")
    typer.echo("Format: //hostname_or_ip/share_name")
    typer.echo("Example: //192.168.1.100/backups")
    while True:
        try:
            share = validate_smb_path(typer.prompt("SMB Share Path"))
            break
        except InvalidInput as e:
            fail(e.message)
            for hint in e.hints:
                typer.echo(hint)

    username = typer.prompt("Username")
    password = typer.prompt("Password", hide_input=True)
    domain = typer.prompt("Domain (press Enter to skip)", default="", show_default=False)
    credentials = SmbCredentials(username=username, password=password, domain=domain or None)
    write_credentials_file(tools.runner, tools.settings.smb_credentials_file, credentials)
    return share


def report_backup(record: BackupRecord) -> None:
    ok("Backup completed successfully!")
    typer.echo(f"Backup location: {record.destination_path}")


# -------------------------
# Flows
# -------------------------

def backup_flow(tools: Toolbench) -> None:
    frequency: Optional[Frequency] = choose(
        "Select backup frequency",
        [
            ("One-time backup", None),
            ("Daily backup", Frequency.DAILY),
            ("Weekly backup", Frequency.WEEKLY),
            ("Monthly backup", Frequency.MONTHLY),
        ],
    )
    location = choose("Select backup location", [("Local directory", "local"), ("SMB share", "smb")])

    if location == "local":
        destination = str(tools.settings.local_backup_dir)
    else:
        destination = prompt_share(tools)

    if frequency is not None:
        tools.checker.check_tools(SCHEDULE_TOOLS)
        tools.registrar.register_periodic(frequency, destination)
        ok("Backup schedule set successfully!")

    say(f"Creating backup in: {destination}")
    report_backup(tools.backups.backup_to(destination))


def restore_flow(tools: Toolbench, archive: Optional[Path] = None) -> None:
    if archive is not None:
        confirm_and_restore(tools, Path(archive))
        return

    location = choose("Select restore location", [("Local directory", "local"), ("SMB share", "smb")])
    if location == "local":
        source = str(tools.settings.local_backup_dir)
        if not tools.settings.local_backup_dir.is_dir():
            raise InvalidInput("No local backups found")
    else:
        source = prompt_share(tools)

    with tools.backups.backup_location(source) as directory:
        records = tools.writer.list_backups(directory)
        if not records:
            raise InvalidInput(f"No backups found in {source}")
        selected = choose(
            "Available backups",
            [(record.name, record) for record in records],
        )
        confirm_and_restore(tools, selected.destination_path)


def confirm_and_restore(tools: Toolbench, archive: Path) -> None:
    typer.secho("WARNING: This will overwrite all existing Open WebUI data!", fg=typer.colors.RED)
    typer.secho("Any changes made since the backup will be lost.", fg=typer.colors.RED)
    say(f"Backup to restore: {archive}")
    confirmation = typer.prompt(
        "Are you sure you want to proceed with the restore? (yes/no)", default="", show_default=False
    )

    executor = tools.restore_executor()
    if executor.restore(archive, confirmation) is RestoreState.CANCELLED:
        say("Restore cancelled.")
        return
    ok("Restore completed successfully!")


# -------------------------
# Commands
# -------------------------

@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    auto_backup: Optional[str] = typer.Option(
        None,
        "--auto-backup",
        metavar="DESTINATION",
        help="Create one backup in DESTINATION (directory or //host/share) and exit.",
    ),
) -> None:
    """Run the interactive wizard when no command is given."""
    ctx.ensure_object(dict)

    if auto_backup is not None:
        with reported_errors():
            tools = get_tools(ctx)
            logger.info("Running unattended backup")
            report_backup(tools.backups.backup_to(auto_backup))
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is not None:
        return

    with reported_errors():
        tools = get_tools(ctx)
        say("Checking Docker...")
        tools.checker.check_docker()
        say("Checking existing container...")
        tools.checker.check_container(tools.settings.webui_container)

        say("Welcome to Open WebUI Backup Wizard!")
        operation = choose(
            "Select operation", [("Create backup", "backup"), ("Restore from backup", "restore")]
        )
        if operation == "backup":
            backup_flow(tools)
        else:
            restore_flow(tools)


@app.command("backup")
def cmd_backup(ctx: typer.Context) -> None:
    """Create a backup, optionally on a schedule."""
    with reported_errors():
        tools = get_tools(ctx)
        tools.checker.check_docker()
        tools.checker.check_container(tools.settings.webui_container)
        backup_flow(tools)


@app.command("restore")
def cmd_restore(
    ctx: typer.Context,
    archive: Optional[Path] = typer.Argument(None, help="Archive to restore; choose interactively if omitted."),
) -> None:
    """Restore a backup over the live volume (asks for confirmation)."""
    with reported_errors():
        tools = get_tools(ctx)
        tools.checker.check_docker()
        restore_flow(tools, archive)


@app.command("list")
def cmd_list(
    ctx: typer.Context,
    source: Optional[str] = typer.Argument(None, help="Directory or //host/share; defaults to the local backup directory."),
) -> None:
    """List backups, most recent first."""
    with reported_errors():
        tools = get_tools(ctx)
        source = source or str(tools.settings.local_backup_dir)
        with tools.backups.backup_location(source) as directory:
            records: List[BackupRecord] = tools.writer.list_backups(directory)
            if not records:
                raise InvalidInput(f"No backups found in {source}")
            for index, record in enumerate(records, start=1):
                typer.echo(f"{index}) {record.name}  {record.size_bytes} bytes")


@app.command("schedule")
def cmd_schedule(
    ctx: typer.Context,
    frequency: Frequency = typer.Argument(..., help="daily, weekly or monthly"),
    destination: str = typer.Argument(..., help="Directory or //host/share"),
) -> None:
    """Add a cron entry that runs --auto-backup DESTINATION."""
    with reported_errors():
        tools = get_tools(ctx)
        tools.checker.check_tools(SCHEDULE_TOOLS)
        entry = tools.registrar.register_periodic(frequency, destination)
        ok(f"Backup schedule set successfully! ({entry.cron_expression})")


@app.command("update-webui")
def cmd_update_webui(
    ctx: typer.Context,
    network: NetworkMode = typer.Option(NetworkMode.BRIDGE, "--network", help="bridge or host networking"),
) -> None:
    """Back up the data volume and recreate Open WebUI from the latest image."""
    with reported_errors():
        tools = get_tools(ctx)
        say("Starting Open WebUI update process...")
        result = tools.updates.update_open_webui(network)
        ok("Update completed successfully!")
        ok("Persistent data has been preserved and reattached")
        if result.backup is not None:
            ok(f"Backup created in {result.backup.destination_path}")
        if result.gpu:
            ok("GPU support enabled")
        say(f"Open WebUI is running at: {result.url}")


@app.command("update-ollama")
def cmd_update_ollama(ctx: typer.Context) -> None:
    """Update Ollama, as a container or a host installation."""
    with reported_errors():
        tools = get_tools(ctx)
        say("Starting Ollama update process...")
        result = tools.updates.update_ollama()
        ok(f"Ollama update completed successfully ({result.mode} mode)")


@app.command("version")
def cmd_version() -> None:
    """Show the webui-ops version."""
    typer.echo(f"webui-ops {get_version()}")
