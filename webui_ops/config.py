"""Runtime settings for webui-ops, read from the environment."""

import os
from pathlib import Path
from typing import ClassVar, Dict, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from webui_ops.exceptions import InvalidInput


class Settings(BaseModel):
    """Names, images, paths and ports used by every operation.

    Defaults match a stock Open WebUI + Ollama deployment. Each field can be
    overridden through the environment variable listed in ``ENV_VARS``.
    """

    webui_container: str = "open-webui"
    webui_volume: str = "open-webui"
    webui_image: str = "ghcr.io/open-webui/open-webui:cuda"
    webui_port: int = Field(default=3000, ge=1, le=65535)
    webui_data_target: str = "/app/backend/data"

    ollama_container: str = "ollama"
    ollama_image: str = "ollama/ollama"
    ollama_volume: str = "ollama"
    ollama_url: str = "http://localhost:11434"
    ollama_install_url: str = "https://ollama.com/install.sh"

    local_backup_dir: Path = Field(default_factory=lambda: Path.home() / "open-webui-backups")
    smb_mount_point: Path = Path("/mnt/open-webui-backup")
    smb_credentials_file: Path = Path("/root/.open-webui-smb-credentials")
    smb_backup_subdir: str = "open-webui-backups"

    # Identity the Open WebUI container runs as; restored files are handed to it
    volume_owner: str = "root:root"

    docker_host: str = "unix:///var/run/docker.sock"

    model_config = {"frozen": True}

    ENV_VARS: ClassVar[Dict[str, str]] = {
        "webui_container": "WEBUI_CONTAINER",
        "webui_volume": "WEBUI_VOLUME",
        "webui_image": "WEBUI_IMAGE",
        "webui_port": "OPEN_WEBUI_PORT",
        "ollama_container": "OLLAMA_CONTAINER",
        "ollama_image": "OLLAMA_IMAGE",
        "ollama_url": "OLLAMA_URL",
        "local_backup_dir": "WEBUI_OPS_BACKUP_DIR",
        "smb_mount_point": "WEBUI_OPS_MOUNT_POINT",
        "smb_credentials_file": "WEBUI_OPS_CREDENTIALS_FILE",
        "volume_owner": "WEBUI_OPS_VOLUME_OWNER",
        "docker_host": "DOCKER_HOST",
    }

    @field_validator("volume_owner")
    @classmethod
    def validate_owner(cls, v: str) -> str:
        """Require a user:group pair."""
        user, sep, group = v.partition(":")
        if not sep or not user or not group:
            raise ValueError("volume_owner must look like 'user:group'")
        return v

    @field_validator("docker_host")
    @classmethod
    def normalize_docker_host(cls, v: str) -> str:
        """Accept a bare socket path as well as a URL."""
        return v if v.startswith(("tcp://", "unix://", "ssh://")) else f"unix://{v}"

    @field_validator("ollama_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def ollama_version_url(self) -> str:
        return f"{self.ollama_url}/api/version"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables, ignoring unset or empty ones.

        Raises:
            InvalidInput: If a variable holds a value that fails validation
        """
        environ = os.environ if environ is None else environ
        values = {}
        for field_name, env_name in cls.ENV_VARS.items():
            raw = environ.get(env_name)
            if raw:
                values[field_name] = raw
        try:
            return cls(**values)
        except ValidationError as e:
            raise InvalidInput(f"Invalid configuration: {e}")
