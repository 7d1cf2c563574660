"""Input validation for operator-supplied values."""

import re
from typing import Sequence, TypeVar

from webui_ops.exceptions import InvalidInput

T = TypeVar("T")

# //hostname_or_ip/share[/sub/path]
SMB_PATH_PATTERN = re.compile(r"^//[^/]+/[^/].*")


def validate_smb_path(path: str) -> str:
    """Validate an SMB share address.

    Args:
        path: Share address such as ``//192.168.1.100/backups``

    Returns:
        The address with surrounding whitespace removed

    Raises:
        InvalidInput: If the address does not start with ``//host/share``
    """
    candidate = (path or "").strip()
    if not SMB_PATH_PATTERN.match(candidate):
        raise InvalidInput(
            f"Invalid SMB path format: '{candidate}'",
            hints=[
                "Path must start with // followed by hostname/IP and share name",
                "Example: //192.168.1.100/backups",
            ],
        )
    return candidate


def is_smb_path(path: str) -> bool:
    """Return True when ``path`` looks like an SMB share address."""
    return bool(SMB_PATH_PATTERN.match((path or "").strip()))


def validate_container_name(name: str) -> str:
    """Validate a container or volume name for use in Docker calls.

    Raises:
        InvalidInput: If the name breaks Docker naming rules
    """
    if not name:
        raise InvalidInput("Container name cannot be empty")

    if name.startswith("-"):
        raise InvalidInput("Container name cannot start with dash")

    if not re.match(r'^[a-zA-Z0-9_][a-zA-Z0-9_.-]*$', name):
        raise InvalidInput(
            "Container name must contain only alphanumeric characters, "
            "underscores, dashes, and dots"
        )

    if len(name) > 255:
        raise InvalidInput("Container name too long (max 255 characters)")

    return name


def parse_menu_choice(raw: str, options: Sequence[T]) -> T:
    """Map a 1-based menu selection to one of ``options``.

    Raises:
        InvalidInput: If the selection is not a number within range
    """
    value = (raw or "").strip()
    if not value.isdigit():
        raise InvalidInput(f"Invalid selection: '{value}'")
    index = int(value)
    if index < 1 or index > len(options):
        raise InvalidInput(f"Invalid selection: {index} (choose 1-{len(options)})")
    return options[index - 1]


def is_affirmative(token: str) -> bool:
    """Return True for a case-insensitive ``yes`` or ``y``."""
    return (token or "").strip().lower() in ("yes", "y")
