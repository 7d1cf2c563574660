"""Helpers that keep user-supplied values and secrets out of log output."""

import re
from typing import Union


def sanitize_log_message(msg: Union[str, bytes, int, float, None]) -> str:
    """Remove newlines and control characters from log messages.

    Share addresses, paths and menu input are typed by the operator, so they
    go through this before reaching a log line.

    Examples:
        >>> sanitize_log_message("//nas/share\\nfake entry")
        '//nas/sharefake entry'
    """
    if msg is None:
        return ""

    msg_str = str(msg)
    return re.sub(r'[\n\r\t\x00-\x1f\x7f-\x9f]', '', msg_str)

