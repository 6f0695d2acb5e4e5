"""Utility functions for batlab."""

import os
import re
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple

LABEL_RE = re.compile(r"^[A-Za-z0-9.-]+$")


def get_original_user() -> Optional[Tuple[int, int]]:
    """
    Get the UID and GID of the user who invoked sudo.

    Returns:
        Tuple of (uid, gid) if running under sudo, None otherwise
    """
    sudo_uid = os.environ.get("SUDO_UID")
    sudo_gid = os.environ.get("SUDO_GID")

    if sudo_uid and sudo_gid:
        return (int(sudo_uid), int(sudo_gid))
    return None


def hand_back(path: Path) -> None:
    """Give a file created under sudo back to the invoking user."""
    user_info = get_original_user()
    if user_info is None or os.geteuid() != 0:
        return
    uid, gid = user_info
    os.chown(path, uid, gid)


def is_valid_label(label: str) -> bool:
    """Configuration and workload labels: letters, digits, dots, hyphens."""
    return bool(label) and LABEL_RE.match(label) is not None


def sanitize_hostname(hostname: str) -> str:
    """Hostnames become a single run-id token."""
    cleaned = re.sub(r"[^A-Za-z0-9.-]", "-", hostname.replace("_", "-"))
    return cleaned or "unknown"


def generate_run_id(
    config: str,
    os_family: str,
    workload: Optional[str] = None,
    hostname: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Build `<UTC timestamp>_<host>_<os>_<config>[_<workload>]`.

    Example:
        2025-01-15T14:30:00Z_thinkpad_linux_powersave_idle

    Raises:
        ValueError: If config or workload contain characters outside [A-Za-z0-9.-]
    """
    if not is_valid_label(config):
        raise ValueError(f"Invalid configuration label: {config!r}")
    if workload is not None and not is_valid_label(workload):
        raise ValueError(f"Invalid workload label: {workload!r}")

    stamp = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    parts = [
        stamp.strftime("%Y-%m-%dT%H:%M:%SZ"),
        sanitize_hostname(hostname or socket.gethostname()),
        os_family,
        config,
    ]
    if workload:
        parts.append(workload)
    return "_".join(parts)
