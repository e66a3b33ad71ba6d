"""Log file setup helpers."""

from __future__ import annotations

__all__ = ["ensure_secure_log_directory"]

import os
from pathlib import Path

# Log entries name users and sessions; only the broker may read them
LOG_DIR_MODE = 0o700


def ensure_secure_log_directory(log_file: Path) -> Path:
    """Create the directory of a log file, readable by its owner only.

    A directory that already exists keeps its permissions when it belongs
    to someone else.

    Returns:
        The log directory.

    Raises:
        OSError: If the directory cannot be created.
    """
    directory = log_file.parent
    try:
        directory.mkdir(mode=LOG_DIR_MODE, parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"Cannot create log directory {directory}: {e}") from e

    if os.name == "posix" and directory.stat().st_uid == os.getuid():
        directory.chmod(LOG_DIR_MODE)
    return directory
